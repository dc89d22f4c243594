"""
Reports which migrated customers have re-authorized a payment method.

Read-only: for every customer in the migration map, the target account is
queried for a default payment method and the customer's subscriptions. A failed
lookup is logged and left out of the affected counts.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe
from stripe import StripeClient

from stripe_migrate_core import Progress, ProgressCallback, utc_now_iso
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_reports import format_amount, write_csv, write_json

REPORT_FILE = "payment-status-report.json"
NEEDS_ACTION_CSV_FILE = "customers-needing-payment.csv"

CSV_HEADER = ["Email", "Name", "Customer ID", "Subscription ID", "Amount", "Next Billing Date"]


@dataclass
class MonitorReport:
    total: int = 0
    with_payment_method: int = 0
    without_payment_method: int = 0
    active_subscriptions: int = 0
    incomplete_subscriptions: int = 0
    free_subscriptions: int = 0
    paid_subscriptions: int = 0
    lookup_failures: int = 0
    customers_needing_action: List[Dict[str, Any]] = field(default_factory=list)

    def percentages(self) -> Dict[str, str]:
        def pct(count: int) -> str:
            return "%.2f%%" % (count * 100.0 / self.total) if self.total else "0.00%"

        return {
            "payment_method_update_rate": pct(self.with_payment_method),
            "active_subscription_rate": pct(self.active_subscriptions),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": utc_now_iso(),
            "summary": {
                "total": self.total,
                "with_payment_method": self.with_payment_method,
                "without_payment_method": self.without_payment_method,
                "active_subscriptions": self.active_subscriptions,
                "incomplete_subscriptions": self.incomplete_subscriptions,
                "free_subscriptions": self.free_subscriptions,
                "paid_subscriptions": self.paid_subscriptions,
                "lookup_failures": self.lookup_failures,
                "customers_needing_action": self.customers_needing_action,
            },
            "percentages": self.percentages(),
        }


def has_payment_method(customer: Any) -> bool:
    invoice_settings = customer.get("invoice_settings") or {}
    return bool(invoice_settings.get("default_payment_method") or customer.get("default_source"))


def _item_amount(item: Any) -> int:
    price = item.get("price") or {}
    return (price.get("unit_amount") or 0) * (item.get("quantity") or 1)


def _period_end(subscription: Any) -> Optional[int]:
    period_end = subscription.get("current_period_end")
    if period_end:
        return period_end
    ends = [i.get("current_period_end") for i in subscription["items"]["data"] if i.get("current_period_end")]
    return max(ends) if ends else None


def _needs_action_entry(customer: Any, customer_id: str, subscription: Any) -> Dict[str, Any]:
    items = subscription["items"]["data"]
    period_end = _period_end(subscription)
    return {
        "customer_id": customer_id,
        "email": customer.get("email"),
        "name": customer.get("name"),
        "subscription_id": subscription["id"],
        "plan": (items[0].get("price") or {}).get("product") if items else None,
        "amount": sum(_item_amount(item) for item in items),
        "next_billing_date": (
            datetime.fromtimestamp(period_end, tz=timezone.utc).isoformat() if period_end else None
        ),
    }


def monitor_payment_status(
    target_stripe: StripeClient,
    export_dir: str,
    mapping: MigrationMap,
    progress: Optional[ProgressCallback] = None,
) -> MonitorReport:
    """
    Scans every migrated customer in the target account.

    Args:
        target_stripe: Initialized Stripe client for the target account
        export_dir: Directory the report files are written to
        mapping: MigrationMap whose customers table lists the customers to check
        progress: Optional progress callback

    Returns:
        The aggregated MonitorReport
    """
    report = MonitorReport()
    new_customer_ids = list(mapping.table("customers").values())
    report.total = len(new_customer_ids)
    logging.info("Checking %d customers...", report.total)

    for index, customer_id in enumerate(new_customer_ids, start=1):
        if index % 50 == 0:
            logging.info("Progress: %d/%d customers checked...", index, report.total)
        _check_customer(target_stripe, customer_id, report)
        if progress:
            progress(Progress(stage="monitor", processed=index, total=report.total))

    write_json(os.path.join(export_dir, REPORT_FILE), report.to_dict())
    if report.customers_needing_action:
        write_csv(
            os.path.join(export_dir, NEEDS_ACTION_CSV_FILE),
            CSV_HEADER,
            (
                [
                    c["email"],
                    c["name"],
                    c["customer_id"],
                    c["subscription_id"],
                    format_amount(c["amount"]),
                    c["next_billing_date"],
                ]
                for c in report.customers_needing_action
            ),
        )

    percentages = report.percentages()
    logging.info("Payment method update status:")
    logging.info("  Total customers: %d", report.total)
    logging.info(
        "  With payment method: %d (%s)",
        report.with_payment_method,
        percentages["payment_method_update_rate"],
    )
    logging.info("  Without payment method: %d", report.without_payment_method)
    logging.info(
        "  Active subscriptions: %d (free: %d, paid: %d)",
        report.active_subscriptions,
        report.free_subscriptions,
        report.paid_subscriptions,
    )
    logging.info("  Incomplete subscriptions: %d", report.incomplete_subscriptions)
    if report.lookup_failures:
        logging.warning("  Customers that could not be checked: %d", report.lookup_failures)
    if report.customers_needing_action:
        logging.warning(
            "  Customers with a paid subscription but no payment method: %d",
            len(report.customers_needing_action),
        )
        for entry in report.customers_needing_action[:10]:
            logging.warning(
                "    %s - %s - next billing: %s",
                entry["email"] or entry["customer_id"],
                format_amount(entry["amount"]),
                entry["next_billing_date"],
            )
    return report


def _check_customer(target_stripe: StripeClient, customer_id: str, report: MonitorReport) -> None:
    try:
        customer = target_stripe.customers.retrieve(customer_id).to_dict()
    except stripe.StripeError as e:
        logging.error("  Error checking customer %s: %s", customer_id, e)
        report.lookup_failures += 1
        return

    has_pm = has_payment_method(customer)
    if has_pm:
        report.with_payment_method += 1
    else:
        report.without_payment_method += 1

    try:
        page = target_stripe.subscriptions.list(params={"customer": customer_id, "limit": 100})
    except stripe.StripeError as e:
        logging.error("  Error listing subscriptions for customer %s: %s", customer_id, e)
        report.lookup_failures += 1
        return

    for subscription in (s.to_dict() for s in page.data):
        status = subscription.get("status")
        if status == "incomplete":
            report.incomplete_subscriptions += 1
            continue
        if status != "active":
            continue

        report.active_subscriptions += 1
        items = subscription["items"]["data"]
        if all((item.get("price") or {}).get("unit_amount") == 0 for item in items):
            report.free_subscriptions += 1
            continue

        report.paid_subscriptions += 1
        if not has_pm:
            report.customers_needing_action.append(_needs_action_entry(customer, customer_id, subscription))
