"""
Generates payment-method re-authorization links for migrated paid subscriptions.

Each link is a Checkout Session in setup mode on the target account, scoped to
the new customer. Sessions expire after 24 hours, so every run generates fresh
links rather than reusing earlier ones.
"""

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe
from stripe import StripeClient

from stripe_migrate_core import MigrationError, Progress, ProgressCallback, load_dataset, save_errors
from stripe_migrate_errors import DependencyNotReady, MigrationSetupError, RecordError
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_records import Customer, Product, Subscription
from stripe_migrate_reports import format_amount, read_json, write_csv, write_json
from stripe_migrate_subscriptions import (
    SUBSCRIPTIONS_EXPORT_FILE,
    is_free_subscription,
)

CUSTOMERS_EXPORT_FILE = "customers-export.json"
PRODUCTS_EXPORT_FILE = "products-export.json"
LINKS_FILE = "payment-update-links.json"
LINKS_CSV_FILE = "payment-update-links.csv"
ERRORS_FILE = "payment-link-errors.json"

DEFAULT_RETURN_URL = "https://yourapp.com/payment-updated"
LINK_STATUSES = ("active", "trialing")

CSV_HEADER = [
    "Email",
    "Name",
    "Plan",
    "Amount",
    "Currency",
    "Interval",
    "Payment Update URL",
    "Expires At",
]


@dataclass
class PaymentLink:
    old_customer_id: str
    new_customer_id: str
    old_subscription_id: str
    new_subscription_id: str
    url: str
    session_id: str
    expires_at: Optional[str]
    email: Optional[str] = None
    name: Optional[str] = None
    plan_name: str = "Subscription"
    amount: int = 0
    currency: str = ""
    interval: str = "month"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def csv_row(self) -> List[Any]:
        return [
            self.email,
            self.name,
            self.plan_name,
            format_amount(self.amount),
            self.currency,
            self.interval,
            self.url,
            self.expires_at,
        ]


@dataclass
class LinkResult:
    eligible: int
    links: List[PaymentLink]
    errors: List[MigrationError]


def _product_names(export_dir: str) -> Dict[str, str]:
    """Maps source product ID -> product name, from the products export if present."""
    path = os.path.join(export_dir, PRODUCTS_EXPORT_FILE)
    if not os.path.exists(path):
        logging.warning("%s not found. Plan names will fall back to price nicknames.", path)
        return {}
    data = read_json(path)
    names = {}
    for raw in data.get("products") or []:
        try:
            product = Product.from_dict(raw)
        except RecordError:
            continue
        names[product.id] = product.name
    return names


def _expires_at(session: Dict[str, Any]) -> Optional[str]:
    expires_at = session.get("expires_at")
    if not expires_at:
        return None
    return datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()


def build_session_params(
    subscription: Subscription,
    new_customer_id: str,
    new_subscription_id: str,
    return_url: str,
) -> Dict[str, Any]:
    return {
        "customer": new_customer_id,
        "mode": "setup",
        "payment_method_types": ["card"],
        "success_url": "%s?session_id={CHECKOUT_SESSION_ID}&success=true" % return_url,
        "cancel_url": "%s?session_id={CHECKOUT_SESSION_ID}&canceled=true" % return_url,
        "metadata": {
            "old_customer_id": subscription.customer,
            "new_customer_id": new_customer_id,
            "old_subscription_id": subscription.id,
            "new_subscription_id": new_subscription_id,
        },
    }


def generate_payment_links(
    target_stripe: StripeClient,
    export_dir: str,
    mapping: MigrationMap,
    return_url: str = DEFAULT_RETURN_URL,
    progress: Optional[ProgressCallback] = None,
) -> LinkResult:
    """
    Creates one setup session per migrated, paid, active or trialing subscription.

    Args:
        target_stripe: Initialized Stripe client for the target account
        export_dir: Directory holding the export files; outputs are written here too
        mapping: MigrationMap with customer and subscription translations
        return_url: Page the customer returns to after the session
        progress: Optional progress callback

    Returns:
        LinkResult with the generated links and per-subscription errors
    """
    logging.info("Generating payment update links (return URL: %s)...", return_url)
    raw_subscriptions = load_dataset(export_dir, SUBSCRIPTIONS_EXPORT_FILE)
    raw_customers = load_dataset(export_dir, CUSTOMERS_EXPORT_FILE)
    if not isinstance(raw_subscriptions, list) or not isinstance(raw_customers, list):
        raise MigrationSetupError("Subscription and customer exports must be arrays.")

    customers: Dict[str, Customer] = {}
    for raw in raw_customers:
        try:
            customer = Customer.from_dict(raw)
        except RecordError as e:
            logging.warning("  Ignoring invalid exported customer: %s", e)
            continue
        customers[customer.id] = customer
    product_names = _product_names(export_dir)

    errors: List[MigrationError] = []
    candidates: List[Subscription] = []
    for raw in raw_subscriptions:
        if raw.get("status") not in LINK_STATUSES:
            continue
        try:
            subscription = Subscription.from_dict(raw)
        except RecordError as e:
            errors.append(MigrationError("subscriptions", str(raw.get("id")), str(e)))
            continue
        if is_free_subscription(subscription):
            continue
        if not mapping.has("subscriptions", subscription.id):
            logging.debug("  Subscription %s was not migrated. No link needed.", subscription.id)
            continue
        candidates.append(subscription)

    logging.info("Found %d paid subscription(s) needing a payment update.", len(candidates))

    links: List[PaymentLink] = []
    for index, subscription in enumerate(candidates, start=1):
        customer = customers.get(subscription.customer)
        try:
            new_customer_id = mapping.get("customers", subscription.customer)
            if not new_customer_id:
                raise DependencyNotReady("customer", subscription.customer)
            new_subscription_id = mapping.get("subscriptions", subscription.id)

            logging.info(
                "[%d/%d] Generating link for: %s",
                index,
                len(candidates),
                (customer.email if customer else None) or subscription.customer,
            )
            session = target_stripe.checkout.sessions.create(
                params=build_session_params(subscription, new_customer_id, new_subscription_id, return_url)
            ).to_dict()
        except (stripe.StripeError, DependencyNotReady) as e:
            logging.error("  Error generating link for subscription %s: %s", subscription.id, e)
            errors.append(MigrationError("subscriptions", subscription.id, str(e)))
            continue
        finally:
            if progress:
                progress(Progress(stage="links", processed=index, total=len(candidates)))

        first_item = subscription.items[0]
        links.append(
            PaymentLink(
                old_customer_id=subscription.customer,
                new_customer_id=new_customer_id,
                old_subscription_id=subscription.id,
                new_subscription_id=new_subscription_id,
                url=session["url"],
                session_id=session["id"],
                expires_at=_expires_at(session),
                email=customer.email if customer else None,
                name=customer.name if customer else None,
                plan_name=product_names.get(first_item.product_id)
                or first_item.nickname
                or "Subscription",
                amount=sum((item.unit_amount or 0) * item.quantity for item in subscription.items),
                currency=(first_item.currency or "").upper(),
                interval=first_item.interval or "month",
            )
        )
        logging.info("  Generated link (expires: %s)", links[-1].expires_at)

    write_json(os.path.join(export_dir, LINKS_FILE), [link.to_dict() for link in links])
    write_csv(os.path.join(export_dir, LINKS_CSV_FILE), CSV_HEADER, (link.csv_row() for link in links))
    save_errors(export_dir, ERRORS_FILE, errors)

    logging.info(
        "Payment link generation complete - Eligible: %d, Generated: %d, Errors: %d",
        len(candidates),
        len(links),
        len(errors),
    )
    logging.info("Note: Checkout sessions expire in 24 hours.")
    return LinkResult(eligible=len(candidates), links=links, errors=errors)
