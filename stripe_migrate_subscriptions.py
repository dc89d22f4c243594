"""
Migrates exported Stripe subscriptions to the target account.

Payment methods cannot be copied between accounts, so subscriptions are split:

- Free subscriptions (every line item has a zero unit amount) are activated
  immediately with trial_end="now".
- Paid subscriptions are created with payment_behavior="default_incomplete"
  and wait for the customer to re-authorize a card (see stripe_migrate_links).

Billing dates are preserved where possible: a future billing_cycle_anchor is
passed through, otherwise a future current_period_end becomes the trial end so
the customer is not charged early. When neither is in the future, or the
subscription is free and activates immediately, the cycle restarts at creation
time; such subscriptions are flagged for review.
"""

import logging
import os
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from stripe import StripeClient

from stripe_migrate_core import (
    ProgressCallback,
    StageResult,
    load_dataset,
    migrate_records,
    save_errors,
    utc_now_iso,
)
from stripe_migrate_errors import DependencyNotReady, MigrationSetupError
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_records import Subscription, sanitize
from stripe_migrate_reports import read_json, write_json

SUBSCRIPTIONS_EXPORT_FILE = "subscriptions-export.json"
ERRORS_FILE = "subscription-migration-errors.json"
BILLING_RESETS_FILE = "subscription-billing-resets.json"

SUBSCRIPTION_BATCH_SIZE = 25
DEFAULT_STATUS_FILTER = ("active", "trialing")


def is_free_subscription(subscription: Subscription) -> bool:
    """True if every line item's unit amount is zero."""
    return all(item.unit_amount == 0 for item in subscription.items)


def build_subscription_params(
    subscription: Subscription, mapping: MigrationMap, now: int
) -> Tuple[Dict[str, Any], bool]:
    """
    Builds the target create payload for a subscription.

    Args:
        subscription: The exported subscription
        mapping: MigrationMap holding the customer and price translations
        now: Current Unix timestamp, used for all future/past decisions

    Returns:
        (payload, billing_reset). billing_reset is True when the original billing
        cycle could not be preserved and restarts at creation time.

    Raises:
        DependencyNotReady: If the customer or any line-item price is not migrated yet
    """
    new_customer_id = mapping.get("customers", subscription.customer)
    if not new_customer_id:
        raise DependencyNotReady("customer", subscription.customer)

    items = []
    for item in subscription.items:
        new_price_id = mapping.get("prices", item.price_id)
        if not new_price_id:
            raise DependencyNotReady("price", item.price_id)
        target_item: Dict[str, Any] = {"price": new_price_id, "quantity": item.quantity}
        if item.metadata:
            target_item["metadata"] = dict(item.metadata)
        items.append(target_item)

    is_free = is_free_subscription(subscription)
    metadata = {
        **subscription.metadata,
        "old_stripe_subscription_id": subscription.id,
        "migration_date": utc_now_iso(),
        "subscription_type": "free" if is_free else "paid",
    }
    params: Dict[str, Any] = {
        "customer": new_customer_id,
        "items": items,
        "metadata": metadata,
        "collection_method": subscription.collection_method,
        "description": subscription.description,
        "cancel_at_period_end": subscription.cancel_at_period_end or None,
    }
    if subscription.collection_method == "send_invoice":
        params["days_until_due"] = subscription.days_until_due

    # Billing cycle: never backdate
    billing_reset = False
    anchor = subscription.billing_cycle_anchor
    period_end = subscription.current_period_end
    if anchor and anchor > now:
        params["billing_cycle_anchor"] = anchor
    elif period_end and period_end > now and not is_free:
        params["trial_end"] = period_end
    else:
        # Free subscriptions activate now, so their cycle restarts too
        billing_reset = True
        metadata["billing_cycle_reset"] = "true"

    if is_free:
        params["trial_end"] = "now"
    else:
        params["payment_behavior"] = "default_incomplete"
        if subscription.trial_end and subscription.trial_end > now:
            params["trial_end"] = subscription.trial_end

    return sanitize("subscriptions", params), billing_reset


def migrate_subscriptions(
    target_stripe: StripeClient,
    export_dir: str,
    mapping: MigrationMap,
    batch_size: int = SUBSCRIPTION_BATCH_SIZE,
    status_filter: Iterable[str] = DEFAULT_STATUS_FILTER,
    dry_run: bool = False,
    progress: Optional[ProgressCallback] = None,
    now: Optional[int] = None,
) -> StageResult:
    """
    Migrates subscriptions from subscriptions-export.json whose status is in status_filter.

    Args:
        target_stripe: Initialized Stripe client for the target account
        export_dir: Directory holding the export files and migration map
        mapping: Shared MigrationMap (customers and prices must be migrated first)
        batch_size: Number of creations between mapping checkpoints
        status_filter: Source statuses eligible for migration
        dry_run: If True, simulates the process without creating resources
        progress: Optional progress callback
        now: Unix timestamp to treat as the current time (defaults to time.time())

    Returns:
        StageResult; its flagged list holds subscriptions whose billing cycle was reset
    """
    statuses = set(status_filter)
    now = int(time.time()) if now is None else now
    logging.info(
        "Starting subscription migration (dry_run=%s, statuses=%s)...",
        dry_run,
        ", ".join(sorted(statuses)),
    )

    subscriptions = load_dataset(export_dir, SUBSCRIPTIONS_EXPORT_FILE)
    if not isinstance(subscriptions, list):
        raise MigrationSetupError("%s must be an array of subscriptions." % SUBSCRIPTIONS_EXPORT_FILE)
    eligible = [s for s in subscriptions if s.get("status") in statuses]
    logging.info(
        "Found %d of %d exported subscription(s) eligible for migration.",
        len(eligible),
        len(subscriptions),
    )

    result = StageResult(kind="subscriptions")

    def build(subscription: Subscription) -> Dict[str, Any]:
        params, billing_reset = build_subscription_params(subscription, mapping, now)
        if billing_reset:
            logging.warning(
                "  Subscription %s: original billing date cannot be kept."
                " The billing cycle will restart at creation time.",
                subscription.id,
            )
            result.flagged.append(subscription.id)
        logging.debug(
            "  Subscription %s is %s",
            subscription.id,
            "FREE (activating immediately)" if is_free_subscription(subscription) else "PAID (incomplete until re-authorized)",
        )
        return params

    migrate_records(
        "subscriptions",
        eligible,
        parse=Subscription.from_dict,
        build=build,
        create=lambda params: target_stripe.subscriptions.create(params=params),
        mapping=mapping,
        batch_size=batch_size,
        dry_run=dry_run,
        progress=progress,
        result=result,
    )

    # Only report resets for subscriptions that were (or would be) created
    result.flagged = [
        sub_id for sub_id in result.flagged if dry_run or mapping.has("subscriptions", sub_id)
    ]

    save_errors(export_dir, ERRORS_FILE, result.errors)
    if not dry_run:
        _save_billing_resets(export_dir, mapping, result.flagged)
    elif result.flagged:
        logging.warning(
            "[Dry Run] %d subscription(s) would have their billing cycle reset.",
            len(result.flagged),
        )
    return result


def _save_billing_resets(export_dir: str, mapping: MigrationMap, flagged: List[str]) -> None:
    """
    Merges this run's resets into subscription-billing-resets.json.

    Subscriptions flagged by an earlier run are skipped on a rerun but still
    had their cycle reset, so they stay listed while they remain mapped.
    """
    path = os.path.join(export_dir, BILLING_RESETS_FILE)
    previous = read_json(path) if os.path.exists(path) else []
    resets = [sub_id for sub_id in previous if mapping.has("subscriptions", sub_id)]
    resets.extend(sub_id for sub_id in flagged if sub_id not in resets)

    if not resets:
        if os.path.exists(path):
            os.remove(path)
        return
    write_json(path, resets)
    if flagged:
        logging.warning(
            "%d subscription(s) had their billing cycle reset. See %s",
            len(flagged),
            path,
        )
