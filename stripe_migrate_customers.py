"""Migrates exported Stripe customers to the target account."""

import logging
from typing import Any, Dict, Optional

from stripe import StripeClient

from stripe_migrate_core import (
    DEFAULT_BATCH_SIZE,
    ProgressCallback,
    StageResult,
    load_dataset,
    migrate_records,
    save_errors,
    utc_now_iso,
)
from stripe_migrate_errors import MigrationSetupError
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_records import Customer, sanitize

CUSTOMERS_EXPORT_FILE = "customers-export.json"
ERRORS_FILE = "customer-migration-errors.json"


def build_customer_params(customer: Customer) -> Dict[str, Any]:
    """Builds the target create payload for a customer. Payment methods are not copied."""
    params = {
        "email": customer.email,
        "name": customer.name,
        "phone": customer.phone,
        "description": customer.description,
        "address": customer.address,
        "shipping": customer.shipping,
        "tax_exempt": customer.tax_exempt,
        "preferred_locales": customer.preferred_locales or None,
        "invoice_settings": {
            "custom_fields": customer.invoice_settings.get("custom_fields"),
            "footer": customer.invoice_settings.get("footer"),
        },
        "metadata": {
            **customer.metadata,
            "old_stripe_customer_id": customer.id,
            "migration_date": utc_now_iso(),
        },
    }
    return sanitize("customers", params)


def migrate_customers(
    target_stripe: StripeClient,
    export_dir: str,
    mapping: MigrationMap,
    batch_size: int = DEFAULT_BATCH_SIZE,
    dry_run: bool = False,
    progress: Optional[ProgressCallback] = None,
) -> StageResult:
    """
    Migrates every customer in customers-export.json.

    Args:
        target_stripe: Initialized Stripe client for the target account
        export_dir: Directory holding the export files and migration map
        mapping: Shared MigrationMap
        batch_size: Number of creations between mapping checkpoints
        dry_run: If True, simulates the process without creating resources
        progress: Optional progress callback
    """
    logging.info("Starting customer migration (dry_run=%s, batch_size=%d)...", dry_run, batch_size)
    customers = load_dataset(export_dir, CUSTOMERS_EXPORT_FILE)
    if not isinstance(customers, list):
        raise MigrationSetupError("%s must be an array of customers." % CUSTOMERS_EXPORT_FILE)

    result = migrate_records(
        "customers",
        customers,
        parse=Customer.from_dict,
        build=build_customer_params,
        create=lambda params: target_stripe.customers.create(params=params),
        mapping=mapping,
        batch_size=batch_size,
        dry_run=dry_run,
        progress=progress,
    )
    save_errors(export_dir, ERRORS_FILE, result.errors)
    return result
