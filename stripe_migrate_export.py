"""
Exports complete snapshots of the source Stripe account to local JSON files.

Each export follows the starting_after cursor until has_more is false and is
all-or-nothing: on any API error nothing is written, since a partial snapshot
would silently under-migrate.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe
from stripe import StripeClient

from stripe_migrate_core import ProgressCallback, Progress
from stripe_migrate_errors import ExportError
from stripe_migrate_reports import write_json

PAGE_SIZE = 100

CUSTOMERS_EXPORT_FILE = "customers-export.json"
PRODUCTS_EXPORT_FILE = "products-export.json"
SUBSCRIPTIONS_EXPORT_FILE = "subscriptions-export.json"


def fetch_all(
    resource: Any,
    params: Optional[Dict[str, Any]] = None,
    page_size: int = PAGE_SIZE,
    stage: str = "export",
    progress: Optional[ProgressCallback] = None,
) -> List[Any]:
    """
    Lists every object of one resource, one page at a time.

    Args:
        resource: A StripeClient service, e.g. client.customers
        params: Extra list parameters (filters, expand)
        page_size: Objects per page (Stripe allows at most 100)
        stage: Name reported to the progress callback
        progress: Optional progress callback (total is the count so far)

    Returns:
        All objects as plain dicts, in the order the API returned them

    Raises:
        ExportError: If any page request fails
    """
    objects: List[Any] = []
    starting_after: Optional[str] = None
    page_count = 0

    while True:
        page_count += 1
        page_params = {**(params or {}), "limit": page_size}
        if starting_after:
            page_params["starting_after"] = starting_after

        logging.debug("  Fetching %s page %d (%s)", stage, page_count, page_params)
        try:
            page = resource.list(params=page_params)
        except stripe.StripeError as e:
            logging.error("  Error fetching %s page %d: %s", stage, page_count, e)
            raise ExportError("%s failed on page %d: %s" % (stage, page_count, e)) from e

        # StripeObjects are not dicts; export files hold plain JSON
        records = [o.to_dict() for o in page.data]
        objects.extend(records)
        logging.info("  Fetched %d %s so far...", len(objects), stage)
        if progress:
            progress(Progress(stage=stage, processed=len(objects), total=len(objects)))

        if not page.has_more or not records:
            break
        starting_after = records[-1]["id"]

    return objects


def export_customers(
    source_stripe: StripeClient,
    export_dir: str,
    page_size: int = PAGE_SIZE,
    progress: Optional[ProgressCallback] = None,
) -> List[Any]:
    """Exports all customers to customers-export.json."""
    logging.info("Starting customer export...")
    customers = fetch_all(
        source_stripe.customers,
        {"expand": ["data.default_source"]},
        page_size,
        "customers",
        progress,
    )
    path = os.path.join(export_dir, CUSTOMERS_EXPORT_FILE)
    write_json(path, customers)

    with_payment = sum(
        1
        for c in customers
        if c.get("default_source") or (c.get("invoice_settings") or {}).get("default_payment_method")
    )
    logging.info("Customer export complete: %d customers saved to %s", len(customers), path)
    logging.info("  With payment methods: %d, without: %d", with_payment, len(customers) - with_payment)
    return customers


def export_products(
    source_stripe: StripeClient,
    export_dir: str,
    page_size: int = PAGE_SIZE,
    progress: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """Exports active products and prices to products-export.json."""
    logging.info("Starting products and prices export...")
    products = fetch_all(source_stripe.products, {"active": True}, page_size, "products", progress)
    prices = fetch_all(
        source_stripe.prices,
        {"active": True, "expand": ["data.tiers"]},
        page_size,
        "prices",
        progress,
    )
    export_data = {
        "products": products,
        "prices": prices,
        "export_date": datetime.now(timezone.utc).isoformat(),
    }
    path = os.path.join(export_dir, PRODUCTS_EXPORT_FILE)
    write_json(path, export_data)

    logging.info(
        "Product export complete: %d products and %d prices saved to %s",
        len(products),
        len(prices),
        path,
    )
    for product in products:
        product_prices = [p for p in prices if p.get("product") == product["id"]]
        logging.info("  - %s: %d price(s)", product.get("name"), len(product_prices))
    return export_data


def export_subscriptions(
    source_stripe: StripeClient,
    export_dir: str,
    page_size: int = PAGE_SIZE,
    progress: Optional[ProgressCallback] = None,
) -> List[Any]:
    """Exports subscriptions of every status to subscriptions-export.json."""
    logging.info("Starting subscriptions export...")
    subscriptions = fetch_all(
        source_stripe.subscriptions,
        {"status": "all", "expand": ["data.items.data.price"]},
        page_size,
        "subscriptions",
        progress,
    )
    path = os.path.join(export_dir, SUBSCRIPTIONS_EXPORT_FILE)
    write_json(path, subscriptions)
    logging.info("Subscription export complete: %d subscriptions saved to %s", len(subscriptions), path)
    return subscriptions


def export_all(
    source_stripe: StripeClient,
    export_dir: str,
    page_size: int = PAGE_SIZE,
    progress: Optional[ProgressCallback] = None,
) -> None:
    export_products(source_stripe, export_dir, page_size, progress)
    export_customers(source_stripe, export_dir, page_size, progress)
    export_subscriptions(source_stripe, export_dir, page_size, progress)
