"""Migrates exported Stripe products and their prices to the target account."""

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
)
from stripe_migrate_errors import DependencyNotReady, MigrationSetupError
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_records import Price, Product, sanitize

PRODUCTS_EXPORT_FILE = "products-export.json"
ERRORS_FILE = "product-migration-errors.json"


def build_product_params(product: Product) -> Dict[str, Any]:
    """
    Builds the target create payload for a product.

    The source ID is kept in metadata (old_stripe_product_id) for traceability.
    """
    params = {
        "name": product.name,
        "active": product.active,
        "description": product.description,
        "images": list(product.images) or None,
        "tax_code": product.tax_code,
        "unit_label": product.unit_label,
        "statement_descriptor": product.statement_descriptor,
        "url": product.url,
        "metadata": {**product.metadata, "old_stripe_product_id": product.id},
    }
    return sanitize("products", params)


def build_price_params(price: Price, mapping: MigrationMap) -> Dict[str, Any]:
    """
    Builds the target create payload for a price.

    Tiered prices carry their tiers_mode and tier table as exported; all
    others carry the flat unit amount.

    Raises:
        DependencyNotReady: If the price's product has not been migrated yet
    """
    new_product_id = mapping.get("products", price.product)
    if not new_product_id:
        raise DependencyNotReady("product", price.product)

    params: Dict[str, Any] = {
        "product": new_product_id,
        "currency": price.currency,
        "active": price.active,
        "nickname": price.nickname,
        "lookup_key": price.lookup_key,
        "tax_behavior": price.tax_behavior or None,
        "recurring": dict(price.recurring) if price.recurring else None,
        "metadata": {**price.metadata, "old_stripe_price_id": price.id},
    }

    if price.is_tiered:
        params["billing_scheme"] = "tiered"
        params["tiers_mode"] = price.tiers_mode
        params["tiers"] = price.tiers
    elif price.unit_amount is not None:
        params["unit_amount"] = price.unit_amount
    else:
        params["unit_amount_decimal"] = price.unit_amount_decimal

    return sanitize("prices", params)


def migrate_products(
    target_stripe: StripeClient,
    export_dir: str,
    mapping: MigrationMap,
    batch_size: int = DEFAULT_BATCH_SIZE,
    dry_run: bool = False,
    progress: Optional[ProgressCallback] = None,
) -> Dict[str, StageResult]:
    """
    Migrates products, then prices, from products-export.json.

    Prices whose product is not in the mapping are skipped with a warning
    and picked up by a later run.

    Args:
        target_stripe: Initialized Stripe client for the target account
        export_dir: Directory holding the export files and migration map
        mapping: Shared MigrationMap
        batch_size: Number of creations between mapping checkpoints
        dry_run: If True, simulates the process without creating resources
        progress: Optional progress callback

    Returns:
        StageResults keyed by "products" and "prices"
    """
    logging.info("Starting product and price migration (dry_run=%s)...", dry_run)
    data = load_dataset(export_dir, PRODUCTS_EXPORT_FILE)
    if not isinstance(data, dict):
        raise MigrationSetupError("%s must be an object with products and prices." % PRODUCTS_EXPORT_FILE)

    product_result = migrate_records(
        "products",
        data.get("products") or [],
        parse=Product.from_dict,
        build=build_product_params,
        create=lambda params: target_stripe.products.create(params=params),
        mapping=mapping,
        batch_size=batch_size,
        dry_run=dry_run,
        progress=progress,
    )

    price_result = migrate_records(
        "prices",
        data.get("prices") or [],
        parse=Price.from_dict,
        build=lambda price: build_price_params(price, mapping),
        create=lambda params: target_stripe.prices.create(params=params),
        mapping=mapping,
        batch_size=batch_size,
        dry_run=dry_run,
        progress=progress,
    )

    save_errors(export_dir, ERRORS_FILE, product_result.errors + price_result.errors)
    return {"products": product_result, "prices": price_result}
