"""Summarises the export files before migrating. No API calls."""

import logging
import os
from collections import Counter
from typing import Any, Dict, List

from stripe_migrate_core import load_dataset, utc_now_iso
from stripe_migrate_errors import RecordError
from stripe_migrate_records import Customer, Price, Product, Subscription
from stripe_migrate_reports import write_json
from stripe_migrate_subscriptions import is_free_subscription

ANALYSIS_FILE = "migration-analysis.json"
ACTIVE_STATUSES = ("active", "trialing")


def _parse_all(factory, raw_records: List[Dict[str, Any]], kind: str) -> List[Any]:
    records = []
    for raw in raw_records:
        try:
            records.append(factory(raw))
        except RecordError as e:
            logging.warning("  Ignoring invalid %s: %s", kind, e)
    return records


def build_analysis(
    customers: List[Customer],
    subscriptions: List[Subscription],
    products: List[Product],
    prices: List[Price],
) -> Dict[str, Any]:
    with_payment = sum(1 for c in customers if c.has_payment_method)
    by_status = Counter(s.status for s in subscriptions)
    free = [s for s in subscriptions if is_free_subscription(s)]
    paid = [s for s in subscriptions if not is_free_subscription(s)]
    active_paid = [s for s in paid if s.status in ACTIVE_STATUSES]
    with_addons = sum(1 for s in subscriptions if len(s.items) > 1)
    active_total = sum(by_status[status] for status in ACTIVE_STATUSES)

    product_summary = []
    for product in products:
        product_prices = [p for p in prices if p.product == product.id]
        free_prices = [p for p in product_prices if p.unit_amount == 0]
        product_summary.append(
            {
                "id": product.id,
                "name": product.name,
                "active": product.active,
                "total_prices": len(product_prices),
                "free_prices": len(free_prices),
                "paid_prices": len(product_prices) - len(free_prices),
                "prices": [
                    {
                        "id": p.id,
                        "nickname": p.nickname,
                        "amount": p.unit_amount,
                        "currency": p.currency,
                        "recurring": (p.recurring or {}).get("interval", "one-time"),
                        "is_free": p.unit_amount == 0,
                    }
                    for p in product_prices
                ],
            }
        )

    return {
        "generated_at": utc_now_iso(),
        "customer_summary": {
            "total_customers": len(customers),
            "customers_with_payment_methods": with_payment,
            "customers_without_payment_methods": len(customers) - with_payment,
            "percentage_with_payment": (
                "%.2f%%" % (with_payment * 100.0 / len(customers)) if customers else "0.00%"
            ),
        },
        "subscription_summary": {
            "total_subscriptions": len(subscriptions),
            "by_status": dict(by_status),
            "free_subscriptions": len(free),
            "paid_subscriptions": len(paid),
            "subscriptions_with_addons": with_addons,
            "active_subscriptions_to_migrate": active_total,
        },
        "product_summary": {
            "total_products": len(products),
            "total_prices": len(prices),
            "products": product_summary,
        },
        "migration_estimate": {
            "customers_to_migrate": len(customers),
            "active_subscriptions_to_migrate": active_total,
            "customers_needing_payment_update": len(active_paid),
        },
    }


def analyze_exports(export_dir: str) -> Dict[str, Any]:
    """
    Builds migration-analysis.json from the three export files.

    Raises:
        MigrationSetupError: If an export file is missing
    """
    logging.info("Starting data analysis...")
    raw_customers = load_dataset(export_dir, "customers-export.json")
    raw_subscriptions = load_dataset(export_dir, "subscriptions-export.json")
    raw_products = load_dataset(export_dir, "products-export.json")

    analysis = build_analysis(
        _parse_all(Customer.from_dict, raw_customers, "customer"),
        _parse_all(Subscription.from_dict, raw_subscriptions, "subscription"),
        _parse_all(Product.from_dict, raw_products.get("products") or [], "product"),
        _parse_all(Price.from_dict, raw_products.get("prices") or [], "price"),
    )

    path = os.path.join(export_dir, ANALYSIS_FILE)
    write_json(path, analysis)

    customers = analysis["customer_summary"]
    subscriptions = analysis["subscription_summary"]
    logging.info("Migration analysis:")
    logging.info(
        "  Customers: %d (with payment method: %d, without: %d)",
        customers["total_customers"],
        customers["customers_with_payment_methods"],
        customers["customers_without_payment_methods"],
    )
    logging.info(
        "  Subscriptions: %d (free: %d, paid: %d, with add-ons: %d)",
        subscriptions["total_subscriptions"],
        subscriptions["free_subscriptions"],
        subscriptions["paid_subscriptions"],
        subscriptions["subscriptions_with_addons"],
    )
    for status, count in sorted(subscriptions["by_status"].items()):
        logging.info("    %s: %d", status, count)
    for product in analysis["product_summary"]["products"]:
        logging.info(
            "  - %s: %d price(s) (%d free, %d paid)",
            product["name"],
            product["total_prices"],
            product["free_prices"],
            product["paid_prices"],
        )
    logging.info(
        "  Customers needing payment update: %d",
        analysis["migration_estimate"]["customers_needing_payment_update"],
    )
    logging.info("Analysis saved to %s", path)
    return analysis
