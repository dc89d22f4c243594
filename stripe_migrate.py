"""Migrates Stripe products, prices, customers and subscriptions between accounts."""

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from stripe import StripeClient

from stripe_migrate_analyze import analyze_exports
from stripe_migrate_core import DEFAULT_BATCH_SIZE, Progress
from stripe_migrate_customers import migrate_customers
from stripe_migrate_errors import ExportError, MigrationSetupError
from stripe_migrate_export import export_all
from stripe_migrate_links import DEFAULT_RETURN_URL, generate_payment_links
from stripe_migrate_mapping import MigrationMap, map_path
from stripe_migrate_monitor import monitor_payment_status
from stripe_migrate_products import migrate_products
from stripe_migrate_subscriptions import (
    DEFAULT_STATUS_FILTER,
    SUBSCRIPTION_BATCH_SIZE,
    migrate_subscriptions,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)

# Load environment variables
load_dotenv()

MAX_NETWORK_RETRIES = 2
PROGRESS_LOG_INTERVAL = 50

STEPS = [
    "export",
    "analyze",
    "products",
    "customers",
    "subscriptions",
    "migrate",
    "links",
    "monitor",
    "all",
]


def require_api_key(name: str) -> str:
    """
    Reads an API key from the environment.

    Raises:
        ValueError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        logging.error("%s environment variable not set.", name)
        raise ValueError("%s environment variable not set." % name)
    return value


def get_stripe_client(api_key: str) -> StripeClient:
    """
    Returns a Stripe client initialized with the given API key.

    Rate-limited and transient network failures are retried by the client
    before they surface as per-item errors.

    Args:
        api_key: The Stripe API key to use.

    Returns:
        An initialized Stripe client object.
    """
    return StripeClient(api_key=api_key, max_network_retries=MAX_NETWORK_RETRIES)


def log_progress(event: Progress) -> None:
    if event.processed % PROGRESS_LOG_INTERVAL == 0 or event.processed == event.total:
        logging.info("Progress: %s %d/%d", event.stage, event.processed, event.total)


def parse_status_filter(value: str) -> List[str]:
    statuses = [s.strip() for s in value.split(",") if s.strip()]
    if not statuses:
        raise argparse.ArgumentTypeError("at least one subscription status is required")
    return statuses


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Migrate Stripe Products, Prices, Customers and Subscriptions to a new account."
    )
    parser.add_argument(
        "--step",
        type=str,
        choices=STEPS,
        required=True,
        help=(
            "Which step to run. 'migrate' runs products, customers and subscriptions in order; "
            "'all' runs every step."
        ),
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Perform the migration live. Default is dry run.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--export-dir",
        default=os.getenv("EXPORT_DIR", "exports"),
        help="Directory for export files, the migration map and reports (default: $EXPORT_DIR or ./exports).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Save the migration map every N created records (default: %d, subscriptions: %d)."
        % (DEFAULT_BATCH_SIZE, SUBSCRIPTION_BATCH_SIZE),
    )
    parser.add_argument(
        "--status",
        type=parse_status_filter,
        default=list(DEFAULT_STATUS_FILTER),
        help="Comma-separated source subscription statuses to migrate (default: active,trialing).",
    )
    parser.add_argument(
        "--return-url",
        default=os.getenv("APP_URL", DEFAULT_RETURN_URL),
        help="Return URL for payment update links (default: $APP_URL).",
    )
    return parser


def run(args: argparse.Namespace) -> None:
    """Runs the selected step(s) in dependency order."""
    step = args.step
    export_dir = args.export_dir
    is_dry_run = not args.live
    os.makedirs(export_dir, exist_ok=True)

    def wants(*names: str) -> bool:
        return step in names or step == "all"

    if wants("export"):
        source_stripe = get_stripe_client(require_api_key("API_KEY_SOURCE"))
        export_all(source_stripe, export_dir, progress=log_progress)

    if wants("analyze"):
        analyze_exports(export_dir)

    migrating = [s for s in ("products", "customers", "subscriptions") if wants(s, "migrate")]
    if migrating:
        target_stripe = get_stripe_client(require_api_key("API_KEY_TARGET"))
        # Run alone, the subscription stage depends on an earlier run's map
        mapping = MigrationMap.load(map_path(export_dir), required=step == "subscriptions")
        if step == "subscriptions":
            logging.warning(
                "Running subscription migration directly. Ensure customers and prices are migrated first."
            )
        if "products" in migrating:
            migrate_products(
                target_stripe,
                export_dir,
                mapping,
                batch_size=args.batch_size or DEFAULT_BATCH_SIZE,
                dry_run=is_dry_run,
                progress=log_progress,
            )
        if "customers" in migrating:
            migrate_customers(
                target_stripe,
                export_dir,
                mapping,
                batch_size=args.batch_size or DEFAULT_BATCH_SIZE,
                dry_run=is_dry_run,
                progress=log_progress,
            )
        if "subscriptions" in migrating:
            migrate_subscriptions(
                target_stripe,
                export_dir,
                mapping,
                batch_size=args.batch_size or SUBSCRIPTION_BATCH_SIZE,
                status_filter=args.status,
                dry_run=is_dry_run,
                progress=log_progress,
            )

    if wants("links"):
        if is_dry_run:
            logging.info("[Dry Run] Skipping payment link generation. Use --live to create sessions.")
        else:
            target_stripe = get_stripe_client(require_api_key("API_KEY_TARGET"))
            mapping = MigrationMap.load(map_path(export_dir), required=True)
            generate_payment_links(
                target_stripe, export_dir, mapping, return_url=args.return_url, progress=log_progress
            )

    if step == "all" and is_dry_run:
        logging.info("[Dry Run] Skipping payment status monitoring (nothing was migrated).")
    elif wants("monitor"):
        target_stripe = get_stripe_client(require_api_key("API_KEY_TARGET"))
        mapping = MigrationMap.load(map_path(export_dir), required=True)
        monitor_payment_status(target_stripe, export_dir, mapping, progress=log_progress)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to run the Stripe data migration steps."""
    args = build_parser().parse_args(argv)

    # Configure logging
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug logging enabled.")

    logging.info(
        "Starting Stripe migration... (Step: %s, Dry Run: %s, Export dir: %s)",
        args.step,
        not args.live,
        args.export_dir,
    )
    try:
        run(args)
    except (MigrationSetupError, ExportError, ValueError) as e:
        logging.error("Stripe migration aborted: %s", e)
        return 1

    logging.info("Stripe migration finished. (Step: %s, Dry Run: %s)", args.step, not args.live)
    return 0


if __name__ == "__main__":
    sys.exit(main())
