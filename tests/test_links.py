import csv
import os

import pytest

from conftest import make_customer, make_product, make_subscription, read_file, rejection, write_export
from stripe_migrate_errors import MigrationSetupError
from stripe_migrate_links import generate_payment_links
from stripe_migrate_mapping import MigrationMap, map_path

RETURN_URL = "https://example.com/billing/updated"


@pytest.fixture()
def migrated(export_dir):
    """Exports and a map for one paid, one free and one canceled subscription."""
    write_export(
        export_dir,
        "customers-export.json",
        [
            make_customer("cus_paid", email="paid@example.com", name="Paid Customer"),
            make_customer("cus_free"),
            make_customer("cus_gone"),
        ],
    )
    write_export(
        export_dir,
        "subscriptions-export.json",
        [
            make_subscription("sub_paid", "cus_paid", prices=[("price_pro", 1500), ("price_seat", 500)]),
            make_subscription("sub_free", "cus_free", prices=[("price_free", 0)]),
            make_subscription("sub_gone", "cus_gone", status="canceled"),
        ],
    )
    write_export(
        export_dir,
        "products-export.json",
        {"products": [make_product("prod_old_1", name="Pro Plan")], "prices": [], "export_date": None},
    )
    mapping = MigrationMap(map_path(export_dir))
    for old, new in (("cus_paid", "cus_new_paid"), ("cus_free", "cus_new_free"), ("cus_gone", "cus_new_gone")):
        mapping.set("customers", old, new)
    mapping.set("subscriptions", "sub_paid", "sub_new_paid")
    mapping.set("subscriptions", "sub_free", "sub_new_free")
    mapping.save()
    return mapping


def test_links_only_for_paid_active_subscriptions(client, export_dir, migrated):
    result = generate_payment_links(client, export_dir, migrated, return_url=RETURN_URL)

    assert result.eligible == 1
    assert [link.old_subscription_id for link in result.links] == ["sub_paid"]
    assert len(client.checkout.sessions.created) == 1


def test_session_is_setup_mode_for_new_customer(client, export_dir, migrated):
    generate_payment_links(client, export_dir, migrated, return_url=RETURN_URL)

    params = client.checkout.sessions.created[0]
    assert params["mode"] == "setup"
    assert params["customer"] == "cus_new_paid"
    assert params["success_url"].startswith(RETURN_URL)
    assert "success=true" in params["success_url"]
    assert "canceled=true" in params["cancel_url"]
    assert params["metadata"] == {
        "old_customer_id": "cus_paid",
        "new_customer_id": "cus_new_paid",
        "old_subscription_id": "sub_paid",
        "new_subscription_id": "sub_new_paid",
    }


def test_link_details_written_to_json_and_csv(client, export_dir, migrated):
    generate_payment_links(client, export_dir, migrated, return_url=RETURN_URL)

    links = read_file(export_dir, "payment-update-links.json")
    assert len(links) == 1
    link = links[0]
    assert link["email"] == "paid@example.com"
    assert link["plan_name"] == "Pro Plan"
    assert link["amount"] == 2000
    assert link["currency"] == "USD"
    assert link["url"] == "https://checkout.stripe.com/c/pay/cs_test"
    assert link["expires_at"].startswith("2023-11-15")

    with open(os.path.join(export_dir, "payment-update-links.csv"), newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "Email"
    assert rows[1][:4] == ["paid@example.com", "Paid Customer", "Pro Plan", "20.00"]


def test_unmigrated_subscription_gets_no_link(client, export_dir, migrated):
    mapping = MigrationMap(map_path(export_dir))
    mapping.set("customers", "cus_paid", "cus_new_paid")

    result = generate_payment_links(client, export_dir, mapping)

    assert result.eligible == 0
    assert client.checkout.sessions.created == []


def test_session_failure_is_recorded_and_run_continues(client, export_dir, migrated):
    write_export(
        export_dir,
        "subscriptions-export.json",
        [
            make_subscription("sub_paid", "cus_paid"),
            make_subscription("sub_free", "cus_free", prices=[("price_other", 900)]),
        ],
    )
    client.checkout.sessions.fail_create = lambda params: (
        rejection("No such customer") if params["customer"] == "cus_new_paid" else None
    )

    result = generate_payment_links(client, export_dir, migrated)

    assert [link.old_subscription_id for link in result.links] == ["sub_free"]
    assert [e.old_id for e in result.errors] == ["sub_paid"]
    assert read_file(export_dir, "payment-link-errors.json")[0]["old_id"] == "sub_paid"


def test_missing_exports_are_setup_error(client, export_dir):
    with pytest.raises(MigrationSetupError):
        generate_payment_links(client, export_dir, MigrationMap(map_path(export_dir)))
