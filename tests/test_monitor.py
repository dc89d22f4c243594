import os

from conftest import make_customer, make_subscription, read_file
from stripe_migrate_mapping import MigrationMap, map_path
from stripe_migrate_monitor import monitor_payment_status


def map_customers(export_dir, *new_ids):
    mapping = MigrationMap(map_path(export_dir))
    for index, new_id in enumerate(new_ids):
        mapping.set("customers", "cus_old_%d" % index, new_id)
    return mapping


def test_counts_payment_methods_and_subscription_states(client, export_dir):
    client.customers.objects = [
        make_customer("cus_a", invoice_settings={"default_payment_method": "pm_1"}),
        make_customer("cus_b"),
        make_customer("cus_c"),
    ]
    client.subscriptions.objects = [
        make_subscription("sub_a", "cus_a", status="active"),
        make_subscription("sub_b", "cus_b", status="incomplete"),
        make_subscription("sub_c", "cus_c", prices=[("price_free", 0)], status="active"),
    ]

    report = monitor_payment_status(client, export_dir, map_customers(export_dir, "cus_a", "cus_b", "cus_c"))

    assert report.total == 3
    assert report.with_payment_method == 1
    assert report.without_payment_method == 2
    assert report.active_subscriptions == 2
    assert report.incomplete_subscriptions == 1
    assert report.free_subscriptions == 1
    assert report.paid_subscriptions == 1
    assert report.customers_needing_action == []
    assert report.percentages()["payment_method_update_rate"] == "33.33%"


def test_active_paid_without_payment_method_needs_action(client, export_dir):
    client.customers.objects = [make_customer("cus_a", email="owes@example.com")]
    client.subscriptions.objects = [
        make_subscription("sub_a", "cus_a", prices=[("price_1", 1200)], current_period_end=1_700_000_000)
    ]

    report = monitor_payment_status(client, export_dir, map_customers(export_dir, "cus_a"))

    assert len(report.customers_needing_action) == 1
    entry = report.customers_needing_action[0]
    assert entry["email"] == "owes@example.com"
    assert entry["subscription_id"] == "sub_a"
    assert entry["amount"] == 1200
    assert entry["next_billing_date"].startswith("2023-11-14")
    assert os.path.exists(os.path.join(export_dir, "customers-needing-payment.csv"))


def test_report_file_is_written(client, export_dir):
    client.customers.objects = [make_customer("cus_a", default_source="card_1")]

    monitor_payment_status(client, export_dir, map_customers(export_dir, "cus_a"))

    report = read_file(export_dir, "payment-status-report.json")
    assert report["summary"]["total"] == 1
    assert report["summary"]["with_payment_method"] == 1
    assert report["percentages"]["payment_method_update_rate"] == "100.00%"


def test_failed_lookup_is_excluded_from_counts(client, export_dir):
    client.customers.objects = [make_customer("cus_a"), make_customer("cus_b")]
    client.customers.fail_retrieve = {"cus_a"}

    report = monitor_payment_status(client, export_dir, map_customers(export_dir, "cus_a", "cus_b"))

    assert report.total == 2
    assert report.lookup_failures == 1
    assert report.with_payment_method + report.without_payment_method == 1


def test_monitor_makes_no_writes_to_stripe(client, export_dir):
    client.customers.objects = [make_customer("cus_a")]
    client.subscriptions.objects = [make_subscription("sub_a", "cus_a")]

    monitor_payment_status(client, export_dir, map_customers(export_dir, "cus_a"))

    assert client.customers.created == []
    assert client.subscriptions.created == []


def test_empty_map_reports_zero_rates(client, export_dir):
    report = monitor_payment_status(client, export_dir, MigrationMap(map_path(export_dir)))

    assert report.total == 0
    assert report.percentages() == {
        "payment_method_update_rate": "0.00%",
        "active_subscription_rate": "0.00%",
    }
