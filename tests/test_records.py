import pytest

from conftest import make_customer, make_price, make_product, make_subscription
from stripe_migrate_errors import RecordError
from stripe_migrate_records import Customer, Price, Product, Subscription, ref_id, sanitize


def test_sanitize_drops_listed_null_fields():
    params = {"name": "Pro", "description": None, "images": None, "metadata": {}}

    assert sanitize("products", params) == {"name": "Pro", "metadata": {}}


def test_sanitize_keeps_null_fields_that_are_not_listed():
    params = {"name": "Pro", "active": None}

    assert sanitize("products", params) == {"name": "Pro", "active": None}


def test_sanitize_strips_nulls_inside_recurring():
    params = {
        "recurring": {
            "interval": "month",
            "trial_period_days": None,
            "aggregate_usage": None,
            "meter": None,
        }
    }

    assert sanitize("prices", params) == {"recurring": {"interval": "month"}}


def test_sanitize_drops_nested_object_left_empty():
    params = {"email": "a@example.com", "invoice_settings": {"custom_fields": None, "footer": None}}

    assert sanitize("customers", params) == {"email": "a@example.com"}


def test_ref_id_accepts_ids_and_expanded_objects():
    assert ref_id("cus_1") == "cus_1"
    assert ref_id({"id": "cus_2", "object": "customer"}) == "cus_2"
    assert ref_id(None) is None


def test_product_requires_name():
    raw = make_product("prod_1")
    del raw["name"]

    with pytest.raises(RecordError) as excinfo:
        Product.from_dict(raw)
    assert excinfo.value.old_id == "prod_1"


def test_price_accepts_expanded_product():
    price = Price.from_dict(make_price("price_1", product_id="prod_1", product={"id": "prod_1", "name": "Pro"}))

    assert price.product == "prod_1"
    assert not price.is_tiered


def test_customer_payment_method_detection():
    assert not Customer.from_dict(make_customer("cus_1")).has_payment_method
    assert Customer.from_dict(make_customer("cus_2", default_source="card_1")).has_payment_method
    assert Customer.from_dict(
        make_customer("cus_3", invoice_settings={"default_payment_method": "pm_1"})
    ).has_payment_method


def test_subscription_parses_expanded_items():
    sub = Subscription.from_dict(
        make_subscription("sub_1", "cus_1", prices=[("price_a", 0), ("price_b", 500)])
    )

    assert [i.price_id for i in sub.items] == ["price_a", "price_b"]
    assert [i.unit_amount for i in sub.items] == [0, 500]
    assert sub.items[0].interval == "month"


def test_subscription_period_end_falls_back_to_items():
    raw = make_subscription("sub_1", "cus_1", current_period_end=None)
    raw["items"]["data"][0]["current_period_end"] = 1_700_500_000

    assert Subscription.from_dict(raw).current_period_end == 1_700_500_000


def test_subscription_without_items_is_invalid():
    raw = make_subscription("sub_1", "cus_1")
    raw["items"]["data"] = []

    with pytest.raises(RecordError):
        Subscription.from_dict(raw)


def test_records_are_frozen():
    product = Product.from_dict(make_product("prod_1"))

    with pytest.raises(AttributeError):
        product.name = "Other"
