import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import stripe


def to_obj(value: Dict[str, Any]) -> stripe.StripeObject:
    """Wraps a response body the way the API client does (not a dict)."""
    return stripe.StripeObject.construct_from(value, None)


def rejection(message: str = "Invalid request") -> stripe.InvalidRequestError:
    return stripe.InvalidRequestError(message, None)


class FakeResource:
    """In-memory stand-in for a StripeClient service (client.customers, ...)."""

    def __init__(self, prefix: str, response_extra: Optional[Dict[str, Any]] = None):
        self.prefix = prefix
        self.response_extra = response_extra or {}
        self.objects: List[Dict[str, Any]] = []
        self.created: List[Dict[str, Any]] = []
        self.list_calls: List[Dict[str, Any]] = []
        self.fail_create: Optional[Callable[[Dict[str, Any]], Optional[BaseException]]] = None
        self.fail_list_on_call: Optional[int] = None
        self.fail_retrieve: set = set()

    def create(self, params=None):
        params = params or {}
        if self.fail_create:
            error = self.fail_create(params)
            if error is not None:
                raise error
        self.created.append(params)
        new_id = "%s_new_%d" % (self.prefix, len(self.created))
        return to_obj({"id": new_id, **self.response_extra})

    def list(self, params=None):
        params = dict(params or {})
        self.list_calls.append(params)
        if self.fail_list_on_call == len(self.list_calls):
            raise stripe.APIConnectionError("connection reset")

        matches = list(self.objects)
        if "customer" in params:
            matches = [o for o in matches if o.get("customer") == params["customer"]]
        if params.get("active") is True:
            matches = [o for o in matches if o.get("active", True)]

        start = 0
        if params.get("starting_after"):
            ids = [o["id"] for o in matches]
            start = ids.index(params["starting_after"]) + 1
        limit = params.get("limit", 10)
        page = matches[start:start + limit]
        return to_obj({"data": page, "has_more": start + limit < len(matches)})

    def retrieve(self, object_id, params=None):
        if object_id in self.fail_retrieve:
            raise stripe.APIConnectionError("timeout")
        for o in self.objects:
            if o["id"] == object_id:
                return to_obj(o)
        raise rejection("No such object: %s" % object_id)


class FakeCheckout:
    def __init__(self):
        self.sessions = FakeResource(
            "cs",
            response_extra={"url": "https://checkout.stripe.com/c/pay/cs_test", "expires_at": 1700086400},
        )


class FakeStripeClient:
    def __init__(self):
        self.products = FakeResource("prod")
        self.prices = FakeResource("price")
        self.customers = FakeResource("cus")
        self.subscriptions = FakeResource("sub")
        self.checkout = FakeCheckout()


@pytest.fixture()
def client():
    return FakeStripeClient()


@pytest.fixture()
def export_dir(tmp_path) -> str:
    path = tmp_path / "exports"
    path.mkdir()
    return str(path)


def write_export(export_dir: str, filename: str, data: Any) -> None:
    (Path(export_dir) / filename).write_text(json.dumps(data))


def read_file(export_dir: str, filename: str) -> Any:
    return json.loads((Path(export_dir) / filename).read_text())


def make_product(product_id: str, name: str = "Plan", **extra) -> Dict[str, Any]:
    return {"id": product_id, "object": "product", "name": name, "active": True, "metadata": {}, **extra}


def make_price(price_id: str, product_id: str, unit_amount: Optional[int] = 1000, **extra) -> Dict[str, Any]:
    price = {
        "id": price_id,
        "object": "price",
        "product": product_id,
        "currency": "usd",
        "unit_amount": unit_amount,
        "active": True,
        "nickname": None,
        "billing_scheme": "per_unit",
        "tiers_mode": None,
        "recurring": {
            "interval": "month",
            "interval_count": 1,
            "usage_type": "licensed",
            "aggregate_usage": None,
            "trial_period_days": None,
            "meter": None,
        },
        "tax_behavior": "unspecified",
        "metadata": {},
    }
    price.update(extra)
    return price


def make_customer(customer_id: str, email: Optional[str] = None, **extra) -> Dict[str, Any]:
    customer = {
        "id": customer_id,
        "object": "customer",
        "email": email or "%s@example.com" % customer_id,
        "name": "Customer %s" % customer_id,
        "phone": None,
        "description": None,
        "address": None,
        "shipping": None,
        "tax_exempt": "none",
        "preferred_locales": [],
        "invoice_settings": {"custom_fields": None, "footer": None, "default_payment_method": None},
        "default_source": None,
        "metadata": {},
    }
    customer.update(extra)
    return customer


def make_subscription(
    sub_id: str,
    customer_id: str,
    prices=(("price_old_1", 1000),),
    status: str = "active",
    billing_cycle_anchor: Optional[int] = None,
    current_period_end: Optional[int] = None,
    trial_end: Optional[int] = None,
    **extra,
) -> Dict[str, Any]:
    items = [
        {
            "id": "si_%s_%d" % (sub_id, index),
            "quantity": 1,
            "metadata": {},
            "price": make_price(price_id, "prod_old_1", unit_amount=amount),
        }
        for index, (price_id, amount) in enumerate(prices)
    ]
    subscription = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "items": {"object": "list", "data": items},
        "billing_cycle_anchor": billing_cycle_anchor,
        "current_period_end": current_period_end,
        "trial_end": trial_end,
        "cancel_at_period_end": False,
        "collection_method": "charge_automatically",
        "days_until_due": None,
        "description": None,
        "metadata": {},
    }
    subscription.update(extra)
    return subscription
