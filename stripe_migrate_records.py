"""
Typed snapshots of exported Stripe objects and the pre-submission sanitize step.

Export files hold raw Stripe JSON. Each record kind is parsed once, at the
transformation boundary, into a frozen dataclass: required fields are checked
(RecordError), optional ones are defaulted, and everything else is dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from stripe_migrate_errors import RecordError

# Fields the Stripe API rejects when sent as an explicit null. They are
# omitted from create payloads instead. "<kind>.<field>" entries apply to
# the nested object under that field.
OMIT_IF_NULL: Dict[str, Tuple[str, ...]] = {
    "products": (
        "description",
        "images",
        "tax_code",
        "unit_label",
        "statement_descriptor",
        "url",
    ),
    "prices": (
        "nickname",
        "lookup_key",
        "tax_behavior",
        "unit_amount",
        "unit_amount_decimal",
        "recurring",
        "billing_scheme",
        "tiers_mode",
        "tiers",
    ),
    "prices.recurring": (
        "trial_period_days",
        "aggregate_usage",
        "meter",
        "interval_count",
        "usage_type",
    ),
    "customers": (
        "email",
        "name",
        "phone",
        "description",
        "address",
        "shipping",
        "tax_exempt",
        "preferred_locales",
        "invoice_settings",
    ),
    "customers.invoice_settings": ("custom_fields", "footer"),
    "subscriptions": (
        "billing_cycle_anchor",
        "trial_end",
        "payment_behavior",
        "collection_method",
        "days_until_due",
        "description",
        "cancel_at_period_end",
    ),
}


def sanitize(kind: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns a copy of a create payload without the null fields listed for kind.

    Nested objects with their own entry are sanitized too, and dropped when
    nothing is left in them.
    """
    omit = OMIT_IF_NULL.get(kind, ())
    cleaned: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None and key in omit:
            continue
        nested_kind = "%s.%s" % (kind, key)
        if nested_kind in OMIT_IF_NULL and isinstance(value, Mapping):
            value = sanitize(nested_kind, dict(value))
            if not value:
                continue
        cleaned[key] = value
    return cleaned


def ref_id(value: Any) -> Optional[str]:
    """Returns the ID of a reference that may be a bare ID or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", None)


def _required(data: Mapping[str, Any], kind: str, key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise RecordError(kind, str(data.get("id", "<unknown>")), "missing required field '%s'" % key)
    return value


def _metadata(data: Mapping[str, Any]) -> Dict[str, str]:
    return dict(data.get("metadata") or {})


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    active: bool = True
    description: Optional[str] = None
    images: Tuple[str, ...] = ()
    tax_code: Optional[str] = None
    unit_label: Optional[str] = None
    statement_descriptor: Optional[str] = None
    url: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Product":
        return cls(
            id=_required(data, "product", "id"),
            name=_required(data, "product", "name"),
            active=data.get("active", True),
            description=data.get("description"),
            images=tuple(data.get("images") or ()),
            tax_code=ref_id(data.get("tax_code")),
            unit_label=data.get("unit_label"),
            statement_descriptor=data.get("statement_descriptor"),
            url=data.get("url"),
            metadata=_metadata(data),
        )


@dataclass(frozen=True)
class Price:
    id: str
    product: str
    currency: str
    unit_amount: Optional[int] = None
    unit_amount_decimal: Optional[str] = None
    active: bool = True
    nickname: Optional[str] = None
    lookup_key: Optional[str] = None
    recurring: Optional[Dict[str, Any]] = None
    billing_scheme: str = "per_unit"
    tiers_mode: Optional[str] = None
    tiers: Optional[List[Dict[str, Any]]] = None
    tax_behavior: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_tiered(self) -> bool:
        return self.billing_scheme == "tiered"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Price":
        product = ref_id(data.get("product"))
        if not product:
            raise RecordError("price", str(data.get("id", "<unknown>")), "missing required field 'product'")
        recurring = data.get("recurring")
        return cls(
            id=_required(data, "price", "id"),
            product=product,
            currency=_required(data, "price", "currency"),
            unit_amount=data.get("unit_amount"),
            unit_amount_decimal=data.get("unit_amount_decimal"),
            active=data.get("active", True),
            nickname=data.get("nickname"),
            lookup_key=data.get("lookup_key"),
            recurring=dict(recurring) if recurring else None,
            billing_scheme=data.get("billing_scheme") or "per_unit",
            tiers_mode=data.get("tiers_mode"),
            tiers=[dict(t) for t in data["tiers"]] if data.get("tiers") else None,
            tax_behavior=data.get("tax_behavior"),
            metadata=_metadata(data),
        )


@dataclass(frozen=True)
class Customer:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    shipping: Optional[Dict[str, Any]] = None
    tax_exempt: Optional[str] = None
    preferred_locales: Optional[List[str]] = None
    invoice_settings: Dict[str, Any] = field(default_factory=dict)
    default_source: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def has_payment_method(self) -> bool:
        return bool(self.default_source or self.invoice_settings.get("default_payment_method"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Customer":
        return cls(
            id=_required(data, "customer", "id"),
            email=data.get("email"),
            name=data.get("name"),
            phone=data.get("phone"),
            description=data.get("description"),
            address=data.get("address"),
            shipping=data.get("shipping"),
            tax_exempt=data.get("tax_exempt"),
            preferred_locales=data.get("preferred_locales"),
            invoice_settings=dict(data.get("invoice_settings") or {}),
            default_source=ref_id(data.get("default_source")),
            metadata=_metadata(data),
        )


@dataclass(frozen=True)
class SubscriptionItem:
    price_id: str
    quantity: int = 1
    unit_amount: Optional[int] = None
    currency: Optional[str] = None
    interval: Optional[str] = None
    product_id: Optional[str] = None
    nickname: Optional[str] = None
    current_period_end: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], subscription_id: str) -> "SubscriptionItem":
        price = data.get("price")
        price_id = ref_id(price)
        if not price_id:
            raise RecordError("subscription", subscription_id, "line item without a price")
        price = price if isinstance(price, Mapping) else {}
        recurring = price.get("recurring") or {}
        quantity = data.get("quantity")
        return cls(
            price_id=price_id,
            quantity=1 if quantity is None else quantity,
            unit_amount=price.get("unit_amount"),
            currency=price.get("currency"),
            interval=recurring.get("interval"),
            product_id=ref_id(price.get("product")),
            nickname=price.get("nickname"),
            current_period_end=data.get("current_period_end"),
            metadata=_metadata(data),
        )


@dataclass(frozen=True)
class Subscription:
    id: str
    customer: str
    status: str
    items: Tuple[SubscriptionItem, ...]
    billing_cycle_anchor: Optional[int] = None
    current_period_end: Optional[int] = None
    trial_end: Optional[int] = None
    cancel_at_period_end: bool = False
    collection_method: Optional[str] = None
    days_until_due: Optional[int] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Subscription":
        sub_id = _required(data, "subscription", "id")
        customer = ref_id(data.get("customer"))
        if not customer:
            raise RecordError("subscription", sub_id, "missing required field 'customer'")
        raw_items = data.get("items") or []
        if isinstance(raw_items, Mapping):
            raw_items = raw_items.get("data") or []
        if not raw_items:
            raise RecordError("subscription", sub_id, "no line items")
        items = tuple(SubscriptionItem.from_dict(item, sub_id) for item in raw_items)

        # Newer API versions report the billing period per item only
        period_end = data.get("current_period_end")
        if period_end is None:
            item_ends = [i.current_period_end for i in items if i.current_period_end]
            period_end = max(item_ends) if item_ends else None

        return cls(
            id=sub_id,
            customer=customer,
            status=_required(data, "subscription", "status"),
            items=items,
            billing_cycle_anchor=data.get("billing_cycle_anchor"),
            current_period_end=period_end,
            trial_end=data.get("trial_end"),
            cancel_at_period_end=bool(data.get("cancel_at_period_end", False)),
            collection_method=data.get("collection_method"),
            days_until_due=data.get("days_until_due"),
            description=data.get("description"),
            metadata=_metadata(data),
        )
