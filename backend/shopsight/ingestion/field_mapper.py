"""
Field mapper: raw Shopify JSON -> normalized entity fields.

One explicit mapping function per entity kind. Policy:
- absent/null/unparseable/out-of-range numeric fields map to zero (money
  never null, never negative, two-decimal scale)
- absent text fields map to None
- enumerations go through fixed case-insensitive lookup tables with an
  explicit default
- timestamps parse from ISO-8601; unparseable values map to None

The only hard failure is a missing/invalid Shopify id, since without it a
record cannot be keyed.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from shopsight.ingestion.kinds import EntityKind
from shopsight.models.order import FinancialStatus, FulfillmentStatus
from shopsight.models.product import ProductStatus

ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")

# Exclusive upper bounds of the MONEY / weight columns and a 32-bit INTEGER
MONEY_LIMIT = Decimal("1e10")
WEIGHT_LIMIT = Decimal("1e9")
INT_LIMIT = 2 ** 31 - 1

FINANCIAL_STATUS_LOOKUP = {
    "pending": FinancialStatus.PENDING,
    "authorized": FinancialStatus.AUTHORIZED,
    "partially_paid": FinancialStatus.PARTIALLY_PAID,
    "paid": FinancialStatus.PAID,
    "partially_refunded": FinancialStatus.PARTIALLY_REFUNDED,
    "refunded": FinancialStatus.REFUNDED,
    "voided": FinancialStatus.VOIDED,
}

FULFILLMENT_STATUS_LOOKUP = {
    "partial": FulfillmentStatus.PARTIAL,
    "fulfilled": FulfillmentStatus.FULFILLED,
    "restocked": FulfillmentStatus.RESTOCKED,
}

PRODUCT_STATUS_LOOKUP = {
    "active": ProductStatus.ACTIVE,
    "draft": ProductStatus.DRAFT,
    "archived": ProductStatus.ARCHIVED,
}


class PayloadMappingError(ValueError):
    """Raised when a record cannot be keyed (missing or invalid id)."""
    pass


# ---------------------------------------------------------------------------
# Mapped shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MappedCustomer:
    shopify_customer_id: int
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    total_spent: Decimal = ZERO
    orders_count: int = 0
    accepts_marketing: bool = False
    tags: Optional[str] = None
    note: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    shopify_created_at: Optional[datetime] = None
    shopify_updated_at: Optional[datetime] = None

    @property
    def external_id(self) -> int:
        return self.shopify_customer_id


@dataclass(frozen=True)
class MappedProduct:
    shopify_product_id: int
    title: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    handle: Optional[str] = None
    tags: Optional[str] = None
    status: ProductStatus = ProductStatus.ACTIVE
    shopify_variant_id: Optional[int] = None
    price: Decimal = ZERO
    compare_at_price: Decimal = ZERO
    sku: Optional[str] = None
    inventory_quantity: int = 0
    weight: Decimal = Decimal("0")
    weight_unit: Optional[str] = None
    image_url: Optional[str] = None
    shopify_created_at: Optional[datetime] = None
    shopify_updated_at: Optional[datetime] = None

    @property
    def external_id(self) -> int:
        return self.shopify_product_id


@dataclass(frozen=True)
class MappedLineItem:
    shopify_line_item_id: Optional[int] = None
    shopify_product_id: Optional[int] = None
    shopify_variant_id: Optional[int] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 0
    price: Decimal = ZERO
    total_discount: Decimal = ZERO


@dataclass(frozen=True)
class MappedOrder:
    shopify_order_id: int
    order_number: Optional[str] = None
    total_price: Decimal = ZERO
    subtotal_price: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_discounts: Decimal = ZERO
    total_shipping: Decimal = ZERO
    currency: Optional[str] = None
    financial_status: FinancialStatus = FinancialStatus.PENDING
    fulfillment_status: Optional[FulfillmentStatus] = None
    note: Optional[str] = None
    tags: Optional[str] = None
    source_name: Optional[str] = None
    confirmed: bool = False
    cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    shopify_customer_id: Optional[int] = None
    customer_email: Optional[str] = None
    processed_at: Optional[datetime] = None
    shopify_created_at: Optional[datetime] = None
    shopify_updated_at: Optional[datetime] = None
    line_items: Tuple[MappedLineItem, ...] = ()

    @property
    def external_id(self) -> int:
        return self.shopify_order_id

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.line_items)


MappedRecord = Union[MappedCustomer, MappedProduct, MappedOrder]


# ---------------------------------------------------------------------------
# Scalar parsers
# ---------------------------------------------------------------------------

def _parse_amount(value: Any, exponent: Optional[Decimal], limit: Decimal) -> Optional[Decimal]:
    """Non-negative Decimal below `limit`, optionally rescaled; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount < 0:
            return None
        if exponent is not None:
            amount = amount.quantize(exponent, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None
    if amount >= limit:
        return None
    return amount


def parse_money(value: Any) -> Decimal:
    """Non-negative Decimal at two-decimal scale; bad or out-of-range input -> 0.00."""
    amount = _parse_amount(value, _CENTS, MONEY_LIMIT)
    return ZERO if amount is None else amount


def parse_decimal(value: Any) -> Decimal:
    """Non-negative Decimal without rescaling (weights)."""
    amount = _parse_amount(value, None, WEIGHT_LIMIT)
    return Decimal("0") if amount is None else amount


def parse_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
        if not number.is_finite() or number != number.to_integral_value():
            return default
    except (InvalidOperation, ValueError):
        return default
    if abs(number) > INT_LIMIT:
        return default
    return int(number)


def parse_optional_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def parse_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 -> aware UTC datetime; unparseable -> None."""
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _lookup(table: Mapping[str, Any], value: Any, default: Any) -> Any:
    if not isinstance(value, str):
        return default
    return table.get(value.strip().lower(), default)


def parse_financial_status(value: Any) -> FinancialStatus:
    return _lookup(FINANCIAL_STATUS_LOOKUP, value, FinancialStatus.PENDING)


def parse_fulfillment_status(value: Any) -> Optional[FulfillmentStatus]:
    """None stays None; any unrecognized non-null value is unfulfilled."""
    if value is None:
        return None
    return _lookup(FULFILLMENT_STATUS_LOOKUP, value, FulfillmentStatus.UNFULFILLED)


def parse_product_status(value: Any) -> ProductStatus:
    return _lookup(PRODUCT_STATUS_LOOKUP, value, ProductStatus.ACTIVE)


def _require_id(raw: Mapping[str, Any], kind: str) -> int:
    external_id = parse_optional_id(raw.get("id"))
    if external_id is None:
        raise PayloadMappingError(f"{kind} payload has no valid id")
    return external_id


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(value: Any) -> Dict[str, Any]:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return {}


# ---------------------------------------------------------------------------
# Per-kind mappers
# ---------------------------------------------------------------------------

def map_customer(raw: Mapping[str, Any]) -> MappedCustomer:
    address = _object(raw.get("default_address"))
    return MappedCustomer(
        shopify_customer_id=_require_id(raw, "customer"),
        email=parse_text(raw.get("email")),
        first_name=parse_text(raw.get("first_name")),
        last_name=parse_text(raw.get("last_name")),
        phone=parse_text(raw.get("phone")),
        total_spent=parse_money(raw.get("total_spent")),
        orders_count=max(parse_int(raw.get("orders_count")), 0),
        accepts_marketing=parse_bool(raw.get("accepts_marketing")),
        tags=parse_text(raw.get("tags")),
        note=parse_text(raw.get("note")),
        address1=parse_text(address.get("address1")),
        city=parse_text(address.get("city")),
        state=parse_text(address.get("province")),
        country=parse_text(address.get("country")),
        zip_code=parse_text(address.get("zip")),
        shopify_created_at=parse_timestamp(raw.get("created_at")),
        shopify_updated_at=parse_timestamp(raw.get("updated_at")),
    )


def map_product(raw: Mapping[str, Any]) -> MappedProduct:
    variant = _first(raw.get("variants"))
    image = _first(raw.get("images"))
    return MappedProduct(
        shopify_product_id=_require_id(raw, "product"),
        title=parse_text(raw.get("title")),
        description=parse_text(raw.get("body_html")),
        vendor=parse_text(raw.get("vendor")),
        product_type=parse_text(raw.get("product_type")),
        handle=parse_text(raw.get("handle")),
        tags=parse_text(raw.get("tags")),
        status=parse_product_status(raw.get("status")),
        shopify_variant_id=parse_optional_id(variant.get("id")),
        price=parse_money(variant.get("price")),
        compare_at_price=parse_money(variant.get("compare_at_price")),
        sku=parse_text(variant.get("sku")),
        inventory_quantity=parse_int(variant.get("inventory_quantity")),
        weight=parse_decimal(variant.get("weight")),
        weight_unit=parse_text(variant.get("weight_unit")),
        image_url=parse_text(image.get("src")),
        shopify_created_at=parse_timestamp(raw.get("created_at")),
        shopify_updated_at=parse_timestamp(raw.get("updated_at")),
    )


def map_line_item(raw: Mapping[str, Any]) -> MappedLineItem:
    return MappedLineItem(
        shopify_line_item_id=parse_optional_id(raw.get("id")),
        shopify_product_id=parse_optional_id(raw.get("product_id")),
        shopify_variant_id=parse_optional_id(raw.get("variant_id")),
        title=parse_text(raw.get("title")),
        variant_title=parse_text(raw.get("variant_title")),
        sku=parse_text(raw.get("sku")),
        quantity=max(parse_int(raw.get("quantity")), 0),
        price=parse_money(raw.get("price")),
        total_discount=parse_money(raw.get("total_discount")),
    )


def map_order(raw: Mapping[str, Any]) -> MappedOrder:
    customer = _object(raw.get("customer"))
    shipping = _object(_object(raw.get("total_shipping_price_set")).get("shop_money"))
    cancelled_at = parse_timestamp(raw.get("cancelled_at"))
    line_items = raw.get("line_items")

    return MappedOrder(
        shopify_order_id=_require_id(raw, "order"),
        order_number=parse_text(raw.get("order_number")),
        total_price=parse_money(raw.get("total_price")),
        subtotal_price=parse_money(raw.get("subtotal_price")),
        total_tax=parse_money(raw.get("total_tax")),
        total_discounts=parse_money(raw.get("total_discounts")),
        total_shipping=parse_money(shipping.get("amount")),
        currency=parse_text(raw.get("currency")),
        financial_status=parse_financial_status(raw.get("financial_status")),
        fulfillment_status=parse_fulfillment_status(raw.get("fulfillment_status")),
        note=parse_text(raw.get("note")),
        tags=parse_text(raw.get("tags")),
        source_name=parse_text(raw.get("source_name")),
        confirmed=parse_bool(raw.get("confirmed")),
        cancelled=raw.get("cancelled_at") is not None,
        cancelled_at=cancelled_at,
        cancel_reason=parse_text(raw.get("cancel_reason")),
        shopify_customer_id=parse_optional_id(customer.get("id")),
        customer_email=parse_text(customer.get("email")) or parse_text(raw.get("email")),
        processed_at=parse_timestamp(raw.get("processed_at")),
        shopify_created_at=parse_timestamp(raw.get("created_at")),
        shopify_updated_at=parse_timestamp(raw.get("updated_at")),
        line_items=tuple(
            map_line_item(item) for item in (line_items if isinstance(line_items, list) else [])
            if isinstance(item, dict)
        ),
    )


_MAPPERS = {
    EntityKind.CUSTOMERS: map_customer,
    EntityKind.PRODUCTS: map_product,
    EntityKind.ORDERS: map_order,
}


def map_record(kind: EntityKind, raw: Any) -> MappedRecord:
    """
    Map a raw Shopify record of the given kind.

    Raises:
        PayloadMappingError: record is not an object or has no valid id
    """
    if not isinstance(raw, dict):
        raise PayloadMappingError(f"{EntityKind(kind).value} payload must be a JSON object")
    return _MAPPERS[EntityKind(kind)](raw)
