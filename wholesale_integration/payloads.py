"""
Payload builders and parsers for the commerce platform.

Builders turn local records into the JSON bodies the platform expects.
Parsers turn the platform's JSON into frozen engine types the moment it
crosses the boundary; nothing downstream touches raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from wholesale_kernel.domain.order_status import ExternalOrderState, OrderType
from wholesale_kernel.models.order import Order, OrderItem

CARRIERS: tuple[str, ...] = ("UPS", "FedEx", "USPS", "DHL", "Other")

WHOLESALE_TAG = "Wholesale"

# Fulfillment states that never represent goods leaving the warehouse
IGNORED_FULFILLMENT_STATES = frozenset({"cancelled", "error", "failure"})


# =============================================================================
# Helpers
# =============================================================================


def format_date(value: date | datetime | None) -> str:
    """MM/DD/YYYY, or an empty string."""
    if value is None:
        return ""
    return value.strftime("%m/%d/%Y")


def split_name(full_name: str) -> tuple[str, str]:
    """First word is the first name; the rest is the last name."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def country_code(country: str | None) -> str:
    """Two-letter code for US and Canada; other two-letter codes pass through."""
    value = (country or "").strip()
    upper = value.upper()
    if upper in ("US", "USA", "U.S.", "U.S.A.") or "UNITED STATES" in upper:
        return "US"
    if upper in ("CA", "CAN") or "CANADA" in upper:
        return "CA"
    if len(upper) == 2 and upper.isalpha():
        return upper
    return ""


def normalize_carrier(name: str | None) -> str:
    lowered = (name or "").lower()
    if "usps" in lowered or "postal" in lowered:
        return "USPS"
    if "fedex" in lowered or "fed ex" in lowered:
        return "FedEx"
    if "ups" in lowered:
        return "UPS"
    if "dhl" in lowered:
        return "DHL"
    return "Other"


def platform_id(value: str | None) -> int | str | None:
    """The platform keys resources by integer; send digits as ints."""
    if value is None:
        return None
    return int(value) if str(value).isdigit() else value


def _str_id(value: Any) -> str | None:
    return None if value is None else str(value)


# =============================================================================
# Outbound
# =============================================================================


def ship_window_text(order: Order) -> str:
    return f"{format_date(order.ship_window_start)} - {format_date(order.ship_window_end)}"


def build_tags(order_type: OrderType, rep_name: str) -> str:
    return ", ".join(t for t in (order_type.label, WHOLESALE_TAG, rep_name) if t)


def build_note(order: Order) -> str:
    note = f"Ship Window: {ship_window_text(order)}"
    if order.customer_po and order.customer_po.strip():
        note += f" | Customer PO #s: {order.customer_po.strip()}"
    return note


def build_note_attributes(order: Order, rep_name: str) -> list[dict[str, str]]:
    order_type = OrderType(order.order_type)
    attributes = [
        {"name": f"{order_type.label} Order Number", "value": order.order_number},
        {"name": "Requested Ship Window", "value": ship_window_text(order)},
        {"name": "Order Notes", "value": (order.notes or "").strip()},
        {"name": "Buyer Name", "value": order.buyer_name or ""},
        {"name": "Sales Rep", "value": rep_name},
        {"name": "Store Name", "value": order.store_name.strip()},
        {"name": "Customer Email", "value": (order.email or "").strip()},
    ]
    if order.customer_po and order.customer_po.strip():
        attributes.append({"name": "Customer PO #", "value": order.customer_po.strip()})
    return attributes


def build_address(order: Order, address: dict | None) -> dict[str, str]:
    address = address or {}
    region = (address.get("state_province") or "").strip()
    return {
        "name": (order.buyer_name or "").strip(),
        "company": order.store_name.strip(),
        "address1": (address.get("street1") or "").strip(),
        "address2": (address.get("street2") or "").strip(),
        "city": (address.get("city") or "").strip(),
        "province": region,
        "province_code": region,
        "zip": (address.get("postal_code") or "").strip(),
        "country": (address.get("country") or "").strip(),
        "country_code": country_code(address.get("country")),
        "phone": (order.phone or "").strip(),
    }


def build_customer_payload(order: Order, rep_name: str) -> dict[str, Any]:
    first_name, last_name = split_name(order.buyer_name or order.store_name)
    return {
        "email": order.email,
        "first_name": first_name,
        "last_name": last_name,
        "tags": f"{WHOLESALE_TAG}, {rep_name}" if rep_name else WHOLESALE_TAG,
    }


def build_line_items(
    items: Sequence[OrderItem],
    variant_ids: dict[str, str],
) -> list[dict[str, Any]]:
    """
    One platform line per order item with a positive open quantity.

    ``variant_ids`` must already cover every SKU; the transfer flow
    rejects the order before reaching here otherwise.
    """
    lines = []
    for item in items:
        quantity = item.quantity - (item.cancelled_quantity or 0)
        if quantity <= 0:
            continue
        lines.append({
            "variant_id": platform_id(variant_ids[item.sku]),
            "quantity": quantity,
            "price": str(item.unit_price),
            "title": item.description or item.sku,
            "requires_shipping": True,
        })
    return lines


def build_order_payload(
    order: Order,
    items: Sequence[OrderItem],
    variant_ids: dict[str, str],
    rep_name: str,
    external_customer_id: str | None = None,
) -> dict[str, Any]:
    """Body of the order-create call (without the ``order`` envelope)."""
    customer = build_customer_payload(order, rep_name)
    if external_customer_id:
        customer["id"] = platform_id(external_customer_id)
    return {
        "name": order.order_number,
        "email": order.email,
        "currency": order.currency,
        "note": build_note(order),
        "tags": build_tags(OrderType(order.order_type), rep_name),
        "financial_status": "pending",
        "inventory_behaviour": "decrement_ignoring_policy",
        "send_receipt": False,
        "use_customer_default_address": False,
        "customer": customer,
        "billing_address": build_address(order, order.billing_address),
        "shipping_address": build_address(order, order.shipping_address),
        "line_items": build_line_items(items, variant_ids),
        "note_attributes": build_note_attributes(order, rep_name),
    }


def build_fulfillment_payload(
    lines: Iterable[tuple[str, int]],
    tracking: Sequence[tuple[str, str]] = (),
) -> dict[str, Any]:
    """
    Body of the fulfillment-create call.

    Args:
        lines: (external line item id, quantity) pairs.
        tracking: (carrier, tracking number) pairs.
    """
    payload: dict[str, Any] = {
        "line_items": [
            {"id": platform_id(line_item_id), "quantity": quantity}
            for line_item_id, quantity in lines
        ],
        "notify_customer": False,
    }
    if tracking:
        payload["tracking_company"] = tracking[0][0]
        payload["tracking_numbers"] = [number for _, number in tracking]
    return payload


# =============================================================================
# Inbound
# =============================================================================


@dataclass(frozen=True)
class ExternalLineItem:
    line_item_id: str | None
    variant_id: str | None
    sku: str | None
    quantity: int


@dataclass(frozen=True)
class ExternalTracking:
    carrier: str
    tracking_number: str


@dataclass(frozen=True)
class ExternalFulfillment:
    fulfillment_id: str
    status: str
    shipped_on: date | None
    line_items: tuple[ExternalLineItem, ...] = ()
    tracking: tuple[ExternalTracking, ...] = ()

    @property
    def is_shipment(self) -> bool:
        return self.status not in IGNORED_FULFILLMENT_STATES


@dataclass(frozen=True)
class ExternalOrderStatus:
    external_order_id: str
    state: ExternalOrderState
    fulfillment_status: str | None
    financial_status: str | None


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_line_item(data: dict[str, Any]) -> ExternalLineItem:
    return ExternalLineItem(
        line_item_id=_str_id(data.get("id")),
        variant_id=_str_id(data.get("variant_id")),
        sku=data.get("sku") or None,
        quantity=int(data.get("quantity") or 0),
    )


def parse_fulfillment(data: dict[str, Any]) -> ExternalFulfillment:
    numbers = list(data.get("tracking_numbers") or [])
    if not numbers and data.get("tracking_number"):
        numbers = [data["tracking_number"]]
    carrier = normalize_carrier(data.get("tracking_company"))
    created_at = parse_timestamp(data.get("created_at"))
    return ExternalFulfillment(
        fulfillment_id=str(data["id"]),
        status=(data.get("status") or "success").lower(),
        shipped_on=created_at.date() if created_at else None,
        line_items=tuple(parse_line_item(li) for li in data.get("line_items") or ()),
        tracking=tuple(ExternalTracking(carrier, str(n)) for n in numbers if n),
    )


def parse_fulfillments(payload: dict[str, Any]) -> list[ExternalFulfillment]:
    return [parse_fulfillment(f) for f in payload.get("fulfillments") or ()]


def parse_order_status(data: dict[str, Any]) -> ExternalOrderStatus:
    if data.get("cancelled_at"):
        state = ExternalOrderState.CANCELLED
    elif data.get("closed_at"):
        state = ExternalOrderState.CLOSED
    else:
        state = ExternalOrderState.OPEN
    return ExternalOrderStatus(
        external_order_id=str(data["id"]),
        state=state,
        fulfillment_status=data.get("fulfillment_status"),
        financial_status=data.get("financial_status"),
    )


def parse_created_line_items(data: dict[str, Any]) -> list[ExternalLineItem]:
    """Line items of an order-create response."""
    return [parse_line_item(li) for li in data.get("line_items") or ()]
