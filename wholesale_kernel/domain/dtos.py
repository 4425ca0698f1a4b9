"""
Domain DTOs -- immutable inputs and read models for the order engine.

Inputs describe what a caller asks for (a cart submission, a physical
shipment, a reassignment target).  Read models are what services and
selectors hand back; they never expose ORM instances.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from wholesale_kernel.domain.order_status import (
    ArchiveState,
    LineStatus,
    OrderStatus,
    OrderType,
    PlannedShipmentStatus,
)


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class Address:
    street1: str = ""
    street2: str = ""
    city: str = ""
    state_province: str = ""
    postal_code: str = ""
    country: str = ""

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> Address:
        data = data or {}
        return cls(**{k: data.get(k) or "" for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class LineItemInput:
    """
    One cart line.

    ``collection_id`` is the caller's delivery-window reference; when omitted
    the SKU's catalog collection is used.  ``item_key`` identifies the line
    inside an explicit shipment plan and defaults to the SKU.
    """

    sku: str
    quantity: int
    unit_price: Decimal
    collection_id: UUID | None = None
    item_key: str | None = None
    notes: str = ""

    @property
    def key(self) -> str:
        return self.item_key or self.sku


@dataclass(frozen=True)
class PlannedShipmentInput:
    """A caller-declared group in an explicit shipment plan."""

    item_keys: tuple[str, ...]
    start: date
    end: date
    collection_id: UUID | None = None
    name: str | None = None


@dataclass(frozen=True)
class OrderSubmission:
    """A buyer's cart as submitted for decomposition."""

    sales_rep_id: UUID
    store_name: str
    buyer_name: str
    customer_email: str
    currency: str
    items: tuple[LineItemInput, ...]
    billing_address: Address = field(default_factory=Address)
    shipping_address: Address = field(default_factory=Address)
    customer_phone: str = ""
    requested_start: date | None = None
    requested_end: date | None = None
    customer_po: str = ""
    notes: str = ""
    website: str = ""
    planned_shipments: tuple[PlannedShipmentInput, ...] | None = None
    skip_notifications: bool = False


@dataclass(frozen=True)
class NewPlannedShipment:
    """Reassignment target that does not exist yet."""

    start: date
    end: date
    collection_id: UUID | None = None
    name: str | None = None


@dataclass(frozen=True)
class ShipmentLineInput:
    order_item_id: UUID
    quantity: int
    price_override: Decimal | None = None


@dataclass(frozen=True)
class TrackingInput:
    carrier: str
    tracking_number: str


@dataclass(frozen=True)
class ShipmentRequest:
    """A physical shipment to record against an order."""

    order_id: UUID
    lines: tuple[ShipmentLineInput, ...]
    shipping_cost: Decimal = Decimal("0")
    ship_date: date | None = None
    tracking: tuple[TrackingInput, ...] = ()
    notes: str | None = None
    planned_shipment_id: UUID | None = None
    external_fulfillment_id: str | None = None


# =============================================================================
# Read models
# =============================================================================


@dataclass(frozen=True)
class OrderItemInfo:
    id: UUID
    sku: str
    description: str
    quantity: int
    unit_price: Decimal
    cancelled_quantity: int
    status: LineStatus
    planned_shipment_id: UUID | None
    collection_id: UUID | None
    external_line_item_id: str | None


@dataclass(frozen=True)
class PlannedShipmentInfo:
    id: UUID
    order_id: UUID
    collection_id: UUID | None
    name: str | None
    start: date
    end: date
    status: PlannedShipmentStatus
    order_item_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    order_number: str
    order_type: OrderType
    status: OrderStatus
    archive_state: ArchiveState
    currency: str
    order_total: Decimal
    ship_window_start: date | None
    ship_window_end: date | None
    customer_id: UUID | None
    store_name: str
    is_transferred: bool
    external_order_id: str | None
    items: tuple[OrderItemInfo, ...] = ()
    planned_shipments: tuple[PlannedShipmentInfo, ...] = ()


@dataclass(frozen=True)
class TrackingInfo:
    carrier: str
    tracking_number: str


@dataclass(frozen=True)
class ShipmentItemInfo:
    order_item_id: UUID
    quantity: int
    price_override: Decimal | None


@dataclass(frozen=True)
class ShipmentInfo:
    id: UUID
    order_id: UUID
    planned_shipment_id: UUID | None
    shipped_subtotal: Decimal
    shipping_cost: Decimal
    shipped_total: Decimal
    ship_date: date
    external_fulfillment_id: str | None
    created_by_name: str
    is_voided: bool
    items: tuple[ShipmentItemInfo, ...] = ()
    tracking: tuple[TrackingInfo, ...] = ()


@dataclass(frozen=True)
class ItemFulfillmentView:
    order_item_id: UUID
    sku: str
    ordered: int
    cancelled: int
    shipped: int
    remaining: int
    status: LineStatus


@dataclass(frozen=True)
class FulfillmentSummary:
    order_id: UUID
    order_number: str
    status: OrderStatus
    shipment_count: int
    shipped_subtotal: Decimal
    shipped_total: Decimal
    tracking_numbers: tuple[str, ...]
    items: tuple[ItemFulfillmentView, ...]
    is_fully_shipped: bool


@dataclass(frozen=True)
class CommentInfo:
    id: UUID
    order_id: UUID
    body: str
    author_name: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class MoveItemOutcome:
    order_item_id: UUID
    source_planned_shipment_id: UUID
    target_planned_shipment_id: UUID
    source_deleted: bool
    was_override: bool
    window_warning: str | None = None


@dataclass(frozen=True)
class StatusChangeOutcome:
    order_id: UUID
    order_number: str
    previous_status: OrderStatus
    new_status: OrderStatus
    synced_externally: bool
    local_only: bool
    changed_at: datetime | None = None
