"""
Module: wholesale_kernel.models.order
Responsibility: ORM persistence for the order header, its line items and
    operator comments.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - order_number is unique and immutable once assigned (allocated by
      OrderNumberService before the header is inserted).
    - order_type is derived from catalog data, never taken from the caller.
    - ship_window_start/ship_window_end cache min(start)/max(end) across the
      order's planned shipments; recomputed whenever a group is created,
      re-dated or deleted.
    - For every OrderItem: shipped (over non-voided shipments) + cancelled
      <= quantity.  Enforced by FulfillmentService, not by the database.
    - OrderItem.planned_shipment_id, when set, references a planned shipment
      of the same order.

Failure modes:
    - IntegrityError on duplicate order_number.
    - IntegrityError when deleting an order that still has dependants; the
      purge path deletes them explicitly first.

Audit relevance:
    Order creation, status changes, transfer and archival transitions all
    produce AuditEvents keyed on entity_type "Order".
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import TrackedBase, UUIDString
from wholesale_kernel.domain.order_status import (
    ArchiveState,
    LineStatus,
    OrderStatus,
    OrderType,
)


class Order(TrackedBase):
    """
    Order header.

    Contract:
        One row per submitted cart.  Status follows the state machine in
        ``domain.order_status``; archive_state follows the independent
        archival lifecycle.

    Guarantees:
        - is_transferred is set at most once, together with
          external_order_id.
        - order_total = sum(quantity * unit_price) over the order's items
          at creation time.

    Non-goals:
        - Does not hold shipped totals; those are derived from non-voided
          Shipment rows on demand.
    """

    __tablename__ = "orders"

    __table_args__ = (
        Index("idx_order_status", "status"),
        Index("idx_order_archive_state", "archive_state"),
        Index("idx_order_transferred", "is_transferred", "status"),
        Index("idx_order_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)

    order_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderType.IMMEDIATE.value,
    )

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.PENDING.value,
    )

    archive_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ArchiveState.ACTIVE.value,
    )

    customer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=True,
    )

    sales_rep_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales_reps.id"), nullable=False,
    )

    # Buyer details as submitted
    store_name: Mapped[str] = mapped_column(String(200), nullable=False)
    buyer_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    customer_po: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    website: Mapped[str] = mapped_column(String(300), nullable=False, default="")

    billing_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    order_total: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )

    # Cached bounds across planned shipments
    ship_window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    ship_window_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Outbound transfer
    is_transferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_order_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    transferred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Folded in by reconciliation; never drives local status on its own
    external_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    external_fulfillment_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    external_financial_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    external_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trashed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status}>"


class OrderItem(TrackedBase):
    """
    One line of an order.

    Contract:
        ``planned_shipment_id`` is NULL only transiently (between a group
        deletion and reassignment inside one transaction).  ``status`` is a
        cached derivation maintained by FulfillmentService.
    """

    __tablename__ = "order_items"

    __table_args__ = (
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_planned_shipment", "planned_shipment_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )

    planned_shipment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("planned_shipments.id"), nullable=True,
    )

    # Delivery-window reference resolved at creation time
    collection_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("collections.id"), nullable=True,
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    cancelled_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancel_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LineStatus.OPEN.value,
    )

    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Stamped by outbound transfer; preferred key for inbound matching
    external_line_item_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_variant_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<OrderItem {self.sku} x{self.quantity}>"


class OrderComment(TrackedBase):
    """Free-text operator note on an order."""

    __tablename__ = "order_comments"

    __table_args__ = (
        Index("idx_order_comment_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )

    body: Mapped[str] = mapped_column(Text, nullable=False)

    author_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
