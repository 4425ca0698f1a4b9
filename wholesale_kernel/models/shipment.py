"""
Module: wholesale_kernel.models.shipment
Responsibility: ORM persistence for physical shipments, the quantities of
    each order item they carried, and their carrier tracking numbers.
Architecture position: Kernel > Models.

Invariants enforced:
    - (order_id, external_fulfillment_id) is unique.  Inbound
      reconciliation checks for an existing row first; the constraint is the
      backstop when two sync runs race.
    - A shipment is never edited except for shipping cost, ship date and
      notes corrections, and the void marker.  Voided shipments stay in the
      table and are excluded from every aggregate.
    - The same order item may appear on many shipments (partial fulfillment
      over time).

Failure modes:
    - IntegrityError on a duplicate external fulfillment reference.

Audit relevance:
    shipment_recorded, shipment_updated, shipment_voided, tracking_added and
    fulfillment_synced AuditEvents are keyed on these rows.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import TrackedBase, UUIDString


class Shipment(TrackedBase):
    """
    Goods that actually left the warehouse.

    Guarantees:
        - shipped_total = shipped_subtotal + shipping_cost.
        - voided_at is NULL for active shipments.
    """

    __tablename__ = "shipments"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "external_fulfillment_id",
            name="uq_shipment_order_external_fulfillment",
        ),
        Index("idx_shipment_order", "order_id"),
        Index("idx_shipment_planned_shipment", "planned_shipment_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )

    planned_shipment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("planned_shipments.id"), nullable=True,
    )

    shipped_subtotal: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )
    shipped_total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    ship_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Fulfillment id on the commerce platform; dedup key for reconciliation
    external_fulfillment_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    def __repr__(self) -> str:
        return f"<Shipment {self.id} order={self.order_id} total={self.shipped_total}>"


class ShipmentItem(TrackedBase):
    """Quantity of one order item carried by one shipment."""

    __tablename__ = "shipment_items"

    __table_args__ = (
        Index("idx_shipment_item_shipment", "shipment_id"),
        Index("idx_shipment_item_order_item", "order_item_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipments.id"), nullable=False,
    )

    order_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("order_items.id"), nullable=False,
    )

    quantity_shipped: Mapped[int] = mapped_column(Integer, nullable=False)

    price_override: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)


class ShipmentTracking(TrackedBase):
    """One carrier/tracking-number pair on a shipment."""

    __tablename__ = "shipment_tracking"

    __table_args__ = (
        Index("idx_shipment_tracking_shipment", "shipment_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipments.id"), nullable=False,
    )

    carrier: Mapped[str] = mapped_column(String(20), nullable=False)

    tracking_number: Mapped[str] = mapped_column(String(100), nullable=False)

    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
