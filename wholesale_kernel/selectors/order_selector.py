"""
Module: wholesale_kernel.selectors.order_selector
Responsibility: Read-only queries over orders, planned shipments and
    shipments, including the shipped-quantity aggregates that drive every
    status recomputation.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Shipped quantity for an order item is always SUM(quantity_shipped)
      over shipment items whose shipment is not voided.  There is no stored
      running total to drift.
    - Returns DTOs, never ORM instances.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from wholesale_kernel.db.types import ZERO
from wholesale_kernel.domain.dtos import (
    FulfillmentSummary,
    ItemFulfillmentView,
    OrderInfo,
    OrderItemInfo,
    PlannedShipmentInfo,
    ShipmentInfo,
    ShipmentItemInfo,
    TrackingInfo,
)
from wholesale_kernel.domain.order_status import (
    ArchiveState,
    ItemFulfillment,
    LineStatus,
    OrderStatus,
    OrderType,
    PlannedShipmentStatus,
    derive_line_status,
)
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.models.shipment import Shipment, ShipmentItem, ShipmentTracking
from wholesale_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ReconciliationCandidate:
    order_id: UUID
    order_number: str
    external_order_id: str


class OrderSelector(BaseSelector[Order]):
    """Queries for order, grouping and fulfillment state."""

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> OrderInfo | None:
        order = self.session.get(Order, order_id)
        if order is None:
            return None

        items = self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.sku)
        ).scalars().all()

        groups = self.session.execute(
            select(PlannedShipment)
            .where(PlannedShipment.order_id == order_id)
            .order_by(PlannedShipment.planned_start, PlannedShipment.planned_end)
        ).scalars().all()

        return OrderInfo(
            id=order.id,
            order_number=order.order_number,
            order_type=OrderType(order.order_type),
            status=OrderStatus(order.status),
            archive_state=ArchiveState(order.archive_state),
            currency=order.currency,
            order_total=order.order_total,
            ship_window_start=order.ship_window_start,
            ship_window_end=order.ship_window_end,
            customer_id=order.customer_id,
            store_name=order.store_name,
            is_transferred=order.is_transferred,
            external_order_id=order.external_order_id,
            items=tuple(_item_info(i) for i in items),
            planned_shipments=tuple(
                PlannedShipmentInfo(
                    id=g.id,
                    order_id=g.order_id,
                    collection_id=g.collection_id,
                    name=g.name,
                    start=g.planned_start,
                    end=g.planned_end,
                    status=PlannedShipmentStatus(g.status),
                    order_item_ids=tuple(
                        i.id for i in items if i.planned_shipment_id == g.id
                    ),
                )
                for g in groups
            ),
        )

    def get_order_by_number(self, order_number: str) -> OrderInfo | None:
        order_id = self.session.execute(
            select(Order.id).where(Order.order_number == order_number)
        ).scalar_one_or_none()
        return self.get_order(order_id) if order_id else None

    def reconciliation_candidates(
        self,
        since: datetime,
        limit: int,
    ) -> list[ReconciliationCandidate]:
        """
        Transferred, active, non-final orders placed on or after ``since``.

        Shipped orders are excluded along with the terminal statuses: there
        is nothing left for an inbound fulfillment to add to them.
        """
        rows = self.session.execute(
            select(Order.id, Order.order_number, Order.external_order_id)
            .where(
                Order.is_transferred.is_(True),
                Order.external_order_id.is_not(None),
                Order.status.not_in([
                    OrderStatus.SHIPPED.value,
                    OrderStatus.INVOICED.value,
                    OrderStatus.CANCELLED.value,
                ]),
                Order.archive_state == ArchiveState.ACTIVE.value,
                Order.order_date >= since,
            )
            .order_by(Order.order_date.desc())
            .limit(limit)
        ).all()
        return [
            ReconciliationCandidate(order_id=r[0], order_number=r[1], external_order_id=r[2])
            for r in rows
        ]

    def expired_trash(self, cutoff: datetime) -> list[UUID]:
        """Ids of orders trashed at or before ``cutoff``."""
        return list(self.session.execute(
            select(Order.id)
            .where(
                Order.archive_state == ArchiveState.TRASHED.value,
                Order.trashed_at <= cutoff,
            )
            .order_by(Order.trashed_at)
        ).scalars().all())

    # -------------------------------------------------------------------------
    # Fulfillment aggregates
    # -------------------------------------------------------------------------

    def shipped_quantities(self, order_id: UUID) -> dict[UUID, int]:
        """Order item id -> quantity shipped over non-voided shipments."""
        rows = self.session.execute(
            select(ShipmentItem.order_item_id, func.sum(ShipmentItem.quantity_shipped))
            .join(Shipment, Shipment.id == ShipmentItem.shipment_id)
            .where(
                Shipment.order_id == order_id,
                Shipment.voided_at.is_(None),
            )
            .group_by(ShipmentItem.order_item_id)
        ).all()
        return {row[0]: int(row[1] or 0) for row in rows}

    def item_fulfillments(self, order_id: UUID) -> list[ItemFulfillment]:
        shipped = self.shipped_quantities(order_id)
        items = self.session.execute(
            select(OrderItem.id, OrderItem.quantity, OrderItem.cancelled_quantity)
            .where(OrderItem.order_id == order_id)
        ).all()
        return [
            ItemFulfillment(
                order_item_id=str(item_id),
                ordered=quantity,
                cancelled=cancelled or 0,
                shipped=shipped.get(item_id, 0),
            )
            for item_id, quantity, cancelled in items
        ]

    def active_shipment_count(self, order_id: UUID) -> int:
        return self.session.execute(
            select(func.count(Shipment.id))
            .where(Shipment.order_id == order_id, Shipment.voided_at.is_(None))
        ).scalar_one()

    def planned_shipment_item_count(self, planned_shipment_id: UUID) -> int:
        return self.session.execute(
            select(func.count(OrderItem.id))
            .where(OrderItem.planned_shipment_id == planned_shipment_id)
        ).scalar_one()

    def planned_shipment_shipment_count(self, planned_shipment_id: UUID) -> int:
        """Physical shipments (voided included) referencing the group."""
        return self.session.execute(
            select(func.count(Shipment.id))
            .where(Shipment.planned_shipment_id == planned_shipment_id)
        ).scalar_one()

    def external_fulfillment_ids(self, order_id: UUID) -> set[str]:
        """External fulfillment references already recorded for the order."""
        return set(self.session.execute(
            select(Shipment.external_fulfillment_id)
            .where(
                Shipment.order_id == order_id,
                Shipment.external_fulfillment_id.is_not(None),
            )
        ).scalars().all())

    # -------------------------------------------------------------------------
    # Shipments
    # -------------------------------------------------------------------------

    def get_shipment(self, shipment_id: UUID) -> ShipmentInfo | None:
        shipment = self.session.get(Shipment, shipment_id)
        if shipment is None:
            return None
        return self._shipment_info(shipment)

    def list_shipments(self, order_id: UUID, include_voided: bool = False) -> list[ShipmentInfo]:
        stmt = select(Shipment).where(Shipment.order_id == order_id)
        if not include_voided:
            stmt = stmt.where(Shipment.voided_at.is_(None))
        shipments = self.session.execute(
            stmt.order_by(Shipment.ship_date, Shipment.created_at)
        ).scalars().all()
        return [self._shipment_info(s) for s in shipments]

    def _shipment_info(self, shipment: Shipment) -> ShipmentInfo:
        items = self.session.execute(
            select(ShipmentItem).where(ShipmentItem.shipment_id == shipment.id)
        ).scalars().all()
        tracking = self.session.execute(
            select(ShipmentTracking)
            .where(ShipmentTracking.shipment_id == shipment.id)
            .order_by(ShipmentTracking.added_at)
        ).scalars().all()
        return ShipmentInfo(
            id=shipment.id,
            order_id=shipment.order_id,
            planned_shipment_id=shipment.planned_shipment_id,
            shipped_subtotal=shipment.shipped_subtotal,
            shipping_cost=shipment.shipping_cost,
            shipped_total=shipment.shipped_total,
            ship_date=shipment.ship_date,
            external_fulfillment_id=shipment.external_fulfillment_id,
            created_by_name=shipment.created_by_name,
            is_voided=shipment.is_voided,
            items=tuple(
                ShipmentItemInfo(
                    order_item_id=i.order_item_id,
                    quantity=i.quantity_shipped,
                    price_override=i.price_override,
                )
                for i in items
            ),
            tracking=tuple(
                TrackingInfo(carrier=t.carrier, tracking_number=t.tracking_number)
                for t in tracking
            ),
        )

    def fulfillment_summary(self, order_id: UUID) -> FulfillmentSummary | None:
        order = self.session.get(Order, order_id)
        if order is None:
            return None

        shipments = self.list_shipments(order_id)
        shipped = self.shipped_quantities(order_id)
        items = self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.sku)
        ).scalars().all()

        views = []
        for item in items:
            fulfillment = ItemFulfillment(
                order_item_id=str(item.id),
                ordered=item.quantity,
                cancelled=item.cancelled_quantity or 0,
                shipped=shipped.get(item.id, 0),
            )
            views.append(ItemFulfillmentView(
                order_item_id=item.id,
                sku=item.sku,
                ordered=fulfillment.ordered,
                cancelled=fulfillment.cancelled,
                shipped=fulfillment.shipped,
                remaining=fulfillment.remaining,
                status=derive_line_status(fulfillment),
            ))

        tracking_numbers: list[str] = []
        for shipment in shipments:
            for t in shipment.tracking:
                if t.tracking_number not in tracking_numbers:
                    tracking_numbers.append(t.tracking_number)

        return FulfillmentSummary(
            order_id=order.id,
            order_number=order.order_number,
            status=OrderStatus(order.status),
            shipment_count=len(shipments),
            shipped_subtotal=sum((s.shipped_subtotal for s in shipments), ZERO),
            shipped_total=sum((s.shipped_total for s in shipments), ZERO),
            tracking_numbers=tuple(tracking_numbers),
            items=tuple(views),
            is_fully_shipped=bool(views) and all(
                v.remaining == 0 for v in views if v.status != LineStatus.CANCELLED
            ),
        )


def _item_info(item: OrderItem) -> OrderItemInfo:
    return OrderItemInfo(
        id=item.id,
        sku=item.sku,
        description=item.description,
        quantity=item.quantity,
        unit_price=Decimal(item.unit_price),
        cancelled_quantity=item.cancelled_quantity or 0,
        status=LineStatus(item.status),
        planned_shipment_id=item.planned_shipment_id,
        collection_id=item.collection_id,
        external_line_item_id=item.external_line_item_id,
    )
