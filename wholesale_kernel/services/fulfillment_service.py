"""
FulfillmentService -- record physical shipments and recompute fulfillment
state.

Responsibility:
    Records shipments (a subset of an order's items with quantities, price
    overrides, shipping cost and tracking), corrects them (cost, date,
    notes, extra tracking), voids them, cancels item quantities, and
    recomputes line, planned-shipment and order status from scratch after
    each of those.

Architecture position:
    Kernel > Services.  Called by ``OrderOperations`` for manual shipments
    and by the reconciliation job for shipments synced from the commerce
    platform.  Mirroring a manual shipment to the platform happens after
    commit in the integration layer, never here.

Invariants enforced:
    - For every order item, shipped (over non-voided shipments) never
      exceeds ordered minus cancelled.  ``record_shipment`` rejects
      over-shipment; ``record_synced_shipment`` lets the caller clamp.
    - Status recomputation always starts from freshly aggregated quantities
      (``OrderSelector.item_fulfillments``); nothing is patched
      incrementally.  Terminal orders keep their status.
    - Shipments are immutable apart from shipping cost, ship date, notes,
      added tracking and the void marker.

Failure modes:
    - OrderNotFoundError, OrderItemNotFoundError, ShipmentNotFoundError.
    - ItemNotInOrderError, InvalidQuantityError, OverShipmentError,
      InvalidReasonError (validation).
    - OrderTerminalError, ShipmentAlreadyVoidedError (state conflict).

Audit relevance:
    shipment_recorded, shipment_updated, shipment_voided, tracking_added,
    item_cancelled and fulfillment_synced events.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wholesale_kernel.db.types import ZERO, round_money
from wholesale_kernel.domain.actor import ActorContext, require_admin
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import (
    FulfillmentSummary,
    ShipmentInfo,
    ShipmentLineInput,
    ShipmentRequest,
    TrackingInput,
)
from wholesale_kernel.domain.order_status import (
    OrderStatus,
    check_not_terminal,
    derive_group_status,
    derive_line_status,
    derive_order_status,
)
from wholesale_kernel.exceptions import (
    CrossOrderMoveError,
    InvalidQuantityError,
    InvalidReasonError,
    ItemNotInOrderError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    OverShipmentError,
    PlannedShipmentNotFoundError,
    ShipmentAlreadyVoidedError,
    ShipmentNotFoundError,
)
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.models.shipment import Shipment, ShipmentItem, ShipmentTracking
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.auditor_service import AuditorService
from wholesale_kernel.services.base import BaseService

logger = get_logger("services.fulfillment")

VOID_REASONS: tuple[str, ...] = (
    "Shipped to wrong address",
    "Items damaged before shipping",
    "Customer cancelled after ship",
    "Duplicate shipment",
    "Data entry error",
    "Other",
)

CANCEL_REASONS: tuple[str, ...] = (
    "Out of stock",
    "Discontinued",
    "Customer request",
    "Damaged/defective",
    "Price error",
    "Other",
)


class FulfillmentService(BaseService[Shipment]):
    """
    Records and corrects physical shipments.

    Contract:
        Every mutating method finishes by recomputing the order's
        fulfillment state, so the caller can commit immediately.

    Non-goals:
        - Does NOT talk to the commerce platform.
        - Does NOT commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._selector = OrderSelector(session)
        self._auditor = AuditorService(session, self._clock)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.get(
            Order, order_id, with_for_update=True, populate_existing=True,
        )
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _get_shipment(self, shipment_id: UUID) -> Shipment:
        shipment = self.session.get(Shipment, shipment_id)
        if shipment is None:
            raise ShipmentNotFoundError(str(shipment_id))
        return shipment

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_shipment(self, request: ShipmentRequest, actor: ActorContext) -> ShipmentInfo:
        """
        Record a manual shipment.

        Raises:
            OverShipmentError: a line would ship more than remains.
        """
        require_admin(actor, "record_shipment")
        order = self._lock_order(request.order_id)
        check_not_terminal(order.order_number, order.status)

        items = self._validate_lines(order, request.lines)
        shipped = self._selector.shipped_quantities(order.id)

        requested: dict[UUID, int] = defaultdict(int)
        for line in request.lines:
            requested[line.order_item_id] += line.quantity
        for item_id, quantity in requested.items():
            item = items[item_id]
            remaining = max(
                item.quantity - (item.cancelled_quantity or 0) - shipped.get(item_id, 0), 0,
            )
            if quantity > remaining:
                raise OverShipmentError(item.sku, quantity, remaining)

        shipment = self._create_shipment(
            order=order,
            items=items,
            lines=request.lines,
            shipping_cost=request.shipping_cost,
            ship_date=request.ship_date,
            tracking=request.tracking,
            notes=request.notes,
            planned_shipment_id=request.planned_shipment_id,
            external_fulfillment_id=request.external_fulfillment_id,
            actor=actor,
        )

        self._auditor.record_shipment_recorded(
            shipment_id=shipment.id,
            order_id=order.id,
            shipped_total=str(shipment.shipped_total),
            line_count=len(request.lines),
            actor_id=actor.actor_id,
        )
        self.recompute_statuses(order.id)
        return self._selector.get_shipment(shipment.id)

    def record_synced_shipment(
        self,
        order_id: UUID,
        lines: Sequence[ShipmentLineInput],
        ship_date: date,
        external_fulfillment_id: str,
        tracking: Sequence[TrackingInput],
        notes: str,
        actor: ActorContext,
    ) -> ShipmentInfo:
        """
        Persist a shipment pulled from the commerce platform.

        The caller has already deduplicated by external reference and
        clamped quantities to what remains.  Status recomputation is left to
        the caller so it can run in a separate, short transaction.
        """
        order = self._lock_order(order_id)
        items = self._validate_lines(order, lines)
        shipment = self._create_shipment(
            order=order,
            items=items,
            lines=lines,
            shipping_cost=ZERO,
            ship_date=ship_date,
            tracking=tracking,
            notes=notes,
            planned_shipment_id=None,
            external_fulfillment_id=external_fulfillment_id,
            actor=actor,
        )
        self._auditor.record_fulfillment_synced(
            shipment_id=shipment.id,
            order_id=order.id,
            external_fulfillment_id=external_fulfillment_id,
            line_count=len(lines),
            actor_id=actor.actor_id,
        )
        return self._selector.get_shipment(shipment.id)

    def _validate_lines(
        self,
        order: Order,
        lines: Sequence[ShipmentLineInput],
    ) -> dict[UUID, OrderItem]:
        if not lines:
            raise InvalidQuantityError("shipment lines", 0)
        items: dict[UUID, OrderItem] = {}
        for line in lines:
            item = self.session.get(OrderItem, line.order_item_id)
            if item is None:
                raise OrderItemNotFoundError(str(line.order_item_id))
            if item.order_id != order.id:
                raise ItemNotInOrderError(str(item.id), str(order.id))
            if line.quantity <= 0:
                raise InvalidQuantityError(item.sku, line.quantity)
            if line.price_override is not None and Decimal(line.price_override) < ZERO:
                raise InvalidQuantityError(f"{item.sku} price override", line.price_override)
            items[item.id] = item
        return items

    def _resolve_planned_shipment(
        self,
        order: Order,
        items: dict[UUID, OrderItem],
        planned_shipment_id: UUID | None,
    ) -> UUID | None:
        if planned_shipment_id is not None:
            group = self.session.get(PlannedShipment, planned_shipment_id)
            if group is None:
                raise PlannedShipmentNotFoundError(str(planned_shipment_id))
            if group.order_id != order.id:
                raise CrossOrderMoveError(str(order.id), str(group.order_id))
            return group.id
        groups = {item.planned_shipment_id for item in items.values()}
        if len(groups) == 1:
            return groups.pop()
        return None

    def _create_shipment(
        self,
        order: Order,
        items: dict[UUID, OrderItem],
        lines: Sequence[ShipmentLineInput],
        shipping_cost: Decimal,
        ship_date: date | None,
        tracking: Sequence[TrackingInput],
        notes: str | None,
        planned_shipment_id: UUID | None,
        external_fulfillment_id: str | None,
        actor: ActorContext,
    ) -> Shipment:
        shipping_cost = Decimal(shipping_cost or 0)
        if shipping_cost < ZERO:
            raise InvalidQuantityError("shipping cost", shipping_cost)

        subtotal = ZERO
        for line in lines:
            item = items[line.order_item_id]
            price = Decimal(line.price_override if line.price_override is not None else item.unit_price)
            subtotal += price * line.quantity
        subtotal = round_money(subtotal)

        shipment = Shipment(
            order_id=order.id,
            planned_shipment_id=self._resolve_planned_shipment(order, items, planned_shipment_id),
            shipped_subtotal=subtotal,
            shipping_cost=round_money(shipping_cost),
            shipped_total=round_money(subtotal + shipping_cost),
            ship_date=ship_date or self._clock.today(),
            external_fulfillment_id=external_fulfillment_id,
            notes=notes,
            created_by_name=actor.display_name,
            created_by_id=actor.actor_id,
        )
        self.session.add(shipment)
        self.session.flush()

        for line in lines:
            self.session.add(ShipmentItem(
                shipment_id=shipment.id,
                order_item_id=line.order_item_id,
                quantity_shipped=line.quantity,
                price_override=line.price_override,
                created_by_id=actor.actor_id,
            ))
        for t in tracking:
            self._add_tracking_row(shipment.id, t, actor)
        self.session.flush()

        with LogContext.bind(order_id=str(order.id)):
            logger.info(
                "shipment_recorded",
                extra={
                    "shipment_id": str(shipment.id),
                    "order_number": order.order_number,
                    "line_count": len(lines),
                    "shipped_total": str(shipment.shipped_total),
                    "external_fulfillment_id": external_fulfillment_id,
                },
            )
        return shipment

    def _add_tracking_row(
        self,
        shipment_id: UUID,
        tracking: TrackingInput,
        actor: ActorContext,
    ) -> ShipmentTracking | None:
        number = (tracking.tracking_number or "").strip()
        if not number:
            return None
        row = ShipmentTracking(
            shipment_id=shipment_id,
            carrier=(tracking.carrier or "Other").strip() or "Other",
            tracking_number=number,
            added_at=self._clock.now(),
            created_by_id=actor.actor_id,
        )
        self.session.add(row)
        return row

    # -------------------------------------------------------------------------
    # Corrections
    # -------------------------------------------------------------------------

    def update_shipment(
        self,
        shipment_id: UUID,
        actor: ActorContext,
        shipping_cost: Decimal | None = None,
        ship_date: date | None = None,
        notes: str | None = None,
    ) -> ShipmentInfo:
        """Correct cost, date or notes.  The total is recomputed."""
        require_admin(actor, "update_shipment")
        shipment = self._get_shipment(shipment_id)
        if shipment.is_voided:
            raise ShipmentAlreadyVoidedError(str(shipment.id))

        changes: dict[str, str | None] = {}
        if shipping_cost is not None:
            shipping_cost = Decimal(shipping_cost)
            if shipping_cost < ZERO:
                raise InvalidQuantityError("shipping cost", shipping_cost)
            shipment.shipping_cost = round_money(shipping_cost)
            shipment.shipped_total = round_money(Decimal(shipment.shipped_subtotal) + shipping_cost)
            changes["shipping_cost"] = str(shipment.shipping_cost)
        if ship_date is not None:
            shipment.ship_date = ship_date
            changes["ship_date"] = ship_date.isoformat()
        if notes is not None:
            shipment.notes = notes
            changes["notes"] = notes

        if changes:
            shipment.updated_by_id = actor.actor_id
            self.session.flush()
            self._auditor.record_shipment_updated(
                shipment_id=shipment.id,
                order_id=shipment.order_id,
                changes=changes,
                actor_id=actor.actor_id,
            )
            logger.info(
                "shipment_updated",
                extra={"shipment_id": str(shipment.id), "fields": sorted(changes)},
            )
        return self._selector.get_shipment(shipment.id)

    def add_tracking(
        self,
        shipment_id: UUID,
        tracking: TrackingInput,
        actor: ActorContext,
    ) -> ShipmentInfo:
        require_admin(actor, "add_tracking")
        shipment = self._get_shipment(shipment_id)
        if shipment.is_voided:
            raise ShipmentAlreadyVoidedError(str(shipment.id))
        row = self._add_tracking_row(shipment.id, tracking, actor)
        if row is None:
            raise InvalidQuantityError("tracking number", 0)
        self.session.flush()
        self._auditor.record_tracking_added(
            shipment_id=shipment.id,
            carrier=row.carrier,
            tracking_number=row.tracking_number,
            actor_id=actor.actor_id,
        )
        return self._selector.get_shipment(shipment.id)

    def void_shipment(
        self,
        shipment_id: UUID,
        reason: str,
        actor: ActorContext,
        notes: str | None = None,
    ) -> ShipmentInfo:
        """
        Mark a shipment voided and recompute statuses without it.

        Raises:
            InvalidReasonError: reason not in VOID_REASONS.
            ShipmentAlreadyVoidedError: already voided.
            OrderTerminalError: the order is Invoiced or Cancelled.
        """
        require_admin(actor, "void_shipment")
        if reason not in VOID_REASONS:
            raise InvalidReasonError(reason, VOID_REASONS)
        shipment = self._get_shipment(shipment_id)
        order = self._lock_order(shipment.order_id)
        check_not_terminal(order.order_number, order.status)
        if shipment.is_voided:
            raise ShipmentAlreadyVoidedError(str(shipment.id))

        shipment.voided_at = self._clock.now()
        shipment.void_reason = reason
        shipment.voided_by_id = actor.actor_id
        if notes:
            shipment.notes = f"{shipment.notes}\n{notes}" if shipment.notes else notes
        shipment.updated_by_id = actor.actor_id
        self.session.flush()

        self._auditor.record_shipment_voided(
            shipment_id=shipment.id,
            order_id=order.id,
            reason=reason,
            notes=notes,
            actor_id=actor.actor_id,
        )
        logger.info(
            "shipment_voided",
            extra={"shipment_id": str(shipment.id), "order_number": order.order_number, "reason": reason},
        )
        self.recompute_statuses(order.id)
        return self._selector.get_shipment(shipment.id)

    def cancel_item(
        self,
        order_item_id: UUID,
        quantity: int,
        reason: str,
        actor: ActorContext,
    ) -> OrderStatus:
        """
        Cancel ``quantity`` unshipped units of an item.

        Returns:
            The order status after recomputation.
        """
        require_admin(actor, "cancel_item")
        if reason not in CANCEL_REASONS:
            raise InvalidReasonError(reason, CANCEL_REASONS)
        item = self.session.get(OrderItem, order_item_id)
        if item is None:
            raise OrderItemNotFoundError(str(order_item_id))
        order = self._lock_order(item.order_id)
        check_not_terminal(order.order_number, order.status)

        shipped = self._selector.shipped_quantities(order.id).get(item.id, 0)
        cancellable = item.quantity - shipped - (item.cancelled_quantity or 0)
        if quantity <= 0 or quantity > cancellable:
            raise InvalidQuantityError(item.sku, quantity)

        item.cancelled_quantity = (item.cancelled_quantity or 0) + quantity
        item.cancel_reason = reason
        item.updated_by_id = actor.actor_id
        self.session.flush()

        self._auditor.record_item_cancelled(
            order_item_id=item.id,
            order_id=order.id,
            quantity=quantity,
            reason=reason,
            actor_id=actor.actor_id,
        )
        logger.info(
            "item_cancelled",
            extra={"order_number": order.order_number, "sku": item.sku, "quantity": quantity},
        )
        return self.recompute_statuses(order.id)

    # -------------------------------------------------------------------------
    # Status recomputation
    # -------------------------------------------------------------------------

    def recompute_statuses(self, order_id: UUID) -> OrderStatus:
        """
        Recompute line, planned-shipment and order status from scratch.

        Postconditions:
            - Every OrderItem.status matches ``derive_line_status``.
            - Every PlannedShipment.status of the order matches
              ``derive_group_status`` over its items.
            - Order.status matches ``derive_order_status`` (terminal
              statuses are left alone).
        """
        order = self._lock_order(order_id)
        fulfillments = {f.order_item_id: f for f in self._selector.item_fulfillments(order_id)}

        items = self.session.execute(
            select(OrderItem).where(OrderItem.order_id == order_id)
        ).scalars().all()
        by_group: dict[UUID, list] = defaultdict(list)
        for item in items:
            fulfillment = fulfillments[str(item.id)]
            line_status = derive_line_status(fulfillment).value
            if item.status != line_status:
                item.status = line_status
            if item.planned_shipment_id is not None:
                by_group[item.planned_shipment_id].append(fulfillment)

        self.recompute_group_statuses(order_id, fulfillments_by_group=by_group)

        previous = order.status
        new_status = derive_order_status(
            order.status,
            list(fulfillments.values()),
            self._selector.active_shipment_count(order_id),
        )
        if new_status.value != previous:
            order.status = new_status.value
            logger.info(
                "order_status_recomputed",
                extra={
                    "order_number": order.order_number,
                    "from_status": previous,
                    "to_status": new_status.value,
                },
            )
        self.session.flush()
        return new_status

    def recompute_group_statuses(
        self,
        order_id: UUID,
        group_ids: Sequence[UUID] | None = None,
        fulfillments_by_group: dict[UUID, list] | None = None,
    ) -> None:
        """Status-only refresh of planned shipments (all, or ``group_ids``)."""
        if fulfillments_by_group is None:
            fulfillments = {f.order_item_id: f for f in self._selector.item_fulfillments(order_id)}
            fulfillments_by_group = defaultdict(list)
            rows = self.session.execute(
                select(OrderItem.id, OrderItem.planned_shipment_id)
                .where(OrderItem.order_id == order_id)
            ).all()
            for item_id, group_id in rows:
                if group_id is not None:
                    fulfillments_by_group[group_id].append(fulfillments[str(item_id)])

        stmt = select(PlannedShipment).where(PlannedShipment.order_id == order_id)
        if group_ids is not None:
            stmt = stmt.where(PlannedShipment.id.in_(list(group_ids)))
        for group in self.session.execute(stmt).scalars().all():
            status = derive_group_status(fulfillments_by_group.get(group.id, [])).value
            if group.status != status:
                group.status = status
        self.session.flush()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_fulfillment_summary(self, order_id: UUID) -> FulfillmentSummary:
        summary = self._selector.fulfillment_summary(order_id)
        if summary is None:
            raise OrderNotFoundError(str(order_id))
        return summary
