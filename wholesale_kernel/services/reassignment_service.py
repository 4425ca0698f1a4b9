"""
ReassignmentService -- move order items between planned shipments and
re-date planned shipments.

Responsibility:
    Moves one item from its current planned shipment to another group of the
    same order (existing, or created on the spot), re-validating the
    moving item's delivery window against the target's dates.  Also
    updates a group's dates against the windows of every item it holds.

Architecture position:
    Kernel > Services.  Called by ``OrderOperations.move_item`` and
    ``OrderOperations.update_planned_shipment_dates`` inside one
    transaction each.

Invariants enforced:
    - Only Pending, untransferred orders can be rearranged.
    - The item must currently sit in the stated source group (stale-client
      guard); source and target must belong to the item's order.
    - A window violation rejects the change with no mutation unless the
      caller passes ``allow_override``; every override is audited.
    - A source group left with no items and no physical shipments is
      deleted, and the order's cached ship-window bounds are recomputed
      from the remaining groups.

Failure modes:
    - OrderItemNotFoundError, PlannedShipmentNotFoundError.
    - OrderNotEditableError / OrderTerminalError, ItemNotInSourceGroupError,
      CrossOrderMoveError (state conflict).
    - ShipWindowViolationError, MissingWindowBoundsError, InvalidPlanError
      (validation).

Audit relevance:
    item_moved and planned_shipment_dates_changed events, each carrying
    ``was_override``.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from wholesale_kernel.domain.actor import ActorContext, require_admin
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import MoveItemOutcome, NewPlannedShipment, PlannedShipmentInfo
from wholesale_kernel.domain.order_status import PlannedShipmentStatus, check_editable
from wholesale_kernel.domain.ship_window import (
    ShipWindowResult,
    dedupe_windows,
    raise_for_result,
    validate_ship_window,
)
from wholesale_kernel.exceptions import (
    CrossOrderMoveError,
    InvalidPlanError,
    ItemNotInSourceGroupError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    PlannedShipmentNotFoundError,
)
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.auditor_service import AuditorService
from wholesale_kernel.services.base import BaseService
from wholesale_kernel.services.catalog_service import CatalogService
from wholesale_kernel.services.fulfillment_service import FulfillmentService

logger = get_logger("services.reassignment")


def refresh_ship_window_bounds(session: Session, order: Order) -> None:
    """Set the order's cached bounds to min(start)/max(end) of its groups."""
    start, end = session.execute(
        select(func.min(PlannedShipment.planned_start), func.max(PlannedShipment.planned_end))
        .where(PlannedShipment.order_id == order.id)
    ).one()
    order.ship_window_start = start
    order.ship_window_end = end


class ReassignmentService(BaseService[PlannedShipment]):
    """Rearranges items across an order's planned shipments."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._catalog = CatalogService(session)
        self._selector = OrderSelector(session)
        self._fulfillment = FulfillmentService(session, self._clock)
        self._auditor = AuditorService(session, self._clock)

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id, with_for_update=True, populate_existing=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _get_group(self, planned_shipment_id: UUID) -> PlannedShipment:
        group = self.session.get(PlannedShipment, planned_shipment_id)
        if group is None:
            raise PlannedShipmentNotFoundError(str(planned_shipment_id))
        return group

    # -------------------------------------------------------------------------
    # Move
    # -------------------------------------------------------------------------

    def move_item(
        self,
        order_item_id: UUID,
        source_planned_shipment_id: UUID,
        target: UUID | NewPlannedShipment,
        actor: ActorContext,
        allow_override: bool = False,
    ) -> MoveItemOutcome:
        """
        Move one item to ``target`` (an existing group id or a new group).

        Raises:
            ShipWindowViolationError: target dates fall outside the item's
                window and ``allow_override`` is false.
        """
        require_admin(actor, "move_item")

        item = self.session.get(OrderItem, order_item_id)
        if item is None:
            raise OrderItemNotFoundError(str(order_item_id))
        order = self._lock_order(item.order_id)
        check_editable(order.order_number, order.status, order.is_transferred)

        if item.planned_shipment_id != source_planned_shipment_id:
            raise ItemNotInSourceGroupError(str(item.id), str(source_planned_shipment_id))
        source = self._get_group(source_planned_shipment_id)
        if source.order_id != order.id:
            raise CrossOrderMoveError(str(order.id), str(source.order_id))

        if isinstance(target, NewPlannedShipment):
            if target.end < target.start:
                raise InvalidPlanError("target planned shipment ends before it starts")
            target_group = None
            target_start, target_end = target.start, target.end
        else:
            target_group = self._get_group(target)
            if target_group.order_id != order.id:
                raise CrossOrderMoveError(str(order.id), str(target_group.order_id))
            if target_group.id == source.id:
                raise InvalidPlanError("item is already in the target planned shipment", [item.sku])
            target_start, target_end = target_group.planned_start, target_group.planned_end

        window = self._catalog.window_for(item.collection_id)
        result = validate_ship_window(target_start, target_end, [window] if window else [])
        if not result.valid and not allow_override:
            logger.info(
                "item_move_rejected",
                extra={
                    "order_number": order.order_number,
                    "sku": item.sku,
                    "window_name": result.window_name,
                    "violation": result.violation.value,
                },
            )
            raise_for_result(result)

        if target_group is None:
            target_group = PlannedShipment(
                order_id=order.id,
                collection_id=target.collection_id or item.collection_id,
                name=target.name or (window.name if window else None),
                planned_start=target.start,
                planned_end=target.end,
                status=PlannedShipmentStatus.PLANNED.value,
                created_by_id=actor.actor_id,
            )
            self.session.add(target_group)
            self.session.flush()

        item.planned_shipment_id = target_group.id
        item.updated_by_id = actor.actor_id
        self.session.flush()

        self._fulfillment.recompute_group_statuses(order.id, [source.id, target_group.id])

        source_deleted = False
        if (
            self._selector.planned_shipment_item_count(source.id) == 0
            and self._selector.planned_shipment_shipment_count(source.id) == 0
        ):
            self.session.delete(source)
            self.session.flush()
            source_deleted = True

        refresh_ship_window_bounds(self.session, order)
        order.updated_by_id = actor.actor_id
        self.session.flush()

        was_override = not result.valid
        self._auditor.record_item_moved(
            order_item_id=item.id,
            order_id=order.id,
            sku=item.sku,
            source_planned_shipment_id=source.id,
            target_planned_shipment_id=target_group.id,
            was_override=was_override,
            window_name=result.window_name,
            violation=result.reason,
            actor_id=actor.actor_id,
        )

        with LogContext.bind(order_id=str(order.id)):
            logger.info(
                "item_moved",
                extra={
                    "order_number": order.order_number,
                    "sku": item.sku,
                    "source_planned_shipment_id": str(source.id),
                    "target_planned_shipment_id": str(target_group.id),
                    "source_deleted": source_deleted,
                    "was_override": was_override,
                },
            )

        return MoveItemOutcome(
            order_item_id=item.id,
            source_planned_shipment_id=source.id,
            target_planned_shipment_id=target_group.id,
            source_deleted=source_deleted,
            was_override=was_override,
            window_warning=result.reason if was_override else None,
        )

    # -------------------------------------------------------------------------
    # Re-date
    # -------------------------------------------------------------------------

    def update_planned_shipment_dates(
        self,
        planned_shipment_id: UUID,
        start: date,
        end: date,
        actor: ActorContext,
        allow_override: bool = False,
    ) -> PlannedShipmentInfo:
        """Re-date a group, validating against its own and every member item's window."""
        require_admin(actor, "update_planned_shipment_dates")
        group = self._get_group(planned_shipment_id)
        order = self._lock_order(group.order_id)
        check_editable(order.order_number, order.status, order.is_transferred)
        if end < start:
            raise InvalidPlanError("planned shipment ends before it starts")

        result = self._validate_group_dates(group, start, end)
        if not result.valid and not allow_override:
            raise_for_result(result)

        old_start, old_end = group.planned_start, group.planned_end
        group.planned_start = start
        group.planned_end = end
        group.updated_by_id = actor.actor_id
        self.session.flush()
        refresh_ship_window_bounds(self.session, order)
        order.updated_by_id = actor.actor_id
        self.session.flush()

        self._auditor.record_planned_shipment_dates_changed(
            planned_shipment_id=group.id,
            order_id=order.id,
            old_start=old_start,
            old_end=old_end,
            new_start=start,
            new_end=end,
            was_override=not result.valid,
            violation=result.reason,
            actor_id=actor.actor_id,
        )
        logger.info(
            "planned_shipment_dates_changed",
            extra={
                "order_number": order.order_number,
                "planned_shipment_id": str(group.id),
                "was_override": not result.valid,
            },
        )

        info = self._selector.get_order(order.id)
        return next(g for g in info.planned_shipments if g.id == group.id)

    def _validate_group_dates(self, group: PlannedShipment, start: date, end: date) -> ShipWindowResult:
        collection_ids = self.session.execute(
            select(OrderItem.collection_id)
            .where(
                OrderItem.planned_shipment_id == group.id,
                OrderItem.collection_id.is_not(None),
            )
            .distinct()
        ).scalars().all()
        if group.collection_id is not None:
            collection_ids = [group.collection_id, *collection_ids]
        windows = dedupe_windows([self._catalog.window_for(cid) for cid in collection_ids])
        return validate_ship_window(start, end, windows)
