"""
OrderLifecycleService -- manual status changes, archival lifecycle,
permanent removal and comments.

Responsibility:
    Applies operator-driven status transitions (the local half; the
    commerce platform half lives in ``wholesale_integration``), moves
    terminal orders through active -> archived -> trashed -> removed, and
    records comments.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Status transitions follow ``ALLOWED_TRANSITIONS``; Invoiced and
      Cancelled are terminal.
    - Only terminal orders enter the archival lifecycle.  A transferred order
      may be trashed only once the platform reports it cancelled or closed.
    - Permanent removal deletes dependants with explicit statements in a
      fixed order (tracking, shipment items, shipments, order items,
      planned shipments, comments, order).  Audit events are kept.

Failure modes:
    - OrderNotFoundError.
    - OrderTerminalError, InvalidStatusTransitionError, ArchiveStateError,
      ExternalStillOpenError (state conflict).

Audit relevance:
    status_changed, order_archived, order_trashed, order_restored,
    order_purged and comment_added events.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, inspect, select
from sqlalchemy.orm import Session

from wholesale_kernel.domain.actor import ActorContext, require_admin
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import StatusChangeOutcome
from wholesale_kernel.domain.order_status import (
    ArchiveState,
    OrderStatus,
    check_can_archive,
    check_can_purge,
    check_can_restore,
    check_can_trash,
    check_transition,
)
from wholesale_kernel.exceptions import OrderNotFoundError, ValidationError
from wholesale_kernel.logging_config import get_logger
from wholesale_kernel.models.audit_event import AuditAction
from wholesale_kernel.models.order import Order, OrderComment, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.models.shipment import Shipment, ShipmentItem, ShipmentTracking
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.auditor_service import AuditorService
from wholesale_kernel.services.base import BaseService

logger = get_logger("services.lifecycle")

DEFAULT_TRASH_RETENTION_DAYS = 30


class OrderLifecycleService(BaseService[Order]):
    """Status and archival transitions for a single order."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = AuditorService(session, self._clock)

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id, with_for_update=True, populate_existing=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def validate_status_change(self, order_id: UUID, target: OrderStatus | str) -> Order:
        """
        Check a transition without writing.

        Returns:
            The locked order.
        """
        order = self._lock_order(order_id)
        check_transition(order.order_number, order.status, target)
        return order

    def apply_status_change(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        actor: ActorContext,
        synced_externally: bool = False,
        local_only: bool = False,
    ) -> StatusChangeOutcome:
        """
        Re-validate and write a status change.

        Callers that told the commerce platform first pass
        ``synced_externally=True``; a forced local-only change passes
        ``local_only=True``.
        """
        require_admin(actor, "change_status")
        target = OrderStatus(target)
        order = self.validate_status_change(order_id, target)

        previous = OrderStatus(order.status)
        order.status = target.value
        order.updated_by_id = actor.actor_id
        self.session.flush()

        self._auditor.record_status_changed(
            order_id=order.id,
            from_status=previous.value,
            to_status=target.value,
            synced_externally=synced_externally,
            local_only=local_only,
            actor_id=actor.actor_id,
        )
        logger.info(
            "order_status_changed",
            extra={
                "order_number": order.order_number,
                "from_status": previous.value,
                "to_status": target.value,
                "synced_externally": synced_externally,
                "local_only": local_only,
            },
        )
        return StatusChangeOutcome(
            order_id=order.id,
            order_number=order.order_number,
            previous_status=previous,
            new_status=target,
            synced_externally=synced_externally,
            local_only=local_only,
            changed_at=self._clock.now(),
        )

    # -------------------------------------------------------------------------
    # Archival lifecycle
    # -------------------------------------------------------------------------

    def _transition(
        self,
        order: Order,
        to_state: ArchiveState,
        action: AuditAction,
        actor: ActorContext,
    ) -> Order:
        from_state = order.archive_state
        order.archive_state = to_state.value
        order.updated_by_id = actor.actor_id
        self.session.flush()
        self._auditor.record_archive_transition(
            order_id=order.id,
            order_number=order.order_number,
            action=action,
            from_state=from_state,
            to_state=to_state.value,
            actor_id=actor.actor_id,
        )
        logger.info(
            action.value,
            extra={
                "order_number": order.order_number,
                "from_state": from_state,
                "to_state": to_state.value,
            },
        )
        return order

    def archive(self, order_id: UUID, actor: ActorContext) -> Order:
        require_admin(actor, "archive_order")
        order = self._lock_order(order_id)
        check_can_archive(order.order_number, order.status, order.archive_state)
        order.archived_at = self._clock.now()
        return self._transition(order, ArchiveState.ARCHIVED, AuditAction.ORDER_ARCHIVED, actor)

    def trash(self, order_id: UUID, actor: ActorContext) -> Order:
        require_admin(actor, "trash_order")
        order = self._lock_order(order_id)
        check_can_trash(
            order.order_number,
            order.status,
            order.archive_state,
            order.is_transferred,
            order.external_status,
        )
        order.trashed_at = self._clock.now()
        return self._transition(order, ArchiveState.TRASHED, AuditAction.ORDER_TRASHED, actor)

    def restore(self, order_id: UUID, actor: ActorContext) -> Order:
        """Return an archived or trashed order to active."""
        require_admin(actor, "restore_order")
        order = self._lock_order(order_id)
        check_can_restore(order.order_number, order.archive_state)
        order.archived_at = None
        order.trashed_at = None
        return self._transition(order, ArchiveState.ACTIVE, AuditAction.ORDER_RESTORED, actor)

    def purge(self, order_id: UUID, actor: ActorContext) -> str:
        """
        Permanently remove a trashed order and everything it owns.

        Returns:
            The removed order's number.
        """
        require_admin(actor, "purge_order")
        order = self._lock_order(order_id)
        check_can_purge(order.order_number, order.archive_state)
        order_number = order.order_number

        self._auditor.record_archive_transition(
            order_id=order.id,
            order_number=order_number,
            action=AuditAction.ORDER_PURGED,
            from_state=order.archive_state,
            to_state="removed",
            actor_id=actor.actor_id,
        )

        shipment_ids = select(Shipment.id).where(Shipment.order_id == order.id)
        owned_shipments = set(self.session.execute(shipment_ids).scalars().all())
        counts = {}
        counts["tracking"] = self.session.execute(
            delete(ShipmentTracking).where(ShipmentTracking.shipment_id.in_(shipment_ids))
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["shipment_items"] = self.session.execute(
            delete(ShipmentItem).where(ShipmentItem.shipment_id.in_(shipment_ids))
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["shipments"] = self.session.execute(
            delete(Shipment).where(Shipment.order_id == order.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["order_items"] = self.session.execute(
            delete(OrderItem).where(OrderItem.order_id == order.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["planned_shipments"] = self.session.execute(
            delete(PlannedShipment).where(PlannedShipment.order_id == order.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["comments"] = self.session.execute(
            delete(OrderComment).where(OrderComment.order_id == order.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        self.session.execute(
            delete(Order).where(Order.id == order.id)
            .execution_options(synchronize_session=False)
        )
        self._forget(order.id, owned_shipments)

        logger.info("order_purged", extra={"order_number": order_number, "deleted": counts})
        return order_number

    def _forget(self, order_id: UUID, shipment_ids: set[UUID]) -> None:
        """Detach in-session objects for rows removed by bulk deletes."""
        # Loaded state only; touching an expired attribute would reload a deleted row
        for obj in list(self.session.identity_map.values()):
            loaded = inspect(obj).dict
            if (
                loaded.get("id") == order_id
                or loaded.get("order_id") == order_id
                or loaded.get("shipment_id") in shipment_ids
            ):
                self.session.expunge(obj)

    def expired_trash(self, retention_days: int = DEFAULT_TRASH_RETENTION_DAYS) -> list[UUID]:
        cutoff: datetime = self._clock.now() - timedelta(days=retention_days)
        return OrderSelector(self.session).expired_trash(cutoff)

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def add_comment(self, order_id: UUID, body: str, actor: ActorContext) -> OrderComment:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        body = (body or "").strip()
        if not body:
            raise ValidationError("Comment body is required")
        comment = OrderComment(
            order_id=order.id,
            body=body,
            author_name=actor.display_name,
            created_by_id=actor.actor_id,
        )
        self.session.add(comment)
        self.session.flush()
        self._auditor.record_comment_added(
            order_id=order.id,
            comment_id=comment.id,
            actor_id=actor.actor_id,
        )
        return comment
