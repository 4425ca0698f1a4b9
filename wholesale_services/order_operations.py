"""
wholesale_services.order_operations -- caller-facing order operations.

Responsibility:
    The single surface the admin UI, bulk actions and jobs call.  Wires the
    kernel and integration services once per session, owns commit/rollback
    for kernel operations, and turns every outcome into an
    ``OperationResult`` (single order) or ``BatchRunResult`` (bulk).

Architecture position:
    Services -- above ``wholesale_kernel``, ``wholesale_integration`` and
    ``wholesale_config``.  The only layer that reads ``AppConfig`` values
    and passes them down as plain arguments.

Invariants enforced:
    - Decomposition, reassignment and fulfillment recording each run in one
      transaction that fully commits or fully rolls back.
    - Follow-ups (notifications, fulfillment mirroring) run after commit
      and fail open: their failure becomes a warning on a successful
      result.
    - Expected failures (``WholesaleError``) become
      ``OperationResult(success=False)`` after rollback.  Anything else is
      logged with traceback and re-raised.

Usage:
    with session_scope() as session:
        ops = OrderOperations(session, config=get_active_config())
        result = ops.create_order(submission, actor)
        if not result.success:
            render_error(result.error.code, result.error.details)
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from wholesale_config.schema import AppConfig
from wholesale_integration.client import CommercePlatformClient
from wholesale_integration.reconciliation_service import ReconciliationService
from wholesale_integration.transfer_service import TransferService
from wholesale_kernel.db.engine import transaction
from wholesale_kernel.domain.actor import SYSTEM_ACTOR, ActorContext
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import (
    CommentInfo,
    NewPlannedShipment,
    OrderSubmission,
    ShipmentRequest,
    TrackingInput,
)
from wholesale_kernel.domain.order_status import OrderStatus
from wholesale_kernel.domain.results import BatchRunResult, OperationResult
from wholesale_kernel.exceptions import WholesaleError
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.order import Order
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.batch_runner import run_batch
from wholesale_kernel.services.decomposition_service import DecompositionService
from wholesale_kernel.services.fulfillment_service import FulfillmentService
from wholesale_kernel.services.order_lifecycle_service import OrderLifecycleService
from wholesale_kernel.services.order_number_service import OrderNumberService
from wholesale_kernel.services.reassignment_service import ReassignmentService
from wholesale_services.notifications import LoggingNotifier, Notifier

logger = get_logger("services.operations")


class OrderOperations:
    """
    Facade over every order operation.

    Contract:
        Pass a session with no transaction in progress.  Each public method
        commits or rolls back before returning.

    Non-goals:
        - Does NOT authenticate; the caller builds the ``ActorContext``.
        - Does NOT render anything.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: AppConfig | None = None,
        client: CommercePlatformClient | None = None,
        notifier: Notifier | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or AppConfig()
        if client is None and self._config.platform.is_configured:
            client = CommercePlatformClient(self._config.platform)
        self._client = client
        self._notifier = notifier or LoggingNotifier()

        numbers = self._config.order_numbers
        self._order_numbers = OrderNumberService(
            session,
            immediate_prefix=numbers.immediate_prefix,
            pre_order_prefix=numbers.pre_order_prefix,
            start=numbers.start,
        )
        self._selector = OrderSelector(session)
        self._decomposition = DecompositionService(session, self._clock, self._order_numbers)
        self._reassignment = ReassignmentService(session, self._clock)
        self._fulfillment = FulfillmentService(session, self._clock)
        self._lifecycle = OrderLifecycleService(session, self._clock)
        self._transfer = TransferService(session, client, self._clock)
        self._reconciliation = ReconciliationService(
            session, client, self._clock, settings=self._config.reconciliation,
        )

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], Any]) -> OperationResult:
        try:
            with transaction(self._session):
                data = fn()
        except WholesaleError as exc:
            logger.info(
                "operation_failed",
                extra={"operation": operation, "error_code": exc.code, "error_kind": exc.kind},
            )
            return OperationResult.fail(exc)
        except Exception:
            logger.exception("operation_unexpected_error", extra={"operation": operation})
            raise
        return OperationResult.ok(data)

    @staticmethod
    def _with_warnings(result: OperationResult, warnings: list[str]) -> OperationResult:
        if not warnings:
            return result
        return OperationResult.ok(result.data, warnings=[*result.warnings, *warnings])

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_order(self, submission: OrderSubmission, actor: ActorContext) -> OperationResult:
        with LogContext.bind(actor_id=str(actor.actor_id)):
            result = self._run(
                "create_order",
                lambda: self._decomposition.create_order(submission, actor),
            )
            if not result.success or submission.skip_notifications:
                return result

            warnings = []
            try:
                self._notifier.order_created(result.data, submission.customer_email)
            except Exception as exc:
                logger.warning(
                    "order_notification_failed",
                    extra={"order_number": result.data.order_number, "error": str(exc)},
                    exc_info=True,
                )
                warnings.append(f"Order notification failed: {exc}")
            return self._with_warnings(result, warnings)

    # -------------------------------------------------------------------------
    # Reassignment
    # -------------------------------------------------------------------------

    def move_item(
        self,
        order_item_id: UUID,
        source_planned_shipment_id: UUID,
        target: UUID | NewPlannedShipment,
        actor: ActorContext,
        allow_override: bool = False,
    ) -> OperationResult:
        result = self._run(
            "move_item",
            lambda: self._reassignment.move_item(
                order_item_id, source_planned_shipment_id, target, actor, allow_override,
            ),
        )
        if result.success and result.data.window_warning:
            return self._with_warnings(result, [result.data.window_warning])
        return result

    def update_planned_shipment_dates(
        self,
        planned_shipment_id: UUID,
        start: date,
        end: date,
        actor: ActorContext,
        allow_override: bool = False,
    ) -> OperationResult:
        return self._run(
            "update_planned_shipment_dates",
            lambda: self._reassignment.update_planned_shipment_dates(
                planned_shipment_id, start, end, actor, allow_override,
            ),
        )

    # -------------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------------

    def record_shipment(
        self,
        request: ShipmentRequest,
        actor: ActorContext,
        mirror: bool = True,
    ) -> OperationResult:
        """
        Record a shipment, then mirror it to the platform when the order
        was transferred.  A mirroring failure is a warning.
        """
        result = self._run("record_shipment", lambda: self._fulfillment.record_shipment(request, actor))
        if not result.success or not mirror:
            return result

        shipment = result.data
        with transaction(self._session):
            transferred = self._session.get(Order, shipment.order_id).is_transferred
        if not transferred:
            return result

        warnings = []
        if self._client is None:
            warnings.append("Shipment was not sent to the commerce platform: integration is not configured")
        else:
            try:
                external_id = self._transfer.mirror_fulfillment(shipment.id, actor)
            except WholesaleError as exc:
                logger.warning(
                    "fulfillment_mirror_failed",
                    extra={"shipment_id": str(shipment.id), "error_code": exc.code},
                )
                warnings.append(f"Shipment was not sent to the commerce platform: {exc}")
            else:
                if external_id is not None:
                    result = OperationResult.ok(self._selector.get_shipment(shipment.id))
        return self._with_warnings(result, warnings)

    def update_shipment(
        self,
        shipment_id: UUID,
        actor: ActorContext,
        shipping_cost=None,
        ship_date: date | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        return self._run(
            "update_shipment",
            lambda: self._fulfillment.update_shipment(
                shipment_id, actor, shipping_cost=shipping_cost, ship_date=ship_date, notes=notes,
            ),
        )

    def add_tracking(self, shipment_id: UUID, tracking: TrackingInput, actor: ActorContext) -> OperationResult:
        return self._run("add_tracking", lambda: self._fulfillment.add_tracking(shipment_id, tracking, actor))

    def void_shipment(
        self,
        shipment_id: UUID,
        reason: str,
        actor: ActorContext,
        notes: str | None = None,
    ) -> OperationResult:
        return self._run(
            "void_shipment",
            lambda: self._fulfillment.void_shipment(shipment_id, reason, actor, notes=notes),
        )

    def cancel_item(
        self,
        order_item_id: UUID,
        quantity: int,
        reason: str,
        actor: ActorContext,
    ) -> OperationResult:
        return self._run(
            "cancel_item",
            lambda: self._fulfillment.cancel_item(order_item_id, quantity, reason, actor),
        )

    def get_fulfillment_summary(self, order_id: UUID) -> OperationResult:
        return self._run(
            "get_fulfillment_summary",
            lambda: self._fulfillment.get_fulfillment_summary(order_id),
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def change_status(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        actor: ActorContext,
        reason: str = "other",
        notify_customer: bool = False,
        restock: bool = False,
        force_local: bool = False,
    ) -> OperationResult:
        """
        Change status; on a transferred order Cancelled/Invoiced go to the
        platform first.  A failed platform call returns an error of kind
        ``sync_failed`` and leaves the status as it was.
        """
        return self._run(
            "change_status",
            lambda: self._transfer.sync_status_change(
                order_id,
                target,
                actor,
                reason=reason,
                notify_customer=notify_customer,
                restock=restock,
                force_local=force_local,
            ),
        )

    def bulk_update_status(
        self,
        order_ids: Sequence[UUID],
        target: OrderStatus | str,
        actor: ActorContext,
        force_local: bool = False,
    ) -> BatchRunResult:
        return run_batch(
            "bulk_update_status",
            [
                (str(oid), lambda oid=oid: self._transfer.sync_status_change(
                    oid, target, actor, force_local=force_local,
                ))
                for oid in order_ids
            ],
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Comments and archival
    # -------------------------------------------------------------------------

    def add_comment(self, order_id: UUID, body: str, actor: ActorContext) -> OperationResult:
        def add() -> CommentInfo:
            comment = self._lifecycle.add_comment(order_id, body, actor)
            return CommentInfo(
                id=comment.id,
                order_id=comment.order_id,
                body=comment.body,
                author_name=comment.author_name,
                created_at=comment.created_at,
            )

        return self._run("add_comment", add)

    def archive_order(self, order_id: UUID, actor: ActorContext) -> OperationResult:
        return self._run(
            "archive_order",
            lambda: self._selector.get_order(self._lifecycle.archive(order_id, actor).id),
        )

    def trash_order(self, order_id: UUID, actor: ActorContext) -> OperationResult:
        return self._run(
            "trash_order",
            lambda: self._selector.get_order(self._lifecycle.trash(order_id, actor).id),
        )

    def restore_order(self, order_id: UUID, actor: ActorContext) -> OperationResult:
        return self._run(
            "restore_order",
            lambda: self._selector.get_order(self._lifecycle.restore(order_id, actor).id),
        )

    def purge_order(self, order_id: UUID, actor: ActorContext) -> OperationResult:
        return self._run("purge_order", lambda: self._lifecycle.purge(order_id, actor))

    def purge_expired_trash(self, actor: ActorContext = SYSTEM_ACTOR) -> BatchRunResult:
        """Permanently remove orders trashed longer than the retention period."""
        with transaction(self._session):
            expired = self._lifecycle.expired_trash(self._config.lifecycle.trash_retention_days)

        def purge(order_id: UUID) -> dict[str, str]:
            with transaction(self._session):
                return {"order_number": self._lifecycle.purge(order_id, actor)}

        return run_batch(
            "purge_expired_trash",
            [(str(oid), lambda oid=oid: purge(oid)) for oid in expired],
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Commerce platform
    # -------------------------------------------------------------------------

    def transfer_order(self, order_id: UUID, actor: ActorContext) -> OperationResult:
        return self._run("transfer_order", lambda: self._transfer.transfer_order(order_id, actor))

    def bulk_transfer(self, order_ids: Sequence[UUID], actor: ActorContext) -> BatchRunResult:
        return self._transfer.bulk_transfer(order_ids, actor)

    def reconcile_order(self, order_id: UUID, actor: ActorContext = SYSTEM_ACTOR) -> OperationResult:
        return self._run(
            "reconcile_order",
            lambda: self._reconciliation.reconcile_order(order_id, actor),
        )

    def reconcile_recent(self, actor: ActorContext = SYSTEM_ACTOR) -> BatchRunResult:
        """
        Raises:
            IntegrationNotConfiguredError: when no platform client is set.
        """
        return self._reconciliation.reconcile_recent(actor)
