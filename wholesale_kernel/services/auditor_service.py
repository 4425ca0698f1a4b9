"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every significant
    state change on an order: creation, reassignment (with or without
    override), shipment recording and correction, status changes, transfer,
    inbound sync and archival.  Provides chain validation for tamper
    detection and trace queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by the decomposition,
    reassignment, fulfillment and lifecycle services and by the integration
    layer.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted, including
      when the order they describe is purged.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match stored hash, or
      prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  Every peer service records through
    ``_create_audit_event()``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.exceptions import AuditChainBrokenError
from wholesale_kernel.logging_config import get_logger
from wholesale_kernel.models.audit_event import AuditAction, AuditEvent
from wholesale_kernel.services.sequence_service import SequenceService
from wholesale_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

ORDER = "Order"
ORDER_ITEM = "OrderItem"
PLANNED_SHIPMENT = "PlannedShipment"
SHIPMENT = "Shipment"
CUSTOMER = "Customer"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def _fmt(value: date | None) -> str | None:
    return value.isoformat() if value else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
        - Sequence numbers come from ``SequenceService``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new ``AuditEvent`` row is flushed with a monotonically
              increasing ``seq`` and a valid hash chain link.
        """
        # The counter row lock serializes writers before the chain tip is read
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)

        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Order lifecycle

    def record_order_created(
        self,
        order_id: UUID,
        order_number: str,
        order_type: str,
        planned_shipment_count: int,
        item_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=AuditAction.ORDER_CREATED,
            actor_id=actor_id,
            payload={
                "order_number": order_number,
                "order_type": order_type,
                "planned_shipment_count": planned_shipment_count,
                "item_count": item_count,
            },
        )

    def record_status_changed(
        self,
        order_id: UUID,
        from_status: str,
        to_status: str,
        actor_id: UUID,
        synced_externally: bool,
        local_only: bool = False,
    ) -> AuditEvent:
        """Record a manual status change and whether the platform was told."""
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=AuditAction.STATUS_CHANGED,
            actor_id=actor_id,
            payload={
                "from_status": from_status,
                "to_status": to_status,
                "synced_externally": synced_externally,
                "local_only": local_only,
            },
        )

    def record_comment_added(
        self,
        order_id: UUID,
        comment_id: UUID,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=AuditAction.COMMENT_ADDED,
            actor_id=actor_id,
            payload={"comment_id": str(comment_id)},
        )

    def record_archive_transition(
        self,
        order_id: UUID,
        order_number: str,
        action: AuditAction,
        from_state: str,
        to_state: str,
        actor_id: UUID,
    ) -> AuditEvent:
        """Archived, trashed, restored or purged."""
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=action,
            actor_id=actor_id,
            payload={
                "order_number": order_number,
                "from_state": from_state,
                "to_state": to_state,
            },
        )

    # Grouping

    def record_item_moved(
        self,
        order_item_id: UUID,
        order_id: UUID,
        sku: str,
        source_planned_shipment_id: UUID,
        target_planned_shipment_id: UUID,
        was_override: bool,
        actor_id: UUID,
        window_name: str | None = None,
        violation: str | None = None,
    ) -> AuditEvent:
        """
        Record a reassignment.

        Every override of a window violation lands here with
        ``was_override=True`` and the violation text.
        """
        return self._create_audit_event(
            entity_type=ORDER_ITEM,
            entity_id=order_item_id,
            action=AuditAction.ITEM_MOVED,
            actor_id=actor_id,
            payload={
                "order_id": str(order_id),
                "sku": sku,
                "source_planned_shipment_id": str(source_planned_shipment_id),
                "target_planned_shipment_id": str(target_planned_shipment_id),
                "was_override": was_override,
                "window_name": window_name,
                "violation": violation,
            },
        )

    def record_planned_shipment_dates_changed(
        self,
        planned_shipment_id: UUID,
        order_id: UUID,
        old_start: date,
        old_end: date,
        new_start: date,
        new_end: date,
        was_override: bool,
        actor_id: UUID,
        violation: str | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=PLANNED_SHIPMENT,
            entity_id=planned_shipment_id,
            action=AuditAction.PLANNED_SHIPMENT_DATES_CHANGED,
            actor_id=actor_id,
            payload={
                "order_id": str(order_id),
                "old_start": _fmt(old_start),
                "old_end": _fmt(old_end),
                "new_start": _fmt(new_start),
                "new_end": _fmt(new_end),
                "was_override": was_override,
                "violation": violation,
            },
        )

    # Fulfillment

    def record_shipment_recorded(
        self,
        shipment_id: UUID,
        order_id: UUID,
        shipped_total: str,
        line_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=SHIPMENT,
            entity_id=shipment_id,
            action=AuditAction.SHIPMENT_RECORDED,
            actor_id=actor_id,
            payload={
                "order_id": str(order_id),
                "shipped_total": shipped_total,
                "line_count": line_count,
            },
        )

    def record_shipment_updated(
        self,
        shipment_id: UUID,
        order_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=SHIPMENT,
            entity_id=shipment_id,
            action=AuditAction.SHIPMENT_UPDATED,
            actor_id=actor_id,
            payload={"order_id": str(order_id), "changes": changes},
        )

    def record_shipment_voided(
        self,
        shipment_id: UUID,
        order_id: UUID,
        reason: str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=SHIPMENT,
            entity_id=shipment_id,
            action=AuditAction.SHIPMENT_VOIDED,
            actor_id=actor_id,
            payload={"order_id": str(order_id), "reason": reason, "notes": notes},
        )

    def record_tracking_added(
        self,
        shipment_id: UUID,
        carrier: str,
        tracking_number: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=SHIPMENT,
            entity_id=shipment_id,
            action=AuditAction.TRACKING_ADDED,
            actor_id=actor_id,
            payload={"carrier": carrier, "tracking_number": tracking_number},
        )

    def record_item_cancelled(
        self,
        order_item_id: UUID,
        order_id: UUID,
        quantity: int,
        reason: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORDER_ITEM,
            entity_id=order_item_id,
            action=AuditAction.ITEM_CANCELLED,
            actor_id=actor_id,
            payload={"order_id": str(order_id), "quantity": quantity, "reason": reason},
        )

    # Commerce platform sync

    def record_order_transferred(
        self,
        order_id: UUID,
        external_order_id: str,
        line_item_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=AuditAction.ORDER_TRANSFERRED,
            actor_id=actor_id,
            payload={
                "external_order_id": external_order_id,
                "line_item_count": line_item_count,
            },
        )

    def record_transfer_rejected(
        self,
        order_id: UUID,
        missing_skus: list[str],
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORDER,
            entity_id=order_id,
            action=AuditAction.TRANSFER_REJECTED,
            actor_id=actor_id,
            payload={"missing_skus": sorted(missing_skus)},
        )

    def record_external_customer_linked(
        self,
        customer_id: UUID,
        external_customer_id: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTOMER,
            entity_id=customer_id,
            action=AuditAction.EXTERNAL_CUSTOMER_LINKED,
            actor_id=actor_id,
            payload={"external_customer_id": external_customer_id},
        )

    def record_fulfillment_synced(
        self,
        shipment_id: UUID,
        order_id: UUID,
        external_fulfillment_id: str,
        line_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=SHIPMENT,
            entity_id=shipment_id,
            action=AuditAction.FULFILLMENT_SYNCED,
            actor_id=actor_id,
            payload={
                "order_id": str(order_id),
                "external_fulfillment_id": external_fulfillment_id,
                "line_count": line_count,
            },
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    # Trace and query methods

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )

