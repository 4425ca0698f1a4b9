"""
Module: wholesale_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only.  Purging an order leaves its audit
      events in place.
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every operator override, status change,
    transfer, shipment correction and archival transition produces one.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Order lifecycle
    ORDER_CREATED = "order_created"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"

    # Grouping
    ITEM_MOVED = "item_moved"
    PLANNED_SHIPMENT_DATES_CHANGED = "planned_shipment_dates_changed"

    # Fulfillment
    SHIPMENT_RECORDED = "shipment_recorded"
    SHIPMENT_UPDATED = "shipment_updated"
    SHIPMENT_VOIDED = "shipment_voided"
    TRACKING_ADDED = "tracking_added"
    ITEM_CANCELLED = "item_cancelled"

    # Commerce platform sync
    ORDER_TRANSFERRED = "order_transferred"
    TRANSFER_REJECTED = "transfer_rejected"
    EXTERNAL_CUSTOMER_LINKED = "external_customer_linked"
    FULFILLMENT_SYNCED = "fulfillment_synced"

    # Archival lifecycle
    ORDER_ARCHIVED = "order_archived"
    ORDER_TRASHED = "order_trashed"
    ORDER_RESTORED = "order_restored"
    ORDER_PURGED = "order_purged"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only.  Each row's hash includes the
        previous row's hash, creating a tamper-evident chain.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "Order", "OrderItem", "PlannedShipment", "Shipment", "Customer"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # hash = H(entity_type + entity_id + action + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
