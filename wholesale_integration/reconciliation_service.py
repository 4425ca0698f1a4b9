"""
ReconciliationService -- pull fulfillments and status from the commerce
platform into local shipments.

Responsibility:
    For recently transferred, still-open orders: list the platform's
    fulfillments, record each one not seen before as a local Shipment, then
    recompute the order's status and fold in the platform's status fields.

Architecture position:
    Integration > Services.  Run periodically by
    ``scripts/run_fulfillment_sync.py`` or on demand through
    ``OrderOperations.reconcile_order``.

Invariants enforced:
    - A fulfillment whose external id is already on a local Shipment of the
      order (voided ones included) is never recorded again.  The unique
      constraint on (order_id, external_fulfillment_id) backs this up when
      two runs overlap.
    - External lines map to local items by external line-item id first,
      then by variant id.  Quantities are clamped to what remains open.
      A fulfillment that maps to nothing is skipped.
    - Each fulfillment is persisted in its own transaction.  Status
      recomputation runs afterwards in a separate transaction from freshly
      aggregated quantities.
    - One order failing never aborts the batch; orders are spaced by
      ``order_delay_seconds``.

Failure modes:
    - NotTransferredError, OrderNotFoundError for a single order.
    - PlatformRequestError, PlatformRateLimitedError from the platform;
      in a batch run these become per-order failures.

Audit relevance:
    fulfillment_synced per recorded shipment.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wholesale_config.schema import ReconciliationSettings
from wholesale_integration.client import CommercePlatformClient
from wholesale_integration.payloads import (
    ExternalFulfillment,
    ExternalOrderStatus,
    parse_fulfillments,
    parse_order_status,
)
from wholesale_integration.results import raise_for_result
from wholesale_kernel.db.engine import transaction
from wholesale_kernel.domain.actor import SYSTEM_ACTOR, ActorContext
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import ShipmentLineInput, TrackingInput
from wholesale_kernel.domain.order_status import OrderStatus
from wholesale_kernel.domain.results import BatchRunResult
from wholesale_kernel.exceptions import (
    IntegrationNotConfiguredError,
    NotTransferredError,
    OrderNotFoundError,
    PlatformRateLimitedError,
)
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.batch_runner import run_batch
from wholesale_kernel.services.catalog_service import CatalogService
from wholesale_kernel.services.fulfillment_service import FulfillmentService

logger = get_logger("integration.reconciliation")

SYNC_NOTE = "Synced from commerce platform"


@dataclass(frozen=True)
class ReconcileOutcome:
    order_id: UUID
    order_number: str
    fulfillments_seen: int
    shipments_created: int
    duplicates_skipped: int
    unmapped_skipped: int
    status: OrderStatus
    external_state: str | None = None


class ReconciliationService:
    """
    Inbound sync from the commerce platform.

    Contract:
        Safe to run any number of times, concurrently with itself and with
        manual shipment recording.  Commits its own work.
    """

    def __init__(
        self,
        session: Session,
        client: CommercePlatformClient | None,
        clock: Clock | None = None,
        settings: ReconciliationSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self._client = client
        self._clock = clock or SystemClock()
        self._settings = settings or ReconciliationSettings()
        self._sleep = sleep
        self._selector = OrderSelector(session)
        self._catalog = CatalogService(session)
        self._fulfillment = FulfillmentService(session, self._clock)

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def reconcile_recent(self, actor: ActorContext = SYSTEM_ACTOR) -> BatchRunResult:
        """Reconcile every candidate order placed within the recency window."""
        if self._client is None:
            raise IntegrationNotConfiguredError()
        since = self._clock.now() - timedelta(days=self._settings.recency_days)
        with transaction(self.session):
            candidates = self._selector.reconciliation_candidates(since, self._settings.batch_limit)

        logger.info(
            "reconciliation_started",
            extra={"candidate_count": len(candidates), "recency_days": self._settings.recency_days},
        )

        def reconcile(order_id: UUID):
            try:
                return self.reconcile_order(order_id, actor)
            except PlatformRateLimitedError:
                self._sleep(self._settings.rate_limit_pause_seconds)
                raise

        return run_batch(
            "reconcile_recent",
            [(c.order_number, lambda oid=c.order_id: reconcile(oid)) for c in candidates],
            clock=self._clock,
            between=lambda: self._sleep(self._settings.order_delay_seconds),
        )

    # -------------------------------------------------------------------------
    # Single order
    # -------------------------------------------------------------------------

    def reconcile_order(self, order_id: UUID, actor: ActorContext = SYSTEM_ACTOR) -> ReconcileOutcome:
        if self._client is None:
            raise IntegrationNotConfiguredError()

        with LogContext.bind(order_id=str(order_id)):
            with transaction(self.session):
                order = self.session.get(Order, order_id)
                if order is None:
                    raise OrderNotFoundError(str(order_id))
                if not order.is_transferred or not order.external_order_id:
                    raise NotTransferredError(order.order_number)
                order_number = order.order_number
                external_order_id = order.external_order_id
                known = self._selector.external_fulfillment_ids(order_id)

            try:
                fulfillments = parse_fulfillments(raise_for_result(
                    "list_fulfillments", self._client.list_fulfillments(external_order_id),
                ))
                external_status = parse_order_status(raise_for_result(
                    "get_order", self._client.get_order(external_order_id),
                ))
            except Exception:
                logger.warning(
                    "reconciliation_order_failed",
                    extra={"order_number": order_number},
                    exc_info=True,
                )
                raise

            created = duplicates = unmapped = 0
            for fulfillment in fulfillments:
                if not fulfillment.is_shipment:
                    continue
                if fulfillment.fulfillment_id in known:
                    duplicates += 1
                    continue
                recorded = self._record_fulfillment(order_id, order_number, fulfillment, actor)
                if recorded is None:
                    unmapped += 1
                elif recorded:
                    created += 1
                else:
                    duplicates += 1
                known.add(fulfillment.fulfillment_id)

            with transaction(self.session):
                status = self._fulfillment.recompute_statuses(order_id)
                self._fold_external_status(order_id, external_status)

            logger.info(
                "order_reconciled",
                extra={
                    "order_number": order_number,
                    "fulfillments_seen": len(fulfillments),
                    "shipments_created": created,
                    "duplicates_skipped": duplicates,
                    "unmapped_skipped": unmapped,
                    "status": status.value,
                },
            )
            return ReconcileOutcome(
                order_id=order_id,
                order_number=order_number,
                fulfillments_seen=len(fulfillments),
                shipments_created=created,
                duplicates_skipped=duplicates,
                unmapped_skipped=unmapped,
                status=status,
                external_state=external_status.state.value,
            )

    def _record_fulfillment(
        self,
        order_id: UUID,
        order_number: str,
        fulfillment: ExternalFulfillment,
        actor: ActorContext,
    ) -> bool | None:
        """
        Persist one fulfillment in its own transaction.

        Returns True when recorded, False when another run recorded it
        first, None when it maps to no open local item.
        """
        try:
            with transaction(self.session):
                # Remaining quantities are read under the order lock
                if self.session.get(
                    Order, order_id, with_for_update=True, populate_existing=True,
                ) is None:
                    raise OrderNotFoundError(str(order_id))
                lines = self._map_lines(order_id, fulfillment)
                if not lines:
                    logger.info(
                        "fulfillment_unmapped",
                        extra={
                            "order_number": order_number,
                            "external_fulfillment_id": fulfillment.fulfillment_id,
                        },
                    )
                    return None
                self._fulfillment.record_synced_shipment(
                    order_id=order_id,
                    lines=lines,
                    ship_date=fulfillment.shipped_on or self._clock.today(),
                    external_fulfillment_id=fulfillment.fulfillment_id,
                    tracking=[TrackingInput(t.carrier, t.tracking_number) for t in fulfillment.tracking],
                    notes=SYNC_NOTE,
                    actor=actor,
                )
        except IntegrityError:
            logger.info(
                "fulfillment_already_synced",
                extra={
                    "order_number": order_number,
                    "external_fulfillment_id": fulfillment.fulfillment_id,
                },
            )
            return False
        return True

    def _map_lines(self, order_id: UUID, fulfillment: ExternalFulfillment) -> list[ShipmentLineInput]:
        items = self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.sku)
        ).scalars().all()
        remaining = {f.order_item_id: f.remaining for f in self._selector.item_fulfillments(order_id)}
        catalog_variants = self._catalog.variant_ids([i.sku for i in items])

        by_line_id = {i.external_line_item_id: i for i in items if i.external_line_item_id}
        by_variant: dict[str, list[OrderItem]] = defaultdict(list)
        for item in items:
            variant = item.external_variant_id or catalog_variants.get(item.sku)
            if variant:
                by_variant[variant].append(item)

        quantities: dict[UUID, int] = {}
        for line in fulfillment.line_items:
            item = by_line_id.get(line.line_item_id) if line.line_item_id else None
            if item is None and line.variant_id:
                item = next(
                    (c for c in by_variant.get(line.variant_id, ()) if remaining[str(c.id)] > 0),
                    None,
                )
            if item is None:
                continue
            quantity = min(line.quantity, remaining[str(item.id)])
            if quantity < line.quantity:
                logger.info(
                    "fulfillment_quantity_clamped",
                    extra={"sku": item.sku, "reported": line.quantity, "recorded": quantity},
                )
            if quantity <= 0:
                continue
            remaining[str(item.id)] -= quantity
            quantities[item.id] = quantities.get(item.id, 0) + quantity

        return [ShipmentLineInput(order_item_id=k, quantity=v) for k, v in quantities.items()]

    def _fold_external_status(self, order_id: UUID, status: ExternalOrderStatus) -> None:
        order = self.session.get(Order, order_id)
        order.external_status = status.state.value
        order.external_fulfillment_status = status.fulfillment_status
        order.external_financial_status = status.financial_status
        order.external_synced_at = self._clock.now()
        self.session.flush()
