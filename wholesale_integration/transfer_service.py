"""
TransferService -- push local orders and status changes to the commerce
platform.

Responsibility:
    One-time transfer of a pending order (customer, addresses, line items,
    tags, note attributes), the external half of Cancelled/Invoiced status
    changes, and mirroring manually recorded shipments as platform
    fulfillments.

Architecture position:
    Integration > Services.  Owns its transaction boundaries: every local
    transaction is committed or rolled back before a platform call is
    made, and the result of the call is written in a new transaction.

Invariants enforced:
    - The transfer flag is checked at the start and again, under lock,
      before it is set.  It is never set twice for one order.
    - Every order item must resolve to an external variant before anything
      is sent.  Otherwise the full list of unresolved SKUs is returned and
      no platform call is made.
    - A "customer not found" rejection creates the customer, records the
      mapping locally, and retries the order exactly once.
    - A failed cancel/close leaves the local status untouched and raises
      StatusSyncFailedError.

Failure modes:
    - IntegrationNotConfiguredError, PlatformRequestError,
      PlatformRateLimitedError, StatusSyncFailedError (sync failed).
    - UnresolvedSkusError (validation).
    - AlreadyTransferredError, NotTransferredError and status-transition
      errors (state conflict).

Audit relevance:
    order_transferred, transfer_rejected, external_customer_linked,
    status_changed and fulfillment_synced events.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wholesale_integration.client import CommercePlatformClient
from wholesale_integration.payloads import (
    build_customer_payload,
    build_fulfillment_payload,
    build_order_payload,
    parse_created_line_items,
    platform_id,
)
from wholesale_integration.results import NotFound, Ok, describe, raise_for_result
from wholesale_kernel.db.engine import transaction
from wholesale_kernel.domain.actor import ActorContext, require_admin
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import StatusChangeOutcome
from wholesale_kernel.domain.order_status import EXTERNAL_STATE_FOR_STATUS, OrderStatus
from wholesale_kernel.domain.results import BatchRunResult
from wholesale_kernel.exceptions import (
    AlreadyTransferredError,
    IntegrationNotConfiguredError,
    OrderNotFoundError,
    ShipmentNotFoundError,
    StatusSyncFailedError,
    UnresolvedSkusError,
)
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.catalog import SalesRep
from wholesale_kernel.models.customer import Customer
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.shipment import Shipment
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.auditor_service import AuditorService
from wholesale_kernel.services.batch_runner import run_batch
from wholesale_kernel.services.catalog_service import CatalogService
from wholesale_kernel.services.customer_service import CustomerService
from wholesale_kernel.services.order_lifecycle_service import OrderLifecycleService

logger = get_logger("integration.transfer")


@dataclass(frozen=True)
class TransferOutcome:
    order_id: UUID
    order_number: str
    external_order_id: str
    line_item_count: int
    customer_created: bool = False


@dataclass
class _PreparedTransfer:
    order_number: str
    customer_id: UUID | None
    payload: dict
    customer_payload: dict


class TransferService:
    """
    Outbound sync to the commerce platform.

    Contract:
        Every public method commits its own work.  Pass a session with no
        transaction in progress.

    Non-goals:
        - Does NOT retry HTTP calls (the client does).
        - Does NOT undo a platform order when the final local write loses
          a race; that case is logged as ``transfer_duplicate_external_order``.
    """

    def __init__(
        self,
        session: Session,
        client: CommercePlatformClient | None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._client = client
        self._clock = clock or SystemClock()
        self._auditor = AuditorService(session, self._clock)
        self._catalog = CatalogService(session)
        self._customers = CustomerService(session)
        self._selector = OrderSelector(session)

    def _require_client(self) -> CommercePlatformClient:
        if self._client is None:
            raise IntegrationNotConfiguredError()
        return self._client

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id, with_for_update=True, populate_existing=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _order_items(self, order_id: UUID) -> list[OrderItem]:
        return list(self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.sku)
        ).scalars().all())

    # -------------------------------------------------------------------------
    # Transfer
    # -------------------------------------------------------------------------

    def transfer_order(self, order_id: UUID, actor: ActorContext) -> TransferOutcome:
        """
        Create the order on the platform and mark it transferred.

        Raises:
            AlreadyTransferredError: before any platform call.
            UnresolvedSkusError: with every SKU lacking an external variant;
                no platform call is made.
        """
        require_admin(actor, "transfer_order")
        client = self._require_client()

        with LogContext.bind(order_id=str(order_id)):
            missing: list[str] = []
            with transaction(self.session):
                order = self._lock_order(order_id)
                if order.is_transferred:
                    raise AlreadyTransferredError(order.order_number, order.external_order_id)
                items = self._order_items(order.id)
                variant_ids = self._resolve_variants(items)
                missing = sorted({i.sku for i in items if i.sku not in variant_ids})
                if missing:
                    self._auditor.record_transfer_rejected(
                        order_id=order.id,
                        missing_skus=missing,
                        actor_id=actor.actor_id,
                    )
                    order_number = order.order_number
                else:
                    prepared = self._prepare(order, items, variant_ids)

            if missing:
                logger.warning(
                    "transfer_rejected_missing_skus",
                    extra={"order_number": order_number, "missing_skus": missing},
                )
                raise UnresolvedSkusError(str(order_id), missing)

            result = client.create_order(prepared.payload)
            customer_created = False
            if isinstance(result, NotFound) and result.entity == "customer":
                self._create_external_customer(prepared, actor)
                customer_created = True
                result = client.create_order(prepared.payload)

            if not isinstance(result, Ok):
                logger.warning(
                    "transfer_failed",
                    extra={"order_number": prepared.order_number, "error": describe(result)},
                )
            created = raise_for_result("create_order", result)
            external_order_id = str(created["id"])

            with transaction(self.session):
                line_count = self._mark_transferred(order_id, external_order_id, created, actor)

            logger.info(
                "order_transferred",
                extra={
                    "order_number": prepared.order_number,
                    "external_order_id": external_order_id,
                    "line_item_count": line_count,
                    "customer_created": customer_created,
                },
            )
            return TransferOutcome(
                order_id=order_id,
                order_number=prepared.order_number,
                external_order_id=external_order_id,
                line_item_count=line_count,
                customer_created=customer_created,
            )

    def _resolve_variants(self, items: Sequence[OrderItem]) -> dict[str, str]:
        """SKU -> external variant id; the item's stored id wins over the catalog."""
        resolved = self._catalog.variant_ids([i.sku for i in items])
        for item in items:
            if item.external_variant_id:
                resolved[item.sku] = item.external_variant_id
        return resolved

    def _prepare(
        self,
        order: Order,
        items: Sequence[OrderItem],
        variant_ids: dict[str, str],
    ) -> _PreparedTransfer:
        rep = self.session.get(SalesRep, order.sales_rep_id)
        rep_name = rep.name if rep else ""
        customer = self.session.get(Customer, order.customer_id) if order.customer_id else None
        external_customer_id = customer.external_customer_id if customer else None
        return _PreparedTransfer(
            order_number=order.order_number,
            customer_id=order.customer_id,
            payload=build_order_payload(order, items, variant_ids, rep_name, external_customer_id),
            customer_payload=build_customer_payload(order, rep_name),
        )

    def _create_external_customer(self, prepared: _PreparedTransfer, actor: ActorContext) -> str:
        logger.info("transfer_creating_external_customer", extra={"order_number": prepared.order_number})
        created = raise_for_result(
            "create_customer",
            self._require_client().create_customer(prepared.customer_payload),
        )
        external_customer_id = str(created["id"])

        if prepared.customer_id is not None:
            with transaction(self.session):
                self._customers.link_external(prepared.customer_id, external_customer_id, actor)
                self._auditor.record_external_customer_linked(
                    customer_id=prepared.customer_id,
                    external_customer_id=external_customer_id,
                    actor_id=actor.actor_id,
                )

        prepared.payload["customer"]["id"] = platform_id(external_customer_id)
        return external_customer_id

    def _mark_transferred(
        self,
        order_id: UUID,
        external_order_id: str,
        created: dict,
        actor: ActorContext,
    ) -> int:
        order = self._lock_order(order_id)
        if order.is_transferred:
            logger.error(
                "transfer_duplicate_external_order",
                extra={
                    "order_number": order.order_number,
                    "existing_external_order_id": order.external_order_id,
                    "duplicate_external_order_id": external_order_id,
                },
            )
            raise AlreadyTransferredError(order.order_number, order.external_order_id)

        now = self._clock.now()
        order.is_transferred = True
        order.external_order_id = external_order_id
        order.transferred_at = now
        order.external_status = "open"
        order.external_synced_at = now
        order.updated_by_id = actor.actor_id

        line_items = parse_created_line_items(created)
        self._stamp_line_item_ids(order.id, line_items)
        self.session.flush()

        self._auditor.record_order_transferred(
            order_id=order.id,
            external_order_id=external_order_id,
            line_item_count=len(line_items),
            actor_id=actor.actor_id,
        )
        return len(line_items)

    def _stamp_line_item_ids(self, order_id: UUID, line_items) -> None:
        """Match created platform lines back to local items by variant, in order."""
        items = self._order_items(order_id)
        variant_ids = self._resolve_variants(items)
        queues: dict[str, deque[OrderItem]] = defaultdict(deque)
        for item in items:
            if item.quantity - (item.cancelled_quantity or 0) > 0:
                queues[str(variant_ids.get(item.sku))].append(item)
        for line in line_items:
            queue = queues.get(str(line.variant_id))
            if queue and line.line_item_id:
                item = queue.popleft()
                item.external_line_item_id = line.line_item_id
                item.external_variant_id = item.external_variant_id or line.variant_id

    def bulk_transfer(self, order_ids: Sequence[UUID], actor: ActorContext) -> BatchRunResult:
        """Transfer each order independently; already-transferred orders are skipped."""
        return run_batch(
            "bulk_transfer",
            [(str(oid), lambda oid=oid: self.transfer_order(oid, actor)) for oid in order_ids],
            clock=self._clock,
            skip_on=(AlreadyTransferredError,),
        )

    # -------------------------------------------------------------------------
    # Status sync
    # -------------------------------------------------------------------------

    def sync_status_change(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        actor: ActorContext,
        reason: str = "other",
        notify_customer: bool = False,
        restock: bool = False,
        force_local: bool = False,
    ) -> StatusChangeOutcome:
        """
        Change an order's status, telling the platform first where needed.

        Cancelled and Invoiced on a transferred order require the platform
        cancel/close call to succeed before the local write.  With
        ``force_local`` the call is skipped and the change is recorded as
        local-only.
        """
        require_admin(actor, "change_status")
        target = OrderStatus(target)
        lifecycle = OrderLifecycleService(self.session, self._clock)

        with transaction(self.session):
            order = lifecycle.validate_status_change(order_id, target)
            order_number = order.order_number
            external_order_id = order.external_order_id
            external_state = EXTERNAL_STATE_FOR_STATUS.get(target)
            needs_external = bool(order.is_transferred and external_state is not None)

        call_platform = needs_external and not force_local
        if call_platform:
            if self._client is None:
                raise StatusSyncFailedError(order_number, target.value, "integration not configured")
            if target == OrderStatus.CANCELLED:
                result = self._client.cancel_order(
                    external_order_id, reason=reason, email=notify_customer, restock=restock,
                )
            else:
                result = self._client.close_order(external_order_id)
            if not isinstance(result, Ok):
                logger.warning(
                    "status_sync_failed",
                    extra={
                        "order_number": order_number,
                        "target_status": target.value,
                        "error": describe(result),
                    },
                )
                raise StatusSyncFailedError(order_number, target.value, describe(result))

        with transaction(self.session):
            outcome = lifecycle.apply_status_change(
                order_id,
                target,
                actor,
                synced_externally=call_platform,
                local_only=needs_external and force_local,
            )
            if call_platform:
                order = self.session.get(Order, order_id)
                order.external_status = external_state.value
                order.external_synced_at = self._clock.now()
                self.session.flush()
        return outcome

    # -------------------------------------------------------------------------
    # Fulfillment mirroring
    # -------------------------------------------------------------------------

    def mirror_fulfillment(self, shipment_id: UUID, actor: ActorContext) -> str | None:
        """
        Create a platform fulfillment for a locally recorded shipment.

        Returns the external fulfillment id, or None when there is nothing
        to mirror (order not transferred, already mirrored, or no item
        carries an external line reference).  The id is stored on the
        shipment so reconciliation never imports it back.
        """
        client = self._require_client()
        with transaction(self.session):
            info = self._selector.get_shipment(shipment_id)
            if info is None:
                raise ShipmentNotFoundError(str(shipment_id))
            order = self.session.get(Order, info.order_id)
            if not order.is_transferred or info.external_fulfillment_id or info.is_voided:
                return None
            line_ids = dict(self.session.execute(
                select(OrderItem.id, OrderItem.external_line_item_id)
                .where(OrderItem.order_id == order.id)
            ).all())
            lines = [
                (line_ids[i.order_item_id], i.quantity)
                for i in info.items
                if line_ids.get(i.order_item_id)
            ]
            external_order_id = order.external_order_id
            order_number = order.order_number

        if not lines:
            logger.info("fulfillment_mirror_skipped", extra={"shipment_id": str(shipment_id)})
            return None

        payload = build_fulfillment_payload(
            lines, [(t.carrier, t.tracking_number) for t in info.tracking],
        )
        created = raise_for_result("create_fulfillment", client.create_fulfillment(external_order_id, payload))
        external_fulfillment_id = str(created["id"])

        with transaction(self.session):
            shipment = self.session.get(Shipment, shipment_id, populate_existing=True)
            shipment.external_fulfillment_id = external_fulfillment_id
            self.session.flush()
            self._auditor.record_fulfillment_synced(
                shipment_id=shipment.id,
                order_id=shipment.order_id,
                external_fulfillment_id=external_fulfillment_id,
                line_count=len(lines),
                actor_id=actor.actor_id,
            )

        logger.info(
            "fulfillment_mirrored",
            extra={
                "order_number": order_number,
                "shipment_id": str(shipment_id),
                "external_fulfillment_id": external_fulfillment_id,
            },
        )
        return external_fulfillment_id
