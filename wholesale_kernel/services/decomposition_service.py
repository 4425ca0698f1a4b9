"""
DecompositionService -- split a buyer cart into one order with planned
shipment groups.

Responsibility:
    Turns an ``OrderSubmission`` into one persisted Order, its OrderItems and
    its PlannedShipments, plus the customer upsert and the order_created
    audit event.  Groups come either from the caller's explicit plan or are
    derived from each line's delivery-window reference.

Architecture position:
    Kernel > Services.  Called by ``OrderOperations.create_order`` inside a
    single transaction; notification dispatch happens after commit, outside
    this service.

Invariants enforced:
    - Order type is derived from the catalog (CatalogService), never from
      the submission.
    - Every line lands in exactly one group.  Derived groups are keyed by
      (order type, delivery-window reference); items with no reference share
      one default group dated by the submission's requested window.
    - Every group is validated against the windows of all its items before
      anything is written.  Any failure aborts the whole order.
    - order_total = sum(quantity * unit_price); the cached ship-window
      bounds are min(start)/max(end) across the groups.

Failure modes:
    - EmptyOrderError, InvalidQuantityError, InvalidCurrencyError before any
      lookup.
    - InvalidSalesRepError, UnknownSkuError, CollectionNotFoundError from
      catalog resolution.
    - InvalidPlanError for a plan that does not cover every item exactly
      once, or a default group with no requested window.
    - ShipWindowViolationError / MissingWindowBoundsError from validation.

Audit relevance:
    Produces one ORDER_CREATED audit event per order.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from wholesale_kernel.db.types import ZERO, line_total, round_money, validate_currency
from wholesale_kernel.domain.actor import ActorContext
from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.dtos import OrderInfo, OrderSubmission
from wholesale_kernel.domain.order_status import (
    ArchiveState,
    LineStatus,
    OrderStatus,
    OrderType,
    PlannedShipmentStatus,
)
from wholesale_kernel.domain.ship_window import (
    DeliveryWindow,
    dedupe_windows,
    raise_for_result,
    validate_ship_window,
)
from wholesale_kernel.exceptions import (
    EmptyOrderError,
    InvalidPlanError,
    InvalidQuantityError,
)
from wholesale_kernel.logging_config import LogContext, get_logger
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.auditor_service import AuditorService
from wholesale_kernel.services.base import BaseService
from wholesale_kernel.services.catalog_service import (
    CatalogService,
    ResolvedLine,
    derive_order_type,
)
from wholesale_kernel.services.customer_service import CustomerService
from wholesale_kernel.services.order_number_service import OrderNumberService

logger = get_logger("services.decomposition")


@dataclass
class GroupDraft:
    """A planned shipment before it is persisted."""

    start: date
    end: date
    collection_id: UUID | None
    name: str | None
    lines: list[ResolvedLine] = field(default_factory=list)
    declared_window: DeliveryWindow | None = None

    @property
    def windows(self):
        windows = [line.window for line in self.lines if line.window is not None]
        if self.declared_window is not None:
            windows.append(self.declared_window)
        return dedupe_windows(windows)


class DecompositionService(BaseService[Order]):
    """
    Creates orders from cart submissions.

    Contract:
        ``create_order`` either flushes a complete order (header, groups,
        items, customer, audit) or raises before writing anything that the
        caller would need to undo beyond a rollback.

    Non-goals:
        - Does NOT commit.  Does NOT send notifications.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        order_numbers: OrderNumberService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._catalog = CatalogService(session)
        self._customers = CustomerService(session)
        self._order_numbers = order_numbers or OrderNumberService(session)
        self._auditor = AuditorService(session, self._clock)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def create_order(self, submission: OrderSubmission, actor: ActorContext) -> OrderInfo:
        if not submission.items:
            raise EmptyOrderError()
        for item in submission.items:
            if item.quantity <= 0:
                raise InvalidQuantityError(item.sku, item.quantity)
            if Decimal(item.unit_price) < ZERO:
                raise InvalidQuantityError(f"{item.sku} unit price", item.unit_price)
        currency = validate_currency(submission.currency)

        rep = self._catalog.get_active_sales_rep(submission.sales_rep_id)
        lines = self._catalog.resolve_lines(submission.items)
        order_type = derive_order_type(lines)

        if submission.planned_shipments:
            groups = self._groups_from_plan(submission, lines)
        else:
            groups = self._derive_groups(submission, lines)

        for group in groups:
            raise_for_result(validate_ship_window(group.start, group.end, group.windows))

        return self._persist(submission, actor, rep, currency, order_type, groups)

    # -------------------------------------------------------------------------
    # Grouping
    # -------------------------------------------------------------------------

    def _derive_groups(
        self,
        submission: OrderSubmission,
        lines: list[ResolvedLine],
    ) -> list[GroupDraft]:
        keyed: OrderedDict[tuple[OrderType, UUID | None], list[ResolvedLine]] = OrderedDict()
        for line in lines:
            keyed.setdefault((line.order_type, line.collection_id), []).append(line)

        groups = []
        for (_, collection_id), members in keyed.items():
            window = members[0].window
            if window is None:
                start, end = self._requested_window(submission, members)
                name = None
            elif window.has_bounds:
                start, end, name = window.start, window.end, window.name
            else:
                # Dates are irrelevant: validation rejects the missing bounds
                start, end = self._requested_window(submission, members, required=False)
                name = window.name
            groups.append(GroupDraft(
                start=start, end=end, collection_id=collection_id, name=name, lines=members,
            ))
        return groups

    @staticmethod
    def _requested_window(
        submission: OrderSubmission,
        members: list[ResolvedLine],
        required: bool = True,
    ) -> tuple[date, date]:
        start, end = submission.requested_start, submission.requested_end
        if start is None or end is None:
            if not required:
                return date.min, date.min
            raise InvalidPlanError(
                "a requested ship window is required for items without a delivery window",
                [m.line.key for m in members],
            )
        if end < start:
            raise InvalidPlanError("requested ship window ends before it starts")
        return start, end

    def _groups_from_plan(
        self,
        submission: OrderSubmission,
        lines: list[ResolvedLine],
    ) -> list[GroupDraft]:
        by_key: dict[str, ResolvedLine] = {}
        for line in lines:
            if line.line.key in by_key:
                raise InvalidPlanError("duplicate item key", [line.line.key])
            by_key[line.line.key] = line

        assigned: dict[str, int] = {}
        groups = []
        for index, planned in enumerate(submission.planned_shipments or ()):
            if not planned.item_keys:
                raise InvalidPlanError(f"planned shipment {index + 1} has no items")
            if planned.end < planned.start:
                raise InvalidPlanError(f"planned shipment {index + 1} ends before it starts")

            members = []
            for key in planned.item_keys:
                if key not in by_key:
                    raise InvalidPlanError("plan references an unknown item", [key])
                if key in assigned:
                    raise InvalidPlanError("item assigned to more than one planned shipment", [key])
                assigned[key] = index
                members.append(by_key[key])

            collection_id = planned.collection_id
            declared_window = self._catalog.window_for(collection_id)
            if collection_id is None:
                refs = {m.collection_id for m in members}
                collection_id = refs.pop() if len(refs) == 1 else None
            name = planned.name
            if name is None and collection_id is not None:
                name = self._catalog.get_collection(collection_id).name

            groups.append(GroupDraft(
                start=planned.start,
                end=planned.end,
                collection_id=collection_id,
                name=name,
                lines=members,
                declared_window=declared_window,
            ))

        missing = [key for key in by_key if key not in assigned]
        if missing:
            raise InvalidPlanError("items not assigned to any planned shipment", missing)
        return groups

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _persist(
        self,
        submission: OrderSubmission,
        actor: ActorContext,
        rep,
        currency: str,
        order_type: OrderType,
        groups: list[GroupDraft],
    ) -> OrderInfo:
        now = self._clock.now()
        order_number = self._order_numbers.next_order_number(order_type)
        customer = self._customers.upsert_for_order(submission, rep, actor, now)

        total = round_money(sum(
            (line_total(item.quantity, item.unit_price) for item in submission.items),
            ZERO,
        ))

        order = Order(
            order_number=order_number,
            order_type=order_type.value,
            status=OrderStatus.PENDING.value,
            archive_state=ArchiveState.ACTIVE.value,
            customer_id=customer.id,
            sales_rep_id=rep.id,
            store_name=submission.store_name.strip(),
            buyer_name=submission.buyer_name,
            email=submission.customer_email,
            phone=submission.customer_phone,
            customer_po=submission.customer_po,
            notes=submission.notes,
            website=submission.website,
            billing_address=submission.billing_address.as_dict(),
            shipping_address=submission.shipping_address.as_dict(),
            currency=currency,
            order_total=total,
            ship_window_start=min(g.start for g in groups),
            ship_window_end=max(g.end for g in groups),
            order_date=now,
            is_transferred=False,
            created_by_id=actor.actor_id,
        )
        self.session.add(order)
        self.session.flush()

        with LogContext.bind(order_id=str(order.id)):
            item_count = 0
            for group in groups:
                planned = PlannedShipment(
                    order_id=order.id,
                    collection_id=group.collection_id,
                    name=group.name,
                    planned_start=group.start,
                    planned_end=group.end,
                    status=PlannedShipmentStatus.PLANNED.value,
                    created_by_id=actor.actor_id,
                )
                self.session.add(planned)
                self.session.flush()

                for resolved in group.lines:
                    line = resolved.line
                    self.session.add(OrderItem(
                        order_id=order.id,
                        planned_shipment_id=planned.id,
                        collection_id=resolved.collection_id,
                        sku=line.sku,
                        description=resolved.description,
                        quantity=line.quantity,
                        unit_price=Decimal(line.unit_price),
                        currency=currency,
                        cancelled_quantity=0,
                        status=LineStatus.OPEN.value,
                        notes=line.notes,
                        external_variant_id=resolved.external_variant_id,
                        created_by_id=actor.actor_id,
                    ))
                    item_count += 1
            self.session.flush()

            self._auditor.record_order_created(
                order_id=order.id,
                order_number=order_number,
                order_type=order_type.value,
                planned_shipment_count=len(groups),
                item_count=item_count,
                actor_id=actor.actor_id,
            )

            logger.info(
                "order_created",
                extra={
                    "order_number": order_number,
                    "order_type": order_type.value,
                    "planned_shipment_count": len(groups),
                    "item_count": item_count,
                    "order_total": str(total),
                },
            )

        return OrderSelector(self.session).get_order(order.id)
