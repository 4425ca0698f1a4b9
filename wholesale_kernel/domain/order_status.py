"""
Order status state machine, archival lifecycle, and fulfillment derivation.

Responsibility:
    Pure rules shared by every service that reads or writes order, line
    and planned-shipment status.  No I/O: services load the facts
    (ordered/cancelled/shipped quantities, active shipment count) and ask
    this module what the status must be.

Architecture position:
    Kernel > Domain -- functional core.

Status machine:
    Pending -> {Partially Shipped, Shipped} -> Invoiced
    Pending | Partially Shipped | Shipped -> Cancelled
    Invoiced and Cancelled are terminal.

Archival lifecycle (independent of status):
    active -> archived -> trashed -> permanently removed
    Only terminal orders enter it.  A transferred order additionally needs
    the platform side cancelled or closed before it may be trashed.

Fulfillment derivation:
    Always recomputed from scratch from non-voided shipment quantities.
    Terminal orders are never auto-transitioned.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from wholesale_kernel.exceptions import (
    ArchiveStateError,
    ExternalStillOpenError,
    InvalidStatusTransitionError,
    OrderNotEditableError,
    OrderTerminalError,
)


class OrderType(str, Enum):
    """Derived from catalog classification, never from the caller."""

    IMMEDIATE = "immediate"
    PRE_ORDER = "pre_order"

    @property
    def label(self) -> str:
        return "Pre Order" if self is OrderType.PRE_ORDER else "ATS"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PARTIALLY_SHIPPED = "Partially Shipped"
    SHIPPED = "Shipped"
    INVOICED = "Invoiced"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.INVOICED, OrderStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PARTIALLY_SHIPPED,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PARTIALLY_SHIPPED: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.INVOICED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SHIPPED: frozenset({
        OrderStatus.INVOICED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.INVOICED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class ArchiveState(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    TRASHED = "trashed"


class ExternalOrderState(str, Enum):
    """Lifecycle of the order's copy on the commerce platform."""

    OPEN = "open"
    CANCELLED = "cancelled"
    CLOSED = "closed"


# Local target status -> platform state it requires
EXTERNAL_STATE_FOR_STATUS: dict[OrderStatus, ExternalOrderState] = {
    OrderStatus.CANCELLED: ExternalOrderState.CANCELLED,
    OrderStatus.INVOICED: ExternalOrderState.CLOSED,
}


class LineStatus(str, Enum):
    OPEN = "Open"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


class PlannedShipmentStatus(str, Enum):
    PLANNED = "Planned"
    PARTIALLY_FULFILLED = "Partially Fulfilled"
    FULFILLED = "Fulfilled"


@dataclass(frozen=True)
class ItemFulfillment:
    """Quantities for one order item, shipped counted over non-voided shipments."""

    order_item_id: str
    ordered: int
    cancelled: int
    shipped: int

    @property
    def required(self) -> int:
        return max(self.ordered - self.cancelled, 0)

    @property
    def remaining(self) -> int:
        return max(self.required - self.shipped, 0)

    @property
    def is_covered(self) -> bool:
        return self.shipped >= self.required


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def derive_order_status(
    current: OrderStatus | str,
    items: Sequence[ItemFulfillment],
    active_shipment_count: int,
) -> OrderStatus:
    """
    Recompute an order's fulfillment status from scratch.

    - Terminal statuses are returned unchanged.
    - No active shipment: Pending.
    - Every item covered: Shipped.
    - Otherwise: Partially Shipped.
    """
    current = OrderStatus(current)
    if current in TERMINAL_STATUSES:
        return current
    if active_shipment_count == 0:
        return OrderStatus.PENDING
    if all(item.is_covered for item in items):
        return OrderStatus.SHIPPED
    return OrderStatus.PARTIALLY_SHIPPED


def derive_line_status(item: ItemFulfillment) -> LineStatus:
    if item.ordered > 0 and item.cancelled >= item.ordered:
        return LineStatus.CANCELLED
    if item.shipped > 0 and item.is_covered:
        return LineStatus.SHIPPED
    return LineStatus.OPEN


def derive_group_status(items: Iterable[ItemFulfillment]) -> PlannedShipmentStatus:
    items = list(items)
    any_shipped = any(item.shipped > 0 for item in items)
    if not any_shipped:
        return PlannedShipmentStatus.PLANNED
    if all(item.is_covered for item in items):
        return PlannedShipmentStatus.FULFILLED
    return PlannedShipmentStatus.PARTIALLY_FULFILLED


# =============================================================================
# Guards
# =============================================================================


def check_transition(
    order_number: str,
    current: OrderStatus | str,
    target: OrderStatus | str,
) -> None:
    """
    Raises:
        OrderTerminalError: current status is Invoiced or Cancelled.
        InvalidStatusTransitionError: target not reachable from current.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    if current in TERMINAL_STATUSES:
        raise OrderTerminalError(order_number, current.value)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(order_number, current.value, target.value)


def check_not_terminal(order_number: str, status: OrderStatus | str) -> None:
    if is_terminal(status):
        raise OrderTerminalError(order_number, OrderStatus(status).value)


def check_editable(order_number: str, status: OrderStatus | str, is_transferred: bool) -> None:
    """
    Items and groups may be rearranged only on Pending orders that have not
    been pushed to the commerce platform.
    """
    status = OrderStatus(status)
    if status in TERMINAL_STATUSES:
        raise OrderTerminalError(order_number, status.value)
    if status != OrderStatus.PENDING:
        raise OrderNotEditableError(
            order_number, status.value, "only Pending orders can be edited"
        )
    if is_transferred:
        raise OrderNotEditableError(
            order_number,
            status.value,
            "order has been transferred to the commerce platform",
        )


def check_can_archive(order_number: str, status: OrderStatus | str, archive_state: ArchiveState | str) -> None:
    archive_state = ArchiveState(archive_state)
    if not is_terminal(status):
        raise ArchiveStateError(
            order_number, archive_state.value, "archive",
            "only Invoiced or Cancelled orders can be archived",
        )
    if archive_state != ArchiveState.ACTIVE:
        raise ArchiveStateError(
            order_number, archive_state.value, "archive",
            f"order is already {archive_state.value}",
        )


def check_can_trash(
    order_number: str,
    status: OrderStatus | str,
    archive_state: ArchiveState | str,
    is_transferred: bool,
    external_state: ExternalOrderState | str | None,
) -> None:
    archive_state = ArchiveState(archive_state)
    if not is_terminal(status):
        raise ArchiveStateError(
            order_number, archive_state.value, "trash",
            "only Invoiced or Cancelled orders can be trashed",
        )
    if archive_state == ArchiveState.TRASHED:
        raise ArchiveStateError(
            order_number, archive_state.value, "trash", "order is already trashed",
        )
    if is_transferred:
        state = ExternalOrderState(external_state) if external_state else None
        if state not in (ExternalOrderState.CANCELLED, ExternalOrderState.CLOSED):
            raise ExternalStillOpenError(order_number, state.value if state else None)


def check_can_restore(order_number: str, archive_state: ArchiveState | str) -> None:
    archive_state = ArchiveState(archive_state)
    if archive_state == ArchiveState.ACTIVE:
        raise ArchiveStateError(
            order_number, archive_state.value, "restore", "order is not archived or trashed",
        )


def check_can_purge(order_number: str, archive_state: ArchiveState | str) -> None:
    archive_state = ArchiveState(archive_state)
    if archive_state != ArchiveState.TRASHED:
        raise ArchiveStateError(
            order_number, archive_state.value, "permanently remove",
            "only trashed orders can be permanently removed",
        )
