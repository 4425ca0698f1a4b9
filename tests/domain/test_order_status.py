"""
Tests for the order status machine, archival guards and fulfillment derivation.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from wholesale_kernel.domain.order_status import (
    ALLOWED_TRANSITIONS,
    ArchiveState,
    ExternalOrderState,
    ItemFulfillment,
    LineStatus,
    OrderStatus,
    OrderType,
    PlannedShipmentStatus,
    check_can_archive,
    check_can_purge,
    check_can_restore,
    check_can_trash,
    check_editable,
    check_transition,
    derive_group_status,
    derive_line_status,
    derive_order_status,
)
from wholesale_kernel.exceptions import (
    ArchiveStateError,
    ExternalStillOpenError,
    InvalidStatusTransitionError,
    OrderNotEditableError,
    OrderTerminalError,
)


def _item(ordered=10, cancelled=0, shipped=0, item_id="i1"):
    return ItemFulfillment(order_item_id=item_id, ordered=ordered, cancelled=cancelled, shipped=shipped)


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.PARTIALLY_SHIPPED),
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.PARTIALLY_SHIPPED, OrderStatus.SHIPPED),
        (OrderStatus.PARTIALLY_SHIPPED, OrderStatus.INVOICED),
        (OrderStatus.SHIPPED, OrderStatus.INVOICED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    ])
    def test_allowed(self, current, target):
        check_transition("A10001", current, target)

    def test_pending_cannot_be_invoiced(self):
        with pytest.raises(InvalidStatusTransitionError):
            check_transition("A10001", OrderStatus.PENDING, OrderStatus.INVOICED)

    def test_shipped_cannot_go_back_to_pending(self):
        with pytest.raises(InvalidStatusTransitionError):
            check_transition("A10001", "Shipped", "Pending")

    @pytest.mark.parametrize("terminal", [OrderStatus.INVOICED, OrderStatus.CANCELLED])
    def test_terminal_statuses_are_final(self, terminal):
        with pytest.raises(OrderTerminalError):
            check_transition("A10001", terminal, OrderStatus.SHIPPED)

    def test_terminal_statuses_have_no_transitions(self):
        assert ALLOWED_TRANSITIONS[OrderStatus.INVOICED] == frozenset()
        assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


class TestDeriveOrderStatus:

    def test_no_active_shipment_is_pending(self):
        assert derive_order_status("Partially Shipped", [_item(shipped=0)], 0) == OrderStatus.PENDING

    def test_all_covered_is_shipped(self):
        items = [_item(ordered=5, shipped=5), _item(ordered=4, cancelled=4, item_id="i2")]
        assert derive_order_status(OrderStatus.PENDING, items, 1) == OrderStatus.SHIPPED

    def test_some_remaining_is_partially_shipped(self):
        items = [_item(ordered=5, shipped=5), _item(ordered=3, shipped=1, item_id="i2")]
        assert derive_order_status(OrderStatus.PENDING, items, 1) == OrderStatus.PARTIALLY_SHIPPED

    @pytest.mark.parametrize("terminal", [OrderStatus.INVOICED, OrderStatus.CANCELLED])
    def test_terminal_never_auto_transitions(self, terminal):
        assert derive_order_status(terminal, [_item(shipped=0)], 0) == terminal

    @given(
        ordered=st.integers(min_value=1, max_value=50),
        cancelled=st.integers(min_value=0, max_value=50),
        shipped=st.integers(min_value=0, max_value=50),
    )
    def test_shipped_iff_every_item_covered(self, ordered, cancelled, shipped):
        cancelled = min(cancelled, ordered)
        item = _item(ordered=ordered, cancelled=cancelled, shipped=shipped)
        status = derive_order_status(OrderStatus.PENDING, [item], 1)
        assert (status == OrderStatus.SHIPPED) == (shipped >= ordered - cancelled)


class TestItemFulfillment:

    def test_remaining_excludes_cancelled(self):
        item = _item(ordered=10, cancelled=3, shipped=4)
        assert item.required == 7
        assert item.remaining == 3
        assert not item.is_covered

    def test_remaining_never_negative(self):
        assert _item(ordered=2, shipped=5).remaining == 0


class TestLineAndGroupStatus:

    def test_fully_cancelled_line(self):
        assert derive_line_status(_item(ordered=4, cancelled=4)) == LineStatus.CANCELLED

    def test_shipped_line(self):
        assert derive_line_status(_item(ordered=4, cancelled=1, shipped=3)) == LineStatus.SHIPPED

    def test_open_line(self):
        assert derive_line_status(_item(ordered=4, shipped=3)) == LineStatus.OPEN

    def test_group_planned_until_something_ships(self):
        assert derive_group_status([_item(), _item(item_id="i2")]) == PlannedShipmentStatus.PLANNED

    def test_group_partially_fulfilled(self):
        items = [_item(ordered=2, shipped=2), _item(ordered=2, item_id="i2")]
        assert derive_group_status(items) == PlannedShipmentStatus.PARTIALLY_FULFILLED

    def test_group_fulfilled(self):
        items = [_item(ordered=2, shipped=2), _item(ordered=2, cancelled=2, item_id="i2")]
        assert derive_group_status(items) == PlannedShipmentStatus.FULFILLED


class TestEditableGuard:

    def test_pending_untransferred_is_editable(self):
        check_editable("A10001", OrderStatus.PENDING, False)

    def test_partially_shipped_not_editable(self):
        with pytest.raises(OrderNotEditableError):
            check_editable("A10001", OrderStatus.PARTIALLY_SHIPPED, False)

    def test_transferred_not_editable(self):
        with pytest.raises(OrderNotEditableError) as exc_info:
            check_editable("A10001", OrderStatus.PENDING, True)
        assert "transferred" in str(exc_info.value)

    def test_terminal_not_editable(self):
        with pytest.raises(OrderTerminalError):
            check_editable("A10001", OrderStatus.CANCELLED, False)


class TestArchivalGuards:

    def test_archive_requires_terminal_status(self):
        with pytest.raises(ArchiveStateError):
            check_can_archive("A10001", OrderStatus.SHIPPED, ArchiveState.ACTIVE)

    def test_archive_twice_rejected(self):
        with pytest.raises(ArchiveStateError):
            check_can_archive("A10001", OrderStatus.INVOICED, ArchiveState.ARCHIVED)

    def test_trash_active_terminal_order(self):
        check_can_trash("A10001", OrderStatus.CANCELLED, ArchiveState.ACTIVE, False, None)

    def test_trash_transferred_requires_external_closure(self):
        with pytest.raises(ExternalStillOpenError):
            check_can_trash("A10001", OrderStatus.CANCELLED, ArchiveState.ARCHIVED, True, "open")

    @pytest.mark.parametrize("state", [ExternalOrderState.CANCELLED, ExternalOrderState.CLOSED])
    def test_trash_transferred_after_external_closure(self, state):
        check_can_trash("A10001", OrderStatus.INVOICED, ArchiveState.ARCHIVED, True, state)

    def test_trash_transferred_with_unknown_external_state(self):
        with pytest.raises(ExternalStillOpenError):
            check_can_trash("A10001", OrderStatus.INVOICED, ArchiveState.ACTIVE, True, None)

    def test_restore_active_rejected(self):
        with pytest.raises(ArchiveStateError):
            check_can_restore("A10001", ArchiveState.ACTIVE)

    def test_purge_requires_trashed(self):
        with pytest.raises(ArchiveStateError):
            check_can_purge("A10001", ArchiveState.ARCHIVED)
        check_can_purge("A10001", ArchiveState.TRASHED)


class TestOrderType:

    def test_labels(self):
        assert OrderType.PRE_ORDER.label == "Pre Order"
        assert OrderType.IMMEDIATE.label == "ATS"
