"""
Tests for inbound reconciliation of platform fulfillments.

Verifies:
- New fulfillments become local shipments exactly once
- Lines map by external line id, then by variant, clamped to what is open
- Cancelled/failed fulfillments and unmapped lines are skipped
- Order status is recomputed and platform status folded in
- A batch run isolates per-order failures
"""

from datetime import date

import pytest

from wholesale_integration.reconciliation_service import SYNC_NOTE, ReconciliationService
from wholesale_integration.transfer_service import TransferService
from wholesale_kernel.domain.dtos import ShipmentLineInput, ShipmentRequest
from wholesale_kernel.domain.order_status import OrderStatus
from wholesale_kernel.domain.results import BatchRunStatus
from wholesale_kernel.exceptions import (
    IntegrationNotConfiguredError,
    NotTransferredError,
    PlatformRequestError,
)
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.shipment import Shipment
from wholesale_kernel.selectors.order_selector import OrderSelector
from wholesale_kernel.services.fulfillment_service import FulfillmentService


@pytest.fixture
def reconciliation(session, client, clock, app_config, sleeps):
    return ReconciliationService(
        session, client, clock, settings=app_config.reconciliation, sleep=sleeps.append,
    )


@pytest.fixture
def transferred(session, client, clock, create_order, admin_actor):
    """Transfer an order and return it with its external line ids by SKU."""

    def _transferred(*lines):
        order = create_order(*lines)
        TransferService(session, client, clock).transfer_order(order.id, admin_actor)
        line_ids = {
            i.sku: session.get(OrderItem, i.id).external_line_item_id for i in order.items
        }
        return order, session.get(Order, order.id).external_order_id, line_ids

    return _transferred


def _fulfillment(fulfillment_id, *lines, status="success", tracking=("UPS", "1Z9")):
    data = {
        "id": fulfillment_id,
        "status": status,
        "created_at": "2025-01-14T10:00:00Z",
        "line_items": [dict(line) for line in lines],
    }
    if tracking:
        data["tracking_company"], number = tracking
        data["tracking_numbers"] = [number]
    return data


class TestReconcileOrder:

    def test_new_fulfillment_recorded(self, reconciliation, transferred, platform, session):
        order, external_id, line_ids = transferred(
            ("JAN-TEE-S", 4, "12.50"), ("CORE-SOCK", 10, "4.00"),
        )
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "variant_id": 40001, "quantity": 2}),
        ]

        outcome = reconciliation.reconcile_order(order.id)

        assert outcome.fulfillments_seen == 1
        assert outcome.shipments_created == 1
        assert outcome.status == OrderStatus.PARTIALLY_SHIPPED
        assert outcome.external_state == "open"

        shipments = OrderSelector(session).list_shipments(order.id)
        assert len(shipments) == 1
        shipment = shipments[0]
        assert shipment.external_fulfillment_id == "610100"
        assert shipment.ship_date == date(2025, 1, 14)
        assert shipment.shipping_cost == 0
        assert [(t.carrier, t.tracking_number) for t in shipment.tracking] == [("UPS", "1Z9")]
        assert session.get(Order, order.id).status == "Partially Shipped"

    def test_open_quantities_read_under_order_lock(
        self, reconciliation, transferred, platform, session, monkeypatch,
    ):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 2}),
        ]
        events = []
        real_get = session.get
        real_item_fulfillments = OrderSelector.item_fulfillments

        def get(entity, ident, **kwargs):
            if entity is Order and kwargs.get("with_for_update"):
                events.append("lock")
            return real_get(entity, ident, **kwargs)

        def item_fulfillments(selector, order_id):
            events.append("read_open_quantities")
            return real_item_fulfillments(selector, order_id)

        monkeypatch.setattr(session, "get", get)
        monkeypatch.setattr(OrderSelector, "item_fulfillments", item_fulfillments)

        reconciliation.reconcile_order(order.id)

        assert events[:2] == ["lock", "read_open_quantities"]

    def test_rerun_is_idempotent(self, reconciliation, transferred, platform, session):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 1}),
        ]

        reconciliation.reconcile_order(order.id)
        second = reconciliation.reconcile_order(order.id)

        assert second.shipments_created == 0
        assert second.duplicates_skipped == 1
        assert len(OrderSelector(session).list_shipments(order.id)) == 1

    def test_maps_by_variant_when_line_id_unknown(self, reconciliation, transferred, platform, session):
        order, external_id, _ = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": 999999, "variant_id": 40001, "quantity": 4}),
        ]

        outcome = reconciliation.reconcile_order(order.id)

        assert outcome.shipments_created == 1
        assert outcome.status == OrderStatus.SHIPPED

    def test_quantity_clamped_to_open_quantity(self, reconciliation, transferred, platform, session):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 10}),
        ]

        reconciliation.reconcile_order(order.id)

        shipment = OrderSelector(session).list_shipments(order.id)[0]
        assert shipment.items[0].quantity == 4
        assert shipment.shipped_subtotal == 50

    def test_ignored_and_unmapped_fulfillments(self, reconciliation, transferred, platform, session):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 1}, status="cancelled"),
            _fulfillment(610101, {"id": 999999, "variant_id": 55555, "quantity": 1}),
        ]

        outcome = reconciliation.reconcile_order(order.id)

        assert outcome.fulfillments_seen == 2
        assert outcome.shipments_created == 0
        assert outcome.unmapped_skipped == 1
        assert OrderSelector(session).list_shipments(order.id) == []
        assert outcome.status == OrderStatus.PENDING

    def test_mirrored_shipment_not_imported_back(
        self, reconciliation, transferred, platform, client, session, clock, admin_actor,
    ):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        tee = order.items[0]
        shipment = FulfillmentService(session, clock).record_shipment(
            ShipmentRequest(order_id=order.id, lines=(ShipmentLineInput(tee.id, 2),)),
            admin_actor,
        )
        session.commit()
        mirrored_id = TransferService(session, client, clock).mirror_fulfillment(
            shipment.id, admin_actor,
        )
        platform.fulfillments[external_id] = [
            _fulfillment(int(mirrored_id), {"id": int(line_ids["JAN-TEE-S"]), "quantity": 2}),
        ]

        outcome = reconciliation.reconcile_order(order.id)

        assert outcome.duplicates_skipped == 1
        assert outcome.shipments_created == 0
        assert len(OrderSelector(session).list_shipments(order.id)) == 1

    def test_platform_status_folded_in(self, reconciliation, transferred, platform, session):
        order, external_id, _ = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.order_states[external_id] = {
            "id": int(external_id),
            "cancelled_at": None,
            "closed_at": "2025-01-15T12:00:00Z",
            "fulfillment_status": "fulfilled",
            "financial_status": "paid",
        }

        outcome = reconciliation.reconcile_order(order.id)

        assert outcome.external_state == "closed"
        row = session.get(Order, order.id)
        assert row.external_status == "closed"
        assert row.external_fulfillment_status == "fulfilled"
        assert row.external_financial_status == "paid"

    def test_synced_shipment_notes(self, reconciliation, transferred, platform, session):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 1}, tracking=None),
        ]

        reconciliation.reconcile_order(order.id)

        shipment_id = OrderSelector(session).list_shipments(order.id)[0].id
        assert session.get(Shipment, shipment_id).notes == SYNC_NOTE

    def test_untransferred_order_rejected(self, reconciliation, create_order):
        order = create_order(("JAN-TEE-S", 1, "10"))
        with pytest.raises(NotTransferredError):
            reconciliation.reconcile_order(order.id)

    def test_platform_failure_raises(self, reconciliation, transferred, platform):
        order, external_id, _ = transferred(("JAN-TEE-S", 1, "10"))
        platform.queue("GET", f"/orders/{external_id}/fulfillments.json", 403, {"errors": "Forbidden"})

        with pytest.raises(PlatformRequestError):
            reconciliation.reconcile_order(order.id)

    def test_requires_client(self, session, clock, create_order):
        order = create_order(("JAN-TEE-S", 1, "10"))
        with pytest.raises(IntegrationNotConfiguredError):
            ReconciliationService(session, None, clock).reconcile_order(order.id)


class TestReconcileRecent:

    def test_batch_isolates_failures(self, reconciliation, transferred, platform, create_order):
        ok_order, ok_external, line_ids = transferred(("JAN-TEE-S", 4, "12.50"))
        bad_order, bad_external, _ = transferred(("JAN-TEE-M", 4, "12.50"))
        create_order(("CORE-SOCK", 1, "4"))  # never transferred, not a candidate
        platform.fulfillments[ok_external] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 1}),
        ]
        platform.queue("GET", f"/orders/{bad_external}/fulfillments.json", 403, {"errors": "Forbidden"})

        result = reconciliation.reconcile_recent()

        assert result.total_items == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert result.status == BatchRunStatus.PARTIALLY_COMPLETED
        assert result.errors[0].item_key == bad_order.order_number
        assert result.errors[0].error_code == "PLATFORM_REQUEST_FAILED"

    def test_recency_window_excludes_old_orders(self, reconciliation, transferred, clock):
        transferred(("JAN-TEE-S", 1, "10"))
        clock.advance_days(91)

        result = reconciliation.reconcile_recent()

        assert result.status == BatchRunStatus.EMPTY

    def test_shipped_orders_not_candidates(self, reconciliation, transferred, platform):
        order, external_id, line_ids = transferred(("JAN-TEE-S", 2, "10"))
        platform.fulfillments[external_id] = [
            _fulfillment(610100, {"id": int(line_ids["JAN-TEE-S"]), "quantity": 2}),
        ]
        reconciliation.reconcile_order(order.id)

        assert reconciliation.reconcile_recent().total_items == 0

    def test_requires_client(self, session, clock):
        with pytest.raises(IntegrationNotConfiguredError):
            ReconciliationService(session, None, clock).reconcile_recent()
