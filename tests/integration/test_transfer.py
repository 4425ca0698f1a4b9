"""
Tests for outbound sync: order transfer, status sync and fulfillment
mirroring against the in-memory platform.
"""

import httpx
import pytest

from wholesale_integration.transfer_service import TransferService
from wholesale_kernel.domain.dtos import ShipmentLineInput, ShipmentRequest, TrackingInput
from wholesale_kernel.domain.order_status import OrderStatus
from wholesale_kernel.domain.results import BatchRunStatus
from wholesale_kernel.exceptions import (
    AlreadyTransferredError,
    IntegrationNotConfiguredError,
    PlatformRequestError,
    StatusSyncFailedError,
    UnauthorizedActorError,
    UnresolvedSkusError,
)
from wholesale_kernel.models.audit_event import AuditAction
from wholesale_kernel.models.customer import Customer
from wholesale_kernel.models.order import Order, OrderItem
from wholesale_kernel.models.shipment import Shipment
from wholesale_kernel.services.auditor_service import ORDER, AuditorService
from wholesale_kernel.services.fulfillment_service import FulfillmentService


@pytest.fixture
def transfer(session, client, clock):
    return TransferService(session, client, clock)


@pytest.fixture
def order(create_order):
    return create_order(("JAN-TEE-S", 4, "12.50"), ("CORE-SOCK", 10, "4.00"))


def _item(order, sku):
    return next(i for i in order.items if i.sku == sku)


def _ship_all(session, clock, order, actor):
    FulfillmentService(session, clock).record_shipment(
        ShipmentRequest(
            order_id=order.id,
            lines=tuple(ShipmentLineInput(i.id, i.quantity) for i in order.items),
        ),
        actor,
    )
    session.commit()


class TestTransferOrder:

    def test_transfer_creates_platform_order(self, transfer, order, admin_actor, platform, session, clock):
        outcome = transfer.transfer_order(order.id, admin_actor)

        assert outcome.external_order_id == "820001"
        assert outcome.line_item_count == 2
        assert outcome.customer_created is False

        row = session.get(Order, order.id)
        assert row.is_transferred is True
        assert row.external_order_id == "820001"
        assert row.external_status == "open"
        assert row.transferred_at is not None

        sent = platform.body(platform.calls("POST", "/orders.json")[0])["order"]
        assert sent["name"] == order.order_number
        assert sent["tags"] == "ATS, Wholesale, Dana Reyes"
        assert sent["financial_status"] == "pending"
        assert "id" not in sent["customer"]
        assert sorted(line["variant_id"] for line in sent["line_items"]) == [40001, 43001]

        trace = AuditorService(session, clock).get_trace(ORDER, order.id)
        assert trace.last_action == AuditAction.ORDER_TRANSFERRED
        assert trace.entries[-1].payload["external_order_id"] == "820001"

    def test_line_item_ids_stamped_by_variant(self, transfer, order, admin_actor, session):
        transfer.transfer_order(order.id, admin_actor)

        tee = session.get(OrderItem, _item(order, "JAN-TEE-S").id)
        sock = session.get(OrderItem, _item(order, "CORE-SOCK").id)
        assert {tee.external_line_item_id, sock.external_line_item_id} == {"930001", "930002"}
        assert tee.external_variant_id == "40001"
        assert sock.external_variant_id == "43001"

    def test_second_transfer_rejected_before_platform_call(self, transfer, order, admin_actor, platform):
        transfer.transfer_order(order.id, admin_actor)

        with pytest.raises(AlreadyTransferredError) as exc_info:
            transfer.transfer_order(order.id, admin_actor)

        assert exc_info.value.external_order_id == "820001"
        assert len(platform.calls("POST", "/orders.json")) == 1

    def test_unresolved_skus_listed_and_nothing_sent(
        self, transfer, create_order, admin_actor, platform, session, clock,
    ):
        order = create_order(("JAN-TEE-S", 1, "10"), ("CORE-CAP", 2, "9"))

        with pytest.raises(UnresolvedSkusError) as exc_info:
            transfer.transfer_order(order.id, admin_actor)

        assert exc_info.value.missing_skus == ["CORE-CAP"]
        assert platform.requests == []
        assert session.get(Order, order.id).is_transferred is False
        trace = AuditorService(session, clock).get_trace(ORDER, order.id)
        assert trace.last_action == AuditAction.TRANSFER_REJECTED
        assert trace.entries[-1].payload == {"missing_skus": ["CORE-CAP"]}

    def test_missing_customer_created_and_order_retried(
        self, transfer, order, admin_actor, platform, session,
    ):
        platform.queue("POST", "/orders.json", 422, {"errors": {"customer": ["not found"]}})

        outcome = transfer.transfer_order(order.id, admin_actor)

        assert outcome.customer_created is True
        attempts = platform.calls("POST", "/orders.json")
        assert len(attempts) == 2
        assert platform.body(attempts[1])["order"]["customer"]["id"] == 7001
        customer_payload = platform.body(platform.calls("POST", "/customers.json")[0])["customer"]
        assert customer_payload["first_name"] == "Morgan"
        assert customer_payload["last_name"] == "Lee"

        customer = session.get(Customer, session.get(Order, order.id).customer_id)
        assert customer.external_customer_id == "7001"

    def test_platform_rejection_leaves_order_local(self, transfer, order, admin_actor, platform, session):
        platform.queue("POST", "/orders.json", 403, {"errors": "Forbidden"})

        with pytest.raises(PlatformRequestError) as exc_info:
            transfer.transfer_order(order.id, admin_actor)

        assert exc_info.value.status_code == 403
        assert session.get(Order, order.id).is_transferred is False

    def test_timed_out_create_sent_once(self, transfer, order, admin_actor, platform, session, sleeps):
        platform.queue_error("POST", "/orders.json", httpx.ReadTimeout)

        with pytest.raises(PlatformRequestError) as exc_info:
            transfer.transfer_order(order.id, admin_actor)

        assert "timed out" in str(exc_info.value)
        assert len(platform.calls("POST", "/orders.json")) == 1
        assert sleeps == []
        row = session.get(Order, order.id)
        assert row.is_transferred is False
        assert row.external_order_id is None

    def test_server_error_on_create_sent_once(self, transfer, order, admin_actor, platform, session):
        platform.queue("POST", "/orders.json", 502, {"errors": "Bad Gateway"})

        with pytest.raises(PlatformRequestError) as exc_info:
            transfer.transfer_order(order.id, admin_actor)

        assert exc_info.value.status_code == 502
        assert len(platform.calls("POST", "/orders.json")) == 1
        assert session.get(Order, order.id).is_transferred is False

    def test_create_after_customer_retry_sent_once_more(
        self, transfer, order, admin_actor, platform, session,
    ):
        platform.queue("POST", "/orders.json", 422, {"errors": {"customer": ["not found"]}})
        platform.queue_error("POST", "/orders.json", httpx.ReadTimeout)

        with pytest.raises(PlatformRequestError):
            transfer.transfer_order(order.id, admin_actor)

        assert len(platform.calls("POST", "/orders.json")) == 2
        assert len(platform.calls("POST", "/customers.json")) == 1
        assert session.get(Order, order.id).is_transferred is False

    def test_requires_admin(self, transfer, order, clerk_actor):
        with pytest.raises(UnauthorizedActorError):
            transfer.transfer_order(order.id, clerk_actor)

    def test_requires_configured_client(self, session, clock, order, admin_actor):
        with pytest.raises(IntegrationNotConfiguredError):
            TransferService(session, None, clock).transfer_order(order.id, admin_actor)


class TestBulkTransfer:

    def test_already_transferred_orders_skipped(self, transfer, create_order, admin_actor):
        first = create_order(("JAN-TEE-S", 1, "10"))
        second = create_order(("JAN-TEE-M", 1, "10"))
        transfer.transfer_order(first.id, admin_actor)

        result = transfer.bulk_transfer([first.id, second.id], admin_actor)

        assert result.total_items == 2
        assert result.succeeded == 1
        assert result.skipped == 1
        assert result.status == BatchRunStatus.COMPLETED

    def test_failures_reported_per_order(self, transfer, create_order, admin_actor):
        good = create_order(("JAN-TEE-S", 1, "10"))
        bad = create_order(("CORE-CAP", 1, "10"))

        result = transfer.bulk_transfer([good.id, bad.id], admin_actor)

        assert result.status == BatchRunStatus.PARTIALLY_COMPLETED
        assert result.errors[0].item_key == str(bad.id)
        assert result.errors[0].error_code == "UNRESOLVED_SKUS"


class TestStatusSync:

    def test_untransferred_order_changes_locally(self, transfer, order, admin_actor, platform):
        outcome = transfer.sync_status_change(order.id, OrderStatus.CANCELLED, admin_actor)

        assert outcome.new_status == OrderStatus.CANCELLED
        assert outcome.synced_externally is False
        assert platform.requests == []

    def test_cancel_transferred_order(self, transfer, order, admin_actor, platform, session):
        transfer.transfer_order(order.id, admin_actor)

        outcome = transfer.sync_status_change(
            order.id, "Cancelled", admin_actor, notify_customer=True, restock=True,
        )

        assert outcome.synced_externally is True
        cancel_call = platform.calls("POST", "/orders/820001/cancel.json")[0]
        assert platform.body(cancel_call) == {"reason": "other", "email": True, "restock": True}
        row = session.get(Order, order.id)
        assert row.status == "Cancelled"
        assert row.external_status == "cancelled"

    def test_failed_cancel_leaves_status(self, transfer, order, admin_actor, platform, session):
        transfer.transfer_order(order.id, admin_actor)
        for _ in range(3):
            platform.queue("POST", "/orders/820001/cancel.json", 500, {"errors": "Internal"})

        with pytest.raises(StatusSyncFailedError) as exc_info:
            transfer.sync_status_change(order.id, OrderStatus.CANCELLED, admin_actor)

        assert exc_info.value.code == "STATUS_SYNC_FAILED"
        assert exc_info.value.kind == "sync_failed"
        row = session.get(Order, order.id)
        assert row.status == "Pending"
        assert row.external_status == "open"

    def test_force_local_skips_platform(self, transfer, order, admin_actor, platform, session, clock):
        transfer.transfer_order(order.id, admin_actor)

        outcome = transfer.sync_status_change(
            order.id, OrderStatus.CANCELLED, admin_actor, force_local=True,
        )

        assert outcome.synced_externally is False
        assert platform.calls("POST", "/orders/820001/cancel.json") == []
        payload = AuditorService(session, clock).get_trace(ORDER, order.id).entries[-1].payload
        assert payload["local_only"] is True

    def test_invoice_closes_platform_order(self, transfer, order, admin_actor, platform, session, clock):
        transfer.transfer_order(order.id, admin_actor)
        _ship_all(session, clock, order, admin_actor)

        outcome = transfer.sync_status_change(order.id, OrderStatus.INVOICED, admin_actor)

        assert outcome.previous_status == OrderStatus.SHIPPED
        assert len(platform.calls("POST", "/orders/820001/close.json")) == 1
        assert session.get(Order, order.id).external_status == "closed"


class TestMirrorFulfillment:

    def test_shipment_mirrored_with_tracking(self, transfer, order, admin_actor, platform, session, clock):
        transfer.transfer_order(order.id, admin_actor)
        tee = _item(order, "JAN-TEE-S")
        shipment = FulfillmentService(session, clock).record_shipment(
            ShipmentRequest(
                order_id=order.id,
                lines=(ShipmentLineInput(tee.id, 2),),
                tracking=(TrackingInput("UPS", "1Z1"),),
            ),
            admin_actor,
        )
        session.commit()

        external_id = transfer.mirror_fulfillment(shipment.id, admin_actor)

        assert external_id == "610001"
        tee_line = session.get(OrderItem, tee.id).external_line_item_id
        sent = platform.body(platform.calls("POST", "/orders/820001/fulfillments.json")[0])
        assert sent["fulfillment"] == {
            "line_items": [{"id": int(tee_line), "quantity": 2}],
            "notify_customer": False,
            "tracking_company": "UPS",
            "tracking_numbers": ["1Z1"],
        }
        assert session.get(Shipment, shipment.id).external_fulfillment_id == "610001"

        assert transfer.mirror_fulfillment(shipment.id, admin_actor) is None

    def test_untransferred_order_not_mirrored(self, transfer, order, admin_actor, platform, session, clock):
        tee = _item(order, "JAN-TEE-S")
        shipment = FulfillmentService(session, clock).record_shipment(
            ShipmentRequest(order_id=order.id, lines=(ShipmentLineInput(tee.id, 1),)),
            admin_actor,
        )
        session.commit()

        assert transfer.mirror_fulfillment(shipment.id, admin_actor) is None
        assert platform.requests == []
