"""
Tests for platform payload builders and parsers.

Builders run against unsaved model instances; no database is needed.
"""

from datetime import date
from decimal import Decimal

import pytest

from wholesale_integration.payloads import (
    build_customer_payload,
    build_fulfillment_payload,
    build_line_items,
    build_note,
    build_note_attributes,
    build_order_payload,
    build_tags,
    country_code,
    format_date,
    normalize_carrier,
    parse_fulfillment,
    parse_fulfillments,
    parse_order_status,
    split_name,
)
from wholesale_kernel.domain.order_status import ExternalOrderState, OrderType
from wholesale_kernel.models.order import Order, OrderItem

SHIPPING = {
    "street1": "12 Pier Rd",
    "street2": "",
    "city": "Portland",
    "state_province": "ME",
    "postal_code": "04101",
    "country": "United States",
}


def _order(**overrides) -> Order:
    values = dict(
        order_number="P10001",
        order_type=OrderType.PRE_ORDER.value,
        store_name=" Harbor Goods ",
        buyer_name="Morgan Lee",
        email="buyer@harborgoods.example",
        phone="207-555-0100",
        customer_po="",
        notes="Leave at dock",
        currency="USD",
        ship_window_start=date(2025, 3, 1),
        ship_window_end=date(2025, 4, 30),
        shipping_address=SHIPPING,
        billing_address=None,
    )
    values.update(overrides)
    return Order(**values)


def _item(sku, quantity, price, cancelled=0, description="") -> OrderItem:
    return OrderItem(
        sku=sku,
        quantity=quantity,
        unit_price=Decimal(price),
        cancelled_quantity=cancelled,
        description=description,
        currency="USD",
    )


class TestHelpers:

    def test_format_date(self):
        assert format_date(date(2025, 3, 1)) == "03/01/2025"
        assert format_date(None) == ""

    @pytest.mark.parametrize("full_name,expected", [
        ("Morgan Lee", ("Morgan", "Lee")),
        ("Morgan", ("Morgan", "")),
        ("Mary Ann de la Cruz", ("Mary", "Ann de la Cruz")),
        ("   ", ("", "")),
    ])
    def test_split_name(self, full_name, expected):
        assert split_name(full_name) == expected

    @pytest.mark.parametrize("country,expected", [
        ("United States", "US"),
        ("usa", "US"),
        ("Canada", "CA"),
        ("gb", "GB"),
        ("Germany", ""),
        (None, ""),
    ])
    def test_country_code(self, country, expected):
        assert country_code(country) == expected

    @pytest.mark.parametrize("carrier,expected", [
        ("UPS Ground", "UPS"),
        ("FedEx Home", "FedEx"),
        ("United States Postal Service", "USPS"),
        ("DHL Express", "DHL"),
        ("Local courier", "Other"),
        (None, "Other"),
    ])
    def test_normalize_carrier(self, carrier, expected):
        assert normalize_carrier(carrier) == expected


class TestOrderPayload:

    def test_tags_and_note(self):
        order = _order(customer_po="PO-77")

        assert build_tags(OrderType.PRE_ORDER, "Dana Reyes") == "Pre Order, Wholesale, Dana Reyes"
        assert build_tags(OrderType.IMMEDIATE, "") == "ATS, Wholesale"
        assert build_note(order) == "Ship Window: 03/01/2025 - 04/30/2025 | Customer PO #s: PO-77"

    def test_note_attributes(self):
        attributes = build_note_attributes(_order(), "Dana Reyes")
        by_name = {a["name"]: a["value"] for a in attributes}

        assert by_name["Pre Order Order Number"] == "P10001"
        assert by_name["Requested Ship Window"] == "03/01/2025 - 04/30/2025"
        assert by_name["Store Name"] == "Harbor Goods"
        assert by_name["Sales Rep"] == "Dana Reyes"
        assert "Customer PO #" not in by_name

    def test_line_items_skip_fully_cancelled(self):
        items = [
            _item("SPR-DRESS-4", 5, "48.00", cancelled=2, description="Linen Dress 4"),
            _item("SPR-DRESS-6", 3, "48.00", cancelled=3),
        ]

        lines = build_line_items(items, {"SPR-DRESS-4": "41001", "SPR-DRESS-6": "41002"})

        assert lines == [{
            "variant_id": 41001,
            "quantity": 3,
            "price": "48.00",
            "title": "Linen Dress 4",
            "requires_shipping": True,
        }]

    def test_full_payload(self):
        order = _order()
        payload = build_order_payload(
            order,
            [_item("SPR-DRESS-4", 2, "48.00")],
            {"SPR-DRESS-4": "41001"},
            "Dana Reyes",
            external_customer_id="7001",
        )

        assert payload["name"] == "P10001"
        assert payload["financial_status"] == "pending"
        assert payload["customer"] == {
            "email": "buyer@harborgoods.example",
            "first_name": "Morgan",
            "last_name": "Lee",
            "tags": "Wholesale, Dana Reyes",
            "id": 7001,
        }
        assert payload["shipping_address"]["country_code"] == "US"
        assert payload["shipping_address"]["company"] == "Harbor Goods"
        assert payload["billing_address"]["address1"] == ""
        assert payload["line_items"][0]["title"] == "SPR-DRESS-4"

    def test_customer_falls_back_to_store_name(self):
        customer = build_customer_payload(_order(buyer_name=""), "")
        assert customer["first_name"] == "Harbor"
        assert customer["last_name"] == "Goods"
        assert customer["tags"] == "Wholesale"

    def test_fulfillment_payload(self):
        payload = build_fulfillment_payload(
            [("930001", 2), ("930002", 1)],
            [("UPS", "1Z1"), ("UPS", "1Z2")],
        )

        assert payload == {
            "line_items": [{"id": 930001, "quantity": 2}, {"id": 930002, "quantity": 1}],
            "notify_customer": False,
            "tracking_company": "UPS",
            "tracking_numbers": ["1Z1", "1Z2"],
        }

    def test_fulfillment_payload_without_tracking(self):
        assert "tracking_company" not in build_fulfillment_payload([("930001", 1)])


class TestParsers:

    def test_parse_fulfillment(self):
        fulfillment = parse_fulfillment({
            "id": 610001,
            "status": "SUCCESS",
            "created_at": "2025-01-20T15:30:00Z",
            "tracking_company": "FedEx Ground",
            "tracking_numbers": ["7711", ""],
            "line_items": [{"id": 930001, "variant_id": 40001, "sku": "JAN-TEE-S", "quantity": 2}],
        })

        assert fulfillment.fulfillment_id == "610001"
        assert fulfillment.status == "success"
        assert fulfillment.shipped_on == date(2025, 1, 20)
        assert fulfillment.is_shipment
        assert fulfillment.line_items[0].line_item_id == "930001"
        assert fulfillment.line_items[0].variant_id == "40001"
        assert [(t.carrier, t.tracking_number) for t in fulfillment.tracking] == [("FedEx", "7711")]

    def test_single_tracking_number_field(self):
        fulfillment = parse_fulfillment({"id": 1, "tracking_number": "ABC"})
        assert fulfillment.tracking[0].tracking_number == "ABC"
        assert fulfillment.tracking[0].carrier == "Other"
        assert fulfillment.shipped_on is None

    @pytest.mark.parametrize("status", ["cancelled", "error", "failure"])
    def test_ignored_states_are_not_shipments(self, status):
        assert not parse_fulfillment({"id": 1, "status": status}).is_shipment

    def test_parse_fulfillments_list(self):
        assert len(parse_fulfillments({"fulfillments": [{"id": 1}, {"id": 2}]})) == 2
        assert parse_fulfillments({}) == []

    @pytest.mark.parametrize("data,state", [
        ({"id": 1, "cancelled_at": "2025-01-15T12:00:00Z", "closed_at": "x"}, ExternalOrderState.CANCELLED),
        ({"id": 1, "closed_at": "2025-01-15T12:00:00Z"}, ExternalOrderState.CLOSED),
        ({"id": 1, "cancelled_at": None, "closed_at": None}, ExternalOrderState.OPEN),
    ])
    def test_parse_order_status(self, data, state):
        status = parse_order_status(data)
        assert status.state == state
        assert status.external_order_id == "1"
