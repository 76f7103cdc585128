"""事件类型归一化与状态回放单元测试。"""

import json

import pytest

from codguard.models.schemas import EventType, OrderEvent, OrderStatus
from codguard.services.order_events import (
    event_from_row,
    normalize_event_type,
    replay_status_history,
)


class TestNormalizeEventType:

    @pytest.mark.parametrize("raw, expected", [
        ("MANUAL_APPROVED", EventType.ORDER_APPROVED),
        ("ORDER_CONFIRMATION_SENT", EventType.CONFIRMATION_SENT),
        ("QR_SENT", EventType.QR_PAYMENT_LINK_SENT),
        ("PAID_CONFIRMED", EventType.CUSTOMER_PAID),
        ("PAID", EventType.CUSTOMER_PAID),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_event_type(raw) == expected

    def test_canonical_passthrough(self):
        assert normalize_event_type("ORDER_SHIPPED") == EventType.ORDER_SHIPPED
        assert normalize_event_type(EventType.ORDER_CREATED) == EventType.ORDER_CREATED

    def test_trim_and_case(self):
        assert normalize_event_type("  qr_sent ") == EventType.QR_PAYMENT_LINK_SENT

    def test_unknown_raises(self):
        with pytest.raises(ValueError):
            normalize_event_type("SOMETHING_ELSE")
        with pytest.raises(ValueError):
            normalize_event_type("")


class TestEventFromRow:

    def test_legacy_row_normalized(self):
        row = {
            "id": 7,
            "order_id": 3,
            "event_type": "MANUAL_APPROVED",
            "payload": json.dumps({"actor": "admin"}),
            "created_at": "2026-01-01 10:00:00",
        }
        event = event_from_row(row)
        assert event.event_type == EventType.ORDER_APPROVED
        assert event.payload == {"actor": "admin"}
        assert event.id == 7

    def test_empty_payload(self):
        row = {"id": 1, "order_id": 1, "event_type": "PAID", "payload": None, "created_at": "x"}
        assert event_from_row(row).payload == {}


class TestReplayStatusHistory:

    def test_skips_non_status_events(self):
        events = [
            OrderEvent(EventType.ORDER_CREATED, {}, "t1"),
            OrderEvent(EventType.RISK_EVALUATED, {}, "t2"),
            OrderEvent(EventType.ORDER_APPROVED, {}, "t3"),
            OrderEvent(EventType.QR_PAYMENT_LINK_SENT, {}, "t4"),
            OrderEvent(EventType.ORDER_SHIPPED, {}, "t5"),
            OrderEvent(EventType.CUSTOMER_PAID, {}, "t6"),
            OrderEvent(EventType.ORDER_COMPLETED, {}, "t7"),
        ]
        assert replay_status_history(events) == [
            OrderStatus.PENDING_REVIEW,
            OrderStatus.ORDER_APPROVED,
            OrderStatus.DELIVERING,
            OrderStatus.COMPLETED,
        ]

    def test_empty(self):
        assert replay_status_history([]) == []
