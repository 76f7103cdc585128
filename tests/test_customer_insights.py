"""客户统计汇总单元测试。"""

import os
import sqlite3
import tempfile
from unittest.mock import MagicMock

import pytest

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="customers_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import codguard.database as _db_mod
from codguard.database import get_db, init_db
from codguard.services.blacklist_service import BlacklistService
from codguard.services.customer_insights import customer_stats
from codguard.services.notification_service import NotificationDispatcher
from codguard.services.order_service import OrderService


@pytest.fixture(autouse=True)
def _setup_db():
    """每个测试前重建数据库。"""
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("""
        DROP TABLE IF EXISTS notification_logs;
        DROP TABLE IF EXISTS order_events;
        DROP TABLE IF EXISTS customer_blacklist;
        DROP TABLE IF EXISTS orders;
        DROP TABLE IF EXISTS operators;
    """)
    conn.close()
    init_db()
    yield


@pytest.fixture
def svc():
    return OrderService(dispatcher=MagicMock(spec=NotificationDispatcher))


def _create(svc, phone="0901234567", name="Nguyen Van A", owner_id=1, created_at=None, **extra):
    params = {
        "customer_name": name,
        "phone": phone,
        "amount": 150_000,
        "address_detail": "12 Le Loi",
        "ward": "Ben Nghe",
        "district": "Quan 1",
        "province": "Ho Chi Minh",
    }
    params.update(extra)
    order = svc.create_order(owner_id, params)
    if created_at:
        db = get_db()
        try:
            db.execute("UPDATE orders SET created_at = ? WHERE id = ?", (created_at, order.id))
            db.commit()
        finally:
            db.close()
    return order


class TestCustomerStats:

    def test_groups_by_normalized_phone(self, svc):
        _create(svc, phone="0901234567", created_at="2026-01-01 10:00:00")
        _create(svc, phone="+84 901 234 567", name="Nguyen Van Binh", created_at="2026-01-02 10:00:00")

        customers = customer_stats(1)
        assert len(customers) == 1
        c = customers[0]
        assert c["phone"] == "0901234567"
        assert c["total_orders"] == 2
        assert c["last_name"] == "Binh"
        assert c["last_order_at"] == "2026-01-02 10:00:00"

    def test_outcome_counts(self, svc):
        done = _create(svc, created_at="2026-01-01 10:00:00")
        svc.apply_action(1, done.id, "approve")
        svc.apply_action(1, done.id, "start_delivery")
        svc.apply_action(1, done.id, "mark_completed")

        rejected = _create(svc, created_at="2026-01-02 10:00:00")
        svc.apply_action(1, rejected.id, "reject", reason="fake")

        _create(svc, created_at="2026-01-03 10:00:00")

        c = customer_stats(1)[0]
        assert c["total_orders"] == 3
        assert c["success_count"] == 1
        assert c["failed_count"] == 1

    def test_risk_scores(self, svc):
        _create(svc, amount=150_000)
        _create(svc, amount=1_200_000)
        c = customer_stats(1)[0]
        assert c["base_risk_score"] == 22.5
        assert c["customer_risk_score"] == 22.5
        assert c["blacklisted"] is False

    def test_blacklist_bonus_clamped(self, svc):
        BlacklistService().add(1, "0901234567")
        _create(svc)
        c = customer_stats(1)[0]
        assert c["blacklisted"] is True
        assert c["base_risk_score"] == 85
        assert c["customer_risk_score"] == 100

    def test_prepaid_only_customer(self, svc):
        _create(svc, payment_method="MOMO")
        c = customer_stats(1)[0]
        assert c["base_risk_score"] is None
        assert c["customer_risk_score"] == 0

    def test_sorted_newest_first_and_scoped(self, svc):
        _create(svc, phone="0901111111", created_at="2026-01-01 10:00:00")
        _create(svc, phone="0902222222", created_at="2026-02-01 10:00:00")
        _create(svc, phone="0903333333", owner_id=2)
        phones = [c["phone"] for c in customer_stats(1)]
        assert phones == ["0902222222", "0901111111"]
