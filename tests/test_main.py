"""应用启动与路由注册测试。"""

import asyncio
import os
import sqlite3
import tempfile
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="main_test_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key-for-main"
os.environ["OPERATOR_USERNAME"] = "admin"
os.environ["OPERATOR_PASSWORD"] = "admin123"
os.environ["TESTING"] = "1"

import codguard.database as _db_mod
import codguard.main as _main_mod
from codguard.database import get_db
from codguard.main import app


@pytest.fixture(autouse=True)
def _setup_db():
    """每个测试前删除所有表，由应用启动重新创建。"""
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
    yield


class TestHealthEndpoint:

    def test_health_returns_ok(self):
        with TestClient(app) as client:
            resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestRouteRegistration:

    def test_login_route_registered(self):
        with TestClient(app) as client:
            resp = client.post("/v1/auth/login", json={"username": "admin", "password": "wrong"})
        assert resp.status_code == 200
        assert resp.json()["code"] == -1

    @pytest.mark.parametrize("path", ["/v1/orders", "/v1/dashboard", "/v1/blacklist", "/v1/customers"])
    def test_protected_routes_registered(self, path):
        # 应返回 401 而不是 404
        with TestClient(app) as client:
            assert client.get(path).status_code == 401


class TestStartup:

    def test_tables_created_on_startup(self):
        with TestClient(app):
            db = get_db()
            try:
                names = {
                    r["name"]
                    for r in db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
                }
            finally:
                db.close()
        assert {"operators", "orders", "order_events", "customer_blacklist", "notification_logs"} <= names

    def test_default_operator_created(self):
        with TestClient(app):
            db = get_db()
            try:
                row = db.execute("SELECT username FROM operators LIMIT 1").fetchone()
            finally:
                db.close()
        assert row["username"] == "admin"

    def test_background_tasks_skipped_in_testing(self):
        with patch("asyncio.create_task") as mock_create:
            with TestClient(app):
                mock_create.assert_not_called()


class _StopLoop(Exception):
    pass


class TestNotificationRetryTask:

    def test_retries_due_events(self):
        """一轮循环重试所有到期事件，然后休眠。"""
        event = MagicMock(id=11)
        dispatcher = MagicMock()
        dispatcher.pending_retries.return_value = [(event, 2)]

        async def stop(_):
            raise _StopLoop

        with patch("codguard.services.notification_service.NotificationDispatcher", return_value=dispatcher), \
                patch.object(_main_mod.asyncio, "sleep", side_effect=stop):
            with pytest.raises(_StopLoop):
                asyncio.run(_main_mod._notification_retry_task())

        dispatcher.retry.assert_called_once_with(event, 2)

    def test_errors_do_not_stop_the_loop(self):
        dispatcher = MagicMock()
        dispatcher.pending_retries.side_effect = RuntimeError("db locked")

        async def stop(_):
            raise _StopLoop

        with patch("codguard.services.notification_service.NotificationDispatcher", return_value=dispatcher), \
                patch.object(_main_mod.asyncio, "sleep", side_effect=stop):
            with pytest.raises(_StopLoop):
                asyncio.run(_main_mod._notification_retry_task())

        dispatcher.retry.assert_not_called()
