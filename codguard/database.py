"""
SQLite 数据库连接管理与表结构初始化。
使用同步 sqlite3，get_db() 每次返回新连接。
"""

import os
import sqlite3
from pathlib import Path

import bcrypt
from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/codguard.db")


def get_db() -> sqlite3.Connection:
    """获取 SQLite 数据库连接，启用 WAL 模式和外键约束。"""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── 建表 SQL ──────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS operators (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    username        VARCHAR(64)  NOT NULL UNIQUE,
    password_hash   VARCHAR(128) NOT NULL,
    owner_id        INTEGER      NOT NULL,
    login_fail_count INTEGER     DEFAULT 0,
    locked_until    DATETIME,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS orders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        VARCHAR(64)  NOT NULL,
    owner_id        INTEGER      NOT NULL,
    customer_name   VARCHAR(128) NOT NULL,
    phone           VARCHAR(32)  NOT NULL,
    phone_normalized VARCHAR(32) NOT NULL,
    address_detail  TEXT,
    ward            VARCHAR(128),
    district        VARCHAR(128),
    province        VARCHAR(128),
    address         TEXT,
    amount          INTEGER      NOT NULL,
    payment_method  VARCHAR(32),
    product         VARCHAR(256),
    status          VARCHAR(32)  NOT NULL DEFAULT 'PENDING_REVIEW',
    risk_score      INTEGER,
    risk_level      VARCHAR(16),
    risk_reasons    TEXT,
    paid_at         DATETIME,
    qr_sent_at      DATETIME,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS order_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER      NOT NULL REFERENCES orders(id),
    event_type      VARCHAR(32)  NOT NULL,
    payload         TEXT,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS customer_blacklist (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id        INTEGER      NOT NULL,
    phone           VARCHAR(32)  NOT NULL,
    reason          TEXT,
    added_at        DATETIME     NOT NULL DEFAULT (datetime('now')),
    UNIQUE(owner_id, phone)
);

CREATE TABLE IF NOT EXISTS notification_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER      NOT NULL REFERENCES orders(id),
    event_id        INTEGER      NOT NULL REFERENCES order_events(id),
    attempt         INTEGER      NOT NULL,
    url             TEXT         NOT NULL,
    http_status     INTEGER,
    response_body   TEXT,
    success         INTEGER      DEFAULT 0,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);
"""

# ── 索引 SQL ──────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_orders_owner_status
    ON orders(owner_id, status);
CREATE INDEX IF NOT EXISTS idx_orders_owner_phone
    ON orders(owner_id, phone_normalized);
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_owner_order_id
    ON orders(owner_id, order_id);
CREATE INDEX IF NOT EXISTS idx_orders_risk_level
    ON orders(risk_level);
CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);
CREATE INDEX IF NOT EXISTS idx_order_events_order_id
    ON order_events(order_id);
CREATE INDEX IF NOT EXISTS idx_blacklist_owner
    ON customer_blacklist(owner_id);
CREATE INDEX IF NOT EXISTS idx_notification_logs_event
    ON notification_logs(event_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_operators_username
    ON operators(username);
"""


# ── 初始化 ────────────────────────────────────────────────

def init_db() -> None:
    """创建数据库目录、表、索引，并在首次启动时创建默认操作员。"""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)

        _create_default_operator(conn)

        conn.commit()
    finally:
        conn.close()


def _create_default_operator(conn: sqlite3.Connection) -> None:
    """如果 operators 表为空，则根据 OPERATOR_* 环境变量创建默认操作员。"""
    row = conn.execute("SELECT COUNT(*) AS cnt FROM operators").fetchone()
    if row["cnt"] > 0:
        return

    username = os.getenv("OPERATOR_USERNAME", "admin")
    password = os.getenv("OPERATOR_PASSWORD", "admin123")
    owner_id = int(os.getenv("OPERATOR_OWNER_ID", "1"))

    password_hash = bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")

    conn.execute(
        "INSERT INTO operators (username, password_hash, owner_id) VALUES (?, ?, ?)",
        (username, password_hash, owner_id),
    )
