"""
订单存储：订单表、只追加的 order_events 事件日志，以及提交生命周期转换时
使用的原子比较并更新。

每次修改订单都在同一个 BEGIN IMMEDIATE 事务内追加恰好一条事件。写入以调用方
读取时的状态（状态、标记位、风险等级、支付方式）为条件，期间任一项发生变化
则不写入任何数据并抛出 ConcurrencyConflict。
"""

import json
import logging
import sqlite3

from codguard.database import get_db
from codguard.models.schemas import Order, OrderEvent, OrderStatus, RiskLevel
from codguard.services.order_events import event_from_row
from codguard.services.order_lifecycle import ConcurrencyConflict, TransitionResult

logger = logging.getLogger(__name__)

_STATE_GUARD = (
    "id = ? AND status = ? AND paid_at IS ? AND qr_sent_at IS ? "
    "AND risk_level IS ? AND payment_method IS ?"
)

# 编辑允许修改的列
EDITABLE_FIELDS = (
    "customer_name", "phone", "phone_normalized", "address_detail", "ward",
    "district", "province", "address", "amount", "payment_method", "product",
    "risk_score", "risk_level", "risk_reasons", "updated_at",
)


def _value(v):
    return getattr(v, "value", v)


def order_from_row(row) -> Order:
    """由 orders 表的一行构造 Order。"""
    reasons = row["risk_reasons"]
    return Order(
        id=row["id"],
        order_id=row["order_id"],
        owner_id=row["owner_id"],
        customer_name=row["customer_name"],
        phone=row["phone"],
        phone_normalized=row["phone_normalized"],
        address_detail=row["address_detail"],
        ward=row["ward"],
        district=row["district"],
        province=row["province"],
        address=row["address"],
        amount=row["amount"],
        payment_method=row["payment_method"],
        product=row["product"],
        status=OrderStatus(row["status"]),
        risk_score=row["risk_score"],
        risk_level=RiskLevel(row["risk_level"]) if row["risk_level"] else None,
        risk_reasons=json.loads(reasons) if reasons else [],
        paid_at=row["paid_at"],
        qr_sent_at=row["qr_sent_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _guard_params(order: Order) -> tuple:
    return (
        order.id,
        _value(order.status),
        order.paid_at,
        order.qr_sent_at,
        _value(order.risk_level),
        order.payment_method,
    )


class OrderRepository:
    """订单及其事件的读写。"""

    def _begin(self) -> sqlite3.Connection:
        conn = get_db()
        conn.isolation_level = None
        conn.execute("BEGIN IMMEDIATE")
        return conn

    def _append_event(self, conn: sqlite3.Connection, order_id: int, event: OrderEvent) -> OrderEvent:
        cursor = conn.execute(
            """INSERT INTO order_events (order_id, event_type, payload, created_at)
               VALUES (?, ?, ?, ?)""",
            (
                order_id,
                event.event_type.value,
                json.dumps(event.payload, ensure_ascii=False),
                event.created_at,
            ),
        )
        return OrderEvent(
            id=cursor.lastrowid,
            order_id=order_id,
            event_type=event.event_type,
            payload=event.payload,
            created_at=event.created_at,
        )

    # ── 读取 ────────────────────────────────────────────

    def get(self, id: int, owner_id: int | None = None) -> Order | None:
        """按行 id 查询订单，可限定所属商户。"""
        db = get_db()
        try:
            if owner_id is None:
                row = db.execute("SELECT * FROM orders WHERE id = ?", (id,)).fetchone()
            else:
                row = db.execute(
                    "SELECT * FROM orders WHERE id = ? AND owner_id = ?", (id, owner_id)
                ).fetchone()
            return order_from_row(row) if row else None
        finally:
            db.close()

    def list_by_phone(
        self, owner_id: int, phone_normalized: str, exclude_id: int | None = None
    ) -> list:
        """某商户下同一规范化手机号的历史订单。"""
        if not phone_normalized:
            return []
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM orders
                   WHERE owner_id = ? AND phone_normalized = ? AND id IS NOT ?
                   ORDER BY created_at, id""",
                (owner_id, phone_normalized, exclude_id),
            ).fetchall()
            return [order_from_row(r) for r in rows]
        finally:
            db.close()

    def list_events(self, order_id: int) -> list:
        """订单的事件，按提交顺序排列。"""
        db = get_db()
        try:
            rows = db.execute(
                "SELECT * FROM order_events WHERE order_id = ? ORDER BY id",
                (order_id,),
            ).fetchall()
            return [event_from_row(r) for r in rows]
        finally:
            db.close()

    # ── 写入 ────────────────────────────────────────────

    def insert(self, order: Order, event: OrderEvent) -> tuple:
        """
        新订单与其创建事件一起入库。

        Returns:
            (带有分配 id 的 Order, 已存储的 OrderEvent)

        Raises:
            ValueError: 该商户下 order_id 已存在
        """
        conn = self._begin()
        try:
            cursor = conn.execute(
                """INSERT INTO orders
                   (order_id, owner_id, customer_name, phone, phone_normalized,
                    address_detail, ward, district, province, address,
                    amount, payment_method, product, status,
                    risk_score, risk_level, risk_reasons,
                    paid_at, qr_sent_at, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    order.order_id, order.owner_id, order.customer_name,
                    order.phone, order.phone_normalized,
                    order.address_detail, order.ward, order.district,
                    order.province, order.address,
                    order.amount, order.payment_method, order.product,
                    _value(order.status),
                    order.risk_score, _value(order.risk_level),
                    json.dumps(order.risk_reasons, ensure_ascii=False),
                    order.paid_at, order.qr_sent_at,
                    order.created_at, order.updated_at,
                ),
            )
            order.id = cursor.lastrowid
            stored = self._append_event(conn, order.id, event)
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            conn.execute("ROLLBACK")
            raise ValueError(f"Order '{order.order_id}' already exists") from e
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return order, stored

    def commit_transition(self, order: Order, result: TransitionResult) -> OrderEvent:
        """
        以比较并更新的方式写入状态和标记位，并追加转换事件。

        Args:
            order: 计算 result 之前读取到的订单，原样传入
            result: 该订单的 apply_transition 结果

        Returns:
            已存储的事件（含 id）

        Raises:
            ConcurrencyConflict: 存储状态已与 `order` 不一致
        """
        conn = self._begin()
        try:
            cursor = conn.execute(
                f"""UPDATE orders
                    SET status = ?, paid_at = ?, qr_sent_at = ?, updated_at = ?
                    WHERE {_STATE_GUARD}""",
                (
                    result.new_status.value, result.paid_at, result.qr_sent_at,
                    result.event.created_at,
                ) + _guard_params(order),
            )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                logger.warning(
                    "状态转换冲突 (order_id=%d, action=%s)", order.id, result.action.value
                )
                raise ConcurrencyConflict(order.id)
            stored = self._append_event(conn, order.id, result.event)
            conn.execute("COMMIT")
            return stored
        except ConcurrencyConflict:
            raise
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def commit_update(self, order: Order, changes: dict, event: OrderEvent) -> OrderEvent:
        """
        以比较并更新的方式写入可编辑列，并追加一条事件。

        Raises:
            ConcurrencyConflict: 存储状态已与 `order` 不一致
            ValueError: `changes` 中包含不可编辑的列
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

        columns = sorted(changes)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = tuple(
            json.dumps(changes[c], ensure_ascii=False) if c == "risk_reasons" else _value(changes[c])
            for c in columns
        )

        conn = self._begin()
        try:
            cursor = conn.execute(
                f"UPDATE orders SET {assignments} WHERE {_STATE_GUARD}",
                values + _guard_params(order),
            )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                logger.warning("订单修改冲突 (order_id=%d)", order.id)
                raise ConcurrencyConflict(order.id)
            stored = self._append_event(conn, order.id, event)
            conn.execute("COMMIT")
            return stored
        except ConcurrencyConflict:
            raise
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
