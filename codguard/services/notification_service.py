"""
客户消息通知分发服务。

`notify`（订单确认）或 `send_qr`（二维码支付链接）转换提交后，将事件以签名 JSON
POST 到 NOTIFY_WEBHOOK_URL。实际的 Zalo/二维码发送由 Webhook 接收方完成，
本服务只负责投递事件，并在 notification_logs 中记录每一次尝试。

- dispatch: 转换提交后立即首次投递
- retry: 按 RETRY_INTERVALS 重发失败的事件
- pending_retries: 已到重试时间的失败事件
"""

import logging
import os
from datetime import datetime

import httpx

from codguard.database import get_db
from codguard.models.schemas import EventType, OrderEvent
from codguard.services.order_events import event_from_row
from codguard.services.sign import generate_sign

logger = logging.getLogger(__name__)

DISPATCHED_EVENTS = frozenset({
    EventType.CONFIRMATION_SENT,
    EventType.QR_PAYMENT_LINK_SENT,
})


class NotificationDispatcher:
    """订单确认与二维码支付链接事件的 Webhook 分发器。"""

    RETRY_INTERVALS = [5, 30, 60, 300, 1800]  # 秒

    def __init__(self, webhook_url: str | None = None, secret: str | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("NOTIFY_WEBHOOK_URL", "")
        self.secret = secret if secret is not None else os.getenv("NOTIFY_SECRET", "")

    def _get_order(self, order_id: int) -> dict | None:
        db = get_db()
        try:
            row = db.execute(
                """SELECT id, order_id, owner_id, customer_name, phone, amount
                   FROM orders WHERE id = ?""",
                (order_id,),
            ).fetchone()
            return dict(row) if row else None
        finally:
            db.close()

    def _build_params(self, order: dict, event: OrderEvent) -> dict:
        """不含签名的 Webhook 请求体。"""
        return {
            "order_id": order["order_id"],
            "owner_id": order["owner_id"],
            "customer_name": order["customer_name"],
            "phone": order["phone"],
            "amount": order["amount"],
            "event_id": event.id,
            "event_type": event.event_type.value,
            "created_at": event.created_at,
        }

    def _log_attempt(
        self,
        order_id: int,
        event_id: int,
        attempt: int,
        http_status: int | None,
        response_body: str | None,
        success: bool,
    ) -> None:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT INTO notification_logs
                   (order_id, event_id, attempt, url, http_status, response_body, success, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (order_id, event_id, attempt, self.webhook_url, http_status,
                 response_body, 1 if success else 0, now),
            )
            db.commit()
        finally:
            db.close()

    def _send(self, event: OrderEvent, attempt: int) -> bool:
        order = self._get_order(event.order_id)
        if not order:
            logger.warning("订单不存在，跳过通知 (order_id=%s)", event.order_id)
            return False

        params = self._build_params(order, event)
        body = dict(params)
        body["sign"] = generate_sign(params, self.secret)

        http_status = None
        response_body = None
        success = False

        try:
            with httpx.Client(timeout=10.0) as client:
                resp = client.post(self.webhook_url, json=body)
                http_status = resp.status_code
                response_body = resp.text.strip()[:1000]
                success = 200 <= resp.status_code < 300
        except Exception as e:
            response_body = str(e)
            logger.warning(
                "通知请求失败 (order_id=%d, event_id=%d): %s",
                event.order_id, event.id, e,
            )

        self._log_attempt(event.order_id, event.id, attempt, http_status, response_body, success)

        if success:
            logger.info(
                "通知发送成功 (order_id=%d, event=%s, attempt=%d)",
                event.order_id, event.event_type.value, attempt,
            )
        return success

    def dispatch(self, event: OrderEvent) -> bool:
        """
        为已提交的事件发送首次通知。

        Returns:
            Webhook 返回 2xx 时为 True。事件类型无需通知、未配置 Webhook
            或发送失败时为 False
        """
        if event.event_type not in DISPATCHED_EVENTS:
            return False
        if not self.webhook_url:
            logger.info("未配置 NOTIFY_WEBHOOK_URL，跳过通知 (event_id=%s)", event.id)
            return False
        return self._send(event, 1)

    def retry(self, event: OrderEvent, attempt: int) -> bool:
        """
        重发之前失败的通知。

        Args:
            event: 已存储的事件
            attempt: 总尝试次数，取值 2..len(RETRY_INTERVALS) + 1
        """
        if attempt < 2 or attempt > len(self.RETRY_INTERVALS) + 1:
            logger.warning("重试次数无效 (event_id=%s, attempt=%d)", event.id, attempt)
            return False
        if not self.webhook_url:
            return False
        return self._send(event, attempt)

    def pending_retries(self, now: datetime | None = None) -> list:
        """
        通知失败且已到下次重试时间的事件。

        Returns:
            (OrderEvent, next_attempt) 列表
        """
        now = now or datetime.now()
        db = get_db()
        try:
            rows = db.execute(
                """SELECT e.id, e.order_id, e.event_type, e.payload, e.created_at,
                          MAX(l.attempt) AS attempts,
                          MAX(l.success) AS delivered
                   FROM notification_logs l
                   JOIN order_events e ON e.id = l.event_id
                   GROUP BY e.id
                   HAVING delivered = 0 AND attempts <= ?""",
                (len(self.RETRY_INTERVALS),),
            ).fetchall()
        finally:
            db.close()

        due = []
        for row in rows:
            attempts = row["attempts"]
            try:
                base_time = datetime.strptime(row["created_at"], "%Y-%m-%d %H:%M:%S")
            except (ValueError, TypeError):
                continue
            total_wait = sum(self.RETRY_INTERVALS[:attempts])
            if (now - base_time).total_seconds() >= total_wait:
                due.append((event_from_row(row), attempts + 1))
        return due
