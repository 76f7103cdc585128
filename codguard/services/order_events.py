"""
订单事件类型：别名归一化与状态历史回放。

历史记录中同一事件存在多个名称。normalize_event_type 在读取或写入事件时
统一调用一次，其余代码只会看到 EventType 成员。
"""

import json

from codguard.models.schemas import EventType, OrderEvent, OrderStatus

EVENT_ALIASES = {
    "MANUAL_APPROVED": EventType.ORDER_APPROVED,
    "ORDER_CONFIRMATION_SENT": EventType.CONFIRMATION_SENT,
    "QR_SENT": EventType.QR_PAYMENT_LINK_SENT,
    "PAID_CONFIRMED": EventType.CUSTOMER_PAID,
    "PAID": EventType.CUSTOMER_PAID,
}

# 会改变订单状态的事件
STATUS_EVENTS = {
    EventType.ORDER_CREATED: OrderStatus.PENDING_REVIEW,
    EventType.VERIFICATION_REQUIRED: OrderStatus.VERIFICATION_REQUIRED,
    EventType.ORDER_APPROVED: OrderStatus.ORDER_APPROVED,
    EventType.ORDER_REJECTED: OrderStatus.ORDER_REJECTED,
    EventType.CONFIRMATION_SENT: OrderStatus.ORDER_CONFIRMATION_SENT,
    EventType.CUSTOMER_CONFIRMED: OrderStatus.CUSTOMER_CONFIRMED,
    EventType.CUSTOMER_CANCELLED: OrderStatus.CUSTOMER_CANCELLED,
    EventType.CUSTOMER_UNREACHABLE: OrderStatus.CUSTOMER_UNREACHABLE,
    EventType.ORDER_PAID: OrderStatus.ORDER_PAID,
    EventType.ORDER_SHIPPED: OrderStatus.DELIVERING,
    EventType.ORDER_COMPLETED: OrderStatus.COMPLETED,
}


def normalize_event_type(raw) -> EventType:
    """
    将原始事件类型字符串映射为标准 EventType。

    Raises:
        ValueError: 未知事件类型
    """
    if isinstance(raw, EventType):
        return raw
    key = (raw or "").strip().upper()
    if key in EVENT_ALIASES:
        return EVENT_ALIASES[key]
    return EventType(key)


def event_from_row(row) -> OrderEvent:
    """由 order_events 表的一行构造 OrderEvent。"""
    payload = row["payload"]
    return OrderEvent(
        id=row["id"],
        order_id=row["order_id"],
        event_type=normalize_event_type(row["event_type"]),
        payload=json.loads(payload) if payload else {},
        created_at=row["created_at"],
    )


def replay_status_history(events) -> list:
    """
    根据事件重建订单经历过的状态序列。

    事件须按提交顺序传入。编辑、风险重评、标记类等不改变状态的事件会被跳过。
    """
    history = []
    for event in events:
        status = STATUS_EVENTS.get(normalize_event_type(event.event_type))
        if status is not None:
            history.append(status)
    return history
