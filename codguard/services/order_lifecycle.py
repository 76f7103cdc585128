"""
订单生命周期控制：根据订单当前状态校验操作，计算转换后的状态、标记位和事件。

apply_transition 不做任何 I/O。调用方以读取时的订单状态为条件，
通过一次比较并更新提交 TransitionResult（见 OrderRepository.commit_transition）。
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from codguard.models.schemas import Action, EventType, Order, OrderEvent, OrderStatus
from codguard.services.order_actions import (
    REASON_REQUIRED,
    SIDE_FLAG_ACTIONS,
    payment_class_of,
    resolve_actions,
    risk_tier_of,
    target_status,
)


class InvalidTransition(Exception):
    """订单当前状态下不允许该操作。"""

    def __init__(self, status, action, msg: str | None = None):
        self.status = status
        self.action = action
        super().__init__(msg or f"Action '{action}' is not allowed in status '{status}'")


class ConcurrencyConflict(Exception):
    """读取与提交之间订单已被修改，需重新读取后重试。"""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} was modified concurrently, reload and retry")


ACTION_EVENTS = {
    Action.APPROVE: EventType.ORDER_APPROVED,
    Action.REJECT: EventType.ORDER_REJECTED,
    Action.FLAG_VERIFICATION: EventType.VERIFICATION_REQUIRED,
    Action.NOTIFY: EventType.CONFIRMATION_SENT,
    Action.CUSTOMER_CONFIRM: EventType.CUSTOMER_CONFIRMED,
    Action.CUSTOMER_CANCEL: EventType.CUSTOMER_CANCELLED,
    Action.MARK_UNREACHABLE: EventType.CUSTOMER_UNREACHABLE,
    Action.MARK_PAID: EventType.ORDER_PAID,
    Action.START_DELIVERY: EventType.ORDER_SHIPPED,
    Action.MARK_COMPLETED: EventType.ORDER_COMPLETED,
    Action.SEND_QR: EventType.QR_PAYMENT_LINK_SENT,
    Action.SIMULATE_PAID: EventType.CUSTOMER_PAID,
}

# 事件 payload 中记录的 source
_SYSTEM_ACTIONS = frozenset({Action.NOTIFY})
_CUSTOMER_ACTIONS = frozenset({Action.CUSTOMER_CONFIRM, Action.CUSTOMER_CANCEL, Action.SIMULATE_PAID})


@dataclass(frozen=True)
class TransitionResult:
    action: Action
    from_status: OrderStatus
    new_status: OrderStatus
    paid_at: Optional[str]
    qr_sent_at: Optional[str]
    event: OrderEvent


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _source_for(action: Action) -> str:
    if action in _SYSTEM_ACTIONS:
        return "system"
    if action in _CUSTOMER_ACTIONS:
        return "customer"
    return "manual_action"


def apply_transition(
    order: Order,
    action,
    reason: str | None = None,
    actor: str | None = None,
    now: str | None = None,
) -> TransitionResult:
    """
    计算对订单执行某个操作的结果。

    Args:
        order: 从存储中读出的订单
        action: Action 成员或其字符串值
        reason: reject 和 flag_verification 必填
        actor: 记录在事件 payload 中的操作员用户名
        now: 事件及标记位的时间戳，默认当前时间

    Returns:
        TransitionResult，包含新状态、标记位和唯一的一条事件

    Raises:
        InvalidTransition: 未知操作、当前不可用的操作，或缺少原因
    """
    try:
        action = Action(action)
    except ValueError:
        raise InvalidTransition(order.status, action, f"Unknown action '{action}'")

    status = OrderStatus(order.status)
    if action not in resolve_actions(order):
        raise InvalidTransition(status.value, action.value)

    reason = (reason or "").strip() or None
    if action in REASON_REQUIRED and not reason:
        raise InvalidTransition(
            status.value, action.value, f"Action '{action.value}' requires a reason"
        )

    ts = now or _now()
    paid_at = order.paid_at
    qr_sent_at = order.qr_sent_at

    if action in SIDE_FLAG_ACTIONS:
        new_status = status
        if action == Action.SEND_QR:
            qr_sent_at = ts
        else:
            paid_at = ts
    else:
        new_status = target_status(status, payment_class_of(order), risk_tier_of(order), action)
        if action == Action.MARK_PAID:
            paid_at = ts

    payload = {
        "action": action.value,
        "from_status": status.value,
        "to_status": new_status.value,
        "source": _source_for(action),
    }
    if reason:
        payload["reason"] = reason
    if actor:
        payload["actor"] = actor

    event = OrderEvent(
        event_type=ACTION_EVENTS[action],
        payload=payload,
        created_at=ts,
        order_id=order.id,
    )
    return TransitionResult(
        action=action,
        from_status=status,
        new_status=new_status,
        paid_at=paid_at,
        qr_sent_at=qr_sent_at,
        event=event,
    )
