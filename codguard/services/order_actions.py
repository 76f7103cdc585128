"""
可用操作解析：订单当前可以执行哪些操作。

状态转换边和由此得到的操作集合都在模块导入时预计算为查找表。
resolve() 只做一次字典查找，键为 (status, payment_class, risk_tier, paid, qr_sent)，
表中不存在的键一律返回空集。
"""

from itertools import product

from codguard.models.schemas import (
    Action,
    Order,
    OrderStatus,
    PaymentClass,
    RiskLevel,
)
from codguard.services.risk_engine import is_cod

S = OrderStatus
A = Action

_COD_TIERS = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH)
_ELEVATED = (RiskLevel.MEDIUM, RiskLevel.HIGH)

# 合法的 (payment_class, risk_tier) 组合，预付订单不评分
_CLASS_TIERS = tuple((PaymentClass.COD, t) for t in _COD_TIERS) + (
    (PaymentClass.PREPAID, RiskLevel.NONE),
)

# (来源状态, 操作, 目标状态, 支付类别或 None, 风险等级或 None)
_EDGES = (
    ((S.PENDING_REVIEW, S.VERIFICATION_REQUIRED), A.APPROVE, S.ORDER_APPROVED, None, None),
    ((S.PENDING_REVIEW, S.VERIFICATION_REQUIRED), A.REJECT, S.ORDER_REJECTED, None, None),
    ((S.PENDING_REVIEW,), A.FLAG_VERIFICATION, S.VERIFICATION_REQUIRED, None, None),
    ((S.ORDER_APPROVED,), A.START_DELIVERY, S.DELIVERING, PaymentClass.COD, (RiskLevel.LOW,)),
    ((S.ORDER_APPROVED,), A.NOTIFY, S.ORDER_CONFIRMATION_SENT, PaymentClass.COD, _ELEVATED),
    ((S.ORDER_APPROVED,), A.START_DELIVERY, S.DELIVERING, PaymentClass.PREPAID, None),
    ((S.ORDER_APPROVED,), A.MARK_PAID, S.ORDER_PAID, PaymentClass.PREPAID, None),
    ((S.ORDER_PAID,), A.START_DELIVERY, S.DELIVERING, None, None),
    ((S.ORDER_CONFIRMATION_SENT,), A.CUSTOMER_CONFIRM, S.CUSTOMER_CONFIRMED, PaymentClass.COD, _ELEVATED),
    ((S.ORDER_CONFIRMATION_SENT,), A.CUSTOMER_CANCEL, S.CUSTOMER_CANCELLED, PaymentClass.COD, _ELEVATED),
    ((S.ORDER_CONFIRMATION_SENT,), A.MARK_UNREACHABLE, S.CUSTOMER_UNREACHABLE, PaymentClass.COD, _ELEVATED),
    ((S.ORDER_CONFIRMATION_SENT,), A.START_DELIVERY, S.DELIVERING, PaymentClass.COD, (RiskLevel.LOW,)),
    ((S.CUSTOMER_CONFIRMED,), A.START_DELIVERY, S.DELIVERING, None, None),
    ((S.DELIVERING,), A.MARK_COMPLETED, S.COMPLETED, None, None),
)

# 必须填写原因的操作
REASON_REQUIRED = frozenset({A.REJECT, A.FLAG_VERIFICATION})

# 只设置标记位、不改变状态的操作
SIDE_FLAG_ACTIONS = frozenset({A.SEND_QR, A.SIMULATE_PAID})

_FULFILMENT_ACTIONS = frozenset({A.START_DELIVERY, A.MARK_COMPLETED})


def _build_transitions() -> dict:
    table: dict = {}
    for sources, action, target, pclass, tiers in _EDGES:
        for status in sources:
            for cls, tier in _CLASS_TIERS:
                if pclass is not None and cls != pclass:
                    continue
                if tiers is not None and tier not in tiers:
                    continue
                table.setdefault((status, cls, tier), {})[action] = target
    return table


def _build_action_table(transitions: dict) -> dict:
    table: dict = {}
    for (status, cls, tier), edges in transitions.items():
        for paid, qr_sent in product((False, True), repeat=2):
            actions = set(edges)
            if paid:
                actions.discard(A.MARK_PAID)
            fulfilment = bool(_FULFILMENT_ACTIONS & actions)
            if cls == PaymentClass.COD and fulfilment and not paid:
                actions.add(A.SIMULATE_PAID if qr_sent else A.SEND_QR)
            table[(status, cls, tier, paid, qr_sent)] = frozenset(actions)
    return table


TRANSITIONS = _build_transitions()
ACTION_TABLE = _build_action_table(TRANSITIONS)


def payment_class_of(order: Order) -> PaymentClass:
    return PaymentClass.COD if is_cod(order.payment_method) else PaymentClass.PREPAID


def risk_tier_of(order: Order) -> RiskLevel:
    """
    用于选择转换子图的风险等级。

    预付订单恒为 "none"。COD 订单没有存储等级（或为 "none"）时按 high 处理，
    保证仍需经过客户确认。
    """
    if payment_class_of(order) == PaymentClass.PREPAID:
        return RiskLevel.NONE
    level = order.risk_level
    if level in _COD_TIERS:
        return RiskLevel(level)
    return RiskLevel.HIGH


def resolve(status, payment_class, risk_tier, paid: bool, qr_sent: bool) -> frozenset:
    """
    返回给定状态下允许的操作集合。

    对任意输入都有定义：未知的状态、类别、等级以及终态都返回空集。
    """
    try:
        key = (
            OrderStatus(status),
            PaymentClass(payment_class),
            RiskLevel(risk_tier),
            bool(paid),
            bool(qr_sent),
        )
    except ValueError:
        return frozenset()
    return ACTION_TABLE.get(key, frozenset())


def resolve_actions(order: Order) -> frozenset:
    """订单按当前存储状态可执行的操作。"""
    return resolve(
        order.status,
        payment_class_of(order),
        risk_tier_of(order),
        order.paid_at is not None,
        order.qr_sent_at is not None,
    )


def target_status(status, payment_class, risk_tier, action) -> OrderStatus | None:
    """改变状态的操作对应的目标状态，无此边时返回 None。"""
    edges = TRANSITIONS.get((OrderStatus(status), PaymentClass(payment_class), RiskLevel(risk_tier)), {})
    return edges.get(Action(action))
