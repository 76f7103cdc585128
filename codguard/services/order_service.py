"""
订单服务：下单时做风险评估，编辑时重新评估风险，
并以乐观并发控制执行生命周期操作。
"""

import logging
import random
from dataclasses import replace
from datetime import datetime

from codguard.models.schemas import (
    TERMINAL_STATUSES,
    Action,
    EventType,
    Order,
    OrderEvent,
    OrderStatus,
    PaymentMethod,
    RiskAssessment,
)
from codguard.services.blacklist_service import BlacklistService
from codguard.services.notification_service import NotificationDispatcher
from codguard.services.order_actions import resolve_actions
from codguard.services.order_lifecycle import ConcurrencyConflict, apply_transition
from codguard.services.order_repository import OrderRepository
from codguard.services.phone import normalize_phone
from codguard.services.risk_engine import evaluate_risk, load_rules

logger = logging.getLogger(__name__)

# 修改这些字段会触发风险重评
MATERIAL_FIELDS = (
    "phone", "address_detail", "ward", "district", "province", "address",
    "amount", "payment_method", "product",
)

EDITABLE_INPUT_FIELDS = ("customer_name",) + MATERIAL_FIELDS

# 订单离开审核阶段后支付方式不可再改
REVIEW_STATUSES = frozenset({OrderStatus.PENDING_REVIEW, OrderStatus.VERIFICATION_REQUIRED})


class ValidationError(Exception):
    """订单输入不合法（金额、支付方式、必填字段）。"""
    pass


class OrderNotFoundError(Exception):
    """订单不存在或属于其他商户。"""
    pass


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_amount(value) -> int:
    """
    金额必须是正整数（越南盾）。

    Raises:
        ValidationError: 缺失、非整数或不为正
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount is required")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("Amount must be an integer")
        value = int(value)
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be an integer")
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


def validate_payment_method(value) -> str:
    """校验支付方式并转为大写，缺失时默认为 COD。"""
    method = (_clean(value) or "COD").upper()
    try:
        return PaymentMethod(method).value
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {value}")


def _risk_fields(assessment: RiskAssessment) -> dict:
    return {
        "risk_score": assessment.score,
        "risk_level": assessment.level,
        "risk_reasons": [r.to_dict() for r in assessment.reasons],
    }


class OrderService:
    """单个商户订单的下单、编辑与生命周期操作。"""

    def __init__(
        self,
        repository: OrderRepository | None = None,
        blacklist: BlacklistService | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.repository = repository or OrderRepository()
        self.blacklist = blacklist or BlacklistService()
        self.dispatcher = dispatcher or NotificationDispatcher()

    def generate_order_id(self) -> str:
        """生成业务订单号：时间戳 + 4 位随机数，如 ORD202601011230450123。"""
        ts = datetime.now().strftime("%Y%m%d%H%M%S")
        return f"ORD{ts}{random.randint(0, 9999):04d}"

    def assess(self, order: Order) -> RiskAssessment:
        """结合当前历史订单和黑名单执行风险评估。"""
        past = self.repository.list_by_phone(
            order.owner_id, order.phone_normalized, exclude_id=order.id or None
        )
        blacklist = self.blacklist.phone_set(order.owner_id)
        return evaluate_risk(order, past, blacklist, rules=load_rules())

    def get_order(self, owner_id: int, id: int) -> Order:
        order = self.repository.get(id, owner_id)
        if order is None:
            raise OrderNotFoundError(f"Order {id} not found")
        return order

    # ── 下单 ────────────────────────────────────────────

    def create_order(self, owner_id: int, params: dict, actor: str | None = None) -> Order:
        """
        创建 PENDING_REVIEW 状态的订单并附带风险评估结果。

        1. 校验必填字段、金额和支付方式
        2. 规范化手机号用于查询（保留原始录入值）
        3. 结合历史订单和商户黑名单评估风险
        4. 订单与 ORDER_CREATED 事件一起入库

        Args:
            owner_id: 订单所属商户
            params: customer_name, phone, amount, payment_method, product,
                address_detail/ward/district/province 或 address, order_id

        Raises:
            ValidationError: 输入不合法或 order_id 重复
        """
        customer_name = _clean(params.get("customer_name"))
        phone = _clean(params.get("phone"))
        if not customer_name:
            raise ValidationError("Customer name is required")
        if not phone:
            raise ValidationError("Phone is required")

        now = _now()
        order = Order(
            id=0,
            order_id=_clean(params.get("order_id")) or self.generate_order_id(),
            owner_id=owner_id,
            customer_name=customer_name,
            phone=phone,
            phone_normalized=normalize_phone(phone),
            amount=validate_amount(params.get("amount")),
            payment_method=validate_payment_method(params.get("payment_method")),
            product=_clean(params.get("product")),
            address_detail=_clean(params.get("address_detail")),
            ward=_clean(params.get("ward")),
            district=_clean(params.get("district")),
            province=_clean(params.get("province")),
            address=_clean(params.get("address")),
            status=OrderStatus.PENDING_REVIEW,
            created_at=now,
            updated_at=now,
        )

        assessment = self.assess(order)
        order.risk_score = assessment.score
        order.risk_level = assessment.level
        order.risk_reasons = [r.to_dict() for r in assessment.reasons]

        payload = {"risk": assessment.to_dict(), "source": "manual_action"}
        if actor:
            payload["actor"] = actor
        event = OrderEvent(event_type=EventType.ORDER_CREATED, payload=payload, created_at=now)

        try:
            order, _ = self.repository.insert(order, event)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        logger.info(
            "订单创建成功 (id=%d, order_id=%s, risk=%s/%s)",
            order.id, order.order_id, order.risk_score, order.risk_level.value,
        )
        return order

    # ── 编辑 ────────────────────────────────────────────

    def update_order(self, owner_id: int, id: int, params: dict, actor: str | None = None) -> Order:
        """
        编辑客户、地址、金额、支付方式或商品字段。

        关键字段变化时重新评估风险。以读取时的状态为条件提交，
        并写入一条 ORDER_UPDATED 事件。

        Raises:
            OrderNotFoundError: 订单不存在
            ValidationError: 值不合法、订单已终结、审核后修改支付方式，
                或修改后订单将没有任何可用操作
            ConcurrencyConflict: 编辑期间订单已被修改
        """
        order = self.get_order(owner_id, id)
        if order.status in TERMINAL_STATUSES:
            raise ValidationError(f"Order in status {order.status.value} cannot be edited")

        updates = {}
        for field_name in EDITABLE_INPUT_FIELDS:
            if field_name not in params:
                continue
            value = params[field_name]
            if field_name == "amount":
                value = validate_amount(value)
            elif field_name == "payment_method":
                value = validate_payment_method(value)
            else:
                value = _clean(value)
                if field_name in ("customer_name", "phone") and not value:
                    raise ValidationError(f"{field_name} cannot be empty")
            if value != getattr(order, field_name):
                updates[field_name] = value

        if not updates:
            return order

        if "payment_method" in updates and order.status not in REVIEW_STATUSES:
            raise ValidationError(
                f"Payment method cannot be changed in status {order.status.value}"
            )

        before = {k: getattr(order, k) for k in updates}
        edited = replace(order, **updates)
        edited.phone_normalized = normalize_phone(edited.phone)

        changes = dict(updates)
        changes["phone_normalized"] = edited.phone_normalized
        changes["updated_at"] = _now()

        payload = {
            "changes": {k: [before[k], updates[k]] for k in updates},
            "source": "manual_action",
        }
        if any(k in MATERIAL_FIELDS for k in updates):
            assessment = self.assess(edited)
            changes.update(_risk_fields(assessment))
            payload["risk"] = assessment.to_dict()
            edited.risk_level = assessment.level
            if not resolve_actions(edited):
                raise ValidationError(
                    f"Edit would leave the order in {order.status.value} with no available actions"
                )
        if actor:
            payload["actor"] = actor

        event = OrderEvent(
            event_type=EventType.ORDER_UPDATED, payload=payload, created_at=changes["updated_at"]
        )
        self.repository.commit_update(order, changes, event)
        logger.info("订单已修改 (id=%d, fields=%s)", order.id, ",".join(sorted(updates)))
        return self.get_order(owner_id, id)

    def reevaluate(self, owner_id: int, id: int, actor: str | None = None) -> Order:
        """
        结合当前历史订单和黑名单重新计算风险。

        Raises:
            OrderNotFoundError: 订单不存在
            ConcurrencyConflict: 期间订单已被修改
        """
        order = self.get_order(owner_id, id)
        assessment = self.assess(order)
        now = _now()

        payload = {
            "previous": {
                "score": order.risk_score,
                "level": order.risk_level.value if order.risk_level else None,
            },
            "risk": assessment.to_dict(),
            "source": "manual_action",
        }
        if actor:
            payload["actor"] = actor

        changes = _risk_fields(assessment)
        changes["updated_at"] = now
        event = OrderEvent(event_type=EventType.RISK_EVALUATED, payload=payload, created_at=now)
        self.repository.commit_update(order, changes, event)
        logger.info(
            "订单风险已重评 (id=%d, %s -> %s)",
            order.id, order.risk_score, assessment.score,
        )
        return self.get_order(owner_id, id)

    # ── 生命周期 ────────────────────────────────────────

    def available_actions(self, order: Order) -> list:
        """订单当前可执行的操作名，已排序。"""
        return sorted(a.value for a in resolve_actions(order))

    def _commit(self, order: Order, action, reason: str | None, actor: str | None) -> OrderEvent:
        result = apply_transition(order, action, reason=reason, actor=actor)
        stored = self.repository.commit_transition(order, result)
        logger.info(
            "订单状态转换 (id=%d, action=%s, %s -> %s)",
            order.id, result.action.value, result.from_status.value, result.new_status.value,
        )
        self.dispatcher.dispatch(stored)
        return stored

    def apply_action(
        self,
        owner_id: int,
        id: int,
        action,
        reason: str | None = None,
        actor: str | None = None,
    ) -> tuple:
        """
        对订单执行操作员操作。

        中/高风险 COD 订单审核通过后，若系统步骤 `notify` 可用，立即作为
        独立的一次转换执行。该次提交发生并发冲突时审核结果保持不变，
        只返回 approve 事件。

        Returns:
            (更新后的 Order, 已存储的 OrderEvent 列表)

        Raises:
            OrderNotFoundError: 订单不存在
            InvalidTransition: 操作不可用或缺少原因
            ConcurrencyConflict: 读取与提交之间订单已被修改
        """
        order = self.get_order(owner_id, id)
        events = [self._commit(order, action, reason, actor)]

        order = self.get_order(owner_id, id)
        if events[0].event_type == EventType.ORDER_APPROVED and Action.NOTIFY in resolve_actions(order):
            try:
                events.append(self._commit(order, Action.NOTIFY, None, "system"))
            except ConcurrencyConflict:
                # approve 已提交，notify 仍可手动执行
                logger.warning("审核后订单已被修改，跳过自动通知 (id=%d)", order.id)
            order = self.get_order(owner_id, id)

        return order, events

    def list_events(self, owner_id: int, id: int) -> list:
        self.get_order(owner_id, id)
        return self.repository.list_events(id)
