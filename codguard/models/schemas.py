"""
数据模型 / 类型定义，供各模块共享使用。
使用 dataclass 保持轻量，不依赖 ORM。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    VERIFICATION_REQUIRED = "VERIFICATION_REQUIRED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_APPROVED = "ORDER_APPROVED"
    ORDER_CONFIRMATION_SENT = "ORDER_CONFIRMATION_SENT"
    CUSTOMER_CONFIRMED = "CUSTOMER_CONFIRMED"
    CUSTOMER_CANCELLED = "CUSTOMER_CANCELLED"
    CUSTOMER_UNREACHABLE = "CUSTOMER_UNREACHABLE"
    ORDER_PAID = "ORDER_PAID"
    DELIVERING = "DELIVERING"
    COMPLETED = "COMPLETED"


TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.ORDER_REJECTED,
    OrderStatus.CUSTOMER_CANCELLED,
    OrderStatus.CUSTOMER_UNREACHABLE,
})

# 计为客户失败的历史订单结果
FAILED_STATUSES = frozenset({
    OrderStatus.CUSTOMER_CANCELLED,
    OrderStatus.ORDER_REJECTED,
})


class RiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PaymentClass(str, Enum):
    COD = "COD"
    PREPAID = "PREPAID"


class PaymentMethod(str, Enum):
    COD = "COD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOMO = "MOMO"
    ZALO_PAY = "ZALO_PAY"
    CREDIT_CARDS = "CREDIT_CARDS"
    OTHER = "OTHER"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    FLAG_VERIFICATION = "flag_verification"
    NOTIFY = "notify"
    CUSTOMER_CONFIRM = "customer_confirm"
    CUSTOMER_CANCEL = "customer_cancel"
    MARK_UNREACHABLE = "mark_unreachable"
    MARK_PAID = "mark_paid"
    START_DELIVERY = "start_delivery"
    MARK_COMPLETED = "mark_completed"
    SEND_QR = "send_qr"
    SIMULATE_PAID = "simulate_paid"


class EventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_UPDATED = "ORDER_UPDATED"
    RISK_EVALUATED = "RISK_EVALUATED"
    VERIFICATION_REQUIRED = "VERIFICATION_REQUIRED"
    ORDER_APPROVED = "ORDER_APPROVED"
    ORDER_REJECTED = "ORDER_REJECTED"
    CONFIRMATION_SENT = "CONFIRMATION_SENT"
    CUSTOMER_CONFIRMED = "CUSTOMER_CONFIRMED"
    CUSTOMER_CANCELLED = "CUSTOMER_CANCELLED"
    CUSTOMER_UNREACHABLE = "CUSTOMER_UNREACHABLE"
    QR_PAYMENT_LINK_SENT = "QR_PAYMENT_LINK_SENT"
    CUSTOMER_PAID = "CUSTOMER_PAID"
    ORDER_PAID = "ORDER_PAID"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_COMPLETED = "ORDER_COMPLETED"


@dataclass(frozen=True)
class RiskReason:
    code: str
    weight: int
    description: str

    def to_dict(self) -> dict:
        return {"code": self.code, "weight": self.weight, "description": self.description}


@dataclass(frozen=True)
class RiskAssessment:
    score: Optional[int]
    level: RiskLevel
    reasons: tuple = ()

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "level": self.level.value,
            "reasons": [r.to_dict() for r in self.reasons],
        }


@dataclass
class Order:
    id: int
    order_id: str
    owner_id: int
    customer_name: str
    phone: str
    amount: int
    payment_method: Optional[str] = "COD"
    product: Optional[str] = None
    address_detail: Optional[str] = None
    ward: Optional[str] = None
    district: Optional[str] = None
    province: Optional[str] = None
    address: Optional[str] = None
    phone_normalized: str = ""
    status: OrderStatus = OrderStatus.PENDING_REVIEW
    risk_score: Optional[int] = None
    risk_level: Optional[RiskLevel] = None
    risk_reasons: list = field(default_factory=list)
    paid_at: Optional[str] = None
    qr_sent_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "owner_id": self.owner_id,
            "customer_name": self.customer_name,
            "phone": self.phone,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "product": self.product,
            "address_detail": self.address_detail,
            "ward": self.ward,
            "district": self.district,
            "province": self.province,
            "address": self.address,
            "status": self.status.value,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "risk_reasons": list(self.risk_reasons),
            "paid_at": self.paid_at,
            "qr_sent_at": self.qr_sent_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class OrderEvent:
    event_type: EventType
    payload: dict
    created_at: str
    id: Optional[int] = None
    order_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type.value,
            "payload": self.payload,
            "created_at": self.created_at,
        }


@dataclass
class BlacklistEntry:
    owner_id: int
    phone: str
    reason: Optional[str] = None
    added_at: Optional[str] = None
    id: Optional[int] = None
