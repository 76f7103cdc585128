"""
COD 订单风险评估：加权累加评分，黑名单保底。

evaluate_risk 是纯函数，不做 I/O、不读时钟、不用随机数。相同输入得到相同的
RiskAssessment，原因顺序也一致。

评分规则（仅 COD 订单，非 COD 订单不评分）：
- COD 基础风险                     +10
- 金额 >= 1,000,000 / >= 500,000    +25 / +10
- 电子产品 / 服饰关键词             +20 / +10
- 地址模糊 / 无行政区 / 结构不完整   +25 / +15 / +15
- 历史失败订单 3+ / 1+              +30 / +10
- 黑名单手机号                     保底 85 分
"""

import os
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

from codguard.models.schemas import (
    FAILED_STATUSES,
    Order,
    RiskAssessment,
    RiskLevel,
    RiskReason,
)
from codguard.services.phone import normalize_phone

BLACKLIST_FLOOR = 85
HIGH_AMOUNT = 1_000_000
MEDIUM_AMOUNT = 500_000
VAGUE_ADDRESS_MIN_LEN = 15

DEFAULT_ELECTRONICS_KEYWORDS = (
    "fryer", "charger", "cable", "headphones", "speaker", "bluetooth",
    "phone", "laptop", "watch", "camera",
    "nồi chiên", "sạc", "cáp", "tai nghe", "loa", "điện thoại",
    "máy tính", "đồng hồ",
)

DEFAULT_FASHION_KEYWORDS = (
    "shirt", "pants", "shoes", "sandals", "bag", "backpack", "wallet",
    "skirt", "dress", "set",
    "áo", "quần", "giày", "dép", "túi", "balo", "ví", "váy", "đầm", "sét",
)

DEFAULT_ADDRESS_KEYWORDS = (
    "p.", "phường", "xã", "q.", "quận", "h.", "huyện", "tp", "thành phố", "tỉnh",
)


def _fold(text: str | None) -> str:
    """NFC 规范化、去首尾空白并转小写，用于长度和关键词判断。"""
    return unicodedata.normalize("NFC", (text or "").strip()).lower()


@dataclass(frozen=True)
class RiskRules:
    """商品和地址规则使用的可配置关键词集合。"""

    electronics_keywords: tuple = DEFAULT_ELECTRONICS_KEYWORDS
    fashion_keywords: tuple = DEFAULT_FASHION_KEYWORDS
    address_keywords: tuple = DEFAULT_ADDRESS_KEYWORDS

    def __post_init__(self):
        # 关键词与规范化后的文本比较
        for name in ("electronics_keywords", "fashion_keywords", "address_keywords"):
            folded = tuple(k for k in (_fold(k) for k in getattr(self, name)) if k)
            object.__setattr__(self, name, folded)


def _keywords_from_env(var: str, default: tuple) -> tuple:
    raw = os.getenv(var)
    if not raw:
        return default
    return tuple(k.strip() for k in raw.split(",") if k.strip())


def load_rules() -> RiskRules:
    """从 RISK_*_KEYWORDS 环境变量构建 RiskRules，未配置时使用默认值。"""
    return RiskRules(
        electronics_keywords=_keywords_from_env(
            "RISK_ELECTRONICS_KEYWORDS", DEFAULT_ELECTRONICS_KEYWORDS
        ),
        fashion_keywords=_keywords_from_env(
            "RISK_FASHION_KEYWORDS", DEFAULT_FASHION_KEYWORDS
        ),
        address_keywords=_keywords_from_env(
            "RISK_ADDRESS_KEYWORDS", DEFAULT_ADDRESS_KEYWORDS
        ),
    )


DEFAULT_RULES = RiskRules()

NOT_SCORED = RiskAssessment(score=None, level=RiskLevel.NONE, reasons=())


def is_cod(payment_method: Optional[str]) -> bool:
    """支付方式缺失或为空时视为 COD。"""
    method = (payment_method or "").strip().upper()
    return not method or method == "COD"


def level_for_score(score: int) -> RiskLevel:
    if score <= 30:
        return RiskLevel.LOW
    if score <= 70:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


# ── 单项规则 ─────────────────────────────────────────


def _amount_reason(amount: int) -> Optional[RiskReason]:
    if amount >= HIGH_AMOUNT:
        return RiskReason("AMOUNT_HIGH", 25, "High Value >= 1M (+25)")
    if amount >= MEDIUM_AMOUNT:
        return RiskReason("AMOUNT_MEDIUM", 10, "Medium Value >= 500k (+10)")
    return None


def _product_reason(product: Optional[str], rules: RiskRules) -> Optional[RiskReason]:
    name = _fold(product)
    if not name:
        return None
    if any(k in name for k in rules.electronics_keywords):
        return RiskReason("PRODUCT_ELECTRONICS", 20, "High Risk Product (Electronics) (+20)")
    if any(k in name for k in rules.fashion_keywords):
        return RiskReason("PRODUCT_FASHION", 10, "Fashion Product (Return Risk) (+10)")
    return None


def _address_reason(order: Order, rules: RiskRules) -> Optional[RiskReason]:
    """
    将地址归入唯一一种形态：

    - 结构完整：详细地址、坊、郡、省齐全，不加分
    - 仅有详细地址：先检查长度，再检查行政区关键词
    - 其余情况（部分填写或为空）：结构不完整

    结构化字段全部为空时，用自由文本地址代替详细地址。
    """
    detail = (order.address_detail or "").strip()
    ward = (order.ward or "").strip()
    district = (order.district or "").strip()
    province = (order.province or "").strip()

    if not (detail or ward or district or province):
        detail = (order.address or "").strip()

    if detail and ward and district and province:
        return None

    if detail and not ward and not district and not province:
        folded = _fold(detail)
        if len(folded) < VAGUE_ADDRESS_MIN_LEN:
            return RiskReason("ADDRESS_VAGUE", 25, "Vague Address (Details < 15 chars) (+25)")
        if not any(k in folded for k in rules.address_keywords):
            return RiskReason(
                "ADDRESS_UNSTRUCTURED", 15,
                "Unstructured Address (Missing admin keywords) (+15)",
            )
        return None

    return RiskReason("ADDRESS_INCOMPLETE", 15, "Incomplete Address Structure (+15)")


def _history_reason(order: Order, past_orders: Iterable[Order]) -> Optional[RiskReason]:
    failed = 0
    for past in past_orders:
        if order.id and past.id == order.id:
            continue
        if past.status in FAILED_STATUSES:
            failed += 1

    if failed >= 3:
        return RiskReason("HISTORY_REPEATED_FAILURES", 30, "Repeated Failures (3+) (+30)")
    if failed >= 1:
        return RiskReason("HISTORY_PREVIOUS_FAILURE", 10, "Previous Failure (+10)")
    return None


# ── 入口 ─────────────────────────────────────────────


def evaluate_risk(
    order: Order,
    past_orders: Iterable[Order] = (),
    blacklist: Iterable[str] = frozenset(),
    rules: RiskRules = DEFAULT_RULES,
) -> RiskAssessment:
    """
    评估订单的欺诈/拒收风险。

    Args:
        order: 待评估订单
        past_orders: 同一规范化手机号的历史订单
        blacklist: 订单所属商户的黑名单（规范化手机号）
        rules: 商品和地址规则的关键词集合

    Returns:
        RiskAssessment；预付订单的 score/level 为 None/"none"
    """
    if not is_cod(order.payment_method):
        return NOT_SCORED

    reasons = [RiskReason("COD_BASE", 10, "COD Order (+10)")]

    for reason in (
        _amount_reason(order.amount or 0),
        _product_reason(order.product, rules),
        _address_reason(order, rules),
        _history_reason(order, past_orders),
    ):
        if reason is not None:
            reasons.append(reason)

    score = sum(r.weight for r in reasons)

    phone = order.phone_normalized or normalize_phone(order.phone)
    if phone and phone in set(blacklist):
        score = max(score, BLACKLIST_FLOOR)
        reasons.append(
            RiskReason("BLACKLIST_OVERRIDE", 0, "Blacklisted customer (forced high risk)")
        )

    score = max(0, min(score, 100))

    return RiskAssessment(score=score, level=level_for_score(score), reasons=tuple(reasons))
