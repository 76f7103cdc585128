"""按客户（手机号）统计订单结果与客户风险分。"""

from codguard.database import get_db
from codguard.models.schemas import OrderStatus
from codguard.services.blacklist_service import BlacklistService

SUCCESS_STATUSES = frozenset({OrderStatus.ORDER_PAID.value, OrderStatus.COMPLETED.value})

CUSTOMER_FAIL_STATUSES = frozenset({
    OrderStatus.CUSTOMER_CANCELLED.value,
    OrderStatus.CUSTOMER_UNREACHABLE.value,
    OrderStatus.ORDER_REJECTED.value,
})

BLACKLIST_BONUS = 50


def _last_name(full_name: str | None) -> str | None:
    if not full_name:
        return None
    parts = full_name.split()
    return parts[-1] if parts else None


def customer_stats(owner_id: int) -> list:
    """
    按规范化手机号汇总某个商户的订单。

    客户风险分 = 该客户订单已存风险分的平均值（均未评分时为 0）
    + 黑名单加成 50，结果限定在 [0, 100]。按最近下单时间倒序排列。
    """
    db = get_db()
    try:
        rows = db.execute(
            """SELECT customer_name, phone_normalized, status, risk_score, created_at, id
               FROM orders
               WHERE owner_id = ? AND phone_normalized != ''
               ORDER BY created_at, id""",
            (owner_id,),
        ).fetchall()
    finally:
        db.close()

    blacklisted = BlacklistService().phone_set(owner_id)

    grouped: dict = {}
    for row in rows:
        grouped.setdefault(row["phone_normalized"], []).append(row)

    customers = []
    for phone, orders in grouped.items():
        success = sum(1 for o in orders if o["status"] in SUCCESS_STATUSES)
        failed = sum(1 for o in orders if o["status"] in CUSTOMER_FAIL_STATUSES)
        scores = [o["risk_score"] for o in orders if o["risk_score"] is not None]
        base = sum(scores) / len(scores) if scores else None

        is_blacklisted = phone in blacklisted
        final = (base or 0) + (BLACKLIST_BONUS if is_blacklisted else 0)
        final = max(0, min(100, final))

        latest = orders[-1]
        customers.append({
            "phone": phone,
            "last_name": _last_name(latest["customer_name"]),
            "total_orders": len(orders),
            "success_count": success,
            "failed_count": failed,
            "base_risk_score": round(base, 1) if base is not None else None,
            "customer_risk_score": round(final, 1),
            "blacklisted": is_blacklisted,
            "last_order_at": latest["created_at"],
        })

    customers.sort(key=lambda c: c["last_order_at"] or "", reverse=True)
    return customers
