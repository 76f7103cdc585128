"""
操作员路由：登录与仪表盘概览。
"""

from datetime import date, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from codguard.database import get_db
from codguard.models.schemas import OrderStatus, RiskLevel
from codguard.services.auth import authenticate, get_current_operator

router = APIRouter(prefix="/v1")


class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/auth/login")
async def login(body: LoginRequest):
    """
    操作员登录。

    成功返回 {code: 1, token: "...", owner_id}，失败返回 {code: -1, msg: "..."}。
    """
    try:
        result = authenticate(body.username, body.password)
        return JSONResponse(content=result)
    except ValueError as e:
        return JSONResponse(content={"code": -1, "msg": str(e)})


# ── 仪表盘 ────────────────────────────────────────────────


@router.get("/dashboard")
async def dashboard(operator: dict = Depends(get_current_operator)):
    """各状态订单数、风险分布、近 7 天趋势和未结束的高风险订单。"""
    db = get_db()
    try:
        return _render_dashboard(db, operator["owner_id"])
    finally:
        db.close()


def _render_dashboard(db, owner_id: int):
    status_counts = {s.value: 0 for s in OrderStatus}
    for row in db.execute(
        "SELECT status, COUNT(*) AS cnt FROM orders WHERE owner_id = ? GROUP BY status",
        (owner_id,),
    ).fetchall():
        status_counts[row["status"]] = row["cnt"]

    risk_distribution = {level.value: 0 for level in RiskLevel}
    for row in db.execute(
        """SELECT COALESCE(risk_level, 'none') AS level, COUNT(*) AS cnt
           FROM orders WHERE owner_id = ? GROUP BY COALESCE(risk_level, 'none')""",
        (owner_id,),
    ).fetchall():
        risk_distribution[row["level"]] = row["cnt"]

    revenue_row = db.execute(
        """SELECT COALESCE(SUM(amount), 0) AS revenue
           FROM orders WHERE owner_id = ? AND status = ?""",
        (owner_id, OrderStatus.COMPLETED.value),
    ).fetchone()

    # 近 7 天
    today = date.today()
    chart_labels = []
    chart_order_counts = []
    for i in range(6, -1, -1):
        d = today - timedelta(days=i)
        chart_labels.append(d.strftime("%m-%d"))
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM orders WHERE owner_id = ? AND date(created_at) = ?",
            (owner_id, d.isoformat()),
        ).fetchone()
        chart_order_counts.append(row["cnt"] or 0)

    terminal = (
        OrderStatus.COMPLETED.value,
        OrderStatus.ORDER_REJECTED.value,
        OrderStatus.CUSTOMER_CANCELLED.value,
        OrderStatus.CUSTOMER_UNREACHABLE.value,
    )
    high_rows = db.execute(
        """SELECT id, order_id, customer_name, phone, amount, status, risk_score, created_at
           FROM orders
           WHERE owner_id = ? AND risk_level = 'high' AND status NOT IN (?, ?, ?, ?)
           ORDER BY risk_score DESC, created_at DESC
           LIMIT 10""",
        (owner_id,) + terminal,
    ).fetchall()

    return JSONResponse(content={
        "code": 1,
        "status_counts": status_counts,
        "risk_distribution": risk_distribution,
        "revenue": revenue_row["revenue"],
        "chart": {
            "labels": chart_labels,
            "order_counts": chart_order_counts,
        },
        "high_risk_orders": [dict(r) for r in high_rows],
    })
