"""
订单路由：列表/导出、下单、编辑、风险重评、生命周期操作与事件时间线。
"""

import csv
import io
import logging
import math

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from codguard.database import get_db
from codguard.services.auth import get_current_operator
from codguard.services.order_lifecycle import ConcurrencyConflict, InvalidTransition
from codguard.services.order_service import (
    OrderNotFoundError,
    OrderService,
    ValidationError,
)
from codguard.services.phone import normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/orders")


class CreateOrderRequest(BaseModel):
    customer_name: str | None = None
    phone: str | None = None
    amount: int | float | None = None
    payment_method: str | None = None
    product: str | None = None
    address_detail: str | None = None
    ward: str | None = None
    district: str | None = None
    province: str | None = None
    address: str | None = None
    order_id: str | None = None


class UpdateOrderRequest(BaseModel):
    customer_name: str | None = None
    phone: str | None = None
    amount: int | float | None = None
    payment_method: str | None = None
    product: str | None = None
    address_detail: str | None = None
    ward: str | None = None
    district: str | None = None
    province: str | None = None
    address: str | None = None


class ActionRequest(BaseModel):
    reason: str | None = None


def _error(status_code: int, msg: str, error: str | None = None) -> JSONResponse:
    content = {"code": -1, "msg": msg}
    if error:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


def _handle(fn):
    """执行服务调用，将服务层异常转换为统一的错误响应。"""
    try:
        return fn()
    except OrderNotFoundError as e:
        return _error(404, str(e))
    except InvalidTransition as e:
        logger.warning("操作被拒绝: %s", e)
        return _error(409, str(e), "INVALID_TRANSITION")
    except ConcurrencyConflict as e:
        logger.warning("并发冲突: %s", e)
        return _error(409, str(e), "CONCURRENCY_CONFLICT")
    except ValidationError as e:
        return _error(400, str(e), "VALIDATION_ERROR")


def _order_detail(svc: OrderService, order) -> dict:
    data = order.to_dict()
    data["available_actions"] = svc.available_actions(order)
    return data


# ── 列表 / 导出 ──────────────────────────────────────────


def _build_order_filters(
    owner_id: int,
    status: str | None,
    risk_level: str | None,
    phone: str | None,
    payment_method: str | None,
    start_date: str | None,
    end_date: str | None,
):
    """构建订单筛选的 SQL 条件和参数。"""
    conditions = ["o.owner_id = ?"]
    params = [owner_id]
    if status:
        conditions.append("o.status = ?")
        params.append(status.upper())
    if risk_level:
        if risk_level.lower() == "none":
            conditions.append("(o.risk_level IS NULL OR o.risk_level = 'none')")
        else:
            conditions.append("o.risk_level = ?")
            params.append(risk_level.lower())
    if phone:
        conditions.append("o.phone_normalized LIKE ?")
        params.append(f"%{normalize_phone(phone)}%")
    if payment_method:
        conditions.append("o.payment_method = ?")
        params.append(payment_method.upper())
    if start_date:
        conditions.append("o.created_at >= ?")
        params.append(f"{start_date} 00:00:00")
    if end_date:
        conditions.append("o.created_at <= ?")
        params.append(f"{end_date} 23:59:59")
    return conditions, params


_LIST_COLUMNS = """o.id, o.order_id, o.customer_name, o.phone, o.amount, o.payment_method,
                   o.product, o.status, o.risk_score, o.risk_level, o.paid_at,
                   o.qr_sent_at, o.created_at, o.updated_at"""


@router.get("/export")
async def export_orders(
    operator: dict = Depends(get_current_operator),
    status: str | None = Query(None),
    risk_level: str | None = Query(None),
    phone: str | None = Query(None),
    payment_method: str | None = Query(None),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
):
    """将筛选后的订单列表导出为 CSV。"""
    db = get_db()
    try:
        conditions, params = _build_order_filters(
            operator["owner_id"], status, risk_level, phone, payment_method, start_date, end_date
        )
        rows = db.execute(
            f"""SELECT {_LIST_COLUMNS}
                FROM orders o
                WHERE {" AND ".join(conditions)}
                ORDER BY o.created_at DESC, o.id DESC""",
            params,
        ).fetchall()
    finally:
        db.close()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "Order ID", "Customer", "Phone", "Amount", "Payment method", "Product",
        "Status", "Risk score", "Risk level", "Paid at", "QR sent at", "Created at",
    ])
    for r in rows:
        writer.writerow([
            r["order_id"], r["customer_name"], r["phone"], r["amount"], r["payment_method"],
            r["product"] or "", r["status"],
            "" if r["risk_score"] is None else r["risk_score"],
            r["risk_level"] or "none",
            r["paid_at"] or "", r["qr_sent_at"] or "", r["created_at"],
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=orders.csv"},
    )


@router.get("")
async def order_list(
    operator: dict = Depends(get_current_operator),
    status: str | None = Query(None),
    risk_level: str | None = Query(None),
    phone: str | None = Query(None),
    payment_method: str | None = Query(None),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """订单列表，支持筛选和分页。"""
    db = get_db()
    try:
        conditions, params = _build_order_filters(
            operator["owner_id"], status, risk_level, phone, payment_method, start_date, end_date
        )
        where_clause = " AND ".join(conditions)

        count_row = db.execute(
            f"SELECT COUNT(*) AS cnt FROM orders o WHERE {where_clause}", params
        ).fetchone()
        total = count_row["cnt"]
        total_pages = max(1, math.ceil(total / per_page))

        offset = (page - 1) * per_page
        rows = db.execute(
            f"""SELECT {_LIST_COLUMNS}
                FROM orders o
                WHERE {where_clause}
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT ? OFFSET ?""",
            params + [per_page, offset],
        ).fetchall()

        return JSONResponse(content={
            "code": 1,
            "orders": [dict(r) for r in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": total_pages,
        })
    finally:
        db.close()


# ── 下单 / 编辑 ──────────────────────────────────────────


@router.post("")
async def create_order(body: CreateOrderRequest, operator: dict = Depends(get_current_operator)):
    """创建订单，同时返回风险评估结果。"""
    svc = OrderService()

    def run():
        order = svc.create_order(
            operator["owner_id"], body.model_dump(exclude_none=True), actor=operator["sub"]
        )
        return JSONResponse(content={"code": 1, "order": _order_detail(svc, order)})

    return _handle(run)


@router.get("/{id}")
async def order_detail(id: int, operator: dict = Depends(get_current_operator)):
    """订单详情，包含可用操作和事件时间线。"""
    svc = OrderService()

    def run():
        order = svc.get_order(operator["owner_id"], id)
        events = svc.list_events(operator["owner_id"], id)
        return JSONResponse(content={
            "code": 1,
            "order": _order_detail(svc, order),
            "events": [e.to_dict() for e in events],
        })

    return _handle(run)


@router.patch("/{id}")
async def update_order(
    id: int, body: UpdateOrderRequest, operator: dict = Depends(get_current_operator)
):
    """编辑订单字段，只修改请求体中出现的字段。"""
    svc = OrderService()

    def run():
        order = svc.update_order(
            operator["owner_id"], id, body.model_dump(exclude_unset=True), actor=operator["sub"]
        )
        return JSONResponse(content={"code": 1, "order": _order_detail(svc, order)})

    return _handle(run)


@router.post("/{id}/reevaluate")
async def reevaluate_order(id: int, operator: dict = Depends(get_current_operator)):
    svc = OrderService()

    def run():
        order = svc.reevaluate(operator["owner_id"], id, actor=operator["sub"])
        return JSONResponse(content={"code": 1, "order": _order_detail(svc, order)})

    return _handle(run)


# ── 生命周期 ──────────────────────────────────────────────


@router.post("/{id}/actions/{action}")
async def apply_action(
    id: int,
    action: str,
    body: ActionRequest | None = None,
    operator: dict = Depends(get_current_operator),
):
    """
    执行生命周期操作。

    `reject` 和 `flag_verification` 需要在请求体中提供非空的 `reason`。
    返回更新后的订单和本次调用记录的事件。
    """
    svc = OrderService()
    reason = body.reason if body else None

    def run():
        order, events = svc.apply_action(
            operator["owner_id"], id, action, reason=reason, actor=operator["sub"]
        )
        return JSONResponse(content={
            "code": 1,
            "order": _order_detail(svc, order),
            "events": [e.to_dict() for e in events],
        })

    return _handle(run)


@router.get("/{id}/events")
async def order_events(id: int, operator: dict = Depends(get_current_operator)):
    svc = OrderService()

    def run():
        events = svc.list_events(operator["owner_id"], id)
        return JSONResponse(content={"code": 1, "events": [e.to_dict() for e in events]})

    return _handle(run)
