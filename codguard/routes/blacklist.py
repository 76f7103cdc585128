"""
客户路由：手机号黑名单管理与按手机号汇总的客户信息。
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from codguard.services.auth import get_current_operator
from codguard.services.blacklist_service import BlacklistService
from codguard.services.customer_insights import customer_stats

router = APIRouter(prefix="/v1")


class BlacklistRequest(BaseModel):
    phone: str
    reason: str | None = None


@router.get("/blacklist")
async def blacklist_list(operator: dict = Depends(get_current_operator)):
    svc = BlacklistService()
    entries = svc.list_entries(operator["owner_id"])
    return JSONResponse(content={"code": 1, "entries": [asdict(e) for e in entries]})


@router.post("/blacklist")
async def blacklist_add(body: BlacklistRequest, operator: dict = Depends(get_current_operator)):
    """将手机号加入黑名单。已有订单的风险分在重新评估前保持不变。"""
    svc = BlacklistService()
    try:
        entry = svc.add(operator["owner_id"], body.phone, body.reason)
        return JSONResponse(content={"code": 1, "entry": asdict(entry)})
    except ValueError as e:
        return JSONResponse(
            status_code=400,
            content={"code": -1, "msg": str(e), "error": "VALIDATION_ERROR"},
        )


@router.delete("/blacklist/{phone}")
async def blacklist_remove(phone: str, operator: dict = Depends(get_current_operator)):
    svc = BlacklistService()
    try:
        svc.remove(operator["owner_id"], phone)
        return JSONResponse(content={"code": 1, "msg": "Removed from blacklist"})
    except ValueError as e:
        return JSONResponse(status_code=404, content={"code": -1, "msg": str(e)})


@router.get("/customers")
async def customer_list(operator: dict = Depends(get_current_operator)):
    """按规范化手机号分组的客户，最近下单的在前。"""
    return JSONResponse(content={"code": 1, "customers": customer_stats(operator["owner_id"])})
