"""
CodGuard 应用入口：FastAPI 应用、路由注册、生命周期与后台任务。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── 后台任务 ──────────────────────────────────────────────

async def _notification_retry_task() -> None:
    """定期重试失败的确认/二维码通知（每 30 秒扫描一次）。

    重试间隔：事件发生后 [5, 30, 60, 300, 1800] 秒。
    """
    from codguard.services.notification_service import NotificationDispatcher

    dispatcher = NotificationDispatcher()

    while True:
        try:
            for event, attempt in dispatcher.pending_retries():
                try:
                    dispatcher.retry(event, attempt)
                    logger.info(
                        "通知重试完成 (event_id=%d, attempt=%d)", event.id, attempt
                    )
                except Exception as e:
                    logger.error("通知重试失败 (event_id=%d): %s", event.id, e)
        except Exception as e:
            logger.error("通知重试任务异常: %s", e)

        await asyncio.sleep(30)


# ── 生命周期 ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动时初始化数据库并启动后台任务。"""
    from codguard.database import init_db

    init_db()
    logger.info("数据库初始化完成")

    tasks = []
    if os.environ.get("TESTING") != "1":
        tasks.append(asyncio.create_task(_notification_retry_task()))
        logger.info("后台任务已启动：通知重试")

    yield

    for t in tasks:
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass


app = FastAPI(title="CodGuard", description="COD order risk and lifecycle service", lifespan=lifespan)

# ── CORS（开发环境）────────────────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── 路由注册 ──────────────────────────────────────────────

from codguard.routes.admin import router as admin_router
from codguard.routes.orders import router as orders_router
from codguard.routes.blacklist import router as blacklist_router

app.include_router(admin_router)
app.include_router(orders_router)
app.include_router(blacklist_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
