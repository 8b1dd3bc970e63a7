from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.db.session import engine
from app.core.redis import async_redis
from app.core.dependencies import DatabaseDep, RedisDep
from app.routers import ledger_router, order_router, reservation_router, scheduler_router

import uvicorn

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # 应用启动时的初始化
    logger.info("Starting application...")

    # 数据库连接检查
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        raise

    # Redis 只用于调度单实例锁和 Celery，不可用时降级运行
    try:
        await async_redis.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Scheduler runs will not be single-flight")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down application...")

# 创建 FastAPI 应用
app = FastAPI(
    title="二手面料交易核心服务 API",
    description="结账预占、订单生命周期、定时结算与卖家账本",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(reservation_router.router, prefix="/api/v1")
app.include_router(order_router.router, prefix="/api/v1")
app.include_router(ledger_router.router, prefix="/api/v1")
app.include_router(scheduler_router.router, prefix="/api/v1")

# 全局异常处理
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "请求参数验证失败",
            "details": jsonable_errors(exc)
        }
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    # 业务异常的额外字段（locked_items、days_remaining 等）平铺到响应顶层
    extra = getattr(exc, "extra", None) or {}
    if exc.status_code >= 500:
        logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    else:
        logger.info(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            **extra
        },
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "服务器内部错误"
        }
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]

# 健康检查端点
@app.get("/health")
def health_check(db: Session = DatabaseDep, redis=RedisDep):
    """健康检查接口

    数据库不可用时返回 503；Redis 只影响调度单实例锁，不可用时状态为 degraded。
    """
    components = {"database": "ok", "redis": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        components["database"] = "unavailable"
    try:
        redis.ping()
    except Exception as e:
        logger.warning(f"Health check redis error: {e}")
        components["redis"] = "unavailable"

    if components["database"] != "ok":
        status, code = "unhealthy", 503
    elif components["redis"] != "ok":
        status, code = "degraded", 200
    else:
        status, code = "healthy", 200

    return JSONResponse(
        status_code=code,
        content={
            "status": status,
            "service": "fabric-marketplace-core",
            "version": "1.0.0",
            "components": components,
        }
    )

@app.get("/")
async def read_root():
    """API 根路径"""
    return {
        "message": "二手面料交易核心服务",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
