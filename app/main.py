from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text
from redis import RedisError

from app.db.session import engine
from app.core.config import settings
from app.core.exceptions import CheckoutError
from app.core.redis import redis_client
from app.routers import order_router, payment_router

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
    logger.info("Starting checkout service...")

    # 数据库连接检查
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        raise

    # Redis 连接检查（不可用时支付会话只依赖数据库中的 tid）
    try:
        redis_client.ping()
        logger.info("✅ Redis connected successfully")
    except RedisError as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Payment sessions cannot be cached until Redis is back")

    if not settings.KAKAOPAY_SECRET_KEY:
        logger.warning("⚠️  KAKAOPAY_SECRET_KEY is not set, gateway calls will be rejected")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down checkout service...")

# 创建 FastAPI 应用
app = FastAPI(
    title="결제 서비스 API",
    description="金饰商城结算与 Kakao Pay 支付服务：下单、发起支付、回跳批准、状态对账、退款",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(order_router.router, prefix="/api/v1")
app.include_router(payment_router.router, prefix="/api/v1")

# 全局异常处理
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "요청 값이 올바르지 않습니다.",
            "code": "ValidationError",
            "details": exc.errors()
        }
    )

@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
    logger.warning(f"Checkout error: {exc.status_code} {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "서버 내부 오류가 발생했습니다."
        }
    )

# 健康检查端点
@app.get("/health")
async def health_check():
    """健康检查接口"""
    return {
        "status": "healthy",
        "service": "checkout-service",
        "version": "1.0.0"
    }

@app.get("/")
async def read_root():
    """API 根路径"""
    return {
        "message": "결제 서비스",
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
