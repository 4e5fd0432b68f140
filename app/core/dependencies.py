"""依赖注入配置模块"""

from fastapi import Depends

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock

from app.core.security import CurrentUser, get_current_user, require_seller
from app.services.kakaopay_client import KakaoPayClient
from app.services.order_service import OrderService
from app.services.payment_service import PaymentService

_kakaopay_client = None


def get_redis():
    """获取同步 Redis 客户端（支付会话缓存）"""
    return redis_client

def get_redlock():
    """获取 Redlock 分布式锁实例"""
    return redlock

def get_db() -> Session:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_kakaopay_client() -> KakaoPayClient:
    """Kakao Pay 客户端（进程内复用同一个 requests.Session）"""
    global _kakaopay_client
    if _kakaopay_client is None:
        _kakaopay_client = KakaoPayClient()
    return _kakaopay_client


def get_order_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
) -> OrderService:
    """获取订单服务实例（依赖注入）"""
    return OrderService(db=db, redis=redis)


def get_payment_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock),
    gateway: KakaoPayClient = Depends(get_kakaopay_client),
) -> PaymentService:
    """获取支付服务实例（依赖注入）"""
    return PaymentService(db=db, redis=redis, rlock=rlock, gateway=gateway)


# 常用的依赖注入别名
DatabaseDep = Depends(get_db)
RedisDep = Depends(get_redis)
RedlockDep = Depends(get_redlock)
CurrentUserDep = Depends(get_current_user)
SellerDep = Depends(require_seller)
OrderServiceDep = Depends(get_order_service)
PaymentServiceDep = Depends(get_payment_service)

__all__ = [
    "CurrentUser",
    "get_db",
    "get_redis",
    "get_redlock",
    "get_kakaopay_client",
    "get_order_service",
    "get_payment_service",
    "get_current_user",
    "require_seller",
]
