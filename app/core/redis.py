"""Redis 客户端与分布式锁（支付会话缓存 / 支付操作串行化）"""

import os
from redis import Redis
from redlock import Redlock

from app.core.config import settings

REDIS_URL = f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# 支付会话缓存使用的客户端
redis_client = Redis.from_url(REDIS_URL, decode_responses=True)


def create_redlock() -> Redlock:
    """根据 REDIS_HOSTS 创建 Redlock（逗号分隔即多实例仲裁）"""
    hosts = [h.strip() for h in os.getenv("REDIS_HOSTS", settings.REDIS_HOST).split(",") if h.strip()]
    servers = [
        {"host": host, "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        for host in hosts
    ]
    return Redlock(servers)


redlock = create_redlock()

__all__ = [
    "redis_client",
    "redlock",
    "REDIS_URL",
]
