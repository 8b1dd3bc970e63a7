"""Redis 客户端配置模块

Redis 只承担两件事：调度任务的单实例锁（Redlock）和 Celery 的 broker。
预占与限流的正确性全部落在数据库上，Redis 不可用不影响下单。
"""

import os
from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from redlock import Redlock

from app.core.config import settings

REDIS_URL = f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# 基础 Redis 客户端（启动时的健康检查使用异步客户端）
redis_client = Redis.from_url(REDIS_URL, decode_responses=True)
async_redis = AsyncRedis.from_url(REDIS_URL, decode_responses=True)


def create_redlock():
    """根据环境变量创建 Redlock 实例，REDIS_HOSTS 用逗号分隔多实例"""
    redis_hosts = os.getenv("REDIS_HOSTS", settings.REDIS_HOST)
    servers = [
        {"host": host.strip(), "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        for host in redis_hosts.split(",")
        if host.strip()
    ]
    return Redlock(servers)


redlock = create_redlock()

__all__ = [
    "redis_client",
    "async_redis",
    "redlock",
    "REDIS_URL",
]
