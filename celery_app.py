"""Celery 配置文件"""

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

# 创建 Celery 应用实例
app = Celery('marketplace_worker', include=['tasks.order_tasks'])

# 配置 Redis 作为 broker 和 backend
app.conf.broker_url = f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/1"
app.conf.result_backend = f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/2"

# 任务序列化配置
app.conf.task_serializer = 'json'
app.conf.result_serializer = 'json'
app.conf.accept_content = ['json']

# 所有时间阈值都按 UTC 计算
app.conf.timezone = 'UTC'
app.conf.enable_utc = True

# 任务路由配置
app.conf.task_routes = {
    'tasks.orders.*': {'queue': 'orders'},
    'tasks.reservations.*': {'queue': 'reservations'},
}

# Worker 配置
app.conf.worker_prefetch_multiplier = 1
app.conf.task_acks_late = True

# 定时任务
app.conf.beat_schedule = {
    'process-orders-hourly': {
        'task': 'tasks.orders.process_orders',
        'schedule': crontab(minute=0),
    },
    'cleanup-expired-reservations': {
        'task': 'tasks.reservations.cleanup_expired_reservations',
        'schedule': crontab(minute='*/5'),
    },
}

# 导出应用实例
__all__ = ['app']
