"""依赖注入配置模块"""

import hmac
from typing import Optional

from fastapi import Depends, Header

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock, async_redis

from app.core.config import settings
from app.core.errors import AuthenticationError
from app.gateways.http import HttpGatewayClient
from app.gateways.notification import HttpNotificationGateway, NotificationGateway
from app.gateways.payment import HttpPaymentGateway, PaymentGateway
from app.gateways.shipping import HttpShippingGateway, ShippingGateway
from app.services.ledger_service import LedgerService
from app.services.order_state_machine import OrderStateMachine
from app.services.rate_limiter import RateLimiter
from app.services.reservation_manager import ReservationManager
from app.services.scheduler_worker import SchedulerWorker


def get_redis():
    """获取同步 Redis 客户端"""
    return redis_client

def get_async_redis():
    """获取异步 Redis 客户端"""
    return async_redis

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


# ==================== 外部网关 ====================

def get_payment_gateway() -> PaymentGateway:
    client = HttpGatewayClient(settings.PAYMENT_API_URL, settings.PAYMENT_API_KEY)
    try:
        yield HttpPaymentGateway(client)
    finally:
        client.close()

def get_shipping_gateway() -> ShippingGateway:
    client = HttpGatewayClient(settings.SHIPPING_API_URL, settings.SHIPPING_API_KEY)
    try:
        yield HttpShippingGateway(client)
    finally:
        client.close()

def get_notification_gateway() -> NotificationGateway:
    client = HttpGatewayClient(settings.NOTIFY_API_URL, settings.NOTIFY_API_KEY)
    try:
        yield HttpNotificationGateway(client)
    finally:
        client.close()


# ==================== 业务服务 ====================

def get_reservation_manager(db: Session = Depends(get_db)) -> ReservationManager:
    return ReservationManager(db)

def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)

def get_rate_limiter(db: Session = Depends(get_db)) -> RateLimiter:
    return RateLimiter(db)

def get_order_state_machine(
    db: Session = Depends(get_db),
    payment: PaymentGateway = Depends(get_payment_gateway),
    shipping: ShippingGateway = Depends(get_shipping_gateway),
    notifier: NotificationGateway = Depends(get_notification_gateway),
) -> OrderStateMachine:
    """获取订单状态机实例（依赖注入）"""
    return OrderStateMachine(db, payment=payment, shipping=shipping, notifier=notifier)

def get_scheduler_worker(
    db: Session = Depends(get_db),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    rlock = Depends(get_redlock),
) -> SchedulerWorker:
    orders.source = "scheduler"
    return SchedulerWorker(db, orders, rlock=rlock)


# ==================== 调用方身份 ====================

def _secret_matches(provided: Optional[str], expected: str) -> bool:
    # 未配置密钥时一律拒绝
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)

def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """调用方身份由上游鉴权网关写入 X-User-Id"""
    if not x_user_id:
        raise AuthenticationError("未登录")
    return x_user_id

def require_cron_secret(authorization: Optional[str] = Header(None)):
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not _secret_matches(token, settings.CRON_SECRET):
        raise AuthenticationError("无效的定时任务凭证")

def require_internal_secret(
    x_internal_secret: Optional[str] = Header(None),
    x_webhook_secret: Optional[str] = Header(None),
):
    """内部调用（支付回调、账本入账）使用共享密钥"""
    if not _secret_matches(x_internal_secret or x_webhook_secret, settings.INTERNAL_WEBHOOK_SECRET):
        raise AuthenticationError("无效的内部调用凭证")

def rate_limit(scope: str):
    """按 scope + 用户 计数的限流依赖"""
    def dependency(
        user_id: str = Depends(get_current_user_id),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ):
        limiter.check(f"{scope}:{user_id}")
    return dependency


# 常用的依赖注入别名
DatabaseDep = Depends(get_db)
RedisDep = Depends(get_redis)
AsyncRedisDep = Depends(get_async_redis)
RedlockDep = Depends(get_redlock)
ReservationManagerDep = Depends(get_reservation_manager)
OrderStateMachineDep = Depends(get_order_state_machine)
LedgerServiceDep = Depends(get_ledger_service)
SchedulerWorkerDep = Depends(get_scheduler_worker)
CurrentUserDep = Depends(get_current_user_id)
