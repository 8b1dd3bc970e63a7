"""订单相关的 Celery 任务"""

from celery_app import app
from app.core.redis import redlock
from app.db.session import SessionLocal
from app.gateways.http import HttpGatewayClient
from app.gateways.notification import HttpNotificationGateway
from app.gateways.payment import HttpPaymentGateway
from app.gateways.shipping import HttpShippingGateway
from app.core.config import settings
from app.services.order_state_machine import OrderStateMachine
from app.services.reservation_manager import ReservationManager
from app.services.scheduler_worker import SchedulerWorker
import logging

logger = logging.getLogger(__name__)


def build_scheduler(db, rlock=redlock):
    """组装调度器及其依赖的网关（任务与命令行共用）"""
    clients = [
        HttpGatewayClient(settings.PAYMENT_API_URL, settings.PAYMENT_API_KEY),
        HttpGatewayClient(settings.SHIPPING_API_URL, settings.SHIPPING_API_KEY),
        HttpGatewayClient(settings.NOTIFY_API_URL, settings.NOTIFY_API_KEY),
    ]
    orders = OrderStateMachine(
        db,
        payment=HttpPaymentGateway(clients[0]),
        shipping=HttpShippingGateway(clients[1]),
        notifier=HttpNotificationGateway(clients[2]),
        source="scheduler",
    )
    return SchedulerWorker(db, orders, rlock=rlock), clients


@app.task(name='tasks.orders.process_orders')
def process_orders():
    """定时处理订单：发货提醒、买家通知、结算、退款重试

    Returns:
        {reminders, buyerNotifications, payouts, refundRetries, errors, skipped}
    """
    db = SessionLocal()
    clients = []
    try:
        worker, clients = build_scheduler(db)
        report = worker.run()
        logger.info(f"订单调度任务完成: {report.to_dict()}")
        return report.to_dict()
    except Exception as e:
        logger.error(f"订单调度任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        for client in clients:
            client.close()
        db.close()


@app.task(name='tasks.reservations.cleanup_expired_reservations')
def cleanup_expired_reservations():
    """清理过期的结账预占

    Returns:
        清理的记录数量描述
    """
    db = SessionLocal()
    try:
        count = ReservationManager(db).sweep()
        result = f"成功清理 {count} 条过期预占记录"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"清理过期预占任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


# 导出任务
__all__ = [
    'build_scheduler',
    'process_orders',
    'cleanup_expired_reservations',
]
