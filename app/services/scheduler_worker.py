"""定时订单处理

每次运行依次处理互不重叠的四类订单：
(a) 超过提醒阈值未发货 → 提醒卖家
(b) 超过买家通知阈值未发货 → 告知买家可以取消
(c) 签收满结算期 → 结算入账
(d) 已取消但退款未完成 → 重试取消流程

单个订单失败只记录到 errors，不中断整批处理。
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List
import logging

from redlock import Redlock
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.models.order_events import OrderEvent, OrderEventType
from app.models.orders import Order, OrderStatus
from app.services.order_state_machine import OrderStateMachine

logger = logging.getLogger(__name__)

LOCK_KEY = "lock:scheduler:process_orders"


@dataclass
class RunReport:
    reminders: int = 0
    buyer_notifications: int = 0
    payouts: int = 0
    refund_retries: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "reminders": self.reminders,
            "buyerNotifications": self.buyer_notifications,
            "payouts": self.payouts,
            "refundRetries": self.refund_retries,
            "errors": list(self.errors),
            "skipped": self.skipped,
        }


@dataclass
class PendingCounts:
    """试运行时各类待处理订单数量"""
    reminders: int = 0
    buyer_notifications: int = 0
    payouts: int = 0
    refund_retries: int = 0


class SchedulerWorker:
    """无状态的定时任务，所有去重依赖订单上的一次性标记"""

    def __init__(self, db: Session, orders: OrderStateMachine, rlock: Redlock = None,
                 clock: Callable[[], datetime] = utcnow, batch_size: int = None):
        self.db = db
        self.orders = orders
        self.notifier = orders.notifier
        self.rlock = rlock
        self.clock = clock
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE

    def run(self) -> RunReport:
        report = RunReport()

        lock = None
        if self.rlock:
            try:
                lock = self.rlock.lock(LOCK_KEY, settings.SCHEDULER_LOCK_TTL_MS)
            except Exception as e:
                # 锁只用于避免重复劳动，拿不到锁时仍由标记保证正确性
                logger.warning(f"获取调度锁失败，继续执行: {str(e)}")
                lock = None
            else:
                if not lock:
                    logger.info("已有调度任务在运行，本次跳过")
                    report.skipped = True
                    return report

        try:
            now = self.clock()
            self._send_reminders(now, report)
            self._notify_buyers(now, report)
            self._release_payouts(now, report)
            self._retry_refunds(report)
        finally:
            if self.rlock and lock:
                try:
                    self.rlock.unlock(lock)
                except Exception as e:
                    logger.warning(f"释放调度锁失败: {str(e)}")

        logger.info(
            f"调度完成: reminders={report.reminders}, buyer_notifications={report.buyer_notifications}, "
            f"payouts={report.payouts}, refund_retries={report.refund_retries}, errors={len(report.errors)}"
        )
        return report

    def pending(self) -> PendingCounts:
        """只统计不执行"""
        now = self.clock()
        return PendingCounts(
            reminders=len(self._reminder_candidates(now)),
            buyer_notifications=len(self._buyer_notify_candidates(now)),
            payouts=len(self._payout_candidates(now)),
            refund_retries=len(self._refund_candidates()),
        )

    # ==================== 候选订单 ====================

    def _unshipped_before(self, cutoff: datetime, marker) -> List[str]:
        return list(
            self.db.execute(
                select(Order.id)
                .where(
                    Order.status == OrderStatus.PAID,
                    Order.shipped_at.is_(None),
                    Order.created_at <= cutoff,
                    marker.is_(None),
                )
                .order_by(Order.created_at)
                .limit(self.batch_size)
            ).scalars()
        )

    def _reminder_candidates(self, now: datetime) -> List[str]:
        return self._unshipped_before(now - timedelta(days=settings.SHIP_REMINDER_DAYS),
                                      Order.reminder_sent_at)

    def _buyer_notify_candidates(self, now: datetime) -> List[str]:
        return self._unshipped_before(now - timedelta(days=settings.BUYER_NOTIFY_DAYS),
                                      Order.buyer_notified_at)

    def _payout_candidates(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(days=settings.PAYOUT_DELAY_DAYS)
        return list(
            self.db.execute(
                select(Order.id)
                .where(
                    Order.status == OrderStatus.DELIVERED,
                    Order.delivered_at <= cutoff,
                    Order.payout_at.is_(None),
                )
                .order_by(Order.delivered_at)
                .limit(self.batch_size)
            ).scalars()
        )

    def _refund_candidates(self) -> List[str]:
        return list(
            self.db.execute(
                select(Order.id)
                .where(
                    Order.status == OrderStatus.CANCELLED,
                    Order.refund_ref.is_(None),
                )
                .order_by(Order.cancelled_at)
                .limit(self.batch_size)
            ).scalars()
        )

    # ==================== 各类处理 ====================

    def _send_reminders(self, now: datetime, report: RunReport):
        for order_id in self._reminder_candidates(now):
            try:
                if self._notify_once(
                    order_id, Order.reminder_sent_at, OrderEventType.REMINDER_SENT,
                    recipient=lambda o: o.seller_id,
                    kind="reminder",
                    title="Reminder: please ship your order",
                    body="An order has been waiting to ship for a few days. "
                         "Please ship it soon or the buyer may cancel.",
                    link="/sales.html",
                ):
                    report.reminders += 1
            except Exception as e:
                self._fail(report, "reminder", order_id, e)

    def _notify_buyers(self, now: datetime, report: RunReport):
        for order_id in self._buyer_notify_candidates(now):
            try:
                if self._notify_once(
                    order_id, Order.buyer_notified_at, OrderEventType.BUYER_NOTIFIED,
                    recipient=lambda o: o.buyer_id,
                    kind="order",
                    title="Your order hasn't shipped yet",
                    body="The seller hasn't shipped your order. "
                         "You can now cancel it for a full refund.",
                    link="/purchases.html",
                ):
                    report.buyer_notifications += 1
            except Exception as e:
                self._fail(report, "buyer_notify", order_id, e)

    def _release_payouts(self, now: datetime, report: RunReport):
        for order_id in self._payout_candidates(now):
            try:
                result = self.orders.complete(order_id)
                if not result.duplicate:
                    report.payouts += 1
            except Exception as e:
                self._fail(report, "payout", order_id, e)

    def _retry_refunds(self, report: RunReport):
        for order_id in self._refund_candidates():
            try:
                result = self.orders.resume_cancellation(order_id)
                if result.refund_id:
                    report.refund_retries += 1
                else:
                    report.errors.append(f"refund {order_id}: refund still pending")
            except Exception as e:
                self._fail(report, "refund", order_id, e)

    def _notify_once(self, order_id: str, marker, event_type: OrderEventType,
                     recipient, kind: str, title: str, body: str, link: str) -> bool:
        """先条件写入标记再发通知；发送失败则清除标记，留给下一轮"""
        now = self.clock()
        claimed = self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PAID,
                marker.is_(None),
            )
            .values({marker.key: now}),
            execution_options={"synchronize_session": False},
        ).rowcount
        if not claimed:
            self.db.rollback()
            return False
        self.db.commit()

        order = self.db.get(Order, order_id, populate_existing=True)
        try:
            self.notifier.notify(
                recipient(order), kind, title, body,
                link=link, metadata={"order_id": order_id},
            )
        except Exception:
            self.db.execute(
                update(Order).where(Order.id == order_id).values({marker.key: None}),
                execution_options={"synchronize_session": False},
            )
            self.db.commit()
            raise

        self.db.add(OrderEvent(
            order_id=order_id,
            event_type=event_type,
            actor="system",
            source="scheduler",
            created_at=now,
        ))
        self.db.commit()
        return True

    def _fail(self, report: RunReport, step: str, order_id: str, error: Exception):
        self.db.rollback()
        message = getattr(error, "detail", None) or str(error)
        logger.error(f"调度处理失败: step={step}, order_id={order_id}, error={message}")
        report.errors.append(f"{step} {order_id}: {message}")
