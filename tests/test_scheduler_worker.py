"""定时订单处理单元测试"""
import pytest
from sqlalchemy import select, update

from app.core.errors import UpstreamError
from app.gateways.payment import Refund
from app.models.ledger_entries import LedgerEntry
from app.models.order_events import OrderEvent, OrderEventType
from app.models.orders import Order, OrderStatus
from app.services.cancellation import Actor
from app.services.scheduler_worker import LOCK_KEY, SchedulerWorker


@pytest.fixture
def worker(db_session, orders, clock):
    return SchedulerWorker(db_session, orders, clock=clock)


def notified_kinds(notifier, user_id):
    return [
        call.args[1]
        for call in notifier.notify.call_args_list
        if call.args[0] == user_id
    ]


class TestSchedulerWorker:
    """调度任务测试类"""

    def test_nothing_due(self, worker, place_order):
        place_order()

        report = worker.run()

        assert report.to_dict() == {
            "reminders": 0,
            "buyerNotifications": 0,
            "payouts": 0,
            "refundRetries": 0,
            "errors": [],
            "skipped": False,
        }

    def test_seller_reminder_sent_once(self, worker, place_order, clock, notifier, db_session):
        """测试发货提醒只发送一次"""
        order = place_order()
        clock.advance(days=3, hours=1)
        notifier.notify.reset_mock()

        first = worker.run()
        second = worker.run()

        assert first.reminders == 1
        assert second.reminders == 0
        assert notified_kinds(notifier, "seller-1") == ["reminder"]
        db_session.refresh(order)
        assert order.reminder_sent_at is not None

    def test_buyer_notified_after_seller_inaction(self, worker, place_order, clock, notifier):
        """测试卖家超期未发货时通知买家"""
        place_order()
        clock.advance(days=5, hours=1)
        notifier.notify.reset_mock()

        report = worker.run()

        assert report.reminders == 1
        assert report.buyer_notifications == 1
        assert notified_kinds(notifier, "buyer-1") == ["order"]

    def test_failed_notification_releases_marker(self, worker, place_order, clock, notifier, db_session):
        """测试通知失败时清除标记，下一轮重试"""
        order = place_order()
        clock.advance(days=3, hours=1)
        notifier.notify.side_effect = UpstreamError("notify down")

        failed = worker.run()

        assert failed.reminders == 0
        assert len(failed.errors) == 1
        assert order.id in failed.errors[0]
        db_session.refresh(order)
        assert order.reminder_sent_at is None

        notifier.notify.side_effect = None
        retried = worker.run()

        assert retried.reminders == 1
        assert retried.errors == []

    def test_shipped_orders_are_not_reminded(self, worker, orders, place_order, clock):
        order = place_order()
        orders.mark_shipped(order.id)
        clock.advance(days=6)

        report = worker.run()

        assert report.reminders == 0
        assert report.buyer_notifications == 0

    def test_payout_released_once(self, worker, orders, place_order, clock, ledger, db_session):
        """测试签收满 3 天后结算且只结算一次"""
        order = place_order()
        orders.mark_shipped(order.id)
        orders.mark_delivered(order.id)
        clock.advance(days=3, minutes=1)

        first = worker.run()
        second = worker.run()

        assert first.payouts == 1
        assert second.payouts == 0
        assert ledger.balance("seller-1") == 2175
        assert len(db_session.execute(select(LedgerEntry)).scalars().all()) == 1
        db_session.refresh(order)
        assert order.status == OrderStatus.COMPLETE

    def test_payout_not_due_yet(self, worker, orders, place_order, clock):
        order = place_order()
        orders.mark_shipped(order.id)
        orders.mark_delivered(order.id)
        clock.advance(days=2)

        assert worker.run().payouts == 0

    def test_one_failure_does_not_abort_batch(self, worker, orders, place_order, make_listing, clock, db_session):
        """测试单个订单失败不影响其他订单"""
        bad = place_order(listings=[make_listing(price_cents=0)])
        good = place_order()
        for order in (bad, good):
            orders.mark_shipped(order.id)
            orders.mark_delivered(order.id)
        clock.advance(days=4)

        report = worker.run()

        assert report.payouts == 1
        assert len(report.errors) == 1
        assert bad.id in report.errors[0]
        db_session.refresh(good)
        assert good.status == OrderStatus.COMPLETE

    def test_pending_refund_is_retried(self, worker, orders, place_order, payment):
        """测试退款失败的已取消订单会被重试"""
        order = place_order()
        payment.refund.side_effect = UpstreamError("payment gateway down")
        orders.cancel(order.id, Actor.SELLER, "seller-1")

        payment.refund.side_effect = None
        payment.refund.return_value = Refund("re_later", order.payment_ref, 3000)
        report = worker.run()

        assert report.refund_retries == 1
        assert orders.get(order.id).refund_ref == "re_later"
        assert worker.run().refund_retries == 0

    def test_refund_still_failing_is_reported(self, worker, orders, place_order, payment):
        order = place_order()
        payment.refund.side_effect = UpstreamError("payment gateway down")
        orders.cancel(order.id, Actor.SELLER, "seller-1")

        report = worker.run()

        assert report.refund_retries == 0
        assert report.errors == [f"refund {order.id}: refund still pending"]

    def test_skipped_when_another_run_holds_lock(self, db_session, orders, clock, mock_redlock):
        """测试已有调度在运行时本次跳过"""
        mock_redlock.lock.return_value = False
        worker = SchedulerWorker(db_session, orders, rlock=mock_redlock, clock=clock)

        report = worker.run()

        assert report.skipped is True
        mock_redlock.lock.assert_called_once()
        assert mock_redlock.lock.call_args.args[0] == LOCK_KEY
        mock_redlock.unlock.assert_not_called()

    def test_lock_released_after_run(self, db_session, orders, clock, mock_redlock):
        worker = SchedulerWorker(db_session, orders, rlock=mock_redlock, clock=clock)

        report = worker.run()

        assert report.skipped is False
        mock_redlock.unlock.assert_called_once_with(mock_redlock.lock.return_value)

    def test_runs_without_redis(self, db_session, orders, clock, mock_redlock):
        """测试 Redis 不可用时仍然执行"""
        mock_redlock.lock.side_effect = ConnectionError("redis down")
        worker = SchedulerWorker(db_session, orders, rlock=mock_redlock, clock=clock)

        report = worker.run()

        assert report.skipped is False
        mock_redlock.unlock.assert_not_called()

    def test_pending_counts(self, worker, orders, place_order, clock):
        """测试试运行统计"""
        place_order()
        delivered = place_order()
        orders.mark_shipped(delivered.id)
        orders.mark_delivered(delivered.id)
        clock.advance(days=3, hours=1)

        pending = worker.pending()

        assert pending.reminders == 1
        assert pending.buyer_notifications == 0
        assert pending.payouts == 1
        assert pending.refund_retries == 0

    def test_marker_claimed_by_concurrent_run_is_skipped(self, worker, place_order, clock, notifier, db_session):
        """测试标记已被其他实例写入时不重复发送"""
        order = place_order()
        clock.advance(days=3, hours=1)
        candidates = worker._reminder_candidates(clock.now)
        db_session.execute(
            update(Order).where(Order.id == order.id).values(reminder_sent_at=clock.now)
        )
        db_session.commit()
        notifier.notify.reset_mock()

        sent = worker._notify_once(
            candidates[0], Order.reminder_sent_at, OrderEventType.REMINDER_SENT,
            recipient=lambda o: o.seller_id, kind="reminder",
            title="t", body="b", link="/sales.html",
        )

        assert sent is False
        notifier.notify.assert_not_called()
        events = db_session.execute(
            select(OrderEvent).where(OrderEvent.event_type == OrderEventType.REMINDER_SENT)
        ).scalars().all()
        assert events == []
