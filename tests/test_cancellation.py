"""取消策略单元测试"""
from datetime import datetime, timedelta, timezone

import pytest

from app.services.cancellation import Actor, CancellationPolicy

PLACED = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy():
    return CancellationPolicy(buyer_grace=timedelta(minutes=30), seller_inaction=timedelta(days=5))


class TestCancellationPolicy:
    """取消策略测试类"""

    @pytest.mark.parametrize("elapsed, allowed", [
        (timedelta(minutes=0), True),
        (timedelta(minutes=30), True),
        (timedelta(minutes=31), False),
        (timedelta(days=4, hours=23), False),
        (timedelta(days=5), True),
        (timedelta(days=9), True),
    ])
    def test_buyer_window(self, policy, elapsed, allowed):
        assert policy.allows(Actor.BUYER, PLACED, PLACED + elapsed) is allowed

    def test_seller_always_allowed_before_shipment(self, policy):
        assert policy.allows(Actor.SELLER, PLACED, PLACED + timedelta(days=2))

    def test_days_remaining_rounds_up(self, policy):
        window = policy.buyer_window(PLACED, PLACED + timedelta(days=1, hours=1))

        assert window.days_remaining == 4
        assert window.deadline_at == PLACED + timedelta(days=5)

    def test_days_remaining_zero_after_deadline(self, policy):
        window = policy.buyer_window(PLACED, PLACED + timedelta(days=7))

        assert window.deadline_passed is True
        assert window.days_remaining == 0

    def test_from_settings(self):
        policy = CancellationPolicy.from_settings()

        assert policy.buyer_grace == timedelta(minutes=30)
        assert policy.seller_inaction == timedelta(days=5)
