"""取消策略

买家与卖家的取消资格只在这里定义一次：
- 买家：下单后宽限期内（无理由取消），或卖家超期未发货后；
- 卖家：发货前任意时间。
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from app.core.config import settings


class Actor(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


@dataclass(frozen=True)
class CancelWindow:
    """买家视角的取消资格"""
    placed_at: datetime
    grace_ends_at: datetime
    deadline_at: datetime
    now: datetime

    @property
    def in_grace_period(self) -> bool:
        return self.now <= self.grace_ends_at

    @property
    def deadline_passed(self) -> bool:
        return self.now >= self.deadline_at

    @property
    def can_cancel(self) -> bool:
        return self.in_grace_period or self.deadline_passed

    @property
    def days_remaining(self) -> int:
        """距离卖家超期未发货还有几天（向上取整）"""
        if self.deadline_passed:
            return 0
        return math.ceil((self.deadline_at - self.now) / timedelta(days=1))


@dataclass(frozen=True)
class CancellationPolicy:
    buyer_grace: timedelta
    seller_inaction: timedelta

    @classmethod
    def from_settings(cls, conf=settings) -> "CancellationPolicy":
        return cls(
            buyer_grace=timedelta(minutes=conf.BUYER_CANCEL_GRACE_MINUTES),
            seller_inaction=timedelta(days=conf.SELLER_INACTION_DAYS),
        )

    def buyer_window(self, placed_at: datetime, now: datetime) -> CancelWindow:
        return CancelWindow(
            placed_at=placed_at,
            grace_ends_at=placed_at + self.buyer_grace,
            deadline_at=placed_at + self.seller_inaction,
            now=now,
        )

    def allows(self, actor: Actor, placed_at: datetime, now: datetime) -> bool:
        if actor == Actor.SELLER:
            return True
        return self.buyer_window(placed_at, now).can_cancel
