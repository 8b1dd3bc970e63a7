"""请求限流（数据库计数，跨实例共享）"""

from datetime import datetime, timedelta
from typing import Callable
import logging

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import RateLimitedError
from app.db.upsert import dialect_insert
from app.models.rate_limits import RateLimitBucket

logger = logging.getLogger(__name__)


class RateLimiter:
    """固定窗口计数

    每个 key 一行：窗口未过期则 hits + 1，过期则重置为 1 并开启新窗口。
    存储异常时放行，限流不应成为下单链路的单点。
    """

    def __init__(self, db: Session, max_requests: int = None, window_seconds: int = None,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.max_requests = max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        self.window = timedelta(seconds=window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS)
        self.clock = clock

    def hit(self, key: str) -> int:
        """计数一次，返回当前窗口内的请求数"""
        now = self.clock()
        stmt = dialect_insert(self.db, RateLimitBucket).values(
            key=key,
            hits=1,
            window_expires_at=now + self.window,
        )
        expired = RateLimitBucket.window_expires_at <= now
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={
                "hits": case((expired, 1), else_=RateLimitBucket.hits + 1),
                "window_expires_at": case(
                    (expired, stmt.excluded.window_expires_at),
                    else_=RateLimitBucket.window_expires_at,
                ),
            },
        ).returning(RateLimitBucket.hits)

        hits = self.db.execute(stmt).scalar_one()
        self.db.commit()
        return hits

    def check(self, key: str):
        try:
            hits = self.hit(key)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"限流计数失败，放行请求: key={key}, error={str(e)}")
            return

        if hits > self.max_requests:
            logger.warning(f"请求过于频繁: key={key}, hits={hits}")
            raise RateLimitedError(
                "请求过于频繁，请稍后再试",
                retry_after_seconds=int(self.window.total_seconds()),
            )
