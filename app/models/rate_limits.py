from sqlalchemy import (
    Column,
    String,
    Integer,
)
from app.db.base import Base
from app.db.types import UTCDateTime


# 限流计数表：key 唯一 + 窗口过期时间，跨实例共享

class RateLimitBucket(Base):
    __tablename__ = "rate_limits"

    key = Column(
        String(128),
        primary_key=True,
        comment="限流键，例如 reservations:<user_id>",
    )

    hits = Column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="当前窗口内的请求次数",
    )

    window_expires_at = Column(
        UTCDateTime,
        nullable=False,
        comment="当前窗口结束时间",
    )
