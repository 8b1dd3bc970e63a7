from sqlalchemy import (
    Column,
    String,
    UniqueConstraint,
    Index,
    ForeignKey,
    func,
)
from app.db.base import Base
from app.db.types import UTCDateTime, BigIntegerPK
from app.core.clock import utcnow


# 结账预占表
# listing_id 唯一：同一商品任意时刻最多一条记录，先写入者获胜，
# 冲突由 ON CONFLICT 条件更新裁决（同一持有人刷新 / 已过期可接管）

class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(
        BigIntegerPK,
        primary_key=True,
        autoincrement=True,
    )

    listing_id = Column(
        String(36),
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        comment="商品ID",
    )

    holder_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="持有人（买家）ID",
    )

    expires_at = Column(
        UTCDateTime,
        nullable=False,
        comment="预占过期时间",
    )

    created_at = Column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "listing_id",
            name="uq_reservation_listing",
        ),
    )


# 清理过期记录
Index(
    "idx_reservations_expires_at",
    Reservation.expires_at,
)
