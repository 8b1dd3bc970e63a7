from sqlalchemy import (
    Column,
    String,
    Numeric,
    func,
)
from app.db.base import Base
from app.db.types import UTCDateTime
from app.core.clock import utcnow


class SellerProfile(Base):
    """卖家资料

    费率在结算时实时读取；该行同时作为提现时的行级串行化点。
    """

    __tablename__ = "seller_profiles"

    seller_id = Column(
        String(36),
        primary_key=True,
        comment="卖家ID",
    )

    fee_rate = Column(
        Numeric(5, 4),
        nullable=True,
        comment="平台费率（为空时使用默认费率）",
    )

    contact_email = Column(
        String(255),
        nullable=True,
        comment="联系邮箱",
    )

    created_at = Column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
