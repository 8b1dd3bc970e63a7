import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Enum,
    Index,
    CheckConstraint,
    func,
)
from app.db.base import Base
from app.db.types import UTCDateTime
from app.core.clock import utcnow


# 1️ 商品状态枚举

class ListingStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"   # 在售
    SOLD = "SOLD"       # 已售出（仅在唯一一个有效订单引用时）
    DRAFT = "DRAFT"     # 草稿，未上架


# 2️ 商品（布料批次）表，每条记录都是不可补货的单件

class Listing(Base):
    __tablename__ = "listings"

    id = Column(
        String(36),
        primary_key=True,
        comment="商品ID（UUID）",
    )

    seller_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="卖家ID",
    )

    title = Column(
        String(255),
        nullable=False,
        server_default="",
        comment="商品标题",
    )

    price_cents = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="售价（分）",
    )

    status = Column(
        Enum(ListingStatus, name="listing_status_type"),
        nullable=False,
        default=ListingStatus.ACTIVE,
        server_default=ListingStatus.ACTIVE.value,
        comment="商品状态",
    )

    quantity_available = Column(
        Integer,
        nullable=False,
        default=1,
        server_default="1",
        comment="可售数量（单件商品为 0 或 1）",
    )

    sold_at = Column(
        UTCDateTime,
        nullable=True,
        comment="售出时间",
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

    __table_args__ = (
        CheckConstraint(
            "quantity_available >= 0",
            name="ck_listing_quantity_non_negative",
        ),
        CheckConstraint(
            "price_cents >= 0",
            name="ck_listing_price_non_negative",
        ),
    )


Index(
    "idx_listings_seller_status",
    Listing.seller_id,
    Listing.status,
)
