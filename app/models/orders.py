import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Enum,
    Index,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.db.types import UTCDateTime, BigIntegerPK
from app.core.clock import utcnow


# 1️ 订单状态枚举（取消状态只有 CANCELLED 一种拼写）

class OrderStatus(str, enum.Enum):
    PAID = "PAID"             # 已支付，待发货
    SHIPPED = "SHIPPED"       # 已发货
    DELIVERED = "DELIVERED"   # 已签收
    COMPLETE = "COMPLETE"     # 已结算给卖家（终态）
    CANCELLED = "CANCELLED"   # 已取消（终态）


TERMINAL_STATUSES = (OrderStatus.COMPLETE, OrderStatus.CANCELLED)


# 2️ 订单表

class Order(Base):
    __tablename__ = "orders"

    id = Column(
        String(36),
        primary_key=True,
        comment="订单ID（UUID）",
    )

    buyer_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="买家ID",
    )

    seller_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="卖家ID",
    )

    status = Column(
        Enum(OrderStatus, name="order_status_type"),
        nullable=False,
        default=OrderStatus.PAID,
        server_default=OrderStatus.PAID.value,
        comment="订单状态",
    )

    items_cents = Column(Integer, nullable=False, comment="商品小计（分）")
    shipping_cents = Column(Integer, nullable=False, server_default="0", default=0, comment="运费（分）")
    total_cents = Column(Integer, nullable=False, comment="订单总额（分）")

    payment_ref = Column(
        String(128),
        nullable=False,
        unique=True,
        comment="支付网关交易号（同一笔支付只能生成一个订单）",
    )

    refund_ref = Column(String(128), nullable=True, comment="退款单号")
    label_ref = Column(String(128), nullable=True, comment="物流面单交易号")
    tracking_number = Column(String(128), nullable=True, comment="物流单号")

    cancelled_by = Column(String(16), nullable=True, comment="取消发起方 buyer / seller")
    cancel_reason = Column(String(500), nullable=True, comment="取消原因")

    payout_amount_cents = Column(Integer, nullable=True, comment="结算给卖家的金额（分）")
    platform_fee_rate = Column(Numeric(5, 4), nullable=True, comment="结算时采用的平台费率")
    platform_fee_cents = Column(Integer, nullable=True, comment="平台佣金（分）")

    created_at = Column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    shipped_at = Column(UTCDateTime, nullable=True)
    delivered_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    payout_at = Column(UTCDateTime, nullable=True)

    # 一次性标记：先条件写入再执行动作，保证重复调度不会重复发送
    reminder_sent_at = Column(UTCDateTime, nullable=True, comment="发货提醒已发送")
    buyer_notified_at = Column(UTCDateTime, nullable=True, comment="买家可取消通知已发送")
    label_voided_at = Column(UTCDateTime, nullable=True, comment="面单已作废")
    cancel_notified_at = Column(UTCDateTime, nullable=True, comment="取消通知已发送")

    updated_at = Column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    __table_args__ = (
        CheckConstraint("items_cents >= 0", name="ck_order_items_non_negative"),
        CheckConstraint("total_cents >= 0", name="ck_order_total_non_negative"),
    )

    @property
    def listing_ids(self):
        return [item.listing_id for item in self.items]


# 3️ 订单明细：listing_ids 与已售商品一一对应

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(
        BigIntegerPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID",
    )

    listing_id = Column(
        String(36),
        ForeignKey("listings.id"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    price_cents = Column(
        Integer,
        nullable=False,
        comment="下单时的商品价格快照（分）",
    )

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        UniqueConstraint(
            "order_id",
            "listing_id",
            name="uq_order_listing",
        ),
    )


# 4️ 调度扫描常用索引

Index(
    "idx_orders_status_created",
    Order.status,
    Order.created_at,
)

Index(
    "idx_orders_status_delivered",
    Order.status,
    Order.delivered_at,
)
