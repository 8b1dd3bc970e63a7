import enum

from sqlalchemy import (
    Column,
    String,
    Enum,
    Index,
    func,
)
from app.db.base import Base
from app.db.types import UTCDateTime, BigIntegerPK
from app.core.clock import utcnow

# 1定义订单事件类型（数据库 ENUM）
class OrderEventType(str, enum.Enum):
    CREATED = "CREATED"                 # 支付确认后创建
    SHIPPED = "SHIPPED"                 # 卖家发货
    DELIVERED = "DELIVERED"             # 签收
    CANCELLED = "CANCELLED"             # 取消并恢复商品
    REFUNDED = "REFUNDED"               # 退款完成
    REFUND_FAILED = "REFUND_FAILED"     # 退款网关失败，待重试
    LABEL_VOIDED = "LABEL_VOIDED"       # 面单作废
    LABEL_VOID_FAILED = "LABEL_VOID_FAILED"
    REMINDER_SENT = "REMINDER_SENT"     # 发货提醒
    BUYER_NOTIFIED = "BUYER_NOTIFIED"   # 买家可取消通知
    COMPLETED = "COMPLETED"             # 结算完成
# 2️订单事件日志表（只追加）
class OrderEvent(Base):
    __tablename__ = "order_events"

    id = Column(
        BigIntegerPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="订单ID",
    )

    event_type = Column(
        Enum(OrderEventType, name="order_event_type"),
        nullable=False,
        comment="事件类型",
    )

    from_status = Column(
        String(16),
        nullable=True,
        comment="变更前状态",
    )

    to_status = Column(
        String(16),
        nullable=True,
        comment="变更后状态",
    )

    actor = Column(
        String(64),
        nullable=True,
        comment="操作人：buyer:<id> / seller:<id> / system",
    )

    source = Column(
        String(50),
        nullable=True,
        comment="来源：api / scheduler / webhook",
    )

    detail = Column(
        String(500),
        nullable=True,
        comment="附加说明（退款单号、错误信息等）",
    )

    created_at = Column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

# 3️组合索引（按订单查看时间线）


Index(
    "idx_order_events_order_created",
    OrderEvent.order_id,
    OrderEvent.created_at,
)
