import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Enum,
    Index,
    UniqueConstraint,
    CheckConstraint,
    func,
)
from app.db.base import Base
from app.db.types import UTCDateTime, BigIntegerPK
from app.core.clock import utcnow


class EntryType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryCategory(str, enum.Enum):
    SALE_PROCEEDS = "sale_proceeds"   # 订单结算收入
    WITHDRAWAL = "withdrawal"         # 提现
    ADJUSTMENT = "adjustment"         # 人工调整


# 账本流水表：只追加，余额永远由流水求和得出

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(
        BigIntegerPK,
        primary_key=True,
        autoincrement=True,
    )

    seller_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="卖家ID",
    )

    order_id = Column(
        String(36),
        nullable=True,
        comment="关联订单ID（提现为空）",
    )

    amount_cents = Column(
        Integer,
        nullable=False,
        comment="金额（分），入账为正，出账为负",
    )

    entry_type = Column(
        Enum(
            EntryType,
            name="ledger_entry_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        comment="入账 / 出账",
    )

    category = Column(
        Enum(
            EntryCategory,
            name="ledger_entry_category",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        comment="流水类别",
    )

    description = Column(
        String(255),
        nullable=True,
        comment="描述",
    )

    created_at = Column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # 同一订单同一类别只能入账一次（NULL 订单号互不冲突）
        UniqueConstraint(
            "order_id",
            "category",
            name="uq_ledger_order_category",
        ),
        CheckConstraint(
            "(entry_type = 'credit' AND amount_cents > 0) OR "
            "(entry_type = 'debit' AND amount_cents < 0)",
            name="ck_ledger_amount_sign",
        ),
    )


Index(
    "idx_ledger_seller_created_desc",
    LedgerEntry.seller_id,
    LedgerEntry.created_at.desc(),
)
