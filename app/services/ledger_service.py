"""卖家账本服务实现"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import ConflictError, ValidationError
from app.db.upsert import dialect_insert
from app.models.ledger_entries import LedgerEntry, EntryType, EntryCategory
from app.models.seller_profile import SellerProfile

logger = logging.getLogger(__name__)

MAX_ENTRIES_PAGE = 100


@dataclass
class CreditResult:
    entry: LedgerEntry
    duplicate: bool = False


class LedgerService:
    """只追加账本

    余额永远由流水求和得出，不存在可独立修改的余额字段。
    入账通过 (order_id, category) 唯一约束保证幂等；
    提现通过卖家资料行上的条件写入串行化。
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow,
                 min_withdrawal_cents: int = None):
        self.db = db
        self.clock = clock
        self.min_withdrawal_cents = (
            settings.MIN_WITHDRAWAL_CENTS if min_withdrawal_cents is None else min_withdrawal_cents
        )

    def credit(self, seller_id: str, amount_cents: int, order_id: Optional[str] = None,
               description: Optional[str] = None,
               category: EntryCategory = EntryCategory.SALE_PROCEEDS,
               commit: bool = True) -> CreditResult:
        """入账（同一订单同一类别只入账一次）

        Args:
            commit: 为 False 时由调用方在同一事务中提交（结算流程使用）

        Returns:
            CreditResult，重复入账时 duplicate=True 并返回已有流水
        """
        if not seller_id:
            raise ValidationError("缺少 seller_id")
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("amount_cents 必须为正数")

        stmt = dialect_insert(self.db, LedgerEntry).values(
            seller_id=seller_id,
            order_id=order_id,
            amount_cents=amount_cents,
            entry_type=EntryType.CREDIT,
            category=category,
            description=description or "Sale proceeds",
            created_at=self.clock(),
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["order_id", "category"],
        ).returning(LedgerEntry.id)

        inserted_id = self.db.execute(stmt).scalar()

        if inserted_id is None:
            existing = self._find(order_id, category)
            if existing.seller_id != seller_id:
                raise ConflictError(
                    "该订单已入账给其他卖家",
                    transaction_id=existing.id,
                )
            logger.info(f"重复入账已忽略: order_id={order_id}, transaction_id={existing.id}")
            if commit:
                self.db.commit()
            return CreditResult(entry=existing, duplicate=True)

        entry = self.db.get(LedgerEntry, inserted_id)
        if commit:
            self.db.commit()
        logger.info(
            f"入账成功: seller_id={seller_id}, order_id={order_id}, "
            f"amount_cents={amount_cents}, transaction_id={inserted_id}"
        )
        return CreditResult(entry=entry)

    def withdraw(self, seller_id: str, amount_cents: int) -> LedgerEntry:
        """提现：只有派生余额足够时才记出账流水"""
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("amount_cents 必须为正数")
        if amount_cents < self.min_withdrawal_cents:
            raise ValidationError(
                f"最低提现金额为 {self.min_withdrawal_cents} 分",
                min_withdrawal_cents=self.min_withdrawal_cents,
            )

        try:
            self._lock_account(seller_id)

            balance = self.balance(seller_id)
            if balance < amount_cents:
                raise ValidationError("余额不足", balance_cents=balance)

            entry = LedgerEntry(
                seller_id=seller_id,
                amount_cents=-amount_cents,
                entry_type=EntryType.DEBIT,
                category=EntryCategory.WITHDRAWAL,
                description="Withdrawal to bank account",
                created_at=self.clock(),
            )
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"提现失败: seller_id={seller_id}, amount_cents={amount_cents}, error={str(e)}")
            raise

        logger.info(f"提现成功: seller_id={seller_id}, amount_cents={amount_cents}")
        return entry

    def balance(self, seller_id: str) -> int:
        """派生余额 = 全部流水之和"""
        total = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0))
            .where(LedgerEntry.seller_id == seller_id)
        ).scalar_one()
        return int(total)

    def entries(self, seller_id: str, limit: int = 20) -> List[LedgerEntry]:
        limit = max(1, min(limit, MAX_ENTRIES_PAGE))
        return list(
            self.db.execute(
                select(LedgerEntry)
                .where(LedgerEntry.seller_id == seller_id)
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
                .limit(limit)
            ).scalars()
        )

    def _find(self, order_id: Optional[str], category: EntryCategory) -> Optional[LedgerEntry]:
        return self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.order_id == order_id,
                LedgerEntry.category == category,
            )
        ).scalar_one_or_none()

    def _lock_account(self, seller_id: str):
        """对卖家资料行做一次条件写入，持有行锁直到事务结束

        不存在则创建；同一卖家的并发提现在此排队，
        之后读取到的余额一定包含前一笔提现。
        """
        now = self.clock()
        stmt = dialect_insert(self.db, SellerProfile).values(
            seller_id=seller_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["seller_id"],
            set_={"updated_at": stmt.excluded.updated_at},
        )
        self.db.execute(stmt)
