"""结账预占服务实现"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy import case, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import UnavailableError
from app.db.upsert import dialect_insert
from app.models.listing import Listing, ListingStatus
from app.models.reservations import Reservation

logger = logging.getLogger(__name__)


class ConflictReason(str, Enum):
    LOCKED_BY_OTHER = "LOCKED_BY_OTHER"
    ALREADY_SOLD = "ALREADY_SOLD"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class AcquireResult:
    """预占结果：逐个商品处理，允许部分成功"""
    expires_at: datetime
    granted: List[str] = field(default_factory=list)
    conflicts: Dict[str, ConflictReason] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.conflicts

    def ids_with(self, reason: ConflictReason) -> List[str]:
        return [lid for lid, r in self.conflicts.items() if r == reason]

    @property
    def locked_items(self) -> List[str]:
        return self.ids_with(ConflictReason.LOCKED_BY_OTHER)

    @property
    def sold_items(self) -> List[str]:
        return self.ids_with(ConflictReason.ALREADY_SOLD)


@dataclass
class LockView:
    """对查看者展示的锁状态，不暴露持有人身份"""
    locked: bool
    is_yours: bool
    expires_at: Optional[datetime] = None


def _unique(ids: List[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class ReservationManager:
    """结账预占核心服务类

    所有写操作都经由 listing_id 唯一约束上的条件 upsert 串行化，
    不依赖任何进程内锁。过期记录在每次 acquire/release/query 时顺带清理。
    """

    def __init__(self, db: Session, ttl_minutes: int = None,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes or settings.RESERVATION_TTL_MINUTES)
        self.clock = clock

    def acquire(self, listing_ids: List[str], holder_id: str) -> AcquireResult:
        """为每个商品尝试获取预占（失败即拒绝）"""
        self.sweep()

        now = self.clock()
        result = AcquireResult(expires_at=now + self.ttl)
        ids = _unique(listing_ids)

        try:
            listings = {
                listing.id: listing
                for listing in self.db.execute(
                    select(Listing).where(Listing.id.in_(ids))
                ).scalars()
            }

            for listing_id in ids:
                listing = listings.get(listing_id)
                if listing is None or listing.status == ListingStatus.DRAFT:
                    result.conflicts[listing_id] = ConflictReason.UNAVAILABLE
                    continue
                if listing.status == ListingStatus.SOLD:
                    result.conflicts[listing_id] = ConflictReason.ALREADY_SOLD
                    continue

                if self._try_hold(listing_id, holder_id, now, result.expires_at):
                    self.db.commit()
                    result.granted.append(listing_id)
                else:
                    result.conflicts[listing_id] = ConflictReason.LOCKED_BY_OTHER

            self.db.commit()

        except SQLAlchemyError as e:
            # 误判为成功会导致一物两卖，数据库异常一律拒绝
            self.db.rollback()
            logger.error(f"获取预占失败: holder_id={holder_id}, error={str(e)}")
            raise UnavailableError("预占服务暂不可用，请稍后重试") from e

        if result.granted:
            logger.info(f"预占成功: holder_id={holder_id}, listings={result.granted}")
        if result.conflicts:
            logger.info(f"预占冲突: holder_id={holder_id}, conflicts={dict(result.conflicts)}")
        return result

    def _try_hold(self, listing_id: str, holder_id: str, now: datetime,
                  expires_at: datetime) -> bool:
        """单个商品的原子条件写入

        无记录 → 插入；同一持有人 → 刷新过期时间；
        他人持有但已过期 → 接管；他人持有且未过期 → 不返回行，即冲突。
        """
        stmt = dialect_insert(self.db, Reservation).values(
            listing_id=listing_id,
            holder_id=holder_id,
            expires_at=expires_at,
            created_at=now,
        )
        same_holder = Reservation.holder_id == stmt.excluded.holder_id
        stmt = stmt.on_conflict_do_update(
            index_elements=["listing_id"],
            set_={
                "holder_id": stmt.excluded.holder_id,
                "expires_at": stmt.excluded.expires_at,
                "created_at": case(
                    (same_holder, Reservation.created_at),
                    else_=stmt.excluded.created_at,
                ),
            },
            where=or_(same_holder, Reservation.expires_at <= now),
        ).returning(Reservation.holder_id)

        row = self.db.execute(stmt).first()
        return row is not None and row.holder_id == holder_id

    def release(self, listing_ids: List[str], holder_id: str) -> int:
        """释放调用者自己的预占，幂等"""
        self.sweep()

        try:
            deleted = self.db.execute(
                delete(Reservation).where(
                    Reservation.listing_id.in_(_unique(listing_ids)),
                    Reservation.holder_id == holder_id,
                ),
                execution_options={"synchronize_session": False},
            ).rowcount
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"释放预占失败: holder_id={holder_id}, error={str(e)}")
            raise

        logger.info(f"释放预占: holder_id={holder_id}, released={deleted}")
        return deleted

    def query(self, listing_ids: List[str], viewer_id: Optional[str] = None) -> Dict[str, LockView]:
        """查询锁状态（失败放行：异常时视为未锁定）"""
        self.sweep()

        ids = _unique(listing_ids)
        views = {listing_id: LockView(locked=False, is_yours=False) for listing_id in ids}
        if not ids:
            return views

        try:
            live = self.db.execute(
                select(Reservation).where(
                    Reservation.listing_id.in_(ids),
                    Reservation.expires_at > self.clock(),
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"查询预占失败，按未锁定处理: {str(e)}")
            return views

        for reservation in live:
            views[reservation.listing_id] = LockView(
                locked=True,
                is_yours=bool(viewer_id) and reservation.holder_id == viewer_id,
                expires_at=reservation.expires_at,
            )
        return views

    def held_by_others(self, listing_ids: List[str], holder_id: str) -> List[str]:
        """返回被其他人持有且未过期的商品ID（不提交事务，供下单时复核）"""
        rows = self.db.execute(
            select(Reservation.listing_id).where(
                Reservation.listing_id.in_(_unique(listing_ids)),
                Reservation.holder_id != holder_id,
                Reservation.expires_at > self.clock(),
            )
        ).scalars().all()
        return list(rows)

    def sweep(self) -> int:
        """删除过期预占（失败放行，不阻塞调用方）"""
        try:
            deleted = self.db.execute(
                delete(Reservation).where(Reservation.expires_at <= self.clock()),
                execution_options={"synchronize_session": False},
            ).rowcount
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"清理过期预占失败: {str(e)}")
            return 0

        if deleted:
            logger.debug(f"清理过期预占 {deleted} 条")
        return deleted
