"""订单状态机实现

PAID → SHIPPED → DELIVERED → COMPLETE，或 PAID（未发货）→ CANCELLED。
状态推进一律使用 "update ... where status = X" 条件更新；
对外部网关的调用（退款、作废面单、通知）都在内部状态提交之后进行，
失败只记录日志，不回滚已提交的状态。
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, List, Optional
import logging
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PayoutReviewError,
    UpstreamError,
    ValidationError,
)
from app.gateways.notification import NotificationGateway
from app.gateways.payment import PaymentGateway
from app.gateways.shipping import ShippingGateway
from app.models.listing import Listing, ListingStatus
from app.models.order_events import OrderEvent, OrderEventType
from app.models.orders import Order, OrderItem, OrderStatus
from app.models.reservations import Reservation
from app.models.seller_profile import SellerProfile
from app.services.cancellation import Actor, CancellationPolicy, CancelWindow
from app.services.ledger_service import LedgerService
from app.services.reservation_manager import ReservationManager

logger = logging.getLogger(__name__)

NO_SYNC = {"synchronize_session": False}
FETCH_SYNC = {"synchronize_session": "fetch"}


def _describe(error: Exception) -> str:
    return str(getattr(error, "detail", None) or error)


@dataclass
class CreateResult:
    order: Order
    duplicate: bool = False


@dataclass
class CancelResult:
    order: Order
    already_cancelled: bool = False
    refund_id: Optional[str] = None
    amount_refunded: int = 0
    listings_restored: List[str] = field(default_factory=list)
    label_voided: bool = False

    @property
    def refund_pending(self) -> bool:
        return self.refund_id is None


@dataclass
class CompleteResult:
    order: Order
    payout_cents: int
    fee_rate: Decimal
    duplicate: bool = False


class OrderStateMachine:
    """订单生命周期核心服务类"""

    def __init__(
        self,
        db: Session,
        payment: PaymentGateway,
        shipping: ShippingGateway,
        notifier: NotificationGateway,
        ledger: LedgerService = None,
        reservations: ReservationManager = None,
        policy: CancellationPolicy = None,
        clock: Callable[[], datetime] = utcnow,
        source: str = "api",
    ):
        self.db = db
        self.payment = payment
        self.shipping = shipping
        self.notifier = notifier
        self.clock = clock
        self.ledger = ledger or LedgerService(db, clock=clock)
        self.reservations = reservations or ReservationManager(db, clock=clock)
        self.policy = policy or CancellationPolicy.from_settings()
        self.payout_delay = timedelta(days=settings.PAYOUT_DELAY_DAYS)
        self.source = source

    # ==================== 查询 ====================

    def get(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("订单不存在")
        return order

    def get_for_viewer(self, order_id: str, viewer_id: str) -> Order:
        order = self.get(order_id)
        if viewer_id not in (order.buyer_id, order.seller_id):
            raise AuthorizationError("无权查看该订单")
        return order

    def cancel_window(self, order_id: str, viewer_id: str) -> CancelWindow:
        """买家的取消资格（宽限期 / 卖家超期未发货）"""
        order = self.get(order_id)
        if order.buyer_id != viewer_id:
            raise AuthorizationError("只有买家可以查看取消资格")
        return self.policy.buyer_window(order.created_at, self.clock())

    # ==================== 创建 ====================

    def create(self, buyer_id: str, listing_ids: List[str], payment_ref: str,
               shipping_cents: int = 0) -> CreateResult:
        """支付确认后创建订单（全部商品成功售出，或全部回滚）"""
        ids = list(dict.fromkeys(listing_ids or []))
        if not buyer_id or not payment_ref or not ids:
            raise ValidationError("缺少 buyer_id、payment_ref 或 listing_ids")
        if shipping_cents < 0:
            raise ValidationError("shipping_cents 不能为负数")

        existing = self._find_by_payment(payment_ref)
        if existing is not None:
            return self._duplicate_creation(existing, buyer_id)

        listings = {
            listing.id: listing
            for listing in self.db.execute(
                select(Listing).where(Listing.id.in_(ids))
            ).scalars()
        }
        missing = [lid for lid in ids if lid not in listings]
        if missing:
            raise ValidationError("商品不存在", missing_items=missing)

        seller_ids = {listing.seller_id for listing in listings.values()}
        if len(seller_ids) != 1:
            raise ValidationError("一个订单只能包含同一卖家的商品")
        seller_id = seller_ids.pop()
        if seller_id == buyer_id:
            raise ValidationError("不能购买自己的商品")

        not_active = [lid for lid in ids if listings[lid].status != ListingStatus.ACTIVE]
        if not_active:
            raise ConflictError("商品已售出或不可售", sold_items=not_active)

        locked = self.reservations.held_by_others(ids, buyer_id)
        if locked:
            raise ConflictError("商品正被其他买家结账", locked_items=locked)

        items_cents = sum(listings[lid].price_cents for lid in ids)
        total_cents = items_cents + shipping_cents

        # 只读阶段结束，确认支付期间不持有任何事务
        self.db.commit()

        if not self.payment.authorize(payment_ref, total_cents):
            logger.warning(f"支付未确认，不创建订单: payment_ref={payment_ref}")
            raise ValidationError("支付未确认")

        now = self.clock()
        order = Order(
            id=str(uuid.uuid4()),
            buyer_id=buyer_id,
            seller_id=seller_id,
            status=OrderStatus.PAID,
            items_cents=items_cents,
            shipping_cents=shipping_cents,
            total_cents=total_cents,
            payment_ref=payment_ref,
            created_at=now,
            items=[OrderItem(listing_id=lid, price_cents=listings[lid].price_cents) for lid in ids],
        )

        try:
            sold = self.db.execute(
                update(Listing)
                .where(Listing.id.in_(ids), Listing.status == ListingStatus.ACTIVE)
                .values(
                    status=ListingStatus.SOLD,
                    quantity_available=0,
                    sold_at=now,
                    updated_at=now,
                ),
                execution_options=FETCH_SYNC,
            ).rowcount

            if sold != len(ids):
                self.db.rollback()
                lost = self._not_active(ids)
                refund_id = self._compensate_payment(payment_ref, total_cents)
                raise ConflictError("商品已被他人购买", sold_items=lost, refund_id=refund_id)

            self.db.add(order)
            self.db.execute(
                delete(Reservation).where(Reservation.listing_id.in_(ids)),
                execution_options=NO_SYNC,
            )
            self._record(order, OrderEventType.CREATED, None, OrderStatus.PAID,
                         actor=f"buyer:{buyer_id}", detail=f"payment_ref={payment_ref}")
            self.db.commit()

        except IntegrityError:
            # 并发的重复支付确认：payment_ref 唯一约束裁决
            self.db.rollback()
            existing = self._find_by_payment(payment_ref)
            if existing is None:
                raise
            return self._duplicate_creation(existing, buyer_id)
        except ConflictError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"创建订单失败: payment_ref={payment_ref}, error={str(e)}")
            raise

        logger.info(f"创建订单成功: order_id={order.id}, listings={ids}, total_cents={total_cents}")

        self._notify(seller_id, "purchase", "New order received",
                     "One of your listings has been purchased. Please ship it soon.",
                     link="/sales.html", metadata={"order_id": order.id})
        self._notify(buyer_id, "order", "Order confirmed",
                     "Thanks for your purchase! We'll let you know when it ships.",
                     link="/purchases.html", metadata={"order_id": order.id})
        return CreateResult(order=order)

    def _find_by_payment(self, payment_ref: str) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(Order.payment_ref == payment_ref)
        ).scalar_one_or_none()

    def _duplicate_creation(self, existing: Order, buyer_id: str) -> CreateResult:
        if existing.buyer_id != buyer_id:
            raise ConflictError("该支付已关联其他订单")
        logger.info(f"重复的支付确认，返回已有订单: order_id={existing.id}")
        return CreateResult(order=existing, duplicate=True)

    def _not_active(self, ids: List[str]) -> List[str]:
        return list(
            self.db.execute(
                select(Listing.id).where(
                    Listing.id.in_(ids),
                    Listing.status != ListingStatus.ACTIVE,
                )
            ).scalars()
        )

    def _compensate_payment(self, payment_ref: str, amount_cents: int) -> Optional[str]:
        """订单创建失败时退回已确认的支付（尽力而为）"""
        try:
            refund = self.payment.find_refund(payment_ref) or self.payment.refund(
                payment_ref, amount_cents, idempotency_key=f"create-failed:{payment_ref}"
            )
        except UpstreamError as e:
            logger.error(f"订单创建失败后的退款也失败，需人工处理: payment_ref={payment_ref}, error={e.detail}")
            return None
        return refund.refund_id

    # ==================== 取消 ====================

    def cancel(self, order_id: str, actor: Actor, actor_id: str,
               reason: Optional[str] = None) -> CancelResult:
        """取消订单

        步骤依次为：状态变更并恢复全部商品 → 退款 → 作废面单 → 通知双方。
        每一步都有各自的完成标记，重复调用只会补做未完成的步骤。
        """
        order = self.get(order_id)
        self._authorize_actor(order, actor, actor_id)

        if order.status == OrderStatus.CANCELLED:
            return self._resume_cancellation(order, already_cancelled=True)

        if order.status != OrderStatus.PAID or order.shipped_at is not None:
            raise ValidationError("订单已发货，无法取消", status=order.status.value)

        now = self.clock()
        if not self.policy.allows(actor, order.created_at, now):
            window = self.policy.buyer_window(order.created_at, now)
            raise ValidationError(
                "当前不在可取消时间内",
                days_remaining=window.days_remaining,
            )

        restored = self._transition_to_cancelled(order, actor, actor_id, reason, now)
        if restored is None:
            # 并发取消或刚刚发货
            self.db.refresh(order)
            if order.status == OrderStatus.CANCELLED:
                return self._resume_cancellation(order, already_cancelled=True)
            raise ValidationError("订单状态已变化，无法取消", status=order.status.value)

        result = self._resume_cancellation(order)
        result.listings_restored = restored
        return result

    def resume_cancellation(self, order_id: str) -> CancelResult:
        """补做已取消订单中未完成的步骤（调度器重试使用）"""
        order = self.get(order_id)
        if order.status != OrderStatus.CANCELLED:
            raise ValidationError("订单未取消")
        return self._resume_cancellation(order, already_cancelled=True)

    def _authorize_actor(self, order: Order, actor: Actor, actor_id: str):
        if actor == Actor.BUYER and order.buyer_id != actor_id:
            raise AuthorizationError("该订单不属于你")
        if actor == Actor.SELLER and order.seller_id != actor_id:
            raise AuthorizationError("只能取消自己的销售订单")

    def _transition_to_cancelled(self, order: Order, actor: Actor, actor_id: str,
                                 reason: Optional[str], now: datetime) -> Optional[List[str]]:
        """第一步：在同一事务中取消订单并恢复所有商品为在售"""
        listing_ids = order.listing_ids
        try:
            changed = self.db.execute(
                update(Order)
                .where(
                    Order.id == order.id,
                    Order.status == OrderStatus.PAID,
                    Order.shipped_at.is_(None),
                )
                .values(
                    status=OrderStatus.CANCELLED,
                    cancelled_at=now,
                    cancelled_by=actor.value,
                    cancel_reason=reason,
                    updated_at=now,
                ),
                execution_options=NO_SYNC,
            ).rowcount
            if changed == 0:
                self.db.rollback()
                return None

            self.db.execute(
                update(Listing)
                .where(Listing.id.in_(listing_ids), Listing.status == ListingStatus.SOLD)
                .values(
                    status=ListingStatus.ACTIVE,
                    quantity_available=1,
                    sold_at=None,
                    updated_at=now,
                ),
                execution_options=FETCH_SYNC,
            )
            self._record(order, OrderEventType.CANCELLED, OrderStatus.PAID, OrderStatus.CANCELLED,
                         actor=f"{actor.value}:{actor_id}", detail=reason)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"取消订单失败: order_id={order.id}, error={str(e)}")
            raise

        self.db.refresh(order)
        logger.info(f"订单已取消: order_id={order.id}, by={actor.value}, listings_restored={listing_ids}")
        return listing_ids

    def _resume_cancellation(self, order: Order, already_cancelled: bool = False) -> CancelResult:
        refund_id = self._refund_step(order)
        label_voided = self._void_label_step(order)
        self._cancel_notify_step(order)
        return CancelResult(
            order=order,
            already_cancelled=already_cancelled,
            refund_id=refund_id,
            amount_refunded=order.total_cents if refund_id else 0,
            listings_restored=order.listing_ids if already_cancelled else [],
            label_voided=label_voided,
        )

    def _refund_step(self, order: Order) -> Optional[str]:
        """第二步：退款（已有退款则直接复用，最多退一次）"""
        if order.refund_ref:
            return order.refund_ref

        try:
            refund = self.payment.find_refund(order.payment_ref)
            if refund is None:
                refund = self.payment.refund(
                    order.payment_ref,
                    order.total_cents,
                    idempotency_key=f"cancel:{order.id}",
                )
            else:
                logger.info(f"退款已存在: order_id={order.id}, refund_id={refund.refund_id}")
        except Exception as e:
            logger.error(f"退款失败，等待重试: order_id={order.id}, error={_describe(e)}")
            self._record(order, OrderEventType.REFUND_FAILED, None, None,
                         actor="system", detail=_describe(e)[:500])
            self.db.commit()
            return None

        self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.refund_ref.is_(None))
            .values(refund_ref=refund.refund_id, updated_at=self.clock()),
            execution_options=NO_SYNC,
        )
        self._record(order, OrderEventType.REFUNDED, None, None,
                     actor="system", detail=f"refund_id={refund.refund_id}")
        self.db.commit()
        self.db.refresh(order)
        return order.refund_ref

    def _void_label_step(self, order: Order) -> bool:
        """第三步：作废已购买的面单（失败不影响取消）"""
        if not order.label_ref:
            return False
        if order.label_voided_at is not None:
            return True

        try:
            voided = self.shipping.void_label(order.label_ref)
        except Exception as e:
            logger.error(f"面单作废失败: order_id={order.id}, error={_describe(e)}")
            voided = False

        if not voided:
            self._record(order, OrderEventType.LABEL_VOID_FAILED, None, None,
                         actor="system", detail=f"label_ref={order.label_ref}")
            self.db.commit()
            return False

        self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.label_voided_at.is_(None))
            .values(label_voided_at=self.clock()),
            execution_options=NO_SYNC,
        )
        self._record(order, OrderEventType.LABEL_VOIDED, None, None,
                     actor="system", detail=f"label_ref={order.label_ref}")
        self.db.commit()
        self.db.refresh(order)
        return True

    def _cancel_notify_step(self, order: Order):
        """第四步：通知买卖双方（先占标记，发送失败则释放标记）"""
        if not self._claim_marker(order, Order.cancel_notified_at):
            return

        by_buyer = order.cancelled_by == Actor.BUYER.value
        seller_ok = self._notify(
            order.seller_id, "warning", "Order canceled",
            ("The buyer canceled this purchase. " if by_buyer else "You canceled this sale. ")
            + "Do not ship it. The listing is available for purchase again.",
            link="/sales.html", metadata={"order_id": order.id},
        )
        buyer_ok = self._notify(
            order.buyer_id, "order", "Order canceled",
            f"Your order has been canceled. A refund of ${order.total_cents / 100:.2f} is being processed.",
            link="/purchases.html", metadata={"order_id": order.id},
        )
        if not (seller_ok and buyer_ok):
            self._release_marker(order, Order.cancel_notified_at)

    # ==================== 发货 / 签收 ====================

    def attach_label(self, order_id: str, label_ref: str, seller_id: Optional[str] = None,
                     tracking_number: Optional[str] = None) -> Order:
        """记录已购买的物流面单，取消时需要作废"""
        order = self.get(order_id)
        if seller_id is not None and order.seller_id != seller_id:
            raise AuthorizationError("只能操作自己的销售订单")

        changed = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PAID)
            .values(label_ref=label_ref, tracking_number=tracking_number, updated_at=self.clock()),
            execution_options=NO_SYNC,
        ).rowcount
        if changed == 0:
            self.db.rollback()
            raise ValidationError("只有待发货订单可以关联面单", status=order.status.value)
        self.db.commit()
        self.db.refresh(order)
        return order

    def mark_shipped(self, order_id: str, seller_id: Optional[str] = None,
                     tracking_number: Optional[str] = None) -> Order:
        order = self.get(order_id)
        if seller_id is not None and order.seller_id != seller_id:
            raise AuthorizationError("只能操作自己的销售订单")
        if order.status == OrderStatus.SHIPPED:
            return order

        now = self.clock()
        values = {"status": OrderStatus.SHIPPED, "shipped_at": now, "updated_at": now}
        if tracking_number:
            values["tracking_number"] = tracking_number

        self._advance(order, OrderStatus.PAID, OrderStatus.SHIPPED, values, OrderEventType.SHIPPED)
        self._notify(order.buyer_id, "shipment", "Your order has shipped",
                     f"Tracking number: {order.tracking_number}" if order.tracking_number
                     else "Your order is on its way.",
                     link="/purchases.html", metadata={"order_id": order.id})
        return order

    def mark_delivered(self, order_id: str) -> Order:
        order = self.get(order_id)
        if order.status in (OrderStatus.DELIVERED, OrderStatus.COMPLETE):
            return order

        now = self.clock()
        self._advance(order, OrderStatus.SHIPPED, OrderStatus.DELIVERED,
                      {"status": OrderStatus.DELIVERED, "delivered_at": now, "updated_at": now},
                      OrderEventType.DELIVERED)
        self._notify(order.seller_id, "shipment", "Order delivered",
                     "Your order was delivered. Payment will be released after the holding period.",
                     link="/sales.html", metadata={"order_id": order.id})
        return order

    def _advance(self, order: Order, from_status: OrderStatus, to_status: OrderStatus,
                 values: dict, event_type: OrderEventType):
        changed = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == from_status)
            .values(**values),
            execution_options=NO_SYNC,
        ).rowcount
        if changed == 0:
            self.db.rollback()
            self.db.refresh(order)
            raise ValidationError(
                f"订单状态为 {order.status.value}，不能变更为 {to_status.value}",
                status=order.status.value,
            )
        self._record(order, event_type, from_status, to_status)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"订单状态变更: order_id={order.id}, {from_status.value} -> {to_status.value}")

    # ==================== 结算 ====================

    def complete(self, order_id: str) -> CompleteResult:
        """签收满结算期后给卖家入账（同一订单只入账一次）"""
        order = self.get(order_id)
        if order.status == OrderStatus.COMPLETE:
            return CompleteResult(order, order.payout_amount_cents, order.platform_fee_rate, duplicate=True)
        if order.status != OrderStatus.DELIVERED or order.delivered_at is None:
            raise ValidationError("只有已签收订单可以结算", status=order.status.value)

        now = self.clock()
        eligible_at = order.delivered_at + self.payout_delay
        if now < eligible_at:
            raise ValidationError("未到结算时间", eligible_at=eligible_at.isoformat())

        # 费率在结算时读取，之后的费率调整不影响已结算订单
        fee_rate = self._fee_rate(order.seller_id)
        payout_cents = int(
            (Decimal(order.items_cents) * (Decimal(1) - fee_rate)).to_integral_value(rounding=ROUND_FLOOR)
        )
        if payout_cents <= 0:
            logger.error(f"结算金额不为正，需要人工审核: order_id={order.id}, payout_cents={payout_cents}")
            raise PayoutReviewError(
                "结算金额不为正，需要人工审核",
                order_id=order.id,
                payout_cents=payout_cents,
            )

        try:
            credit = self.ledger.credit(
                order.seller_id,
                payout_cents,
                order_id=order.id,
                description=f"Sale proceeds for order {order.id}",
                commit=False,
            )
            payout_cents = credit.entry.amount_cents

            changed = self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == OrderStatus.DELIVERED)
                .values(
                    status=OrderStatus.COMPLETE,
                    payout_at=now,
                    payout_amount_cents=payout_cents,
                    platform_fee_rate=fee_rate,
                    platform_fee_cents=order.items_cents - payout_cents,
                    updated_at=now,
                ),
                execution_options=NO_SYNC,
            ).rowcount
            if changed == 0:
                self.db.rollback()
                self.db.refresh(order)
                if order.status == OrderStatus.COMPLETE:
                    return CompleteResult(order, order.payout_amount_cents, order.platform_fee_rate, duplicate=True)
                raise ValidationError("订单状态已变化，无法结算", status=order.status.value)

            self._record(order, OrderEventType.COMPLETED, OrderStatus.DELIVERED, OrderStatus.COMPLETE,
                         actor="system", detail=f"payout_cents={payout_cents}, fee_rate={fee_rate}")
            self.db.commit()
        except ValidationError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"结算失败: order_id={order.id}, error={str(e)}")
            raise

        self.db.refresh(order)
        logger.info(f"结算完成: order_id={order.id}, payout_cents={payout_cents}, fee_rate={fee_rate}")

        self._notify(order.seller_id, "payout", "Payment released",
                     f"${payout_cents / 100:.2f} has been added to your balance.",
                     link="/sales.html", metadata={"order_id": order.id})
        return CompleteResult(order, payout_cents, fee_rate, duplicate=credit.duplicate)

    def _fee_rate(self, seller_id: str) -> Decimal:
        profile = self.db.get(SellerProfile, seller_id)
        if profile is not None and profile.fee_rate is not None:
            rate = Decimal(str(profile.fee_rate))
        else:
            rate = Decimal(str(settings.DEFAULT_FEE_RATE))
        if not Decimal(0) <= rate < Decimal(1):
            raise PayoutReviewError("卖家费率配置异常，需要人工审核", seller_id=seller_id, fee_rate=str(rate))
        return rate

    # ==================== 辅助方法 ====================

    def _claim_marker(self, order: Order, column) -> bool:
        """条件写入一次性标记，写入成功才执行对应动作"""
        claimed = self.db.execute(
            update(Order)
            .where(Order.id == order.id, column.is_(None))
            .values({column.key: self.clock()}),
            execution_options=NO_SYNC,
        ).rowcount
        self.db.commit()
        if claimed:
            self.db.refresh(order)
        return bool(claimed)

    def _release_marker(self, order: Order, column):
        self.db.execute(
            update(Order).where(Order.id == order.id).values({column.key: None}),
            execution_options=NO_SYNC,
        )
        self.db.commit()
        self.db.refresh(order)

    def _record(self, order: Order, event_type: OrderEventType, from_status, to_status,
                actor: str = "system", detail: Optional[str] = None):
        self.db.add(OrderEvent(
            order_id=order.id,
            event_type=event_type,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            actor=actor,
            source=self.source,
            detail=detail,
            created_at=self.clock(),
        ))

    def _notify(self, user_id: str, kind: str, title: str, body: str,
                link: Optional[str] = None, metadata: Optional[dict] = None) -> bool:
        """通知是尽力而为的副作用，失败只记录日志"""
        try:
            self.notifier.notify(user_id, kind, title, body, link=link, metadata=metadata)
            return True
        except Exception as e:
            logger.error(f"通知发送失败: user_id={user_id}, kind={kind}, error={_describe(e)}")
            return False
