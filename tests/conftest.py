"""测试配置和 fixtures"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from redlock import Redlock

from app.db.base import Base
from app.gateways.notification import NotificationGateway
from app.gateways.payment import PaymentGateway, Refund
from app.gateways.shipping import ShippingGateway
from app.models.listing import Listing, ListingStatus
from app.services.ledger_service import LedgerService
from app.services.order_state_machine import OrderStateMachine
from app.services.reservation_manager import ReservationManager

import app.models  # noqa: F401  注册全部模型


class FakeClock:
    """可手动拨动的时钟"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    """SQLite 内存库，所有连接共享同一个库"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """创建测试数据库会话"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def payment():
    gateway = Mock(spec=PaymentGateway)
    gateway.authorize.return_value = True
    gateway.find_refund.return_value = None
    gateway.refund.side_effect = lambda payment_ref, amount_cents, idempotency_key: Refund(
        refund_id=f"re_{payment_ref}",
        payment_ref=payment_ref,
        amount_cents=amount_cents,
    )
    return gateway


@pytest.fixture
def shipping():
    gateway = Mock(spec=ShippingGateway)
    gateway.void_label.return_value = True
    return gateway


@pytest.fixture
def notifier():
    return Mock(spec=NotificationGateway)


@pytest.fixture
def reservations(db_session, clock):
    return ReservationManager(db_session, clock=clock)


@pytest.fixture
def ledger(db_session, clock):
    return LedgerService(db_session, clock=clock)


@pytest.fixture
def orders(db_session, payment, shipping, notifier, ledger, reservations, clock):
    return OrderStateMachine(
        db_session,
        payment=payment,
        shipping=shipping,
        notifier=notifier,
        ledger=ledger,
        reservations=reservations,
        clock=clock,
    )


@pytest.fixture
def make_listing(db_session, clock):
    """创建在售商品"""
    def _make(seller_id="seller-1", price_cents=2500, status=ListingStatus.ACTIVE, title="Linen offcut"):
        listing = Listing(
            id=str(uuid.uuid4()),
            seller_id=seller_id,
            title=title,
            price_cents=price_cents,
            status=status,
            quantity_available=0 if status == ListingStatus.SOLD else 1,
            created_at=clock(),
            updated_at=clock(),
        )
        db_session.add(listing)
        db_session.commit()
        return listing
    return _make


@pytest.fixture
def place_order(orders, make_listing):
    """下单：默认一件 2500 分的商品，运费 500 分"""
    def _place(buyer_id="buyer-1", listings=None, payment_ref=None, shipping_cents=500):
        listings = listings or [make_listing()]
        result = orders.create(
            buyer_id,
            [listing.id for listing in listings],
            payment_ref or f"pay_{uuid.uuid4().hex[:12]}",
            shipping_cents=shipping_cents,
        )
        return result.order
    return _place


CRON_SECRET = "cron-secret-for-tests"
INTERNAL_SECRET = "internal-secret-for-tests"


@pytest.fixture
def client(session_factory, payment, shipping, notifier, monkeypatch):
    """FastAPI 测试客户端：真实 SQLite 会话 + 模拟网关"""
    from fastapi.testclient import TestClient

    from app.core import dependencies
    from app.core.config import settings
    from app.main import app

    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(settings, "INTERNAL_WEBHOOK_SECRET", INTERNAL_SECRET)

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[dependencies.get_db] = override_db
    app.dependency_overrides[dependencies.get_payment_gateway] = lambda: payment
    app.dependency_overrides[dependencies.get_shipping_gateway] = lambda: shipping
    app.dependency_overrides[dependencies.get_notification_gateway] = lambda: notifier
    app.dependency_overrides[dependencies.get_redlock] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def internal_headers():
    return {"X-Internal-Secret": INTERNAL_SECRET}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def webhook_headers():
    return {"X-Webhook-Secret": INTERNAL_SECRET}
