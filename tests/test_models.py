"""模型单元测试"""
import pytest
from datetime import timezone
from sqlalchemy import insert, text
from sqlalchemy.exc import IntegrityError

from app.models.ledger_entries import EntryCategory, EntryType, LedgerEntry
from app.models.listing import Listing, ListingStatus
from app.models.orders import Order, OrderItem, OrderStatus
from app.models.reservations import Reservation


class TestModels:
    """数据模型测试类"""

    def test_listing_defaults(self, db_session):
        listing = Listing(id="l-1", seller_id="seller-1", title="Silk remnant", price_cents=1800)
        db_session.add(listing)
        db_session.commit()

        saved = db_session.get(Listing, "l-1")
        db_session.refresh(saved)
        assert saved.status == ListingStatus.ACTIVE
        assert saved.quantity_available == 1
        assert saved.created_at.tzinfo is not None

    def test_reservation_listing_is_unique(self, db_session, make_listing, clock):
        """测试同一商品只能有一条预占记录"""
        listing = make_listing()
        db_session.add(Reservation(listing_id=listing.id, holder_id="buyer-a", expires_at=clock.now))
        db_session.commit()

        db_session.add(Reservation(listing_id=listing.id, holder_id="buyer-b", expires_at=clock.now))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_datetimes_round_trip_as_utc(self, db_session, make_listing, clock):
        listing = make_listing()
        db_session.add(Reservation(listing_id=listing.id, holder_id="buyer-a", expires_at=clock.now))
        db_session.commit()

        reservation = db_session.query(Reservation).one()
        db_session.refresh(reservation)
        assert reservation.expires_at == clock.now
        assert reservation.expires_at.tzinfo == timezone.utc

    def test_order_payment_ref_is_unique(self, db_session):
        for order_id in ("o-1", "o-2"):
            db_session.add(Order(
                id=order_id, buyer_id="buyer-1", seller_id="seller-1",
                items_cents=100, total_cents=100, payment_ref="pay_same",
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_order_items_and_listing_ids(self, db_session, make_listing):
        first = make_listing()
        second = make_listing()
        order = Order(
            id="o-1", buyer_id="buyer-1", seller_id="seller-1",
            items_cents=5000, total_cents=5000, payment_ref="pay_1",
            items=[
                OrderItem(listing_id=first.id, price_cents=2500),
                OrderItem(listing_id=second.id, price_cents=2500),
            ],
        )
        db_session.add(order)
        db_session.commit()

        saved = db_session.get(Order, "o-1")
        assert saved.status == OrderStatus.PAID
        assert saved.listing_ids == [first.id, second.id]

    def test_ledger_enum_values_are_lowercase(self, db_session):
        db_session.add(LedgerEntry(
            seller_id="seller-1", order_id="o-1", amount_cents=100,
            entry_type=EntryType.CREDIT, category=EntryCategory.SALE_PROCEEDS,
        ))
        db_session.commit()

        raw = db_session.execute(text("SELECT entry_type, category FROM ledger_entries")).one()
        assert tuple(raw) == ("credit", "sale_proceeds")

    def test_ledger_sign_constraint(self, db_session):
        """测试入账必须为正、出账必须为负"""
        with pytest.raises(IntegrityError):
            db_session.execute(insert(LedgerEntry.__table__).values(
                seller_id="seller-1", amount_cents=-100,
                entry_type=EntryType.CREDIT, category=EntryCategory.SALE_PROCEEDS,
            ))
        db_session.rollback()

    def test_init_db_creates_all_tables(self):
        from sqlalchemy import create_engine, inspect

        from app.db.init_db import init_db

        engine = create_engine("sqlite://")
        init_db(bind=engine)

        assert set(inspect(engine).get_table_names()) >= {
            "listings", "reservations", "orders", "order_items", "order_events",
            "ledger_entries", "seller_profiles", "rate_limits",
        }
        engine.dispose()
