"""卖家账本服务单元测试"""
import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, ValidationError
from app.models.ledger_entries import EntryCategory, EntryType, LedgerEntry
from app.models.seller_profile import SellerProfile
from app.services.ledger_service import LedgerService


class TestLedgerService:
    """账本测试类"""

    def test_credit_records_entry(self, ledger):
        result = ledger.credit("seller-1", 2175, order_id="order-1", description="Sale proceeds for order-1")

        assert result.duplicate is False
        assert result.entry.id is not None
        assert result.entry.amount_cents == 2175
        assert result.entry.entry_type == EntryType.CREDIT
        assert result.entry.category == EntryCategory.SALE_PROCEEDS
        assert ledger.balance("seller-1") == 2175

    def test_duplicate_credit_returns_existing(self, ledger, db_session):
        """测试同一订单重复入账只记一次"""
        first = ledger.credit("seller-1", 2175, order_id="order-1")

        second = ledger.credit("seller-1", 2175, order_id="order-1")

        assert second.duplicate is True
        assert second.entry.id == first.entry.id
        assert len(db_session.execute(select(LedgerEntry)).scalars().all()) == 1
        assert ledger.balance("seller-1") == 2175

    def test_duplicate_credit_for_other_seller_conflicts(self, ledger):
        ledger.credit("seller-1", 2175, order_id="order-1")

        with pytest.raises(ConflictError):
            ledger.credit("seller-2", 2175, order_id="order-1")

    def test_credit_without_order_is_not_deduplicated(self, ledger):
        """测试没有订单号的入账（人工调整）互不冲突"""
        ledger.credit("seller-1", 100, category=EntryCategory.ADJUSTMENT)
        ledger.credit("seller-1", 100, category=EntryCategory.ADJUSTMENT)

        assert ledger.balance("seller-1") == 200

    @pytest.mark.parametrize("amount", [0, -5])
    def test_credit_rejects_non_positive_amount(self, ledger, amount):
        with pytest.raises(ValidationError):
            ledger.credit("seller-1", amount, order_id="order-1")

    def test_withdraw_debits_balance(self, ledger, db_session):
        ledger.credit("seller-1", 5000, order_id="order-1")

        entry = ledger.withdraw("seller-1", 3000)

        assert entry.amount_cents == -3000
        assert entry.entry_type == EntryType.DEBIT
        assert entry.category == EntryCategory.WITHDRAWAL
        assert ledger.balance("seller-1") == 2000
        assert db_session.get(SellerProfile, "seller-1") is not None

    def test_withdraw_rejects_insufficient_balance(self, ledger):
        """测试余额不足时不记出账"""
        ledger.credit("seller-1", 1000, order_id="order-1")

        with pytest.raises(ValidationError) as exc_info:
            ledger.withdraw("seller-1", 1500)

        assert exc_info.value.extra["balance_cents"] == 1000
        assert ledger.balance("seller-1") == 1000

    def test_sequential_withdrawals_never_overdraw(self, ledger):
        """测试连续提现不会让余额为负"""
        ledger.credit("seller-1", 1000, order_id="order-1")

        ledger.withdraw("seller-1", 700)
        with pytest.raises(ValidationError):
            ledger.withdraw("seller-1", 700)

        assert ledger.balance("seller-1") == 300

    def test_withdraw_minimum(self, ledger):
        ledger.credit("seller-1", 1000, order_id="order-1")

        with pytest.raises(ValidationError) as exc_info:
            ledger.withdraw("seller-1", 99)

        assert exc_info.value.extra["min_withdrawal_cents"] == 100

    def test_custom_minimum(self, db_session, clock):
        service = LedgerService(db_session, clock=clock, min_withdrawal_cents=1)
        service.credit("seller-1", 50, order_id="order-1")

        assert service.withdraw("seller-1", 10).amount_cents == -10

    def test_entries_newest_first_and_capped(self, ledger, clock):
        """测试流水按时间倒序，条数上限 100"""
        for i in range(3):
            ledger.credit("seller-1", 100 + i, order_id=f"order-{i}")
            clock.advance(minutes=1)

        entries = ledger.entries("seller-1", limit=2)

        assert [e.amount_cents for e in entries] == [102, 101]
        assert len(ledger.entries("seller-1", limit=1000)) == 3

    def test_balance_is_per_seller(self, ledger):
        ledger.credit("seller-1", 500, order_id="order-1")
        ledger.credit("seller-2", 700, order_id="order-2")

        assert ledger.balance("seller-1") == 500
        assert ledger.balance("seller-2") == 700
        assert ledger.balance("nobody") == 0


class TestWithdrawAcrossSessions:
    """多个实例（独立会话）对同一卖家并发提现"""

    @pytest.fixture
    def two_ledgers(self, session_factory, clock):
        first, second = session_factory(), session_factory()
        try:
            yield LedgerService(first, clock=clock), LedgerService(second, clock=clock)
        finally:
            first.close()
            second.close()

    def test_second_withdrawal_sees_first_debit(self, two_ledgers):
        """测试两个实例各自提现时派生余额不会为负"""
        ledger_a, ledger_b = two_ledgers
        ledger_a.credit("seller-1", 1000, order_id="order-1")

        ledger_a.withdraw("seller-1", 700)
        with pytest.raises(ValidationError) as exc_info:
            ledger_b.withdraw("seller-1", 700)

        assert exc_info.value.extra["balance_cents"] == 300
        assert ledger_b.withdraw("seller-1", 300).amount_cents == -300
        assert ledger_a.balance("seller-1") == 0
        assert ledger_b.balance("seller-1") == 0

    def test_duplicate_credit_from_other_instance(self, two_ledgers):
        ledger_a, ledger_b = two_ledgers

        first = ledger_a.credit("seller-1", 2175, order_id="order-1")
        second = ledger_b.credit("seller-1", 2175, order_id="order-1")

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.entry.id == first.entry.id
        assert ledger_b.balance("seller-1") == 2175
