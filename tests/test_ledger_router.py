"""钱包与账本路由单元测试"""
import pytest


@pytest.fixture
def credit(client, webhook_headers):
    def _credit(seller_id="seller-1", amount_cents=5000, order_id="order-1"):
        return client.post(
            "/api/v1/internal/ledger/credit",
            json={
                "seller_id": seller_id,
                "amount_cents": amount_cents,
                "order_id": order_id,
                "description": "Sale proceeds",
            },
            headers=webhook_headers,
        )
    return _credit


class TestLedgerRouter:
    """钱包路由测试类"""

    def test_credit_success(self, credit):
        response = credit()

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["transaction_id"] > 0

    def test_duplicate_credit_returns_409(self, credit):
        """测试重复入账返回 409 和已有流水ID"""
        first = credit().json()

        response = credit()

        assert response.status_code == 409
        data = response.json()
        assert data["duplicate"] is True
        assert data["transaction_id"] == first["transaction_id"]

    def test_credit_requires_webhook_secret(self, client):
        response = client.post(
            "/api/v1/internal/ledger/credit",
            json={"seller_id": "seller-1", "amount_cents": 100, "order_id": "order-1"},
            headers={"X-Webhook-Secret": "nope"},
        )

        assert response.status_code == 401

    def test_credit_rejects_non_positive_amount(self, credit):
        response = credit(amount_cents=0)

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_balance_and_transactions(self, client, credit):
        credit(order_id="order-1", amount_cents=1200)
        credit(order_id="order-2", amount_cents=800)

        balance = client.get("/api/v1/wallet/balance", headers={"X-User-Id": "seller-1"})
        assert balance.status_code == 200
        assert balance.json()["balance_cents"] == 2000

        transactions = client.get(
            "/api/v1/wallet/transactions",
            params={"limit": 1},
            headers={"X-User-Id": "seller-1"},
        )
        assert transactions.status_code == 200
        entries = transactions.json()["transactions"]
        assert len(entries) == 1
        assert entries[0]["entry_type"] == "credit"

    def test_transactions_limit_is_capped(self, client):
        response = client.get(
            "/api/v1/wallet/transactions",
            params={"limit": 101},
            headers={"X-User-Id": "seller-1"},
        )

        assert response.status_code == 422

    def test_withdraw(self, client, credit):
        credit(amount_cents=1500)

        response = client.post(
            "/api/v1/wallet/withdraw",
            json={"amount_cents": 1000},
            headers={"X-User-Id": "seller-1"},
        )

        assert response.status_code == 200
        assert response.json()["balance_cents"] == 500

    def test_withdraw_insufficient_balance(self, client, credit):
        credit(amount_cents=500)

        response = client.post(
            "/api/v1/wallet/withdraw",
            json={"amount_cents": 1000},
            headers={"X-User-Id": "seller-1"},
        )

        assert response.status_code == 400
        assert response.json()["balance_cents"] == 500

    def test_wallet_requires_identity(self, client):
        assert client.get("/api/v1/wallet/balance").status_code == 401
