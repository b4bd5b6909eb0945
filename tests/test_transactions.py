import pytest
import asyncio
import httpx
from fastapi.testclient import TestClient

from config import TestingSettings as ApiTestSettings
from main import create_app


@pytest.fixture
def app():
    return create_app(ApiTestSettings())


@pytest.fixture
def client(app):
    """Fresh app and ledger for each test."""
    return TestClient(app)


def post(client, type_, client_id, tx, amount=None):
    body = {"type": type_, "client": client_id, "tx": tx}
    if amount is not None:
        body["amount"] = amount
    return client.post("/transactions", json=body)


class TestBasicTransactions:
    """Test basic transaction functionality."""

    def test_deposit_success(self, client):
        """Test successful deposit."""
        response = post(client, "deposit", 1, 1, "1.5050")

        assert response.status_code == 201
        data = response.json()

        assert data["status"] == "processed"
        assert data["type"] == "deposit"
        assert data["tx"] == 1
        assert data["account"] == {
            "client": 1,
            "available": "1.5050",
            "held": "0.0000",
            "total": "1.5050",
            "locked": False,
        }
        assert "timestamp" in data

    def test_withdrawal_success(self, client):
        """Test successful withdrawal."""
        post(client, "deposit", 1, 1, "10.00")
        response = post(client, "withdrawal", 1, 2, "2.25")

        assert response.status_code == 201
        assert response.json()["account"]["available"] == "7.7500"

    def test_insufficient_funds(self, client):
        """Test withdrawal with insufficient funds."""
        post(client, "deposit", 1, 1, "1.5050")
        response = post(client, "withdrawal", 1, 2, "5.0000")

        assert response.status_code == 400
        assert response.json()["error_code"] == "INSUFFICIENT_BALANCE"

        account = client.get("/accounts/1").json()
        assert account["available"] == "1.5050"

    def test_float_amount_is_rounded(self, client):
        """Test that JSON numbers are rounded to four decimal places."""
        response = post(client, "deposit", 1, 1, 10.55557)

        assert response.status_code == 201
        assert response.json()["account"]["total"] == "10.5556"


class TestDuplicates:
    """Test transaction id uniqueness."""

    def test_duplicate_deposit_rejected(self, client):
        """Test that a reused transaction id leaves the ledger untouched."""
        assert post(client, "deposit", 1, 1, "5").status_code == 201

        response = post(client, "deposit", 1, 1, "5")
        assert response.status_code == 409
        assert response.json()["error_code"] == "TRANSACTION_ALREADY_EXISTS"

        assert client.get("/accounts/1").json()["total"] == "5.0000"


class TestDisputes:
    """Test the dispute lifecycle over HTTP."""

    def test_dispute_and_chargeback(self, client):
        post(client, "deposit", 1, 1, "1.5555")

        response = post(client, "dispute", 1, 1)
        assert response.status_code == 201
        assert response.json()["account"]["held"] == "1.5555"

        response = post(client, "dispute", 1, 1)
        assert response.status_code == 409
        assert response.json()["error_code"] == "TRANSACTION_ALREADY_DISPUTED"

        response = post(client, "chargeback", 1, 1)
        assert response.status_code == 201
        assert response.json()["account"]["locked"] is True

        response = post(client, "deposit", 1, 3, "1.0")
        assert response.status_code == 423
        assert response.json()["error_code"] == "ACCOUNT_LOCKED"

    def test_dispute_unknown_transaction(self, client):
        response = post(client, "dispute", 2, 99)

        assert response.status_code == 404
        assert response.json()["error_code"] == "TRANSACTION_NOT_FOUND"
        assert client.get("/accounts/2").status_code == 404

    def test_dispute_other_clients_transaction(self, client):
        post(client, "deposit", 1, 1, "1.0")
        post(client, "deposit", 2, 2, "1.0")

        response = post(client, "dispute", 2, 1)
        assert response.status_code == 403
        assert response.json()["error_code"] == "NOT_CLIENT_OWNED_TRANSACTION"

    def test_resolve_without_dispute(self, client):
        post(client, "deposit", 1, 1, "1.0")

        response = post(client, "resolve", 1, 1)
        assert response.status_code == 409
        assert response.json()["error_code"] == "TRANSACTION_NOT_DISPUTED"


class TestConcurrency:
    """Test concurrent transaction processing."""

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_same_account(self, app):
        """Test that concurrent withdrawals never overdraw the account."""
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/transactions", json={
                "type": "deposit", "client": 1, "tx": 1, "amount": "50.00"
            })
            assert response.status_code == 201

            tasks = [
                ac.post("/transactions", json={
                    "type": "withdrawal", "client": 1, "tx": 100 + i, "amount": "10.00"
                })
                for i in range(10)
            ]
            results = await asyncio.gather(*tasks)

            successful = [r for r in results if r.status_code == 201]
            failed = [r for r in results if r.status_code == 400]
            assert len(successful) == 5
            assert len(failed) == 5

            account = (await ac.get("/accounts/1")).json()
            assert account["available"] == "0.0000"
            assert account["total"] == "0.0000"

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_ids(self, app):
        """Test that only one of several racing deposits with the same id commits."""
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            tasks = [
                ac.post("/transactions", json={
                    "type": "deposit", "client": 1, "tx": 7, "amount": "1.00"
                })
                for _ in range(5)
            ]
            results = await asyncio.gather(*tasks)

            assert sorted(r.status_code for r in results) == [201, 409, 409, 409, 409]
            assert (await ac.get("/accounts/1")).json()["total"] == "1.0000"


class TestValidation:
    """Test input validation."""

    def test_unknown_type(self, client):
        response = post(client, "transfer", 1, 1, "1.0")
        assert response.status_code == 422

    def test_negative_amount(self, client):
        response = post(client, "deposit", 1, 1, "-1.0")
        assert response.status_code == 422
        assert client.get("/accounts/1").status_code == 404

    def test_oversized_amount(self, client):
        response = post(client, "deposit", 1, 1, "123456789012345678901234567.5")
        assert response.status_code == 422
        assert client.get("/accounts/1").status_code == 404

    def test_missing_amount(self, client):
        response = post(client, "withdrawal", 1, 1)
        assert response.status_code == 422

    def test_negative_client_id(self, client):
        response = post(client, "deposit", -1, 1, "1.0")
        assert response.status_code == 422

    def test_missing_required_fields(self, client):
        response = client.post("/transactions", json={"type": "deposit"})
        assert response.status_code == 422

    def test_malformed_json(self, client):
        response = client.post(
            "/transactions",
            content="{'invalid': 'json'",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 422


class TestReporting:
    """Test ledger listing, report and health endpoints."""

    def test_accounts_listing(self, client):
        post(client, "deposit", 2, 1, "2")
        post(client, "deposit", 1, 2, "1")

        response = client.get("/accounts")
        assert response.status_code == 200
        assert [a["client"] for a in response.json()] == [1, 2]

    def test_report(self, client):
        post(client, "deposit", 1, 1, "1.5")
        post(client, "deposit", 2, 2, "3")
        post(client, "dispute", 2, 2)

        response = client.get("/report")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text == (
            "client,available,held,total,locked\n"
            "1,1.5000,0.0000,1.5000,false\n"
            "2,0.0000,3.0000,3.0000,false\n"
        )

    def test_health_check(self, client):
        post(client, "deposit", 1, 1, "1")
        post(client, "dispute", 1, 1)
        post(client, "withdrawal", 1, 2, "5")

        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "healthy"
        assert data["accounts_count"] == 1
        assert data["transactions_processed"] == 2
        assert data["transactions_rejected"] == 1
        assert data["open_disputes"] == 1

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["message"] == "Payments Engine API"

    def test_apps_do_not_share_ledgers(self, client):
        post(client, "deposit", 1, 1, "1")
        other = TestClient(create_app(ApiTestSettings()))
        assert other.get("/accounts").json() == []
