"""Tests for the in-memory registry and the HTTP registry client."""

import threading
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from flowrail.errors import InsufficientFunds
from flowrail.registry import (
    ConnectorStatus,
    FundingSource,
    Guardrails,
    InMemoryConnectorHealthRepository,
    InMemoryFundingSourceRepository,
    InMemoryGuardrailRepository,
    LinkedStatus,
    RegistryClient,
    RegistryError,
    SourceKind,
)
from flowrail.registry.service import app as registry_app


def wallet(source_id: str, balance: float, rank: int = 1, **kwargs) -> FundingSource:
    return FundingSource(
        id=source_id,
        kind=SourceKind.WALLET,
        name=source_id.upper(),
        balance=balance,
        priority_rank=rank,
        capabilities=frozenset({"can_pay_qr"}),
        **kwargs,
    )


class TestFundingSourceRepository:
    """Test source listing and serialized balance mutation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repo = InMemoryFundingSourceRepository({"u1": [wallet("tng", 10.0), wallet("bank", 500.0, 2)]})

    def test_list_linked_returns_copies(self):
        """Callers should not be able to mutate stored sources."""
        sources = self.repo.list_linked("u1")
        sources[0].balance = 9999.0

        assert self.repo.get_source("u1", "tng").balance == 10.0

    def test_unknown_user_has_no_sources(self):
        """Unknown users should get an empty list."""
        assert self.repo.list_linked("nobody") == []

    def test_debit_and_credit(self):
        """Balance deltas should apply and round to cents."""
        self.repo.apply_balance_delta("u1", "tng", -2.345)
        updated = self.repo.apply_balance_delta("u1", "tng", 1.0)

        assert updated.balance == pytest.approx(8.66, abs=0.01)

    def test_overdraw_rejected(self):
        """Debits beyond the balance should raise and leave the balance alone."""
        with pytest.raises(InsufficientFunds):
            self.repo.apply_balance_delta("u1", "tng", -10.01)

        assert self.repo.get_source("u1", "tng").balance == 10.0

    def test_concurrent_debits_never_overdraw(self):
        """Concurrent debits should be serialized per source."""
        successes = []

        def debit():
            try:
                self.repo.apply_balance_delta("u1", "bank", -30.0)
                successes.append(True)
            except InsufficientFunds:
                pass

        threads = [threading.Thread(target=debit) for _ in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 16
        assert self.repo.get_source("u1", "bank").balance == pytest.approx(20.0)

    def test_is_candidate(self):
        """Only linked and available sources are candidates."""
        assert wallet("a", 1).is_candidate
        assert not wallet("b", 1, available=False).is_candidate
        assert not wallet("c", 1, linked_status=LinkedStatus.PENDING).is_candidate


class TestConnectorHealthRepository:

    def test_unknown_rail_is_available(self):
        """Rails without a health record should be reported available."""
        repo = InMemoryConnectorHealthRepository()

        assert repo.status_of("anything") == ConnectorStatus.AVAILABLE

    def test_set_status(self):
        repo = InMemoryConnectorHealthRepository({"tng": ConnectorStatus.DEGRADED})
        repo.set_status("tng", ConnectorStatus.UNAVAILABLE)

        assert repo.status_of("tng") == ConnectorStatus.UNAVAILABLE


class TestGuardrailRepository:
    """Test guardrail records and the atomic daily counter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repo = InMemoryGuardrailRepository()
        self.repo.put(Guardrails(user_id="u1", daily_auto_limit=200.0))

    def test_defaults_for_unknown_user(self):
        """Unknown users should get default guardrails."""
        record = self.repo.get("new_user")

        assert record.user_id == "new_user"
        assert record.max_single_payment_auto == 50.0
        assert record.kill_switch_engaged is False

    def test_configured_defaults(self):
        """A repository-level default record should be used for unknown users."""
        repo = InMemoryGuardrailRepository(defaults=Guardrails(user_id="x", max_single_payment_auto=75.0))

        assert repo.get("someone").max_single_payment_auto == 75.0
        assert repo.get("someone").user_id == "someone"

    def test_increment_daily_spent(self):
        """Increments should accumulate."""
        self.repo.increment_daily_spent("u1", 12.5)
        record = self.repo.increment_daily_spent("u1", 7.5)

        assert record.daily_spent_so_far == 20.0
        assert self.repo.get("u1").daily_spent_so_far == 20.0

    def test_concurrent_increments_are_atomic(self):
        """No increment should be lost under concurrency."""
        threads = [
            threading.Thread(target=self.repo.increment_daily_spent, args=("u1", 1.0))
            for _ in range(50)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.repo.get("u1").daily_spent_so_far == 50.0

    def test_reserve_within_limit(self):
        """Reservations count against the limit until settled or released."""
        assert self.repo.reserve_daily("u1", 150.0) is True
        assert self.repo.reserve_daily("u1", 60.0) is False

        record = self.repo.get("u1")
        assert record.daily_reserved == 150.0
        assert record.daily_spent_so_far == 0.0
        assert record.daily_remaining == 50.0

    def test_settle_and_release(self):
        self.repo.reserve_daily("u1", 100.0)
        self.repo.reserve_daily("u1", 40.0)

        settled = self.repo.settle_daily("u1", 100.0)
        assert settled.daily_spent_so_far == 100.0
        assert settled.daily_reserved == 40.0

        released = self.repo.release_daily("u1", 40.0)
        assert released.daily_reserved == 0.0
        assert released.daily_spent_so_far == 100.0

    def test_concurrent_reservations_never_exceed_limit(self):
        """Of 50 racing reservations of 10.0, exactly 20 fit under a 200.0 limit."""
        outcomes = []
        threads = [
            threading.Thread(target=lambda: outcomes.append(self.repo.reserve_daily("u1", 10.0)))
            for _ in range(50)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 20
        assert self.repo.get("u1").daily_reserved == 200.0

    def test_daily_reset_on_new_day(self):
        """Daily spend should reset when the stored date is stale."""
        yesterday = datetime.now(UTC).date() - timedelta(days=1)
        self.repo.put(Guardrails(user_id="u2", daily_spent_so_far=150.0, last_reset_date=yesterday))

        record = self.repo.get("u2")

        assert record.daily_spent_so_far == 0.0
        assert record.last_reset_date == datetime.now(UTC).date()

    def test_kill_switch_toggle(self):
        """Engaging sets paused_at; releasing clears it."""
        engaged = self.repo.set_kill_switch("u1", True)
        assert engaged.kill_switch_engaged is True
        assert engaged.paused_at is not None

        released = self.repo.set_kill_switch("u1", False)
        assert released.kill_switch_engaged is False
        assert released.paused_at is None


class TestRegistryClient:
    """Test the HTTP registry client against a mock transport."""

    def setup_method(self):
        """Set up test fixtures."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/users/u1/sources":
                return httpx.Response(200, json=[{
                    "id": "tng",
                    "kind": "wallet",
                    "name": "TouchNGo",
                    "balance": 12.0,
                    "priority_rank": 1,
                    "capabilities": ["can_pay_qr"],
                }])
            if request.url.path == "/connectors/tng/health":
                return httpx.Response(200, json={"status": "degraded"})
            if request.url.path == "/users/u1/history/by-rail":
                assert request.url.params["days"] == "30"
                return httpx.Response(200, json={"tng": 4})
            return httpx.Response(500, json={"error": "boom"})

        self.client = RegistryClient(base_url="http://registry.test", transport=httpx.MockTransport(handler))

    def test_list_linked(self):
        """Sources should be parsed into FundingSource models."""
        sources = self.client.list_linked("u1")

        assert len(sources) == 1
        assert sources[0].id == "tng"
        assert "can_pay_qr" in sources[0].capabilities

    def test_status_of(self):
        assert self.client.status_of("tng") == ConnectorStatus.DEGRADED

    def test_status_of_unreachable_is_degraded(self):
        """Health lookups that fail should degrade rather than raise."""
        assert self.client.status_of("other") == ConnectorStatus.DEGRADED

    def test_recent_by_rail(self):
        assert self.client.recent_by_rail("u1") == {"tng": 4}

    def test_server_error_raises(self):
        """Errors on required reads should raise RegistryError."""
        with pytest.raises(RegistryError):
            self.client.list_linked("u2")


class TestRegistryService:
    """Test the registry REST service."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = TestClient(registry_app)

    def test_list_sources(self):
        response = self.client.get("/users/user_demo/sources")

        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == ["tng", "duitnow", "grabpay", "maybank"]

    def test_unknown_user_has_no_sources(self):
        assert self.client.get("/users/nobody/sources").json() == []

    def test_upsert_source(self):
        source = wallet("boost", 15.0).model_dump(mode="json")

        response = self.client.put("/users/svc_user/sources/boost", json=source)

        assert response.status_code == 200
        assert [s["id"] for s in self.client.get("/users/svc_user/sources").json()] == ["boost"]

    def test_upsert_source_id_mismatch(self):
        source = wallet("boost", 15.0).model_dump(mode="json")

        assert self.client.put("/users/svc_user/sources/other", json=source).status_code == 400

    def test_health(self):
        assert self.client.get("/connectors/grabpay/health").json()["status"] == "degraded"

        self.client.put("/connectors/svc_rail/health", json={"status": "unavailable"})

        assert self.client.get("/connectors/svc_rail/health").json()["status"] == "unavailable"

    def test_history_by_rail(self):
        """Recorded successes are counted per rail."""
        for i in range(2):
            self.client.post("/users/svc_history/history", json={
                "intent_id": f"svc-{i}",
                "rail_used": "duitnow",
                "amount": 10.0,
                "status": "success",
            })

        response = self.client.get("/users/svc_history/history/by-rail", params={"days": 30})

        assert response.json() == {"duitnow": 2}
