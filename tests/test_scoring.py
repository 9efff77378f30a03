"""Tests for the weighted rail scorer."""

import pytest

from flowrail.registry import ConnectorStatus, FundingSource, SourceKind
from flowrail.schema import Money, PayBillIntent, PayMerchantIntent, SendMoneyIntent
from flowrail.scoring import MAX_TOTAL, RailScore, RailScorer


def source(source_id: str, balance: float, rank: int, caps=("can_pay_qr",), **kwargs) -> FundingSource:
    return FundingSource(
        id=source_id,
        kind=kwargs.pop("kind", SourceKind.WALLET),
        name=kwargs.pop("name", source_id.upper()),
        balance=balance,
        priority_rank=rank,
        capabilities=frozenset(caps),
        **kwargs,
    )


def merchant_intent(amount: float, accepted=(), currency: str = "MYR") -> PayMerchantIntent:
    return PayMerchantIntent(
        amount=Money(value=amount, currency=currency),
        merchant_ref="kopitiam_01",
        merchant_accepted_rails=frozenset(accepted),
    )


class TestScoringFactors:
    """Test each score component."""

    def setup_method(self):
        """Set up test fixtures."""
        self.scorer = RailScorer(history_normalization=10)

    def score(self, src, intent, sources=None, history=None, health=None) -> RailScore:
        return self.scorer.score_all(intent, sources or [src], history, health)[src.id]

    def test_full_score(self):
        """A perfect candidate should score 100."""
        src = source("tng", 50.0, 1)

        score = self.score(src, merchant_intent(10.0), history={"tng": 10})

        assert score.compatibility == 35
        assert score.balance == 30
        assert score.priority == 15
        assert score.history == 10
        assert score.health == 10
        assert score.total == pytest.approx(100.0)
        assert score.needs_top_up is False

    def test_compatibility_requires_capability(self):
        """Rails missing the intent's capability get no compatibility."""
        src = source("bank", 500.0, 1, caps=("can_pay",))

        assert self.score(src, merchant_intent(10.0)).compatibility == 0

    def test_compatibility_requires_acceptance(self):
        """Rails the merchant does not accept get no compatibility."""
        src = source("grabpay", 500.0, 1)

        assert self.score(src, merchant_intent(10.0, accepted={"tng"})).compatibility == 0

    def test_acceptance_matches_name(self):
        """Accepted rails may be listed by display name."""
        src = source("tng", 500.0, 1, name="TouchNGo")

        assert self.score(src, merchant_intent(10.0, accepted={"touchngo"})).compatibility == 35

    def test_currency_mismatch_is_incompatible(self):
        """A rail in another currency cannot pay."""
        src = source("tng", 500.0, 1, currency="SGD")

        assert self.score(src, merchant_intent(10.0)).compatibility == 0

    def test_p2p_capability(self):
        """SendMoney needs can_p2p."""
        intent = SendMoneyIntent(amount=Money(value=5.0), recipient_ref="ali")

        assert self.score(source("a", 50.0, 1, caps=("can_p2p",)), intent).compatibility == 35
        assert self.score(source("b", 50.0, 1, caps=("can_pay_qr",)), intent).compatibility == 0

    def test_bill_capability(self):
        """PayBill needs can_pay."""
        intent = PayBillIntent(amount=Money(value=80.0), biller_id="tnb", account_ref="1")

        assert self.score(source("bank", 500.0, 1, caps=("can_pay",)), intent).compatibility == 35

    def test_balance_with_top_up_room(self):
        """A shortfall within the source's top-up room earns half the balance weight."""
        src = source("grabpay", 5.0, 1, max_auto_top_up_amount=100.0)

        score = self.score(src, merchant_intent(50.0))

        assert score.balance == 15
        assert score.needs_top_up is True

    def test_balance_without_top_up_room(self):
        """A shortfall with no top-up room earns nothing."""
        src = source("tng", 5.0, 1)

        score = self.score(src, merchant_intent(12.5))

        assert score.balance == 0
        assert score.needs_top_up is False

    def test_balance_shortfall_beyond_top_up_room(self):
        src = source("grabpay", 5.0, 1, max_auto_top_up_amount=20.0)

        assert self.score(src, merchant_intent(50.0)).balance == 0

    def test_priority_scales_with_rank(self):
        """Priority is 15 * (1 - (rank-1)/max_rank)."""
        sources = [source("a", 50, 1), source("b", 50, 2), source("c", 50, 4)]

        scores = self.scorer.score_all(merchant_intent(10.0), sources)

        assert scores["a"].priority == pytest.approx(15.0)
        assert scores["b"].priority == pytest.approx(11.25)
        assert scores["c"].priority == pytest.approx(3.75)

    def test_history_saturates(self):
        """History counts saturate at the normalization constant."""
        sources = [source("a", 50, 1), source("b", 50, 1), source("c", 50, 1)]

        scores = self.scorer.score_all(merchant_intent(10.0), sources, history={"a": 3, "b": 25})

        assert scores["a"].history == pytest.approx(3.0)
        assert scores["b"].history == pytest.approx(10.0)
        assert scores["c"].history == 0

    def test_health_levels(self):
        """Available 10, degraded 5, unavailable 0."""
        sources = [source("a", 50, 1), source("b", 50, 1), source("c", 50, 1)]
        health = {"b": ConnectorStatus.DEGRADED, "c": ConnectorStatus.UNAVAILABLE}

        scores = self.scorer.score_all(merchant_intent(10.0), sources, health=health)

        assert (scores["a"].health, scores["b"].health, scores["c"].health) == (10, 5, 0)


class TestScoreInvariants:
    """Test properties that hold for every candidate."""

    def test_total_is_sum_and_bounded(self):
        """total == sum of components and 0 <= total <= 100 for a mixed set."""
        scorer = RailScorer()
        sources = [
            source("a", 0.0, 1),
            source("b", 5.0, 2, max_auto_top_up_amount=50.0),
            source("c", 1000.0, 3, caps=("can_pay",)),
            source("d", 20.0, 7, currency="SGD"),
            source("e", 100.0, 5),
        ]
        history = {"a": 2, "b": 40, "e": 9}
        health = {"a": ConnectorStatus.UNAVAILABLE, "b": ConnectorStatus.DEGRADED}

        for amount in (0.01, 12.5, 30.0, 99.99, 5000.0):
            for score in scorer.score_all(merchant_intent(amount), sources, history, health).values():
                parts = score.compatibility + score.balance + score.priority + score.history + score.health
                assert score.total == pytest.approx(parts)
                assert 0 <= score.total <= MAX_TOTAL

    def test_rail_score_rejects_inconsistent_total(self):
        """RailScore should refuse a total that is not the sum of its parts."""
        with pytest.raises(ValueError):
            RailScore(rail_id="x", compatibility=35, balance=30, priority=15, history=10, health=10, total=90)
