"""Tests for the resolver: rail choice, fallback chain, steps and explanation."""

from flowrail.registry import ConnectorStatus, FundingSource, SourceKind
from flowrail.registry.mock_data import MOCK_HEALTH, MOCK_SOURCES
from flowrail.resolution import PlanAction, ReasonCode, Resolver, StepKind
from flowrail.schema import Money, PayMerchantIntent, SendMoneyIntent


def wallet(source_id: str, balance: float, rank: int, caps=("can_pay_qr",), **kwargs) -> FundingSource:
    return FundingSource(
        id=source_id,
        kind=kwargs.pop("kind", SourceKind.WALLET),
        name=kwargs.pop("name", source_id.title()),
        balance=balance,
        priority_rank=rank,
        capabilities=frozenset(caps),
        **kwargs,
    )


def qr_payment(amount: float, accepted=()) -> PayMerchantIntent:
    return PayMerchantIntent(
        amount=Money(value=amount),
        merchant_ref="mamak_88",
        merchant_accepted_rails=frozenset(accepted),
    )


class TestRailSelection:
    """Test primary rail choice and explanation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.resolver = Resolver()

    def test_sufficient_balance_beats_preference(self):
        """A low-balance preferred wallet loses to one that can cover the amount."""
        sources = [
            wallet("tng", 5.0, 1, name="TouchNGo"),
            wallet("duitnow", 50.0, 2, name="DuitNow"),
        ]

        plan = self.resolver.resolve(qr_payment(12.50), sources)

        assert plan.action == PlanAction.PROCEED
        assert plan.chosen_rail_id == "duitnow"
        assert plan.needs_top_up is False
        assert [(s.kind, s.source_id, s.amount) for s in plan.steps] == [(StepKind.CHARGE, "duitnow", 12.50)]
        assert plan.explanation == "Using DuitNow: sufficient balance (MYR 50.00)"
        assert plan.score_for("tng").total == 60
        assert plan.score_for("duitnow").total == 82.5

    def test_fallback_chain_order(self):
        """Fallbacks follow score order and only include rails that can pay."""
        plan = self.resolver.resolve(qr_payment(12.50), MOCK_SOURCES["user_demo"], health=MOCK_HEALTH)

        assert plan.chosen_rail_id == "duitnow"
        # tng cannot cover 12.50 and has no top-up room
        assert plan.fallback_chain == ("grabpay", "maybank")
        assert [s.rail_id for s in plan.scores] == ["duitnow", "grabpay", "tng", "maybank"]

    def test_health_explanation(self):
        """The explanation names the factor that separates the primary from the runner-up."""
        plan = self.resolver.resolve(qr_payment(12.50), MOCK_SOURCES["user_demo"], health=MOCK_HEALTH)

        assert plan.explanation == "Using DuitNow: most reliable connection right now"

    def test_history_explanation(self):
        sources = [wallet("alpha", 50.0, 1), wallet("beta", 50.0, 1)]

        plan = self.resolver.resolve(qr_payment(10.0), sources, history={"beta": 8})

        assert plan.chosen_rail_id == "beta"
        assert plan.explanation == "Using Beta: your most-used rail"

    def test_fallback_chain_is_capped(self):
        """No more than max_fallback_rails fallbacks are kept."""
        resolver = Resolver(max_fallback_rails=1)

        plan = resolver.resolve(qr_payment(12.50), MOCK_SOURCES["user_demo"], health=MOCK_HEALTH)

        assert plan.fallback_chain == ("grabpay",)

    def test_tie_broken_by_rank_then_id(self):
        """Equal scores resolve the same way every time."""
        sources = [wallet("zeta", 50.0, 1), wallet("alpha", 50.0, 1)]
        intent = qr_payment(10.0)

        first = self.resolver.resolve(intent, sources)
        second = self.resolver.resolve(intent, list(reversed(sources)))

        assert first.chosen_rail_id == "alpha"
        assert first.model_dump() == second.model_dump()

    def test_unavailable_rail_skipped(self):
        """An unavailable connector is never chosen or used as a fallback."""
        health = dict(MOCK_HEALTH, duitnow=ConnectorStatus.UNAVAILABLE)

        plan = self.resolver.resolve(qr_payment(12.50), MOCK_SOURCES["user_demo"], health=health)

        assert plan.chosen_rail_id == "grabpay"
        assert "duitnow" not in plan.fallback_chain

    def test_unlinked_sources_ignored(self):
        sources = [
            wallet("tng", 500.0, 1, available=False),
            wallet("duitnow", 50.0, 2),
        ]

        plan = self.resolver.resolve(qr_payment(12.50), sources)

        assert plan.chosen_rail_id == "duitnow"
        assert plan.score_for("tng") is None

    def test_universal_fallback_survives_filter(self):
        """A universal-fallback bank can pay a QR merchant when nothing else can."""
        sources = MOCK_SOURCES["user_demo"]

        plan = self.resolver.resolve(
            qr_payment(12.50),
            sources,
            exclude=frozenset({"tng", "duitnow", "grabpay"}),
        )

        assert plan.chosen_rail_id == "maybank"
        assert plan.action == PlanAction.PROCEED
        assert plan.score_for("maybank").compatibility == 0

    def test_universal_fallback_needs_matching_currency(self):
        """A universal rail in another currency is not a candidate."""
        sources = [
            wallet("tng", 5.0, 1),
            wallet("dbs", 900.0, 2, caps=("can_pay", "universal_fallback"), kind=SourceKind.BANK, currency="SGD"),
        ]

        plan = self.resolver.resolve(qr_payment(12.50, accepted={"duitnow"}), sources)

        assert plan.action == PlanAction.BLOCKED
        assert plan.chosen_rail_id is None
        assert plan.score_for("dbs") is None

    def test_p2p_intent(self):
        intent = SendMoneyIntent(amount=Money(value=30.0), recipient_ref="+60123456789")

        plan = self.resolver.resolve(intent, MOCK_SOURCES["user_demo"], health=MOCK_HEALTH)

        # grabpay has no can_p2p
        assert plan.chosen_rail_id == "duitnow"
        assert "grabpay" not in plan.fallback_chain


class TestTopUp:
    """Test top-up step planning."""

    def setup_method(self):
        """Set up test fixtures."""
        self.resolver = Resolver()
        self.sources = [
            wallet("grabpay", 5.0, 1, name="GrabPay", max_auto_top_up_amount=100.0),
            wallet("maybank", 1000.0, 2, caps=("can_pay",), kind=SourceKind.BANK),
        ]

    def test_top_up_then_charge(self):
        """A shortfall within the top-up room plans a top-up before the charge."""
        plan = self.resolver.resolve(qr_payment(30.0), self.sources)

        assert plan.chosen_rail_id == "grabpay"
        assert [step.kind for step in plan.steps] == [StepKind.TOP_UP, StepKind.CHARGE]
        top_up, charge = plan.steps
        assert top_up.amount == 25.0
        assert top_up.funded_by == "maybank"
        assert charge.amount == 30.0
        assert plan.top_up_amount == 25.0
        assert ReasonCode.TOPUP_REQUIRED in plan.reason_codes
        assert "needs top-up of MYR 25.00" in plan.explanation

    def test_top_up_amount_rounded(self):
        plan = self.resolver.resolve(qr_payment(12.34), self.sources)

        assert plan.steps[0].amount == 7.34

    def test_sub_cent_shortfall_rounds_up(self):
        """A shortfall under half a cent still plans a one-cent top-up."""
        sources = [wallet("grabpay", 12.496, 1, max_auto_top_up_amount=50.0)]

        plan = self.resolver.resolve(qr_payment(12.50), sources)

        assert plan.action == PlanAction.PROCEED
        top_up, charge = plan.steps
        assert top_up.kind == StepKind.TOP_UP
        assert top_up.amount == 0.01
        assert charge.amount == 12.50

    def test_top_up_without_funding_source(self):
        """With nothing to fund it, the top-up is funded externally."""
        plan = self.resolver.resolve(qr_payment(30.0), self.sources[:1])

        assert plan.steps[0].funded_by is None


class TestBlockedPlans:
    """Test outcomes that cannot proceed."""

    def setup_method(self):
        """Set up test fixtures."""
        self.resolver = Resolver()

    def test_no_sources(self):
        plan = self.resolver.resolve(qr_payment(10.0), [])

        assert plan.action == PlanAction.BLOCKED
        assert plan.blocked_reason == "No payment methods linked"
        assert plan.executable is False

    def test_no_compatible_rail(self):
        """A merchant that accepts none of the user's rails blocks the plan."""
        sources = [wallet("tng", 50.0, 1), wallet("duitnow", 50.0, 2)]

        plan = self.resolver.resolve(qr_payment(10.0, accepted={"boost"}), sources)

        assert plan.action == PlanAction.BLOCKED
        assert plan.chosen_rail_id is None
        assert plan.steps == ()
        assert ReasonCode.NO_COMPATIBLE_RAIL in plan.reason_codes

    def test_all_rails_excluded(self):
        sources = [wallet("tng", 50.0, 1)]

        plan = self.resolver.resolve(qr_payment(10.0), sources, exclude=frozenset({"tng"}))

        assert plan.action == PlanAction.BLOCKED
        assert plan.blocked_reason == "All linked payment methods have failed"

    def test_all_compatible_unavailable(self):
        sources = [wallet("tng", 50.0, 1), wallet("duitnow", 50.0, 2)]
        health = {"tng": ConnectorStatus.UNAVAILABLE, "duitnow": ConnectorStatus.UNAVAILABLE}

        plan = self.resolver.resolve(qr_payment(10.0), sources, health=health)

        assert plan.action == PlanAction.BLOCKED
        assert "unavailable" in plan.blocked_reason

    def test_only_empty_universal_rail_left_is_blocked(self):
        """Nothing compatible and the universal rail is empty: blocked, not insufficient funds."""
        sources = [
            wallet("tng", 50.0, 1),
            wallet("maybank", 0.0, 2, caps=("can_pay", "universal_fallback"), kind=SourceKind.BANK),
        ]

        plan = self.resolver.resolve(qr_payment(10.0, accepted={"boost"}), sources)

        assert plan.action == PlanAction.BLOCKED
        assert ReasonCode.NO_COMPATIBLE_RAIL in plan.reason_codes
        assert plan.score_for("maybank").compatibility == 0

    def test_insufficient_funds(self):
        """No rail can cover the amount: no steps and not executable."""
        plan = self.resolver.resolve(qr_payment(50.0), MOCK_SOURCES["user_low_balance"])

        assert plan.action == PlanAction.INSUFFICIENT_FUNDS
        assert plan.steps == ()
        assert plan.chosen_rail_id is None
        assert plan.executable is False
        assert plan.is_actionable is False
        assert ReasonCode.INSUFFICIENT_FUNDS in plan.reason_codes
