"""
Tests for the guardrail enforcer.

Tests the kill switch, the confirmation limits and daily spend tracking.
"""

import pytest

from flowrail.ledger import AuditLedger, EventType
from flowrail.policy import GuardrailEnforcer
from flowrail.registry import (
    FundingSource,
    Guardrails,
    InMemoryConnectorHealthRepository,
    InMemoryFundingSourceRepository,
    InMemoryGuardrailRepository,
    SourceKind,
)
from flowrail.registry.mock_data import MOCK_GUARDRAILS, MOCK_HEALTH, MOCK_SOURCES
from flowrail.resolution import PlanAction, PlanStep, ReasonCode, ResolutionPlan, RiskLevel, StepKind
from flowrail.resolution.service import ResolutionService
from flowrail.schema import Money, PayMerchantIntent


def make_plan(amount: float, top_up: float = 0.0, action: PlanAction = PlanAction.PROCEED) -> ResolutionPlan:
    steps = []
    if top_up:
        steps.append(PlanStep(kind=StepKind.TOP_UP, source_id="grabpay", amount=top_up, funded_by="maybank"))
    steps.append(PlanStep(kind=StepKind.CHARGE, source_id="grabpay", amount=amount))
    return ResolutionPlan(
        intent_id="intent-1",
        amount=Money(value=amount),
        action=action,
        chosen_rail_id="grabpay",
        steps=tuple(steps),
    )


class TestGuardrailEnforcer:
    """Test suite for GuardrailEnforcer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.enforcer = GuardrailEnforcer()
        self.guardrails = Guardrails(
            user_id="user_1",
            max_single_payment_auto=100.0,
            max_auto_top_up_amount=100.0,
            daily_auto_limit=500.0,
        )

    def test_within_limits_proceeds(self):
        """Test that a small payment stays automatic."""
        result = self.enforcer.evaluate(make_plan(12.50), self.guardrails)

        assert result.plan.action == PlanAction.PROCEED
        assert result.plan.executable is True
        assert result.violations == []
        assert result.plan.risk_level == RiskLevel.LOW
        assert "single_payment_auto_limit" in result.passed_rules

    def test_single_payment_limit_requires_confirmation(self):
        """Test that an amount above the auto-pay limit needs confirmation."""
        result = self.enforcer.evaluate(make_plan(299.0), self.guardrails)

        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert result.requires_confirmation is True
        assert result.plan.executable is True
        assert ReasonCode.SINGLE_PAYMENT_LIMIT in result.plan.reason_codes
        assert ReasonCode.CONFIRMATION_REQUIRED in result.plan.reason_codes
        assert result.plan.risk_level == RiskLevel.MEDIUM
        assert "auto-pay limit" in result.plan.confirmation_reasons[0]

    def test_input_plan_not_modified(self):
        plan = make_plan(299.0)

        result = self.enforcer.evaluate(plan, self.guardrails)

        assert plan.action == PlanAction.PROCEED
        assert plan.reason_codes == ()
        assert result.plan is not plan

    def test_top_up_limit(self):
        """Test that a large top-up needs confirmation."""
        guardrails = self.guardrails.model_copy(update={"max_single_payment_auto": 300.0})

        result = self.enforcer.evaluate(make_plan(200.0, top_up=150.0), guardrails)

        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert [v.reason_code for v in result.violations] == [ReasonCode.TOPUP_LIMIT]

    def test_daily_limit(self):
        """Test that crossing the daily auto limit needs confirmation."""
        guardrails = self.guardrails.model_copy(update={"daily_spent_so_far": 490.0})

        result = self.enforcer.evaluate(make_plan(20.0), guardrails)

        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert [v.reason_code for v in result.violations] == [ReasonCode.DAILY_LIMIT]

    def test_daily_limit_boundary(self):
        """Reaching the limit exactly is still automatic."""
        guardrails = self.guardrails.model_copy(update={"daily_spent_so_far": 480.0})

        result = self.enforcer.evaluate(make_plan(20.0), guardrails)

        assert result.plan.action == PlanAction.PROCEED

    def test_source_confirm_threshold(self):
        source = FundingSource(
            id="visa",
            kind=SourceKind.CARD,
            name="Visa Debit",
            balance=800.0,
            priority_rank=1,
            require_extra_confirm_amount=50.0,
        )

        result = self.enforcer.evaluate(make_plan(60.0), self.guardrails, source=source)

        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert [v.reason_code for v in result.violations] == [ReasonCode.SOURCE_CONFIRM_THRESHOLD]
        assert "Visa Debit" in result.violations[0].message

    def test_kill_switch_makes_plan_non_executable(self):
        """Test that an engaged kill switch halts any plan."""
        guardrails = self.guardrails.model_copy(update={"kill_switch_engaged": True})

        result = self.enforcer.evaluate(make_plan(10.0), guardrails)

        assert result.plan.executable is False
        assert result.kill_switch_engaged is True
        assert ReasonCode.KILL_SWITCH in result.plan.reason_codes
        assert result.violations[0].severity == "critical"

    def test_blocked_plan_skips_confirmation_rules(self):
        plan = ResolutionPlan(
            intent_id="intent-2",
            amount=Money(value=1000.0),
            action=PlanAction.BLOCKED,
            executable=False,
        )

        result = self.enforcer.evaluate(plan, self.guardrails)

        assert result.plan.action == PlanAction.BLOCKED
        assert result.violations == []
        assert result.plan.executable is False

    def test_high_value_flagged(self):
        guardrails = self.guardrails.model_copy(
            update={"max_single_payment_auto": 1000.0, "daily_auto_limit": 2000.0}
        )

        result = self.enforcer.evaluate(make_plan(600.0), guardrails)

        assert result.plan.action == PlanAction.PROCEED
        assert ReasonCode.HIGH_VALUE in result.plan.reason_codes
        assert result.plan.risk_level == RiskLevel.HIGH

    def test_evaluation_logged_to_ledger(self):
        ledger = AuditLedger()
        enforcer = GuardrailEnforcer(ledger=ledger)

        enforcer.evaluate(make_plan(299.0), self.guardrails)

        entries = ledger.get_entries_by_intent("intent-1")
        assert [e.event_type for e in entries] == [EventType.GUARDRAILS_EVALUATED]
        assert entries[0].payload["action"] == "REQUIRES_CONFIRMATION"
        assert entries[0].user_id == "user_1"


class TestDailySpendTracking:
    """Test that completions count against the daily limit."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repository = InMemoryGuardrailRepository()
        self.repository.put(Guardrails(user_id="user_1", daily_auto_limit=100.0))
        self.enforcer = GuardrailEnforcer(repository=self.repository)

    def test_record_completion(self):
        self.enforcer.record_completion("user_1", 40.0)
        updated = self.enforcer.record_completion("user_1", 35.5)

        assert updated.daily_spent_so_far == 75.5
        assert self.repository.get("user_1").daily_remaining == 24.5

    def test_completion_tightens_next_evaluation(self):
        """After spending, the same amount crosses the daily limit."""
        self.enforcer.record_completion("user_1", 40.0)

        result = self.enforcer.evaluate(make_plan(45.0), self.repository.get("user_1"))
        assert result.plan.action == PlanAction.PROCEED

        self.enforcer.record_completion("user_1", 45.0)

        result = self.enforcer.evaluate(make_plan(45.0), self.repository.get("user_1"))
        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION

    def test_reservation_holds_limit(self):
        """A held amount counts against the limit for the next automatic plan."""
        first = self.enforcer.reserve_daily(make_plan(60.0), "user_1")
        assert first.violations == []
        assert first.plan.action == PlanAction.PROCEED

        second = self.enforcer.reserve_daily(make_plan(60.0), "user_1")
        assert second.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert ReasonCode.DAILY_LIMIT in second.plan.reason_codes
        assert "120.00 > 100.00" in second.plan.confirmation_reasons[0]
        assert self.repository.get("user_1").daily_reserved == 60.0

    def test_evaluate_counts_reservations(self):
        self.enforcer.reserve_daily(make_plan(60.0), "user_1")

        result = self.enforcer.evaluate(make_plan(60.0), self.repository.get("user_1"))

        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION

    def test_settle_and_release_reservation(self):
        self.enforcer.reserve_daily(make_plan(60.0), "user_1")
        self.enforcer.reserve_daily(make_plan(30.0), "user_1")

        self.enforcer.record_completion("user_1", 60.0, reserved=True)
        record = self.enforcer.release_daily("user_1", 30.0)

        assert record.daily_spent_so_far == 60.0
        assert record.daily_reserved == 0.0

    def test_record_without_repository(self):
        enforcer = GuardrailEnforcer()

        with pytest.raises(RuntimeError):
            enforcer.record_completion("user_1", 10.0)


class TestResolutionService:
    """Test resolve + guardrails against the in-memory registry."""

    def setup_method(self):
        """Set up test fixtures."""
        self.ledger = AuditLedger()
        self.guardrails = InMemoryGuardrailRepository()
        for record in MOCK_GUARDRAILS.values():
            self.guardrails.put(record)
        self.service = ResolutionService(
            funding_sources=InMemoryFundingSourceRepository(MOCK_SOURCES),
            history=self.ledger,
            health=InMemoryConnectorHealthRepository(MOCK_HEALTH),
            guardrails=self.guardrails,
            ledger=self.ledger,
        )

    def test_large_payment_requires_confirmation(self):
        """299 at a merchant with a 100 auto-pay limit needs confirmation."""
        intent = PayMerchantIntent(amount=Money(value=299.0), merchant_ref="electronics_01")

        result = self.service.resolve("user_demo", intent)

        assert result.plan.chosen_rail_id == "maybank"
        assert result.plan.action == PlanAction.REQUIRES_CONFIRMATION
        assert ReasonCode.SINGLE_PAYMENT_LIMIT in result.plan.reason_codes

    def test_small_payment_proceeds(self):
        intent = PayMerchantIntent(amount=Money(value=12.50), merchant_ref="kopitiam_01")

        plan = self.service.plan("user_demo", intent)

        assert plan.action == PlanAction.PROCEED
        assert plan.chosen_rail_id == "duitnow"

    def test_kill_switch_read_from_repository(self):
        self.guardrails.set_kill_switch("user_demo", True)
        intent = PayMerchantIntent(amount=Money(value=12.50), merchant_ref="kopitiam_01")

        plan = self.service.plan("user_demo", intent)

        assert plan.executable is False
        assert ReasonCode.KILL_SWITCH in plan.reason_codes

    def test_resolution_logged(self):
        intent = PayMerchantIntent(amount=Money(value=12.50), merchant_ref="kopitiam_01")

        self.service.resolve("user_demo", intent)

        events = [e.event_type for e in self.ledger.get_entries_by_intent(intent.intent_id)]
        assert events == [EventType.PLAN_RESOLVED, EventType.GUARDRAILS_EVALUATED]

    def test_snapshot(self):
        snapshot = self.service.snapshot("user_demo")

        assert [s.id for s in snapshot.sources] == ["tng", "duitnow", "grabpay", "maybank"]
        assert snapshot.health["grabpay"].value == "degraded"
        assert snapshot.guardrails.max_single_payment_auto == 100.0
        assert snapshot.source("maybank").kind == SourceKind.BANK
        assert snapshot.source("missing") is None
