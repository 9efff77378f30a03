"""
FlowRail Main Entry Point

CLI demo of the resolution and execution core against the mock registry:

1. Resolve a small QR payment (sufficient balance on the second rail)
2. Resolve a large payment that needs explicit confirmation
3. Execute a payment whose primary rail fails and falls back
4. Engage the kill switch and watch confirmation pause
"""

import asyncio
import logging

from dotenv import load_dotenv

from flowrail.config import FlowRailSettings
from flowrail.container import FlowRailContainer
from flowrail.errors import GuardrailExceeded
from flowrail.execution import ExecutionResult
from flowrail.resolution import ResolutionPlan


logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


USER_ID = "user_demo"


def print_banner():
    print("\n" + "=" * 60)
    print("  FlowRail: Payment Rail Resolution & Execution")
    print("  Demo against mock funding sources (MYR)")
    print("=" * 60 + "\n")


def print_plan(plan: ResolutionPlan):
    print(f"    Action:      {plan.action.value}")
    print(f"    Rail:        {plan.chosen_rail_id}")
    print(f"    Fallbacks:   {', '.join(plan.fallback_chain) or '-'}")
    print(f"    Explanation: {plan.explanation}")
    for step in plan.steps:
        funded = f" (from {step.funded_by})" if step.funded_by else ""
        print(f"    Step:        {step.kind.value} {step.source_id} {step.amount:.2f}{funded}")
    for reason in plan.confirmation_reasons:
        print(f"    ⚠️  {reason}")
    for score in plan.scores:
        print(
            f"      {score.rail_id:<10} total={score.total:5.1f} "
            f"[C{score.compatibility:.0f} B{score.balance:.0f} P{score.priority:.1f} "
            f"H{score.history:.1f} S{score.health:.0f}]"
        )


def print_result(result: ExecutionResult):
    icon = "✅" if result.success else "❌"
    print(f"    {icon} {result.state.value}: {result.message}")
    if result.failed_rails:
        print(f"    Failed rails: {', '.join(result.failed_rails)}")


def payment(amount: float, merchant: str = "kopitiam_01", **extra) -> dict:
    return {
        "kind": "PayMerchant",
        "amount": {"value": amount, "currency": "MYR"},
        "merchant_ref": merchant,
        **extra,
    }


async def run_demo(flow: FlowRailContainer):
    print("🧾 [1] Pay kopitiam MYR 12.50")
    intent = flow.validator.validate(payment(12.50))
    print_plan(flow.resolution.plan(USER_ID, intent))
    print_result(await flow.engine.pay(USER_ID, intent))

    print("\n🧾 [2] Pay electronics store MYR 299.00")
    intent = flow.validator.validate(payment(299.0, merchant="gadget_store"))
    session = flow.engine.start(USER_ID, intent)
    print_plan(session.plan)
    try:
        await flow.engine.confirm(intent.intent_id)
    except GuardrailExceeded as e:
        print(f"    🔒 {e.message}")
    print_result(await flow.engine.confirm(intent.intent_id, acknowledged=True))

    print("\n🧾 [3] DuitNow connector fails mid-payment")
    flow.gateway.fail_rails.add("duitnow")
    intent = flow.validator.validate(payment(8.0))
    print_result(await flow.engine.pay(USER_ID, intent))
    flow.gateway.fail_rails.discard("duitnow")

    print("\n🧾 [4] Kill switch engaged")
    flow.guardrails.set_kill_switch(USER_ID, True)
    intent = flow.validator.validate(payment(5.0))
    print_result(await flow.engine.pay(USER_ID, intent))
    flow.guardrails.set_kill_switch(USER_ID, False)

    print("\n📒 Transactions")
    for entry in flow.ledger.get_transactions(USER_ID):
        print(f"    {entry.status.value:<9} {entry.rail_used or '-':<10} {entry.amount:8.2f}  {entry.note or ''}")

    chain = flow.ledger.validate_chain()
    print(f"\n🔗 Ledger chain valid: {chain.is_valid} ({chain.total_entries} entries)")


def main():
    """Run the CLI demo."""
    load_dotenv()
    print_banner()
    flow = FlowRailContainer(FlowRailSettings())
    asyncio.run(run_demo(flow))


if __name__ == "__main__":
    main()
