"""
Mock Data

Demo funding sources, connector health and guardrails for the server and
CLI. Amounts are in MYR.
"""

from typing import Dict, List

from flowrail.registry.models import (
    ConnectorStatus,
    FundingSource,
    Guardrails,
    SourceKind,
)


# Mock funding source profiles
MOCK_SOURCES: Dict[str, List[FundingSource]] = {
    "user_demo": [
        FundingSource(
            id="tng",
            kind=SourceKind.WALLET,
            name="TouchNGo",
            balance=5.0,
            priority_rank=1,
            capabilities=frozenset({"can_pay_qr", "can_p2p", "can_receive"}),
        ),
        FundingSource(
            id="duitnow",
            kind=SourceKind.WALLET,
            name="DuitNow",
            balance=50.0,
            priority_rank=2,
            capabilities=frozenset({"can_pay_qr", "can_p2p", "can_receive", "can_pay"}),
        ),
        FundingSource(
            id="grabpay",
            kind=SourceKind.WALLET,
            name="GrabPay",
            balance=20.0,
            priority_rank=3,
            capabilities=frozenset({"can_pay_qr"}),
            max_auto_top_up_amount=100.0,
        ),
        FundingSource(
            id="maybank",
            kind=SourceKind.BANK,
            name="Maybank",
            balance=2400.0,
            priority_rank=4,
            capabilities=frozenset({"can_pay", "can_p2p", "can_receive", "universal_fallback"}),
            require_extra_confirm_amount=1000.0,
        ),
    ],
    "user_low_balance": [
        FundingSource(
            id="tng",
            kind=SourceKind.WALLET,
            name="TouchNGo",
            balance=3.0,
            priority_rank=1,
            capabilities=frozenset({"can_pay_qr", "can_p2p"}),
        ),
        FundingSource(
            id="atome",
            kind=SourceKind.BNPL,
            name="Atome",
            balance=0.0,
            priority_rank=2,
            capabilities=frozenset({"can_pay_qr", "can_installment"}),
        ),
    ],
    "user_cards": [
        FundingSource(
            id="visa",
            kind=SourceKind.CARD,
            name="Visa Debit",
            balance=800.0,
            priority_rank=1,
            capabilities=frozenset({"can_pay_qr", "can_pay"}),
            require_extra_confirm_amount=250.0,
        ),
        FundingSource(
            id="cimb",
            kind=SourceKind.BANK,
            name="CIMB",
            balance=1200.0,
            priority_rank=2,
            capabilities=frozenset({"can_pay", "can_p2p", "can_receive"}),
        ),
    ],
}


MOCK_HEALTH: Dict[str, ConnectorStatus] = {
    "tng": ConnectorStatus.AVAILABLE,
    "duitnow": ConnectorStatus.AVAILABLE,
    "grabpay": ConnectorStatus.DEGRADED,
    "maybank": ConnectorStatus.AVAILABLE,
    "atome": ConnectorStatus.AVAILABLE,
    "visa": ConnectorStatus.AVAILABLE,
    "cimb": ConnectorStatus.AVAILABLE,
}


MOCK_GUARDRAILS: Dict[str, Guardrails] = {
    "user_demo": Guardrails(
        user_id="user_demo",
        max_single_payment_auto=100.0,
        max_auto_top_up_amount=100.0,
        daily_auto_limit=500.0,
    ),
    "user_low_balance": Guardrails(user_id="user_low_balance"),
    "user_cards": Guardrails(
        user_id="user_cards",
        max_single_payment_auto=300.0,
        daily_auto_limit=1000.0,
    ),
}
