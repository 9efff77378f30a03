"""
Payment Intent Schema

Defines the payment request the resolver plans for. The intent's shape
depends on its kind, so each kind is its own model and ``PaymentIntent``
is the tagged union over them (discriminated on ``kind``).
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Dict, FrozenSet, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class IntentKind(str, Enum):
    """Supported payment intent kinds."""

    PAY_MERCHANT = "PayMerchant"
    SEND_MONEY = "SendMoney"
    REQUEST_MONEY = "RequestMoney"
    PAY_BILL = "PayBill"


class Capability(str, Enum):
    """Capability tags a funding source may advertise."""

    CAN_PAY_QR = "can_pay_qr"
    CAN_P2P = "can_p2p"
    CAN_RECEIVE = "can_receive"
    CAN_PAY = "can_pay"
    CAN_INSTALLMENT = "can_installment"
    UNIVERSAL_FALLBACK = "universal_fallback"  # Survives the compatibility filter


# Capability a rail must advertise to serve each intent kind
REQUIRED_CAPABILITY: Dict[IntentKind, Capability] = {
    IntentKind.PAY_MERCHANT: Capability.CAN_PAY_QR,
    IntentKind.SEND_MONEY: Capability.CAN_P2P,
    IntentKind.REQUEST_MONEY: Capability.CAN_P2P,
    IntentKind.PAY_BILL: Capability.CAN_PAY,
}


class Money(BaseModel):
    """A positive amount in a given currency."""

    value: float = Field(gt=0, description="Amount (must be positive)")
    currency: str = Field(default="MYR", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class IntentBase(BaseModel, ABC):
    """Fields shared by every intent kind. Only the concrete kinds are instantiated."""

    intent_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this payment intent",
    )
    amount: Money
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Mirrors the execution state; only the state machine writes it
    current_state: str = Field(default="SCANNING")

    @property
    @abstractmethod
    def counterparty_ref(self) -> str:
        """Merchant, recipient, payer or biller account this intent is addressed to."""

    @property
    def accepted_rails(self) -> FrozenSet[str]:
        """Rails the counterparty accepts. Empty means any universal rail."""
        return frozenset()


class PayMerchantIntent(IntentBase):
    """Pay a merchant, typically from a scanned QR code."""

    kind: Literal[IntentKind.PAY_MERCHANT] = IntentKind.PAY_MERCHANT
    merchant_ref: str = Field(min_length=1, description="Merchant identifier")
    merchant_name: Optional[str] = None
    merchant_accepted_rails: FrozenSet[str] = Field(default_factory=frozenset)

    @property
    def counterparty_ref(self) -> str:
        return self.merchant_ref

    @property
    def accepted_rails(self) -> FrozenSet[str]:
        return self.merchant_accepted_rails


class SendMoneyIntent(IntentBase):
    """Person-to-person transfer."""

    kind: Literal[IntentKind.SEND_MONEY] = IntentKind.SEND_MONEY
    recipient_ref: str = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=140)

    @property
    def counterparty_ref(self) -> str:
        return self.recipient_ref


class RequestMoneyIntent(IntentBase):
    """Ask a contact for money; the chosen rail receives the funds."""

    kind: Literal[IntentKind.REQUEST_MONEY] = IntentKind.REQUEST_MONEY
    payer_ref: str = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=140)

    @property
    def counterparty_ref(self) -> str:
        return self.payer_ref


class PayBillIntent(IntentBase):
    """Pay a registered biller."""

    kind: Literal[IntentKind.PAY_BILL] = IntentKind.PAY_BILL
    biller_id: str = Field(min_length=1)
    account_ref: str = Field(min_length=1, description="Customer account at the biller")
    biller_accepted_rails: FrozenSet[str] = Field(default_factory=frozenset)

    @property
    def counterparty_ref(self) -> str:
        return f"{self.biller_id}:{self.account_ref}"

    @property
    def accepted_rails(self) -> FrozenSet[str]:
        return self.biller_accepted_rails


PaymentIntent = Annotated[
    Union[PayMerchantIntent, SendMoneyIntent, RequestMoneyIntent, PayBillIntent],
    Field(discriminator="kind"),
]

payment_intent_adapter: TypeAdapter = TypeAdapter(PaymentIntent)
