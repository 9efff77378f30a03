"""Schema validation module for flowrail payment intents."""

from flowrail.errors import ValidationError
from flowrail.schema.intent_schema import (
    REQUIRED_CAPABILITY,
    Capability,
    IntentBase,
    IntentKind,
    Money,
    PayBillIntent,
    PayMerchantIntent,
    PaymentIntent,
    RequestMoneyIntent,
    SendMoneyIntent,
    payment_intent_adapter,
)
from flowrail.schema.validator import SchemaValidator

__all__ = [
    "REQUIRED_CAPABILITY",
    "Capability",
    "IntentBase",
    "IntentKind",
    "Money",
    "PayBillIntent",
    "PayMerchantIntent",
    "PaymentIntent",
    "RequestMoneyIntent",
    "SendMoneyIntent",
    "payment_intent_adapter",
    "SchemaValidator",
    "ValidationError",
]
