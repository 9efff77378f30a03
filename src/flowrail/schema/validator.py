"""
Schema Validator

Parses raw intent payloads (JSON text or dicts) into typed intents. Anything
that fails here never reaches the resolver.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from flowrail.errors import ValidationError
from flowrail.schema.intent_schema import IntentBase, payment_intent_adapter


logger = logging.getLogger(__name__)


class SchemaValidator:
    """
    Schema Validator

    Rejects:
    - Unknown intent kinds
    - Missing kind-specific fields
    - Non-positive amounts
    - Malformed JSON
    """

    def __init__(self):
        self.logger = logger

    def validate(self, data: Union[str, Dict[str, Any]]) -> IntentBase:
        """
        Validate and parse intent data.

        Args:
            data: Raw JSON string or dictionary

        Returns:
            The concrete intent variant for ``data["kind"]``

        Raises:
            ValidationError: If data fails schema validation
        """
        if isinstance(data, str):
            try:
                parsed_data = json.loads(data)
            except json.JSONDecodeError as e:
                self.logger.error(f"JSON parse error: {e}")
                raise ValidationError(
                    message="PARSE_ERROR: Invalid JSON format",
                    errors=[{"type": "json_decode", "msg": str(e)}],
                )
        else:
            parsed_data = data

        try:
            intent = payment_intent_adapter.validate_python(parsed_data)
        except PydanticValidationError as e:
            errors = []
            for error in e.errors():
                errors.append({
                    "field": ".".join(str(loc) for loc in error["loc"]),
                    "type": error["type"],
                    "msg": error["msg"],
                })

            self.logger.error(f"Schema validation failed: {errors}")
            raise ValidationError(
                message="VALIDATION_ERROR: Schema validation failed",
                errors=errors,
            )

        self.logger.info(f"Schema validation passed for intent_id: {intent.intent_id} ({intent.kind.value})")
        return intent

    def validate_safe(
        self, data: Union[str, Dict[str, Any]]
    ) -> Tuple[Optional[IntentBase], Optional[ValidationError]]:
        """Like ``validate`` but returns ``(intent, None)`` or ``(None, error)``."""
        try:
            return self.validate(data), None
        except ValidationError as e:
            return None, e
