"""Wiring of the demo stack: in-memory registry, simulated rails, ledger and engine."""

import logging
from typing import Optional

from flowrail.config import FlowRailSettings, settings as default_settings
from flowrail.execution import (
    ExecutionEngine,
    SimulatedAuthenticator,
    SimulatedRailGateway,
)
from flowrail.ledger import AuditLedger
from flowrail.policy import GuardrailEnforcer
from flowrail.registry import (
    Guardrails,
    InMemoryConnectorHealthRepository,
    InMemoryFundingSourceRepository,
    InMemoryGuardrailRepository,
)
from flowrail.registry.mock_data import MOCK_GUARDRAILS, MOCK_HEALTH, MOCK_SOURCES
from flowrail.resolution import Resolver
from flowrail.resolution.service import ResolutionService
from flowrail.schema import SchemaValidator
from flowrail.scoring import RailScorer


logger = logging.getLogger(__name__)


class FlowRailContainer:
    """Builds every component once and keeps references to them."""

    def __init__(self, config: Optional[FlowRailSettings] = None, seed_mock_data: bool = True):
        config = config or default_settings

        self.ledger = AuditLedger(config.ledger_db_path)
        self.validator = SchemaValidator()

        self.sources = InMemoryFundingSourceRepository(MOCK_SOURCES if seed_mock_data else None)
        self.health = InMemoryConnectorHealthRepository(MOCK_HEALTH if seed_mock_data else None)
        self.guardrails = InMemoryGuardrailRepository(
            defaults=Guardrails(
                user_id="default",
                max_single_payment_auto=config.default_max_single_payment_auto,
                max_auto_top_up_amount=config.default_max_auto_top_up,
                daily_auto_limit=config.default_daily_auto_limit,
            )
        )
        if seed_mock_data:
            for record in MOCK_GUARDRAILS.values():
                self.guardrails.put(record)

        self.resolution = ResolutionService(
            funding_sources=self.sources,
            history=self.ledger,
            health=self.health,
            guardrails=self.guardrails,
            resolver=Resolver(
                scorer=RailScorer(history_normalization=config.history_normalization),
                max_fallback_rails=config.max_fallback_rails,
            ),
            enforcer=GuardrailEnforcer(repository=self.guardrails, ledger=self.ledger),
            ledger=self.ledger,
            history_window_days=config.history_window_days,
        )

        self.gateway = SimulatedRailGateway(
            self.sources,
            failure_rate=config.simulated_failure_rate,
            latency=config.simulated_latency_seconds,
        )
        self.authenticator = SimulatedAuthenticator()
        self.engine = ExecutionEngine(
            resolution=self.resolution,
            authenticator=self.authenticator,
            gateway=self.gateway,
            log_sink=self.ledger,
            ledger=self.ledger,
            authorization_timeout=config.authorization_timeout_seconds,
            charge_timeout=config.charge_timeout_seconds,
            max_authorization_attempts=config.max_authorization_attempts,
            max_fallback_rails=config.max_fallback_rails,
        )

        logger.info("FlowRail components initialized")
