"""Runtime configuration."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class FlowRailSettings(BaseSettings):
    """Configuration for resolution, execution and the API server."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWRAIL_",
        env_file=".env",
        extra="ignore",  # Ignore extra fields from .env
    )

    # Service settings
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Audit ledger (None = in-memory SQLite)
    ledger_db_path: Optional[str] = None

    # External funding source registry
    registry_host: str = "127.0.0.1"
    registry_port: int = 8001
    registry_base_url: str = "http://127.0.0.1:8001"
    registry_timeout_seconds: float = 5.0

    # Suspension points
    authorization_timeout_seconds: float = 30.0
    charge_timeout_seconds: float = 15.0
    max_authorization_attempts: int = 3

    # Resolution
    max_fallback_rails: int = 3

    # Terminal sessions kept in memory by the engine
    max_retained_sessions: int = 1000
    history_window_days: int = 30
    history_normalization: int = 10
    default_currency: str = "MYR"

    # Guardrails applied when a user has no stored record
    default_max_single_payment_auto: float = 50.0
    default_max_auto_top_up: float = 100.0
    default_daily_auto_limit: float = 200.0

    # Simulated rails used by the demo server and CLI
    simulated_failure_rate: float = 0.0
    simulated_latency_seconds: float = 0.0


settings = FlowRailSettings()
