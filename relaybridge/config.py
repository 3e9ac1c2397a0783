from pathlib import Path
from typing import Any, Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Relay API
    relay_base_url: str = Field(
        default="https://api.relay.link",
        description="Base URL for the Relay quoting and status API",
    )
    relay_app_url: str = Field(
        default="https://relay.link",
        description="Relay hosted UI used for manual fallback links",
    )
    relay_referrer: str = Field(default="relaybridge", description="Attribution referrer sent with quotes")
    relay_status_path: str = Field(
        default="/intents/status",
        description="Path of the settlement status endpoint",
    )
    request_timeout_seconds: int = Field(default=20, description="HTTP request timeout")

    # Quotes
    quote_ttl_seconds: float = Field(default=30.0, gt=0, description="Hard TTL of a bridge quote")
    quote_debounce_ms: int = Field(default=600, ge=0, description="Debounce window for amount edits")

    # Settlement
    settlement_poll_interval_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Interval between settlement status requests",
    )
    settlement_max_attempts: int = Field(
        default=60,
        ge=1,
        description="Status requests issued before settlement is reported as delayed",
    )
    balance_refresh_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Pause before re-reading balances after settlement",
    )

    # Network switching
    chain_switch_settle_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Wait after a switch request before re-reading the active chain",
    )
    chain_switch_event_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Max wait for a chain-changed notification after a switch request",
    )

    # Chains
    default_token_symbol: str = Field(default="USDC", description="Token bridged when none is specified")
    rpc_url_overrides: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain RPC URL overrides (chain id -> URL)",
    )

    @field_validator("relay_base_url", "relay_app_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def rpc_url_for(self, chain_id: int, default: str) -> str:
        return self.rpc_url_overrides.get(chain_id) or default

    def describe(self) -> Dict[str, Any]:
        """Non-secret settings surfaced by the CLI."""
        return {
            "relay_base_url": self.relay_base_url,
            "quote_ttl_seconds": self.quote_ttl_seconds,
            "quote_debounce_ms": self.quote_debounce_ms,
            "settlement_poll_interval_seconds": self.settlement_poll_interval_seconds,
            "settlement_max_attempts": self.settlement_max_attempts,
        }


# Global settings instance
settings = Settings()
