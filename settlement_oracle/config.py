"""Environment-driven configuration for the settlement oracle."""

import os

from pydantic import BaseModel

from .errors import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///settlement.db"
DEFAULT_GAS_LIMIT = 500_000

_API_KEY_VARS = {
    "gemini": "GEMINI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class Settings(BaseModel):
    """Runtime settings, read once per invocation."""
    rpc_url: str | None = None
    private_key: str | None = None
    market_address: str | None = None
    gas_limit: int = DEFAULT_GAS_LIMIT

    reasoning_provider: str = "gemini"
    reasoning_api_key: str | None = None
    reasoning_model: str | None = None
    openai_base_url: str | None = None
    brave_api_key: str | None = None
    judge_timeout: float | None = None

    database_url: str = DEFAULT_DATABASE_URL

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.environ.get("REASONING_PROVIDER", "gemini").strip().lower()
        if provider not in _API_KEY_VARS:
            raise ConfigurationError(
                f"REASONING_PROVIDER must be one of {sorted(_API_KEY_VARS)}, got {provider!r}"
            )

        timeout = os.environ.get("JUDGE_TIMEOUT_SECONDS")
        gas_limit = os.environ.get("TX_GAS_LIMIT")
        try:
            judge_timeout = float(timeout) if timeout else None
            gas = int(gas_limit) if gas_limit else DEFAULT_GAS_LIMIT
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        return cls(
            rpc_url=os.environ.get("RPC_URL") or None,
            private_key=os.environ.get("ORACLE_PRIVATE_KEY") or None,
            market_address=os.environ.get("MARKET_ADDRESS") or None,
            gas_limit=gas,
            reasoning_provider=provider,
            reasoning_api_key=os.environ.get(_API_KEY_VARS[provider]) or None,
            reasoning_model=os.environ.get("REASONING_MODEL") or None,
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            brave_api_key=os.environ.get("BRAVE_API_KEY") or None,
            judge_timeout=judge_timeout,
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
        )

    @property
    def reasoning_configured(self) -> bool:
        return bool(self.reasoning_api_key)

    def require_ledger(self) -> None:
        """Raise ConfigurationError unless every ledger setting is present."""
        missing = [
            name
            for name, value in (
                ("RPC_URL", self.rpc_url),
                ("ORACLE_PRIVATE_KEY", self.private_key),
                ("MARKET_ADDRESS", self.market_address),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
