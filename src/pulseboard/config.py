"""Runtime settings for Pulseboard.

everything comes from the environment - credentials obviously shouldn't live
in a file next to the session history. the defaults are tuned for a terminal
dashboard: a two second poll keeps charts lively without hammering the api.
"""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from pulseboard.errors import ConfigError

DEFAULT_ENDPOINT = "https://api.newrelic.com/graphql"
DEFAULT_SESSION_PATH = Path.home() / ".config" / "pulseboard" / "session.yaml"

# env var -> settings field
ENV_VARS = {
    "NR_ACCOUNT": "account_id",
    "NR_API_KEY": "api_key",
    "PULSEBOARD_ENDPOINT": "endpoint",
    "PULSEBOARD_TIMEOUT": "request_timeout",
    "PULSEBOARD_POLL_INTERVAL": "poll_interval",
    "PULSEBOARD_REFRESH_INTERVAL": "refresh_interval",
    "PULSEBOARD_MAX_FAILURES": "max_consecutive_failures",
    "PULSEBOARD_SESSION": "session_path",
}


class Settings(BaseModel):
    """All the knobs in one place."""

    account_id: int
    api_key: str
    endpoint: str = DEFAULT_ENDPOINT
    request_timeout: float = 30.0  # seconds, per request
    poll_interval: float = 2.0  # seconds between polls of one time-series query
    refresh_interval: float | None = 5.0  # None turns the refresh ticker off
    max_consecutive_failures: int = 3  # transport failures before a worker reports degraded
    session_path: Path = Field(default_factory=lambda: DEFAULT_SESSION_PATH)

    @field_validator("request_timeout", "poll_interval")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("refresh_interval")
    @classmethod
    def refresh_positive_or_off(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("max_consecutive_failures")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "Settings":
        """Build settings from environment variables.

        explicit overrides win over the environment, which is what the cli
        flags rely on. an empty PULSEBOARD_REFRESH_INTERVAL or "off" disables
        the refresh ticker.

        Raises:
            ConfigError: credentials missing or a value doesn't validate.
        """
        env = os.environ if environ is None else environ
        data: dict = {}
        for var, field in ENV_VARS.items():
            if var in env:
                data[field] = env[var]

        if data.get("refresh_interval", None) in ("", "off"):
            data["refresh_interval"] = None

        data.update({k: v for k, v in overrides.items() if v is not None})

        missing = [var for var in ("NR_ACCOUNT", "NR_API_KEY") if ENV_VARS[var] not in data]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
