from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator

from .errors import ConfigurationError

DEFAULT_API_BASE = "https://api.openai.com/v1"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class CompletionClientConfig(BaseModel):
    # Endpoint
    api_base: str = Field(default_factory=lambda: os.getenv("COMPLETIONS_API_BASE", DEFAULT_API_BASE))
    api_key: str | None = Field(default_factory=lambda: os.getenv("COMPLETIONS_API_KEY"))
    organization: str | None = Field(default_factory=lambda: os.getenv("COMPLETIONS_ORGANIZATION"))

    # The two modes are served from different paths upstream.
    completion_path: str = Field(
        default_factory=lambda: os.getenv("COMPLETIONS_BLOCKING_PATH", "/api/v2/text/completion")
    )
    stream_path: str = Field(default_factory=lambda: os.getenv("COMPLETIONS_STREAM_PATH", "/completions"))

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    log_payloads: bool = Field(default_factory=lambda: _env_bool("LOG_PAYLOADS"))
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    # HTTP behavior
    timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETIONS_TIMEOUT_SECONDS", "60"))
    )
    max_attempts: int = Field(default_factory=lambda: int(os.getenv("COMPLETIONS_MAX_ATTEMPTS", "3")))
    backoff_initial_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETIONS_BACKOFF_INITIAL_SECONDS", "0.5"))
    )
    backoff_max_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETIONS_BACKOFF_MAX_SECONDS", "8.0"))
    )
    circuit_breaker_failures: int = Field(
        default_factory=lambda: int(os.getenv("COMPLETIONS_CIRCUIT_BREAKER_FAILURES", "5"))
    )
    circuit_breaker_reset_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETIONS_CIRCUIT_BREAKER_RESET_SECONDS", "30"))
    )

    @field_validator("completion_path", "stream_path")
    @classmethod
    def _validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'.")
        return v

    @field_validator("api_base")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def api_url(self, path: str) -> str:
        return f"{self.api_base}{path}"

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("COMPLETIONS_API_KEY is required to call the completion API.")
        return self.api_key
