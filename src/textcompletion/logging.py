from __future__ import annotations

import logging
import re
from collections.abc import Iterable, MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from .config import CompletionClientConfig

_CREDENTIAL_KEYS = {"authorization", "proxy-authorization", "openai-organization", "api_key"}

# Fields that carry prompt or completion text.
_CONTENT_KEYS = {"prompt", "suffix", "payload", "text"}

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")


class Redactor:
    """
    structlog processor keeping credentials and completion text out of logs.

    API keys and bearer tokens are masked wherever they appear in string
    values. Prompt and stream payload fields are replaced by their length
    unless `keep_content` is set.
    """

    def __init__(self, secrets: Iterable[str | None] = (), *, keep_content: bool = False):
        self._secrets = [s for s in secrets if s]
        self._keep_content = keep_content

    def __call__(self, _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> dict[str, Any]:
        return {key: self._field(key, value) for key, value in event_dict.items()}

    def _field(self, key: Any, value: Any) -> Any:
        name = str(key).lower()
        if name in _CREDENTIAL_KEYS:
            return "[REDACTED]"
        if not self._keep_content and name in _CONTENT_KEYS and isinstance(value, (str, list)):
            return f"[{len(value)} {'chars' if isinstance(value, str) else 'items'}]"
        return self._scrub(value)

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            for secret in self._secrets:
                value = value.replace(secret, "[REDACTED]")
            return _BEARER_RE.sub("Bearer [REDACTED]", value)
        if isinstance(value, dict):
            return {k: self._field(k, v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._scrub(v) for v in value)
        return value


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    *,
    secrets: Iterable[str | None] = (),
    keep_content: bool = False,
) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        Redactor(secrets, keep_content=keep_content),
    ]
    if fmt == "json":
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_config(cfg: CompletionClientConfig) -> None:
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=(cfg.api_key, cfg.organization),
        keep_content=cfg.log_payloads,
    )
