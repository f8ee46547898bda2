from __future__ import annotations


class CompletionClientError(Exception):
    """Base error for completion client failures."""


class ConfigurationError(CompletionClientError):
    pass


class InvalidArgumentError(CompletionClientError):
    """Caller used the entry point that contradicts the request's stream flag."""


class DecodeError(CompletionClientError):
    """Response body or stream frame does not match the expected schema."""


class ApplicationError(CompletionClientError):
    """HTTP call succeeded but the envelope status reports a failure."""

    def __init__(self, status: str, description: str | None = None):
        super().__init__(description or f"Completion failed with status {status!r}")
        self.status = status
        self.description = description


class TransportError(CompletionClientError):
    """Network, connection or non-2xx failure."""


class AuthenticationError(TransportError):
    pass


class RateLimitError(TransportError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class CircuitBreakerOpenError(TransportError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Upstream temporarily unavailable"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RequestTimeoutError(TransportError):
    """Upstream request timed out on every attempt."""


class UpstreamStatusError(TransportError):
    def __init__(self, status_code: int, message: str | None = None):
        super().__init__(message or f"Upstream error {status_code}.")
        self.status_code = status_code
