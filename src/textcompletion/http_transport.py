from __future__ import annotations

import asyncio
import json
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from .config import CompletionClientConfig
from .errors import (
    AuthenticationError,
    CircuitBreakerOpenError,
    DecodeError,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
    UpstreamStatusError,
)
from .metrics import circuit_breaker_events_total, transport_retries_total
from .streaming import SSEEventSource

log = structlog.get_logger()


class HttpTransport:
    """
    JSON-over-HTTP transport for the completion API.

    Retries (with exponential backoff and jitter) cover timeouts, connection
    errors, 429 and 5xx. For streams only opening the connection is retried;
    once events flow, failures go to the consumer.
    """

    def __init__(
        self,
        cfg: CompletionClientConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.cfg = cfg
        self._client = client or httpx.AsyncClient(timeout=cfg.timeout_seconds)
        self._max_attempts = max(1, cfg.max_attempts)
        self._backoff_initial_seconds = max(0.0, cfg.backoff_initial_seconds)
        self._backoff_max_seconds = max(self._backoff_initial_seconds, cfg.backoff_max_seconds)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._clock: Callable[[], float] = clock or time.monotonic

        self._cb_threshold = max(0, int(cfg.circuit_breaker_failures))
        self._cb_reset_seconds = max(0.0, float(cfg.circuit_breaker_reset_seconds))
        self._cb_failures = 0
        self._cb_open_until: float | None = None

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, *, stream: bool) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.cfg.require_api_key()}"}
        if self.cfg.organization:
            headers["OpenAI-Organization"] = self.cfg.organization
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    def _circuit_remaining_seconds(self) -> int | None:
        if self._cb_open_until is None:
            return None
        remaining = self._cb_open_until - self._clock()
        if remaining <= 0:
            return None
        return int(remaining) + 1

    def _circuit_allow(self) -> None:
        if self._cb_threshold <= 0:
            return
        remaining = self._circuit_remaining_seconds()
        if remaining is None:
            return
        circuit_breaker_events_total.labels(event="short_circuit").inc()
        raise CircuitBreakerOpenError(retry_after_seconds=remaining)

    def _circuit_on_success(self) -> None:
        if self._cb_threshold <= 0:
            return
        self._cb_failures = 0
        self._cb_open_until = None

    def _circuit_on_failure(self) -> None:
        if self._cb_threshold <= 0:
            return
        self._cb_failures += 1
        if self._cb_failures < self._cb_threshold:
            return
        if self._cb_reset_seconds <= 0:
            return
        self._cb_open_until = self._clock() + self._cb_reset_seconds
        circuit_breaker_events_total.labels(event="open").inc()

    def _compute_backoff(self, attempt_index: int) -> float:
        # attempt_index: 0-based retry count (0 for first retry)
        base = float(min(self._backoff_max_seconds, self._backoff_initial_seconds * (2**attempt_index)))
        jitter = float(random.uniform(0.0, min(0.25, base * 0.1))) if base > 0 else 0.0
        return base + jitter

    async def _retry_or_raise(
        self,
        attempt: int,
        reason: str,
        error: TransportError,
        *,
        delay: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self._circuit_on_failure()
        if attempt >= self._max_attempts - 1:
            raise error from cause
        transport_retries_total.labels(reason=reason).inc()
        log.debug("completion_transport_retry", reason=reason, attempt=attempt + 1)
        await self._sleep(delay if delay is not None else self._compute_backoff(attempt))

    async def _send(self, request: httpx.Request, *, stream: bool) -> httpx.Response:
        """Send with retries; returns a 2xx response (still open when `stream`)."""
        self._circuit_allow()
        for attempt in range(self._max_attempts):
            try:
                resp = await self._client.send(request, stream=stream)
            except httpx.TimeoutException as e:
                await self._retry_or_raise(
                    attempt, "timeout", RequestTimeoutError("Upstream request timed out."), cause=e
                )
                continue
            except httpx.HTTPError as e:
                await self._retry_or_raise(
                    attempt, "connection", TransportError(f"Upstream request failed: {e}"), cause=e
                )
                continue

            if resp.status_code < 400:
                self._circuit_on_success()
                return resp

            if stream:
                try:
                    await resp.aread()
                except httpx.HTTPError as e:
                    await resp.aclose()
                    await self._retry_or_raise(
                        attempt,
                        "connection",
                        TransportError(f"Upstream error {resp.status_code} body unreadable: {e}"),
                        cause=e,
                    )
                    continue
                await resp.aclose()

            if resp.status_code in (401, 403):
                raise AuthenticationError("Upstream rejected credentials (check COMPLETIONS_API_KEY).")

            if resp.status_code == 429:
                retry_after = resp.headers.get("retry-after")
                retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
                await self._retry_or_raise(
                    attempt, "rate_limit", RateLimitError(retry_after_seconds=retry_seconds), delay=retry_seconds
                )
                continue

            if 500 <= resp.status_code <= 599:
                if attempt >= self._max_attempts - 1:
                    log.warning("completion_upstream_5xx", status_code=resp.status_code, body=resp.text[:500])
                await self._retry_or_raise(attempt, "server_error", UpstreamStatusError(resp.status_code))
                continue

            log.warning("completion_upstream_4xx", status_code=resp.status_code, body=resp.text[:500])
            raise UpstreamStatusError(resp.status_code)

        raise TransportError("Upstream request failed after retries.")  # pragma: no cover

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        request = self._client.build_request(
            "POST", self.cfg.api_url(path), json=body, headers=self._headers(stream=False)
        )
        resp = await self._send(request, stream=False)
        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError("Upstream response is not valid JSON.") from e
        if not isinstance(data, dict):
            raise DecodeError("Upstream response is not a JSON object.")
        log.debug("completion_post_ok", path=path, status_code=resp.status_code)
        return data

    async def post_stream(self, path: str, body: dict[str, Any]) -> SSEEventSource:
        request = self._client.build_request(
            "POST", self.cfg.api_url(path), json=body, headers=self._headers(stream=True)
        )
        resp = await self._send(request, stream=True)
        log.debug("completion_stream_opened", path=path, status_code=resp.status_code)
        return SSEEventSource(resp)
