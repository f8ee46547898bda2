from __future__ import annotations

import time

import structlog
from pydantic import ValidationError

from .config import CompletionClientConfig
from .contracts import CompletionTransport
from .errors import CompletionClientError, DecodeError, InvalidArgumentError
from .metrics import request_latency_seconds, requests_total
from .streaming import CompletionResponseStream
from .types import CompletionEnvelope, CreateCompletionRequest

log = structlog.get_logger()


def _record_failure(event: str, mode: str, error: Exception) -> None:
    requests_total.labels(mode=mode, status="error").inc()
    if isinstance(error, CompletionClientError):
        log.warning(event, error_type=type(error).__name__, error=str(error))
    else:
        log.exception(event, error=str(error))


class Completions:
    """
    Given a prompt, the model returns one or more predicted completions.

    `create` waits for the whole result; `create_stream` returns partial
    completions as the server produces them. A request's `stream` flag, when
    set, must match the method used.
    """

    def __init__(self, transport: CompletionTransport, cfg: CompletionClientConfig):
        self._transport = transport
        self.cfg = cfg

    async def create(self, request: CreateCompletionRequest) -> CompletionEnvelope:
        if request.stream is True:
            raise InvalidArgumentError("When stream is true, use Completions.create_stream")

        with structlog.contextvars.bound_contextvars(mode="blocking", model=request.model):
            start = time.monotonic()
            try:
                with request_latency_seconds.labels(mode="blocking").time():
                    body = await self._transport.post(self.cfg.completion_path, request.to_payload())
                try:
                    envelope = CompletionEnvelope.model_validate(body)
                except ValidationError as e:
                    raise DecodeError("Completion response does not match the envelope schema.") from e
            except Exception as e:
                _record_failure("completion_create_failed", "blocking", e)
                raise

            status = "success" if envelope.is_success else "application_error"
            requests_total.labels(mode="blocking", status=status).inc()
            log.debug(
                "completion_create_done",
                status=envelope.status,
                latency_seconds=round(time.monotonic() - start, 3),
            )
            return envelope

    async def create_stream(self, request: CreateCompletionRequest) -> CompletionResponseStream:
        """
        Stream back partial progress as data-only server-sent events.

        The returned stream yields `CreateCompletionResponse` events until the
        server sends `data: [DONE]`.
        """
        if request.stream is False:
            raise InvalidArgumentError("When stream is false, use Completions.create")

        outgoing = request.model_copy(update={"stream": True})
        with structlog.contextvars.bound_contextvars(mode="streaming", model=request.model):
            try:
                with request_latency_seconds.labels(mode="streaming").time():
                    source = await self._transport.post_stream(self.cfg.stream_path, outgoing.to_payload())
            except Exception as e:
                _record_failure("completion_stream_open_failed", "streaming", e)
                raise

        requests_total.labels(mode="streaming", status="opened").inc()
        # Events are pulled outside this call, so the stream carries its own context.
        return CompletionResponseStream(source, context={"mode": "streaming", "model": request.model})
