from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncGenerator, AsyncIterable
from types import TracebackType
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from .contracts import RawEventStream
from .errors import DecodeError, RequestTimeoutError, TransportError
from .metrics import stream_events_total, stream_outcomes_total
from .types import CreateCompletionResponse

log = structlog.get_logger()

DONE_SENTINEL = "[DONE]"


def sse_encode(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncGenerator[str, None]:
    """
    Group server-sent-event lines into frames and yield each frame's data.

    Only the `data` field is used; multiple data lines in one frame are joined
    with a newline. A trailing frame without its blank line is still emitted.
    """
    buffer: list[str] = []
    async for line in lines:
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        buffer.append(value[1:] if value.startswith(" ") else value)
    if buffer:
        yield "\n".join(buffer)


class SSEEventSource:
    """Frame payloads of an `httpx.Response` opened with `stream=True`."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._frames: AsyncGenerator[str, None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "SSEEventSource":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        if self._frames is None:
            self._frames = iter_sse_data(self._response.aiter_lines())
        try:
            return await self._frames.__anext__()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("Timed out reading the completion stream.") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Completion stream interrupted: {e}") from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._frames is not None:
                await self._frames.aclose()
        finally:
            await self._response.aclose()


class StreamState(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class CompletionResponseStream:
    """
    Lazily decoded partial completions of one streamed call.

    Each pull reads one frame from the transport. The stream closes itself on
    `[DONE]`, on end of input and on a malformed frame (which is raised as
    `DecodeError`). If the upstream closes without `[DONE]` the sequence just
    ends. Not restartable: pulling after close ends immediately. Use
    `async with` or `aclose()` to release the connection when stopping early;
    a stream dropped while open has its source closed on the event loop.
    """

    def __init__(self, source: RawEventStream, *, context: dict[str, Any] | None = None):
        self._source = source
        self._state = StreamState.OPEN
        self._events = 0
        self._log = log.bind(**(context or {}))
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def __del__(self) -> None:
        if self._state is StreamState.CLOSED or self._loop is None or self._loop.is_closed():
            return
        self._state = StreamState.CLOSED
        stream_outcomes_total.labels(outcome="dropped").inc()
        # Same hand-off asyncio uses to finalize abandoned async generators.
        self._loop.call_soon_threadsafe(self._loop.create_task, self._source.aclose())

    @property
    def state(self) -> StreamState:
        return self._state

    def __aiter__(self) -> "CompletionResponseStream":
        return self

    async def __anext__(self) -> CreateCompletionResponse:
        if self._state is StreamState.CLOSED:
            raise StopAsyncIteration
        try:
            data = await self._source.__anext__()
        except StopAsyncIteration:
            self._log.warning("completion_stream_eof_without_done", events=self._events)
            await self._finish("eof")
            raise
        except BaseException:
            await self._finish("transport_error")
            raise

        if data.strip() == DONE_SENTINEL:
            await self._finish("done")
            raise StopAsyncIteration

        try:
            event = CreateCompletionResponse.model_validate_json(data)
        except ValidationError as e:
            await self._finish("decode_error")
            self._log.warning("completion_stream_decode_failed", events=self._events, payload=data[:200])
            raise DecodeError("Failed to decode completion stream event.") from e

        self._events += 1
        stream_events_total.inc()
        return event

    async def _finish(self, outcome: str) -> None:
        if self._state is StreamState.CLOSED:
            return
        self._state = StreamState.CLOSED
        stream_outcomes_total.labels(outcome=outcome).inc()
        self._log.debug("completion_stream_closed", outcome=outcome, events=self._events)
        await self._source.aclose()

    async def aclose(self) -> None:
        await self._finish("cancelled")

    async def __aenter__(self) -> "CompletionResponseStream":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def collect_text(self) -> str:
        parts: list[str] = []
        async with self:
            async for event in self:
                parts.append(event.text)
        return "".join(parts)
