from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol


class RawEventStream(Protocol):
    """Data payloads of an open event stream, pulled one frame at a time."""

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def __anext__(self) -> str: ...

    async def aclose(self) -> None: ...


class CompletionTransport(Protocol):
    """
    What the dispatcher needs from the HTTP layer.

    Implementations own serialization, headers and auth, and raise
    `TransportError` subclasses for connection failures and non-2xx responses.
    """

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def post_stream(self, path: str, body: dict[str, Any]) -> RawEventStream: ...

    async def close(self) -> None: ...
