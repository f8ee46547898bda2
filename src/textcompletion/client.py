from __future__ import annotations

from types import TracebackType

from .completions import Completions
from .config import CompletionClientConfig
from .contracts import CompletionTransport
from .http_transport import HttpTransport
from .logging import configure_logging_from_config
from .metrics import maybe_start_metrics


class CompletionsClient:
    name = "TextCompletion"

    def __init__(self, cfg: CompletionClientConfig | None = None, *, transport: CompletionTransport | None = None):
        self.cfg = cfg or CompletionClientConfig()
        # Only a transport built here is closed by aclose().
        self._owns_transport = transport is None
        self.transport: CompletionTransport = transport or HttpTransport(self.cfg)

    @classmethod
    def from_env(cls) -> "CompletionsClient":
        """Build a client from environment config, with logging and metrics set up."""
        cfg = CompletionClientConfig()
        configure_logging_from_config(cfg)
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        return cls(cfg)

    @property
    def completions(self) -> Completions:
        return Completions(self.transport, self.cfg)

    async def aclose(self) -> None:
        if self._owns_transport:
            await self.transport.close()

    async def __aenter__(self) -> "CompletionsClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
