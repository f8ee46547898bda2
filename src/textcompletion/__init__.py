from .client import CompletionsClient
from .completions import Completions
from .config import CompletionClientConfig
from .errors import (
    ApplicationError,
    CompletionClientError,
    DecodeError,
    InvalidArgumentError,
    TransportError,
)
from .streaming import CompletionResponseStream
from .types import CompletionEnvelope, CreateCompletionRequest, CreateCompletionResponse

__all__ = [
    "ApplicationError",
    "CompletionClientConfig",
    "CompletionClientError",
    "CompletionEnvelope",
    "CompletionResponseStream",
    "Completions",
    "CompletionsClient",
    "CreateCompletionRequest",
    "CreateCompletionResponse",
    "DecodeError",
    "InvalidArgumentError",
    "TransportError",
]
