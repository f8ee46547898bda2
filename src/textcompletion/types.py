from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ApplicationError

SUCCESS_STATUS = "000000"


class CreateCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str
    prompt: str | list[str]
    suffix: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    n: int | None = None
    # None means "let the entry point decide"; an explicit value must match it.
    stream: bool | None = None
    logprobs: int | None = None
    echo: bool | None = None
    stop: str | list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    best_of: int | None = None
    logit_bias: dict[str, int] | None = None
    user: str | None = None

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("top_p")
    @classmethod
    def _validate_top_p(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 < v <= 1.0):
            raise ValueError("top_p must be > 0 and <= 1.")
        return v

    @field_validator("max_tokens", "n", "best_of")
    @classmethod
    def _validate_positive(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("value must be > 0.")
        return v

    @field_validator("logprobs")
    @classmethod
    def _validate_logprobs(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if not (0 <= v <= 5):
            raise ValueError("logprobs must be between 0 and 5.")
        return v

    @field_validator("stop")
    @classmethod
    def _validate_stop(cls, v: str | list[str] | None) -> str | list[str] | None:
        if v is None:
            return None
        if isinstance(v, str):
            if not v:
                raise ValueError("stop must be non-empty.")
            return v
        if not v or len(v) > 4:
            raise ValueError("stop list must hold 1 to 4 sequences.")
        if any((not isinstance(s, str) or not s) for s in v):
            raise ValueError("stop sequences must be non-empty strings.")
        return v

    @field_validator("presence_penalty", "frequency_penalty")
    @classmethod
    def _validate_penalties(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (-2.0 <= v <= 2.0):
            raise ValueError("penalty must be between -2 and 2.")
        return v

    @model_validator(mode="after")
    def _validate_best_of(self) -> "CreateCompletionRequest":
        if self.best_of is not None and self.n is not None and self.best_of < self.n:
            raise ValueError("best_of must be greater than or equal to n.")
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Logprobs(BaseModel):
    tokens: list[str] = Field(default_factory=list)
    token_logprobs: list[float | None] = Field(default_factory=list)
    top_logprobs: list[dict[str, float] | None] = Field(default_factory=list)
    text_offset: list[int] = Field(default_factory=list)


class CompletionChoice(BaseModel):
    text: str
    index: int = 0
    logprobs: Logprobs | None = None
    finish_reason: str | None = None


class CompletionUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CreateCompletionResponse(BaseModel):
    """A full completion, or one partial completion event of a stream."""

    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "text_completion"
    created: int
    model: str
    choices: list[CompletionChoice]
    usage: CompletionUsage | None = None
    system_fingerprint: str | None = None

    @property
    def text(self) -> str:
        return self.choices[0].text if self.choices else ""


class CompletionEnvelope(BaseModel):
    """
    Application-level wrapper around a blocking completion.

    A 200 response can still carry a failure: check `is_success` (or call
    `into_detail()`) before touching `detail`.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: str
    description: str | None = Field(default=None, validation_alias=AliasChoices("desc", "description"))
    detail: CreateCompletionResponse | None = None

    @property
    def is_success(self) -> bool:
        return self.status == SUCCESS_STATUS and self.detail is not None

    @property
    def error_message(self) -> str | None:
        if self.is_success:
            return None
        if self.description:
            return self.description
        if self.status == SUCCESS_STATUS:
            return "Completion reported success without a detail payload."
        return f"Completion failed with status {self.status!r}."

    def into_detail(self) -> CreateCompletionResponse:
        if not self.is_success or self.detail is None:
            raise ApplicationError(self.status, self.description)
        return self.detail
