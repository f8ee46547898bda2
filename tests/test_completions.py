import json

import pytest
import structlog
from structlog.testing import capture_logs

from textcompletion import CompletionClientConfig, Completions, CreateCompletionRequest
from textcompletion.errors import DecodeError, InvalidArgumentError, RateLimitError, UpstreamStatusError
from textcompletion.streaming import CompletionResponseStream


def _detail(text: str = "hello") -> dict:
    return {
        "id": "cmpl-1",
        "object": "text_completion",
        "created": 1700000000,
        "model": "text-davinci-003",
        "choices": [{"text": text, "index": 0, "logprobs": None, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }


class FakeSource:
    def __init__(self, frames):
        self._frames = iter(frames)
        self.close_calls = 0

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        try:
            return next(self._frames)
        except StopIteration:
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        self.close_calls += 1


class FakeTransport:
    def __init__(self, body=None, frames=(), error: Exception | None = None):
        self.body = body if body is not None else {"status": "000000", "detail": _detail()}
        self.frames = list(frames)
        self.error = error
        self.posts: list[tuple[str, dict]] = []
        self.streams: list[tuple[str, dict]] = []
        self.sources: list[FakeSource] = []

    async def post(self, path, body):
        self.posts.append((path, body))
        if self.error is not None:
            raise self.error
        return self.body

    async def post_stream(self, path, body):
        self.streams.append((path, body))
        if self.error is not None:
            raise self.error
        source = FakeSource(self.frames)
        self.sources.append(source)
        return source

    async def close(self) -> None:
        return None


def _completions(transport: FakeTransport, **cfg_overrides) -> Completions:
    cfg = CompletionClientConfig(api_key="k", enable_metrics=False, **cfg_overrides)
    return Completions(transport, cfg)


@pytest.mark.asyncio
async def test_create_rejects_stream_true_without_network_call():
    transport = FakeTransport()
    with pytest.raises(InvalidArgumentError):
        await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi", stream=True))
    assert transport.posts == []
    assert transport.streams == []


@pytest.mark.asyncio
async def test_create_stream_rejects_stream_false_without_network_call():
    transport = FakeTransport()
    with pytest.raises(InvalidArgumentError):
        await _completions(transport).create_stream(CreateCompletionRequest(model="m", prompt="hi", stream=False))
    assert transport.posts == []
    assert transport.streams == []


@pytest.mark.asyncio
async def test_create_stream_forces_stream_true_on_the_wire():
    transport = FakeTransport(frames=["[DONE]"])
    request = CreateCompletionRequest(model="m", prompt="hi", max_tokens=5)

    stream = await _completions(transport).create_stream(request)

    assert isinstance(stream, CompletionResponseStream)
    path, body = transport.streams[0]
    assert path == "/completions"
    assert body["stream"] is True
    assert body["max_tokens"] == 5
    assert request.stream is None
    await stream.aclose()


@pytest.mark.asyncio
async def test_create_stream_accepts_explicit_stream_true():
    transport = FakeTransport(frames=[json.dumps(_detail("A")), "[DONE]"])
    stream = await _completions(transport).create_stream(
        CreateCompletionRequest(model="m", prompt="hi", stream=True)
    )
    assert [e.text async for e in stream] == ["A"]
    assert transport.sources[0].close_calls == 1


@pytest.mark.asyncio
async def test_create_posts_to_blocking_path_and_returns_envelope():
    transport = FakeTransport()
    envelope = await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi"))

    path, body = transport.posts[0]
    assert path == "/api/v2/text/completion"
    assert "stream" not in body
    assert body == {"model": "m", "prompt": "hi"}
    assert envelope.is_success
    assert envelope.detail is not None
    assert envelope.detail.text == "hello"


@pytest.mark.asyncio
async def test_create_keeps_explicit_stream_false():
    transport = FakeTransport()
    await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi", stream=False))
    assert transport.posts[0][1]["stream"] is False


@pytest.mark.asyncio
async def test_paths_come_from_config():
    transport = FakeTransport(frames=[])
    completions = _completions(transport, completion_path="/v9/complete", stream_path="/v9/stream")
    await completions.create(CreateCompletionRequest(model="m", prompt="hi"))
    stream = await completions.create_stream(CreateCompletionRequest(model="m", prompt="hi"))
    await stream.aclose()
    assert transport.posts[0][0] == "/v9/complete"
    assert transport.streams[0][0] == "/v9/stream"


@pytest.mark.asyncio
async def test_create_returns_application_failure_without_raising():
    transport = FakeTransport(body={"status": "999999", "desc": "rate limited", "detail": None})
    envelope = await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi"))
    assert not envelope.is_success
    assert envelope.error_message == "rate limited"


@pytest.mark.asyncio
async def test_create_raises_decode_error_for_bad_envelope():
    transport = FakeTransport(body={"detail": {"unexpected": True}})
    with pytest.raises(DecodeError):
        await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi"))


@pytest.mark.asyncio
async def test_transport_errors_propagate_unchanged():
    err = UpstreamStatusError(502)
    transport = FakeTransport(error=err)
    with pytest.raises(UpstreamStatusError) as exc:
        await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi"))
    assert exc.value is err

    with pytest.raises(UpstreamStatusError) as exc:
        await _completions(transport).create_stream(CreateCompletionRequest(model="m", prompt="hi"))
    assert exc.value is err


@pytest.mark.asyncio
async def test_dropping_stream_after_one_of_three_events_releases_connection():
    frames = [json.dumps(_detail(t)) for t in ("A", "B", "C")]
    transport = FakeTransport(frames=frames)
    stream = await _completions(transport).create_stream(CreateCompletionRequest(model="m", prompt="hi"))

    async with stream:
        async for event in stream:
            assert event.text == "A"
            break

    assert transport.sources[0].close_calls == 1


@pytest.mark.asyncio
async def test_calls_bind_mode_and_model_into_log_context():
    seen = {}

    class ContextTransport(FakeTransport):
        async def post(self, path, body):
            seen["blocking"] = structlog.contextvars.get_contextvars()
            return await super().post(path, body)

        async def post_stream(self, path, body):
            seen["streaming"] = structlog.contextvars.get_contextvars()
            return await super().post_stream(path, body)

    completions = _completions(ContextTransport(frames=[]))
    await completions.create(CreateCompletionRequest(model="m1", prompt="hi"))
    stream = await completions.create_stream(CreateCompletionRequest(model="m2", prompt="hi"))
    await stream.aclose()

    assert seen["blocking"] == {"mode": "blocking", "model": "m1"}
    assert seen["streaming"] == {"mode": "streaming", "model": "m2"}
    assert structlog.contextvars.get_contextvars() == {}


@pytest.mark.asyncio
async def test_typed_client_errors_log_a_warning_without_traceback():
    transport = FakeTransport(error=RateLimitError(retry_after_seconds=3))
    with capture_logs() as logs:
        with pytest.raises(RateLimitError):
            await _completions(transport).create(CreateCompletionRequest(model="m", prompt="hi"))
    failed = [entry for entry in logs if entry["event"] == "completion_create_failed"]
    assert failed[0]["log_level"] == "warning"
    assert failed[0]["error_type"] == "RateLimitError"
    assert "exc_info" not in failed[0]


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged_with_traceback():
    transport = FakeTransport(error=RuntimeError("boom"))
    with capture_logs() as logs:
        with pytest.raises(RuntimeError):
            await _completions(transport).create_stream(CreateCompletionRequest(model="m", prompt="hi"))
    failed = [entry for entry in logs if entry["event"] == "completion_stream_open_failed"]
    assert failed[0]["log_level"] == "error"
    assert failed[0]["exc_info"] is True
