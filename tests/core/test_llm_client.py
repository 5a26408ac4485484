import json
from collections.abc import Iterator

import httpx
import pytest

from chatloop.core.cancellation import CancellationToken
from chatloop.core.conversation import Message
from chatloop.core.errors import BackendUnavailable
from chatloop.core.events import TextDelta, ToolCallArgsDelta, ToolCallStart, TurnEnd
from chatloop.core.llm import LLMClient, LLMSettings, OfflineBackend, StreamOptions
from chatloop.core.tools.base import ToolSchema


def make_settings(api: str = "chat", max_retries: int = 2) -> LLMSettings:
    return LLMSettings(
        provider="openai",
        base_url="https://api.example.test/v1",
        model="test-model",
        api_key="test-key",
        api=api,
        max_retries=max_retries,
    )


def sse(*payloads: dict) -> bytes:
    lines = [f"data: {json.dumps(payload)}\n\n" for payload in payloads]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def test_stream_turn_yields_events_and_turn_end() -> None:
    body = sse(
        {"choices": [{"delta": {"content": "Hello"}}]},
        {"choices": [{"delta": {"content": " world"}}]},
        {"choices": [{"delta": {}, "finish_reason": "stop"}], "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = json.loads(request.content.decode())
        assert payload["stream"] is True
        assert payload["messages"][-1] == {"role": "user", "content": "ping"}
        assert payload["tools"][0]["function"]["name"] == "echo"
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))

    events = list(client.stream_turn([Message.user("ping")], [ToolSchema(name="echo")], StreamOptions()))

    assert events == [
        TextDelta("Hello"),
        TextDelta(" world"),
        TurnEnd(finish_reason="stop", usage={"prompt_tokens": 5, "completion_tokens": 2}),
    ]


def test_stream_turn_decodes_responses_tool_calls() -> None:
    body = sse(
        {"type": "response.output_item.added", "item": {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "list_tracks", "arguments": ""}},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": "{\"limit\": 1}"},
        {"type": "response.completed", "response": {"status": "completed"}},
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/responses")
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    client = LLMClient(make_settings("responses"), client=httpx.Client(transport=httpx.MockTransport(handler)))

    events = list(client.stream_turn([Message.user("tracks?")], [], StreamOptions()))

    assert events == [
        ToolCallStart("call_1", "list_tracks"),
        ToolCallArgsDelta("call_1", '{"limit": 1}'),
        TurnEnd(finish_reason="completed", usage=None),
    ]


def test_http_status_error_raises_backend_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(BackendUnavailable, match=r"\(401\): Invalid API key"):
        client.stream_turn([Message.user("ping")], [], StreamOptions())


def test_connection_errors_retry_with_backoff_then_fail() -> None:
    attempts = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connect ECONNREFUSED", request=request)

    client = LLMClient(
        make_settings(max_retries=2),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )

    with pytest.raises(BackendUnavailable, match="after 3 attempt"):
        client.stream_turn([Message.user("ping")], [], StreamOptions())

    assert attempts == 3
    assert sleeps == [1.5, 2.25]


def test_rate_limited_request_honours_retry_after() -> None:
    attempts = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            return httpx.Response(429, headers={"Retry-After": "1"}, json={"error": {"message": "rate limited"}})
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=sse({"choices": [{"delta": {"content": "ok"}, "finish_reason": "stop"}]}),
        )

    client = LLMClient(
        make_settings(),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )

    events = list(client.stream_turn([Message.user("ping")], [], StreamOptions()))

    assert attempts == 2
    assert sleeps == [1.0]
    assert events[0] == TextDelta("ok")


def test_overloaded_responses_back_off_then_fail() -> None:
    attempts = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, json={"error": {"message": "overloaded"}})

    client = LLMClient(
        make_settings(max_retries=2),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )

    with pytest.raises(BackendUnavailable, match=r"\(503\): overloaded"):
        client.stream_turn([Message.user("ping")], [], StreamOptions())

    assert attempts == 3
    assert sleeps == [1.5, 2.25]


def test_cancel_during_rate_limit_wait_stops_retrying() -> None:
    attempts = 0
    token = CancellationToken()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        token.cancel()
        return httpx.Response(429, headers={"Retry-After": "30"}, json={"error": {"message": "rate limited"}})

    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))

    events = list(client.stream_turn([Message.user("ping")], [], StreamOptions(), token))

    assert attempts == 1
    assert events == [TurnEnd(finish_reason="cancelled")]


def test_retry_recovers_after_transient_timeout() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=sse({"choices": [{"delta": {"content": "ok"}, "finish_reason": "stop"}]}),
        )

    client = LLMClient(
        make_settings(),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _seconds: None,
    )

    events = list(client.stream_turn([Message.user("ping")], [], StreamOptions()))

    assert attempts == 2
    assert events[0] == TextDelta("ok")
    assert isinstance(events[-1], TurnEnd)


def test_mid_stream_failure_reports_interrupted() -> None:
    def chunks() -> Iterator[bytes]:
        yield b'data: {"choices": [{"delta": {"content": "par"}}]}\n\n'
        raise httpx.ReadError("connection reset")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=chunks())

    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))

    events = list(client.stream_turn([Message.user("ping")], [], StreamOptions()))

    assert events == [TextDelta("par"), TurnEnd(finish_reason="interrupted", usage=None)]


def test_cancelled_token_stops_stream() -> None:
    token = CancellationToken()
    body = sse(
        {"choices": [{"delta": {"content": "one"}}]},
        {"choices": [{"delta": {"content": "two"}}]},
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))
    stream = client.stream_turn([Message.user("ping")], [], StreamOptions(), token)

    first = next(stream)
    token.cancel()
    rest = list(stream)

    assert first == TextDelta("one")
    assert rest == [TurnEnd(finish_reason="cancelled", usage=None)]


def test_already_cancelled_skips_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("request should not be sent")

    token = CancellationToken()
    token.cancel()
    client = LLMClient(make_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))

    assert list(client.stream_turn([Message.user("ping")], [], StreamOptions(), token)) == [
        TurnEnd(finish_reason="cancelled")
    ]


def test_offline_backend_echoes_last_prompt() -> None:
    events = list(OfflineBackend().stream_turn([Message.user("hello world")], [], StreamOptions()))

    assert events == [TextDelta("[offline stub] hello world"), TurnEnd(finish_reason="stop")]
