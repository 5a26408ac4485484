from typing import Any

from chatloop.core.cancellation import CancellationToken
from chatloop.core.conversation import ToolCallRecord
from chatloop.core.logs import LogBuffer
from chatloop.core.reducer import ToolCallRequest
from chatloop.core.tool_executor import CANCELLED_RESULT, ToolExecutionCoordinator, result_to_text
from chatloop.core.tools.base import ToolCallResult, ToolSchema


class RecordingService:
    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def list_tools(self) -> list[ToolSchema]:
        return [ToolSchema(name=name) for name in self.responses]

    def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        self.calls.append((name, args))
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def tool_call(self, record: ToolCallRecord) -> None:
        self.events.append(("call", record.name))

    def tool_result(self, record: ToolCallRecord) -> None:
        self.events.append(("result", record.name))


def test_calls_run_in_request_order() -> None:
    service = RecordingService(
        {
            "first": ToolCallResult.text("one"),
            "second": {"content": [{"type": "text", "text": "two"}]},
        }
    )
    sink = RecordingSink()
    coordinator = ToolExecutionCoordinator(service, sink=sink)

    records = coordinator.execute(
        [ToolCallRequest("a", "first", {"n": 1}), ToolCallRequest("b", "second", {})]
    )

    assert service.calls == [("first", {"n": 1}), ("second", {})]
    assert [(r.id, r.result, r.is_error) for r in records] == [("a", "one", False), ("b", "two", False)]
    assert sink.events == [("call", "first"), ("result", "first"), ("call", "second"), ("result", "second")]


def test_raising_service_becomes_error_record() -> None:
    service = RecordingService({"lookup": ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:3350")})
    log_buffer = LogBuffer()

    records = ToolExecutionCoordinator(service, log_buffer=log_buffer).execute(
        [ToolCallRequest("a", "lookup", {})]
    )

    assert records[0].is_error is True
    assert "ECONNREFUSED" in (records[0].result or "")
    entry = log_buffer.latest()
    assert entry is not None and entry.category == "tool" and entry.severity == "warning"


def test_error_payload_marks_record_as_error() -> None:
    service = RecordingService({"lookup": ToolCallResult.text("no such track", is_error=True)})

    records = ToolExecutionCoordinator(service).execute([ToolCallRequest("a", "lookup", {})])

    assert records[0].result == "no such track"
    assert records[0].is_error is True


def test_cancelled_token_skips_remaining_calls() -> None:
    token = CancellationToken()

    class CancellingService(RecordingService):
        def call_tool(self, name: str, args: dict[str, Any]) -> Any:
            result = super().call_tool(name, args)
            token.cancel()
            return result

    service = CancellingService({"first": "ok", "second": "never"})
    records = ToolExecutionCoordinator(service).execute(
        [ToolCallRequest("a", "first", {}), ToolCallRequest("b", "second", {})], token
    )

    assert service.calls == [("first", {})]
    assert records[0].result == "ok"
    assert records[1].result == CANCELLED_RESULT
    assert records[1].is_error is True


def test_sink_failures_do_not_break_execution() -> None:
    class ExplodingSink:
        def tool_call(self, record: ToolCallRecord) -> None:
            raise RuntimeError("render failed")

        def tool_result(self, record: ToolCallRecord) -> None:
            raise RuntimeError("render failed")

    service = RecordingService({"first": "ok"})
    records = ToolExecutionCoordinator(service, sink=ExplodingSink()).execute([ToolCallRequest("a", "first", {})])

    assert records[0].result == "ok"


def test_result_to_text_shapes() -> None:
    assert result_to_text(ToolCallResult(content=[{"type": "image", "data": "xx"}])) == (
        '{"type": "image", "data": "xx"}',
        False,
    )
    assert result_to_text({"content": [], "isError": True}) == ('{"content": [], "isError": true}', True)
    assert result_to_text({"content": "plain", "is_error": True}) == ("plain", True)
    assert result_to_text([1, 2]) == ("[1, 2]", False)
    assert result_to_text("raw") == ("raw", False)
