import logging

import pytest

from chatloop.core.conversation import TextPart, ThoughtPart, ToolCallPart
from chatloop.core.errors import MalformedToolArguments
from chatloop.core.events import ReasoningDelta, TextDelta, ToolCallArgsDelta, ToolCallStart, TurnEnd
from chatloop.core.reducer import TurnState, decode_tool_arguments, freeze, reduce


def run(events) -> TurnState:
    state = TurnState()
    for event in events:
        state = reduce(event, state)
    return state


def test_text_deltas_accumulate_into_one_part() -> None:
    turn = freeze(run([TextDelta("Hel"), TextDelta("lo"), TurnEnd("stop")]))

    assert turn.parts == [TextPart(content="Hello")]
    assert turn.tool_calls == []
    assert turn.finish_reason == "stop"


def test_reduce_does_not_mutate_previous_state() -> None:
    first = reduce(TextDelta("a"), TurnState())
    second = reduce(TextDelta("b"), first)

    assert first.open_content == "a"
    assert second.open_content == "ab"


def test_thought_and_text_never_share_a_part() -> None:
    turn = freeze(
        run(
            [
                ReasoningDelta("think "),
                ReasoningDelta("hard"),
                TextDelta("answer"),
                ReasoningDelta("again"),
                TurnEnd(),
            ]
        )
    )

    assert turn.parts == [
        ThoughtPart(content="think hard"),
        TextPart(content="answer"),
        ThoughtPart(content="again"),
    ]


def test_signature_attaches_to_open_thought() -> None:
    turn = freeze(run([ReasoningDelta("plan"), ReasoningDelta(" more", signature="sig-1"), TurnEnd()]))

    assert turn.parts == [ThoughtPart(content="plan more", signature="sig-1")]


def test_bare_signature_opens_its_own_thought() -> None:
    turn = freeze(
        run(
            [
                ReasoningDelta("plan the call"),
                ReasoningDelta("", signature="sig-1"),
                ToolCallStart("c1", "list_tracks"),
                TurnEnd(),
            ]
        )
    )

    assert turn.parts == [
        ThoughtPart(content="plan the call"),
        ThoughtPart(content="", signature="sig-1"),
        ToolCallPart(id="c1", name="list_tracks", args={}),
    ]


def test_reasoning_after_signed_thought_opens_new_part() -> None:
    turn = freeze(
        run(
            [
                ReasoningDelta("first", signature="sig-1"),
                ReasoningDelta("second"),
                TurnEnd(),
            ]
        )
    )

    assert turn.parts == [
        ThoughtPart(content="first", signature="sig-1"),
        ThoughtPart(content="second"),
    ]


def test_tool_call_closes_text_and_keeps_stream_order() -> None:
    turn = freeze(
        run(
            [
                TextDelta("Let me check."),
                ToolCallStart(id="call_1", name="list_tracks"),
                ToolCallArgsDelta(id="call_1", fragment='{"lim'),
                ToolCallArgsDelta(id="call_1", fragment='it": 5}'),
                TurnEnd("tool_calls"),
            ]
        )
    )

    assert turn.parts == [
        TextPart(content="Let me check."),
        ToolCallPart(id="call_1", name="list_tracks", args={"limit": 5}),
    ]
    assert [(call.id, call.name, call.args) for call in turn.tool_calls] == [
        ("call_1", "list_tracks", {"limit": 5})
    ]


def test_interleaved_argument_fragments_stay_with_their_call() -> None:
    turn = freeze(
        run(
            [
                ToolCallStart(id="a", name="first"),
                ToolCallStart(id="b", name="second"),
                ToolCallArgsDelta(id="b", fragment='{"y":'),
                ToolCallArgsDelta(id="a", fragment='{"x": 1}'),
                ToolCallArgsDelta(id="b", fragment=" 2}"),
                TurnEnd(),
            ]
        )
    )

    assert [(call.name, call.args) for call in turn.tool_calls] == [("first", {"x": 1}), ("second", {"y": 2})]


def test_repeated_start_only_fills_missing_name() -> None:
    state = run([ToolCallArgsDelta(id="k", fragment="{}"), ToolCallStart(id="k", name="late"), ToolCallStart(id="k", name="other")])
    turn = freeze(reduce(TurnEnd(), state))

    assert [call.name for call in turn.tool_calls] == ["late"]


def test_malformed_arguments_fall_back_to_empty_object(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    turn = freeze(
        run(
            [
                ToolCallStart(id="c1", name="broken"),
                ToolCallArgsDelta(id="c1", fragment='{"oops": '),
                ToolCallStart(id="c2", name="array"),
                ToolCallArgsDelta(id="c2", fragment="[1, 2]"),
                ToolCallStart(id="c3", name="empty"),
                TurnEnd(),
            ]
        )
    )

    assert [call.args for call in turn.tool_calls] == [{}, {}, {}]
    assert "Malformed arguments for tool 'broken'" in caplog.text


def test_decode_tool_arguments_raises_for_non_objects() -> None:
    with pytest.raises(MalformedToolArguments):
        decode_tool_arguments('"text"')
    assert decode_tool_arguments("   ") == {}


def test_empty_call_id_gets_generated_id() -> None:
    turn = freeze(run([ToolCallStart(id="", name="anon"), TurnEnd()]))

    assert turn.tool_calls[0].id.startswith("call_")
    assert turn.parts[0].id == turn.tool_calls[0].id


def test_events_after_turn_end_are_ignored() -> None:
    state = run([TextDelta("done"), TurnEnd("stop", {"input_tokens": 3}), TextDelta(" extra")])
    turn = freeze(state)

    assert turn.text == "done"
    assert turn.usage == {"input_tokens": 3}


def test_freeze_closes_open_part_without_turn_end() -> None:
    state = run([ReasoningDelta("partial"), TextDelta("half an ans")])

    assert not state.ended
    turn = freeze(state)
    assert turn.parts == [ThoughtPart(content="partial"), TextPart(content="half an ans")]
    assert turn.content_parts() == turn.parts
