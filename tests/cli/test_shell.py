from io import StringIO
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from chatloop.cli.app import ChatShell
from chatloop.core.errors import BackendUnavailable
from chatloop.core.events import TextDelta, ToolCallArgsDelta, ToolCallStart, TurnEnd
from chatloop.core.llm import ScriptedBackend
from chatloop.core.tool_registry import Tool, Toolkit, ToolRegistry, ToolResult
from chatloop.session import SessionManager


def make_console() -> tuple[Console, StringIO]:
    buffer = StringIO()
    return Console(file=buffer, force_terminal=False, color_system=None, width=120), buffer


def music_registry() -> ToolRegistry:
    def list_tracks(_payload: dict[str, Any]) -> ToolResult:
        return ToolResult(content="[]")

    return ToolRegistry([Toolkit("music", "1.0.0", "", [Tool("list_tracks", "List tracks", {"type": "object"}, list_tracks)])])


def list_tracks_script() -> list:
    return [
        [ToolCallStart("call_1", "list_tracks"), ToolCallArgsDelta("call_1", "{}"), TurnEnd("tool_calls")],
        [TextDelta("There are no tracks."), TurnEnd("stop", {"input_tokens": 12, "output_tokens": 4})],
    ]


@pytest.fixture
def shell(tmp_path: Path) -> tuple[ChatShell, StringIO, SessionManager]:
    console, buffer = make_console()
    manager = SessionManager(root=tmp_path / "sessions")
    chat_shell = ChatShell(
        ScriptedBackend(list_tracks_script()),
        tool_service=music_registry(),
        console=console,
        session_manager=manager,
    )
    return chat_shell, buffer, manager


def test_message_streams_reply_and_persists_session(shell) -> None:
    chat_shell, buffer, manager = shell

    response = chat_shell.handle_line("What tracks do I have?")

    output = buffer.getvalue()
    assert "[Turn 1] Assistant:" in output
    assert "🔧 list_tracks({})" in output
    assert "↳ []" in output
    assert "There are no tracks." in output
    assert response.exchange is not None
    assert response.exchange.stop_reason == "completed"
    assert response.continue_loop is True

    stored = manager.start(chat_shell.session_id).metadata
    assert stored.exchanges == 1
    assert stored.llm_input_tokens == 12
    assert stored.last_stop_reason == "completed"


def test_history_command_renders_transcript(shell) -> None:
    chat_shell, _buffer, _manager = shell
    chat_shell.handle_line("What tracks do I have?")

    response = chat_shell.handle_line("/history")

    text = response.messages[0][1]
    assert "[Turn 1] User: What tracks do I have?" in text
    assert "🔧 list_tracks({})\n   ↳ []" in text
    assert "There are no tracks." in text


def test_history_command_on_empty_session(shell) -> None:
    chat_shell, _buffer, _manager = shell

    response = chat_shell.handle_line("/history")

    assert response.messages == [("system", "No messages in this session yet.")]


def test_logs_command_filters_by_category(shell) -> None:
    chat_shell, _buffer, _manager = shell

    response = chat_shell.handle_line("/logs system")
    assert "initialised" in response.messages[0][1]

    unknown = chat_shell.handle_line("/logs nope")
    assert "Unknown log category 'nope'" in unknown.messages[0][1]


def test_help_lists_commands(shell) -> None:
    chat_shell, _buffer, _manager = shell

    text = chat_shell.handle_line("/help").messages[0][1]

    for name in ("/help", "/history", "/logs", "/sessions", "/quit"):
        assert name in text


def test_sessions_command_marks_current_session(shell) -> None:
    chat_shell, _buffer, manager = shell
    other = manager.start(model="gemini-2.5-flash")
    chat_shell.handle_line("What tracks do I have?")

    text = chat_shell.handle_line("/sessions").messages[0][1]

    assert f"* {chat_shell.session_id}" in text
    assert f"  {other.metadata.session_id}" in text
    assert "gemini-2.5-flash" in text


def test_sessions_command_without_persistence() -> None:
    console, _buffer = make_console()
    chat_shell = ChatShell(ScriptedBackend([]), console=console)

    response = chat_shell.handle_line("/sessions")

    assert response.messages == [("system", "Session persistence is disabled.")]


@pytest.mark.parametrize("line", ["exit", "QUIT", "bye", "/quit"])
def test_exit_words_stop_the_loop(shell, line: str) -> None:
    chat_shell, _buffer, _manager = shell

    response = chat_shell.handle_line(line)

    assert response.continue_loop is False
    assert response.messages == [("system", "Goodbye!")]


def test_unknown_command_and_blank_line(shell) -> None:
    chat_shell, _buffer, _manager = shell

    assert chat_shell.handle_line("   ").messages == []
    assert "Unknown command '/nope'" in chat_shell.handle_line("/nope").messages[0][1]


def test_backend_failure_is_reported_not_raised(tmp_path: Path) -> None:
    console, _buffer = make_console()
    manager = SessionManager(root=tmp_path)
    chat_shell = ChatShell(
        ScriptedBackend([BackendUnavailable("LLM request failed (503): overloaded")]),
        console=console,
        session_manager=manager,
    )

    response = chat_shell.handle_line("hello")

    assert response.messages[0][0] == "error"
    assert "overloaded" in response.messages[0][1]
    stored = manager.start(chat_shell.session_id)
    assert stored.conversation.last().parts[0].type == "error"


def test_resumed_session_continues_turn_numbering(tmp_path: Path) -> None:
    manager = SessionManager(root=tmp_path)
    console, _buffer = make_console()
    first = ChatShell(ScriptedBackend([[TextDelta("one")]]), console=console, session_manager=manager)
    first.handle_line("hello")

    console, buffer = make_console()
    resumed = ChatShell(
        ScriptedBackend([[TextDelta("two")]]),
        console=console,
        session_manager=manager,
        session_context=manager.start(first.session_id),
    )
    resumed.handle_line("again")

    assert "[Turn 2] Assistant:" in buffer.getvalue()
    assert len(resumed.conversation) == 4
