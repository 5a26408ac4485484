"""Terminal rendering for streamed exchanges and stored transcripts."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from rich.console import Console
from rich.text import Text

from chatloop.core.conversation import ToolCallRecord
from chatloop.core.history import DisplayMessage

from .branding import create_semantic_panel

TOOL_RESULT_MAX_LENGTH = 160
_RULE = "═" * 46


def truncate(text: str | None, max_length: int, suffix: str = "…") -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max(max_length - len(suffix), 0)] + suffix


def format_tool_call(name: str, args: dict[str, Any]) -> str:
    return f"🔧 {name}({json.dumps(args, ensure_ascii=False)})"


def format_tool_result(result: str | None) -> str:
    return f"   ↳ {truncate(result, TOOL_RESULT_MAX_LENGTH)}\n"


def start_thought(text: str = "") -> str:
    return f"\n╔{_RULE}<THOUGHT>{_RULE}" + continue_thought(text)


def continue_thought(text: str) -> str:
    return "\n" + "\n".join(f"║ {line}" for line in text.split("\n"))


def end_thought() -> str:
    return f"\n╚{_RULE}<end_thought>{_RULE}\n\n"


def format_thought(text: str) -> str:
    return start_thought(text) + end_thought()


def format_turn_header(turn: int) -> str:
    return f"\n[Turn {turn}] Assistant:"


def format_transcript(messages: Iterable[DisplayMessage], *, show_thoughts: bool = True) -> str:
    """Render a formatted transcript as plain text."""

    lines: list[str] = []
    turn = 0
    for message in messages:
        if message.role == "user":
            turn += 1
            lines.append(f"\n[Turn {turn}] User: {message.text()}")
            continue
        lines.append(format_turn_header(max(turn, 1)))
        for part in message.parts:
            if part.type == "text":
                lines.append(part.content)
            elif part.type == "thought":
                if show_thoughts and part.is_open:
                    lines.append((start_thought(part.content) + continue_thought("…")).strip("\n"))
                elif show_thoughts:
                    lines.append(format_thought(part.content).strip("\n"))
            elif part.type == "tool-call":
                lines.append(format_tool_call(part.name or "", part.args))
                if part.pending:
                    lines.append("   ↳ (pending)")
                else:
                    prefix = "Error: " if part.is_error else ""
                    lines.append(format_tool_result(f"{prefix}{part.result or ''}").rstrip("\n"))
            elif part.type == "error":
                lines.append(f"✖ {part.content}")
    return "\n".join(lines).lstrip("\n")


class ConsoleSink:
    """Output sink that streams an exchange to a rich console as it arrives."""

    def __init__(self, console: Console, *, show_thoughts: bool = True) -> None:
        self._console = console
        self._show_thoughts = show_thoughts
        self._turn = 0
        self._header_pending = False
        self._in_thought = False
        self._at_line_start = True

    def begin_exchange(self, turn: int) -> None:
        self._turn = turn
        self._header_pending = True
        self._in_thought = False
        self._at_line_start = True

    # OutputSink protocol ------------------------------------------------
    def text_delta(self, text: str) -> None:
        self._close_thought()
        self._ensure_header()
        self._write(text)

    def thought_delta(self, text: str) -> None:
        if not self._show_thoughts:
            return
        self._ensure_header()
        if not self._in_thought:
            self._write(start_thought(), style="chatloop.thought")
            self._in_thought = True
        self._write(text.replace("\n", "\n║ "), style="chatloop.thought")

    def tool_call(self, record: ToolCallRecord) -> None:
        self._close_thought()
        self._ensure_header()
        self._newline()
        self._write(format_tool_call(record.name, record.args) + "\n", style="chatloop.tool.call")

    def tool_result(self, record: ToolCallRecord) -> None:
        style = "chatloop.tool.error" if record.is_error else "chatloop.tool.result"
        self._write(format_tool_result(record.result), style=style)

    def turn_end(self, iteration: int) -> None:
        self._close_thought()
        self._newline()

    def notice(self, message: str, *, severity: str = "info") -> None:
        self._close_thought()
        self._newline()
        self._console.print(create_semantic_panel(message, panel_type=severity))

    # helpers ------------------------------------------------------------
    def _ensure_header(self) -> None:
        if self._header_pending:
            self._header_pending = False
            self._console.print(Text(format_turn_header(self._turn), style="chatloop.model.header"))
            self._at_line_start = True

    def _close_thought(self) -> None:
        if self._in_thought:
            self._in_thought = False
            self._write(end_thought(), style="chatloop.thought")

    def _newline(self) -> None:
        if not self._at_line_start:
            self._write("\n")

    def _write(self, text: str, *, style: str | None = None) -> None:
        if not text:
            return
        self._console.out(text, end="", style=style, highlight=False)
        self._at_line_start = text.endswith("\n")


__all__ = [
    "ConsoleSink",
    "TOOL_RESULT_MAX_LENGTH",
    "continue_thought",
    "end_thought",
    "format_thought",
    "format_tool_call",
    "format_tool_result",
    "format_transcript",
    "format_turn_header",
    "start_thought",
    "truncate",
]
