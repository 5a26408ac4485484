"""Offline and scripted model backends."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from chatloop.core.cancellation import CancellationToken, is_cancelled
from chatloop.core.conversation import Message
from chatloop.core.errors import BackendUnavailable
from chatloop.core.events import StreamEvent, TextDelta, TurnEnd
from chatloop.core.tools.base import ToolSchema

from .types import StreamOptions

logger = logging.getLogger(__name__)


def offline_response(history: Sequence[Message]) -> str:
    """Return a deterministic stub reply for the latest user message."""

    prompt = ""
    for message in reversed(history):
        if message.role == "user":
            prompt = message.text().strip()
            break
    if not prompt:
        return "[offline stub] No prompt provided."
    return f"[offline stub] {prompt}"


class OfflineBackend:
    """Backend used when no API key is configured; never requests tools."""

    def stream_turn(
        self,
        history: Sequence[Message],
        tool_schemas: Sequence[ToolSchema],
        options: StreamOptions,
        cancel: CancellationToken | None = None,
    ) -> Iterator[StreamEvent]:
        logger.info("LLM offline mode active; returning stub response.")
        if is_cancelled(cancel):
            return iter([TurnEnd(finish_reason="cancelled")])
        return iter([TextDelta(offline_response(history)), TurnEnd(finish_reason="stop")])


@dataclass(slots=True)
class ScriptedCall:
    """Snapshot of the arguments one ``stream_turn`` call received."""

    history: list[Message]
    tool_schemas: list[ToolSchema]
    options: StreamOptions


class ScriptedBackend:
    """Replays pre-recorded turns, one per ``stream_turn`` call.

    Each script entry is either an iterable of stream events or an exception
    instance raised at dispatch. A ``TurnEnd`` is appended when an entry does
    not end with one.
    """

    def __init__(self, turns: Iterable[Iterable[StreamEvent] | BaseException]) -> None:
        self._turns = list(turns)
        self.calls: list[ScriptedCall] = []

    @property
    def remaining(self) -> int:
        return len(self._turns) - len(self.calls)

    def stream_turn(
        self,
        history: Sequence[Message],
        tool_schemas: Sequence[ToolSchema],
        options: StreamOptions,
        cancel: CancellationToken | None = None,
    ) -> Iterator[StreamEvent]:
        index = len(self.calls)
        self.calls.append(ScriptedCall(list(history), list(tool_schemas), options))
        if index >= len(self._turns):
            raise BackendUnavailable(f"No scripted turn left for call {index + 1}")
        entry = self._turns[index]
        if isinstance(entry, BaseException):
            raise entry
        return self._replay(list(entry))

    @staticmethod
    def _replay(events: list[StreamEvent]) -> Iterator[StreamEvent]:
        yield from events
        if not events or not isinstance(events[-1], TurnEnd):
            yield TurnEnd(finish_reason="stop")


__all__ = ["OfflineBackend", "ScriptedBackend", "ScriptedCall", "offline_response"]
