"""Live-update sinks notified while an exchange is running.

Sinks are advisory: the loop never depends on them, and an exception raised
by a sink is logged and discarded.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .conversation import ToolCallRecord

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    """Receives incremental updates for UI rendering."""

    def text_delta(self, text: str) -> None:
        ...

    def thought_delta(self, text: str) -> None:
        ...

    def tool_call(self, record: ToolCallRecord) -> None:
        ...

    def tool_result(self, record: ToolCallRecord) -> None:
        ...

    def turn_end(self, iteration: int) -> None:
        ...

    def notice(self, message: str, *, severity: str = "info") -> None:
        ...


class NullSink:
    """Sink that discards every update."""

    def text_delta(self, text: str) -> None:
        pass

    def thought_delta(self, text: str) -> None:
        pass

    def tool_call(self, record: ToolCallRecord) -> None:
        pass

    def tool_result(self, record: ToolCallRecord) -> None:
        pass

    def turn_end(self, iteration: int) -> None:
        pass

    def notice(self, message: str, *, severity: str = "info") -> None:
        pass


def notify(sink: OutputSink | None, method: str, *args: Any, **kwargs: Any) -> None:
    """Invoke ``sink.<method>`` and swallow failures."""

    if sink is None:
        return
    try:
        getattr(sink, method)(*args, **kwargs)
    except Exception:  # noqa: BLE001
        logger.debug("Output sink %s.%s failed", type(sink).__name__, method, exc_info=True)


__all__ = ["OutputSink", "NullSink", "notify"]
