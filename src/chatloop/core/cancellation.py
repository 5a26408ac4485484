"""Cooperative cancellation shared between a caller and the chat loop."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag polled by the loop between events and tool calls."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


__all__ = ["CancellationToken", "is_cancelled"]
