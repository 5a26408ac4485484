"""Logs command for viewing recent diagnostics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.types import CommandResponse, CommandRouter, SlashCommand
from chatloop.core.logs import VALID_CATEGORIES

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell

DEFAULT_LOG_LIMIT = 20


def register(_shell: ChatShell, router: CommandRouter) -> None:
    """Register the /logs command."""

    def handle(shell: ChatShell, args: list[str]) -> CommandResponse:
        category_filter: str | None = None
        if args:
            candidate = args[0].lower()
            if candidate not in VALID_CATEGORIES:
                allowed = ", ".join(sorted(VALID_CATEGORIES))
                return CommandResponse(
                    messages=[("system", f"Unknown log category '{candidate}'. Choose from: {allowed}.")],
                )
            category_filter = candidate

        entries = shell.log_buffer.recent(category=category_filter, limit=DEFAULT_LOG_LIMIT)
        if not entries:
            if category_filter:
                return CommandResponse(messages=[("system", f"No '{category_filter}' log entries yet.")])
            return CommandResponse(messages=[("system", "No log entries recorded yet.")])

        header = "timestamp            category severity message"
        lines = [header, "-" * len(header)]
        for entry in entries:
            timestamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"{timestamp}  {entry.category:<8} {entry.severity.upper():<8} {entry.message}")
        return CommandResponse(messages=[("system", "\n".join(lines))])

    router.register(SlashCommand("logs", handle, "Show recent diagnostics (optionally by category)"))


__all__ = ["DEFAULT_LOG_LIMIT", "register"]
