"""Sessions command listing stored conversations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.types import CommandResponse, CommandRouter, SlashCommand
from chatloop.session.manager import MAX_SESSIONS

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell


def register(_shell: ChatShell, router: CommandRouter) -> None:
    """Register the /sessions command."""

    def handle(shell: ChatShell, _args: list[str]) -> CommandResponse:
        if shell.session_manager is None:
            return CommandResponse(messages=[("system", "Session persistence is disabled.")])

        sessions = shell.session_manager.list_sessions()
        if not sessions:
            return CommandResponse(messages=[("system", "No stored sessions.")])

        header = "  session       updated              exchanges model"
        lines = [header, "-" * len(header)]
        for metadata in sessions:
            marker = "*" if metadata.session_id == shell.session_id else " "
            updated = metadata.updated_at.strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"{marker} {metadata.session_id:<13} {updated}  {metadata.exchanges:>9} {metadata.model or '-'}")
        lines.append(f"(the {MAX_SESSIONS} most recent sessions are kept)")
        return CommandResponse(messages=[("system", "\n".join(lines))])

    router.register(SlashCommand("sessions", handle, "List stored sessions (* marks the current one)"))


__all__ = ["register"]
