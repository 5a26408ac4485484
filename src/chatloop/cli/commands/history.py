"""History command showing the formatted transcript of the current session."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.render import format_transcript
from chatloop.cli.types import CommandResponse, CommandRouter, SlashCommand
from chatloop.core.history import format_history

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell


def register(_shell: ChatShell, router: CommandRouter) -> None:
    """Register the /history command."""

    def handle(shell: ChatShell, args: list[str]) -> CommandResponse:
        show_thoughts = "--no-thoughts" not in args
        transcript = format_history(shell.conversation.messages, log_buffer=shell.log_buffer)
        if not transcript:
            return CommandResponse(messages=[("system", "No messages in this session yet.")])
        text = format_transcript(transcript, show_thoughts=show_thoughts)
        return CommandResponse(messages=[("system", text)])

    router.register(SlashCommand("history", handle, "Show the conversation transcript (--no-thoughts to hide reasoning)"))


__all__ = ["register"]
