"""Help command for the chat shell."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.types import CommandResponse, CommandRouter, SlashCommand

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell


def register(_shell: ChatShell, router: CommandRouter) -> None:
    """Register the /help command."""

    def handle(_shell: ChatShell, _args: list[str]) -> CommandResponse:
        commands = sorted(router.available_commands(), key=lambda cmd: cmd.name)
        lines = ["Available commands:"]
        for command in commands:
            lines.append(f"/{command.name}\t{command.help_text}")
        lines.append("Type exit, quit, or bye to leave. Ctrl-C cancels a running reply.")
        return CommandResponse(messages=[("system", "\n".join(lines))])

    router.register(SlashCommand("help", handle, "Show available commands"))


__all__ = ["register"]
