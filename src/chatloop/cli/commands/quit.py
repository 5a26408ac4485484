"""Quit command for the chat shell."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.types import CommandResponse, CommandRouter, SlashCommand

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell

GOODBYE = "Goodbye!"


def register(_shell: ChatShell, router: CommandRouter) -> None:
    """Register the /quit command."""

    def handle(_shell: ChatShell, _args: list[str]) -> CommandResponse:
        return CommandResponse(messages=[("system", GOODBYE)], continue_loop=False)

    router.register(SlashCommand("quit", handle, "Exit the chat"))


__all__ = ["GOODBYE", "register"]
