"""Builtin slash command registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatloop.cli.commands import history, logs, sessions
from chatloop.cli.commands import help as help_cmd
from chatloop.cli.commands import quit as quit_cmd
from chatloop.cli.types import CommandRouter

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell


def register_builtin_commands(shell: ChatShell, router: CommandRouter) -> None:
    """Attach all builtin slash commands to the router."""

    help_cmd.register(shell, router)
    quit_cmd.register(shell, router)
    history.register(shell, router)
    logs.register(shell, router)
    sessions.register(shell, router)


__all__ = ["register_builtin_commands"]
