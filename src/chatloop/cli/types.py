"""Shared CLI types and routing helpers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from chatloop.cli.app import ChatShell
    from chatloop.core.agent_loop import ExchangeResult
else:  # pragma: no cover - runtime only
    ChatShell = Any  # type: ignore[assignment]


logger = logging.getLogger(__name__)


@dataclass
class CommandResponse:
    """Represents the outcome of handling one line of shell input."""

    messages: list[tuple[str, str]]
    continue_loop: bool = True
    exchange: ExchangeResult | None = None


class SlashCommand:
    """Container for slash command metadata."""

    def __init__(self, name: str, handler: Callable[[ChatShell, list[str]], CommandResponse], help_text: str) -> None:
        self.name = name
        self.handler = handler
        self.help_text = help_text


class CommandRouter:
    """Parses and dispatches slash commands."""

    def __init__(self) -> None:
        self._commands: dict[str, SlashCommand] = {}

    def register(self, command: SlashCommand) -> None:
        logger.debug("Registering command: %s", command.name)
        self._commands[command.name] = command

    def available_commands(self) -> Iterable[SlashCommand]:
        return self._commands.values()

    def dispatch(self, shell: ChatShell, raw_line: str) -> CommandResponse:
        parts = raw_line.strip().split()
        if not parts:
            return CommandResponse(messages=[])
        command_name, *args = parts
        command = self._commands.get(command_name)
        if not command:
            logger.info("Unknown command: /%s", command_name)
            return CommandResponse(
                messages=[("system", f"Unknown command '/{command_name}'. Type /help for a list of commands.")]
            )
        logger.debug("Dispatching command '/%s' with args %s", command_name, args)
        return command.handler(shell, args)


__all__ = ["CommandResponse", "CommandRouter", "SlashCommand"]
