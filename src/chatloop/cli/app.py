"""Interactive chat shell."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory, InMemoryHistory
from rich.console import Console

from chatloop.cli.branding import CHATLOOP_THEME, create_semantic_panel, themed_console
from chatloop.cli.commands import register_builtin_commands
from chatloop.cli.commands.quit import GOODBYE
from chatloop.cli.render import ConsoleSink
from chatloop.cli.types import CommandResponse, CommandRouter
from chatloop.core.agent_loop import DEFAULT_MAX_ITERATIONS, send_message
from chatloop.core.cancellation import CancellationToken
from chatloop.core.conversation import Conversation
from chatloop.core.errors import BackendUnavailable
from chatloop.core.llm.types import ModelBackend, StreamOptions
from chatloop.core.logs import LogBuffer, LogEntry
from chatloop.core.tools.base import ToolService
from chatloop.session import SessionContext, SessionManager

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit", "bye"})


class ChatShell:
    """Interactive shell routing slash commands and chat messages."""

    def __init__(
        self,
        backend: ModelBackend,
        *,
        tool_service: ToolService | None = None,
        console: Console | None = None,
        session_manager: SessionManager | None = None,
        session_context: SessionContext | None = None,
        options: StreamOptions | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        log_buffer: LogBuffer | None = None,
        history_path: Path | None = None,
        payload_log_dir: Path | None = None,
        show_thoughts: bool = True,
    ) -> None:
        base_console = console or themed_console()
        if console is not None:
            base_console.push_theme(CHATLOOP_THEME)
        self.console = base_console
        self.backend = backend
        self.tool_service = tool_service
        self.options = options or StreamOptions()
        self.max_iterations = max_iterations
        self.log_buffer = log_buffer or LogBuffer()
        self.session_manager = session_manager
        self.session_context = session_context or (
            session_manager.start() if session_manager is not None else None
        )
        self._conversation = self.session_context.conversation if self.session_context else Conversation()
        self.payload_log_dir = payload_log_dir
        self.sink = ConsoleSink(self.console, show_thoughts=show_thoughts)
        self.command_router = CommandRouter()
        register_builtin_commands(self, self.command_router)
        self._history_path = history_path
        self._prompt_session: PromptSession[str] | None = None
        self._active_cancel: CancellationToken | None = None
        self._turn = sum(1 for message in self._conversation if message.role == "user")
        session_id = self.session_id or "ephemeral"
        self.log_event("system", f"Session {session_id} initialised")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def session_id(self) -> str | None:
        return self.session_context.metadata.session_id if self.session_context else None

    def run(self) -> None:
        """Start the interactive REPL."""
        self.console.print(
            create_semantic_panel(
                "Type a message to chat, /help for commands, or exit to leave.",
                title=f"chatloop • session {self.session_id or 'ephemeral'}",
            )
        )
        awaiting_confirm = False
        while True:
            try:
                user_input = self._session().prompt("> ")
                awaiting_confirm = False
            except KeyboardInterrupt:
                if awaiting_confirm:
                    self.console.print(GOODBYE)
                    break
                awaiting_confirm = True
                self.console.print("Press Ctrl-C again to exit.")
                continue
            except EOFError:
                self.console.print(GOODBYE)
                break

            response = self.handle_line(user_input)
            self.render_messages(response)
            if not response.continue_loop:
                break

    def handle_line(self, raw_line: str) -> CommandResponse:
        """Handle a single line of user input (used by tests and run loop)."""
        line = raw_line.strip()
        if not line:
            return CommandResponse(messages=[])
        if line.lower() in EXIT_WORDS:
            return CommandResponse(messages=[("system", GOODBYE)], continue_loop=False)
        if line.startswith("/"):
            logger.debug("Processing slash command: %s", line)
            return self.command_router.dispatch(self, line[1:])
        return self.send(line)

    def send(self, text: str) -> CommandResponse:
        """Run one exchange for ``text`` and persist the session afterwards."""
        self._turn += 1
        self.sink.begin_exchange(self._turn)
        token = CancellationToken()
        self._active_cancel = token
        try:
            with self._cancel_on_interrupt(token):
                result = send_message(
                    self._conversation,
                    text,
                    backend=self.backend,
                    tool_service=self.tool_service,
                    options=self.options,
                    max_iterations=self.max_iterations,
                    cancel=token,
                    sink=self.sink,
                    log_buffer=self.log_buffer,
                    payload_log_dir=self.payload_log_dir,
                )
        except BackendUnavailable as exc:
            logger.error("Model backend unavailable: %s", exc)
            self._persist()
            return CommandResponse(messages=[("error", f"Model backend unavailable: {exc}")])
        finally:
            self._active_cancel = None

        if self.session_manager is not None and self.session_context is not None:
            self.session_manager.record_exchange(
                self.session_context,
                usage=result.usage,
                stop_reason=result.stop_reason,
            )
        messages: list[tuple[str, str]] = []
        if result.cancelled:
            messages.append(("system", "Reply cancelled."))
        return CommandResponse(messages=messages, exchange=result)

    def cancel(self) -> None:
        """Cancel the exchange currently running, if any."""
        if self._active_cancel is not None:
            self._active_cancel.cancel()

    def log_event(self, category: str, message: str, *, severity: str = "info") -> LogEntry:
        """Record an operational event in the shared log buffer."""
        return self.log_buffer.record(category, message, severity=severity)

    def render_messages(self, response: CommandResponse) -> None:
        for role, message in response.messages:
            if role == "error":
                self.console.print(create_semantic_panel(message, panel_type="error"))
            elif role == "system" and "\n" in message:
                self.console.print(message, markup=False, highlight=False)
            else:
                self.console.print(create_semantic_panel(message))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _cancel_on_interrupt(self, token: CancellationToken) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def _handler(_signum: int, _frame: Any) -> None:
            logger.debug("Interrupt received; cancelling current exchange")
            token.cancel()

        previous = signal.signal(signal.SIGINT, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)

    def _session(self) -> PromptSession[str]:
        if self._prompt_session is None:
            if self._history_path is not None:
                self._history_path.parent.mkdir(parents=True, exist_ok=True)
                history: FileHistory | InMemoryHistory = FileHistory(str(self._history_path))
            else:
                history = InMemoryHistory()
            self._prompt_session = PromptSession(history=history)
        return self._prompt_session

    def _persist(self) -> None:
        if self.session_manager is not None and self.session_context is not None:
            self.session_manager.save(self.session_context)


def default_history_path(session_manager: SessionManager, session_id: str) -> Path:
    return session_manager.root / session_id / "history"


def stdout_is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


__all__ = ["ChatShell", "EXIT_WORDS", "default_history_path", "stdout_is_interactive"]
