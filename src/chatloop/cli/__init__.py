"""CLI package for chatloop."""

from __future__ import annotations

import json
import logging
import os
from importlib import metadata
from pathlib import Path
from typing import Optional

import typer

from chatloop.core.config import CONFIG_FILENAME, ConfigContext, ConfigManager, ConfigurationError
from chatloop.core.history import DisplayMessage
from chatloop.core.llm import LLMClient, OfflineBackend
from chatloop.core.llm.types import ModelBackend
from chatloop.core.logs import LogBuffer
from chatloop.core.mcp import McpClient
from chatloop.session import MAX_SESSIONS, SessionContext, SessionLoadError, SessionManager

from .app import ChatShell, default_history_path, stdout_is_interactive
from .branding import themed_console
from .render import format_transcript

logger = logging.getLogger(__name__)

app = typer.Typer(invoke_without_command=True, help="chatloop: streaming tool-calling chat", no_args_is_help=False)

CLI_CONSOLE = themed_console()


def styled_echo(message: str = "", *, nl: bool = True) -> None:
    """Print using the chatloop themed console."""
    CLI_CONSOLE.print(message, end="" if not nl else "\n")


def _global_home() -> Path:
    return Path(os.environ.get("CHATLOOP_HOME", Path.home() / ".chatloop"))


def _project_home() -> Path:
    return Path.cwd() / ".chatloop"


def _configure_logging(verbose: bool, log_dir: Path | None) -> None:
    root_logger = logging.getLogger()
    if verbose:
        if not root_logger.handlers:
            logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        root_logger.setLevel(logging.DEBUG)
    else:
        if root_logger.handlers:
            root_logger.setLevel(logging.WARNING)
        else:
            logging.basicConfig(level=logging.WARNING, format="%(message)s")
    if verbose and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / "chatloop.log", encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def _config_manager(config_file: Path | None) -> ConfigManager:
    override_path: Path | None = None
    if config_file is not None:
        override_path = config_file.expanduser()
        if not override_path.exists():
            styled_echo(f"❌ Config file '{override_path}' not found.")
            raise typer.Exit(code=1)
        override_path = override_path.resolve()

    project_config_path: Path | None = None
    if override_path is None:
        candidate = _project_home() / CONFIG_FILENAME
        if candidate.exists():
            project_config_path = candidate

    return ConfigManager(
        config_dir=_global_home(),
        project_config_path=project_config_path,
        override_config_path=override_path,
    )


def _build_backend(config_context: ConfigContext, *, announce_offline: bool = True) -> ModelBackend:
    if config_context.offline:
        if announce_offline:
            styled_echo(
                f"[chatloop.log.warn]⚠️  No API key for '{config_context.config.llm_provider}'; "
                "replies come from the offline stub.[/]"
            )
        return OfflineBackend()
    return LLMClient(config_context.llm_settings())


def _start_session(
    session_manager: SessionManager,
    session: str | None,
    new_session: bool,
    *,
    provider: str,
    model: str | None,
) -> SessionContext:
    resume_id = None if new_session else session
    if resume_id:
        try:
            return session_manager.start(resume_id, provider=provider, model=model)
        except FileNotFoundError:
            styled_echo(f"⚠️  Session '{resume_id}' not found; starting a new session.")
        except SessionLoadError as exc:
            styled_echo(f"⚠️  {exc}. Starting a new session.")
    return session_manager.start(provider=provider, model=model)


def _launch_chat(
    text: str | None,
    *,
    once: bool = False,
    verbose: bool = False,
    session: str | None = None,
    new_session: bool = False,
    config_file: Path | None = None,
    overrides: dict[str, object] | None = None,
    api_key: str | None = None,
    offline_mode: bool = False,
    no_tools: bool = False,
    show_thoughts: bool = True,
    dump_payloads: bool = False,
) -> None:
    project_home = _project_home()
    _configure_logging(verbose, log_dir=project_home / "logs")

    if once and not text:
        styled_echo("❌ '--once' requires a message.")
        raise typer.Exit(code=2)

    config_manager = _config_manager(config_file)
    try:
        config_context = config_manager.ensure(
            interactive=stdout_is_interactive(),
            overrides={key: value for key, value in (overrides or {}).items() if value is not None},
            llm_api_key=api_key,
            offline_mode=offline_mode,
        )
        backend = _build_backend(config_context, announce_offline=not offline_mode)
    except ConfigurationError as exc:
        styled_echo(f"❌ Configuration error: {exc}")
        raise typer.Exit(code=1) from exc

    config = config_context.config
    tool_service: McpClient | None = None
    if not no_tools and not config_context.offline:
        tool_service = McpClient(config.mcp_url, timeout=config.request_timeout_secs)

    session_manager = SessionManager(root=project_home / "sessions", max_sessions=config.history_max_sessions)
    model = None if config_context.offline else config.resolved_model()
    session_context = _start_session(
        session_manager,
        session,
        new_session,
        provider=config.llm_provider,
        model=model,
    )

    shell = ChatShell(
        backend,
        tool_service=tool_service,
        console=CLI_CONSOLE,
        session_manager=session_manager,
        session_context=session_context,
        options=config.stream_options(),
        max_iterations=config.max_iterations,
        log_buffer=LogBuffer(max_entries=config.log_buffer_size),
        history_path=default_history_path(session_manager, session_context.metadata.session_id),
        payload_log_dir=project_home / "logs" / "llm" if dump_payloads else None,
        show_thoughts=show_thoughts,
    )
    try:
        if text:
            response = shell.handle_line(text)
            shell.render_messages(response)
            if once or not response.continue_loop:
                return
        shell.run()
    finally:
        close = getattr(backend, "close", None)
        if callable(close):
            close()
        if tool_service is not None:
            tool_service.close()
        session_manager.save(session_context)


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),  # noqa: B008
) -> None:
    """Start the interactive chat when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        _launch_chat(None, verbose=verbose)


@app.command()
def chat(
    text: Optional[str] = typer.Argument(None, help="Send this message first"),  # noqa: B008
    once: bool = typer.Option(False, "--once", help="Send TEXT, print the reply and exit"),  # noqa: B008
    provider: str | None = typer.Option(None, "--provider", help="Override the configured LLM provider"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Override the LLM model"),  # noqa: B008
    api: str | None = typer.Option(None, "--api", help="Wire format: chat, responses or gemini"),  # noqa: B008
    base_url: str | None = typer.Option(None, "--base-url", help="Override the LLM base URL"),  # noqa: B008
    thinking: str | None = typer.Option(None, "--thinking", help="Reasoning level (off|auto|low|medium|high)"),  # noqa: B008
    output_tokens: int | None = typer.Option(None, "--output-tokens", help="Maximum output tokens per reply"),  # noqa: B008
    temperature: float | None = typer.Option(None, "--temperature", help="Sampling temperature"),  # noqa: B008
    system_prompt: str | None = typer.Option(None, "--system-prompt", "-s", help="System prompt for this run"),  # noqa: B008
    max_iterations: int | None = typer.Option(None, "--max-iterations", help="Model turns allowed per message"),  # noqa: B008
    mcp_url: str | None = typer.Option(None, "--mcp-url", help="MCP tool server endpoint"),  # noqa: B008
    no_tools: bool = typer.Option(False, "--no-tools", help="Chat without a tool server"),  # noqa: B008
    api_key: str | None = typer.Option(None, "--api-key", help="Use this API key for the current run without persisting it"),  # noqa: B008
    offline_mode: bool = typer.Option(False, "--offline-mode", help="Force offline stubbed LLM responses"),  # noqa: B008
    session: str | None = typer.Option(None, "--session", help="Resume the given session ID"),  # noqa: B008
    new_session: bool = typer.Option(False, "--new-session", help="Start a fresh session"),  # noqa: B008
    config: Path | None = typer.Option(None, "--config", help="Use an alternate config file and skip project overrides"),  # noqa: B008
    show_thoughts: bool = typer.Option(True, "--show-thoughts/--hide-thoughts", help="Render model reasoning"),  # noqa: B008
    dump_payloads: bool = typer.Option(False, "--dump-payloads", help="Write each LLM request to .chatloop/logs/llm"),  # noqa: B008
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),  # noqa: B008
) -> None:
    """Chat with the configured model, executing tool calls through MCP."""
    _launch_chat(
        text,
        once=once,
        verbose=verbose,
        session=session,
        new_session=new_session,
        config_file=config,
        overrides={
            "llm_provider": provider,
            "llm_model": model,
            "llm_api": api,
            "llm_base_url": base_url,
            "llm_thinking": thinking,
            "llm_output_tokens": output_tokens,
            "llm_temperature": temperature,
            "system_prompt": system_prompt,
            "max_iterations": max_iterations,
            "mcp_url": mcp_url,
        },
        api_key=api_key,
        offline_mode=offline_mode,
        no_tools=no_tools,
        show_thoughts=show_thoughts,
        dump_payloads=dump_payloads,
    )


def _candidate_session_roots() -> list[Path]:
    """Return session directories to search, prioritizing project scope."""
    candidates: list[Path] = []
    seen: set[Path] = set()
    for path in (_project_home() / "sessions", _global_home() / "sessions"):
        resolved = path.expanduser().resolve()
        if resolved not in seen:
            seen.add(resolved)
            candidates.append(resolved)
    return candidates


def _format_session_text(export_data: dict[str, object]) -> str:
    session_meta = export_data.get("metadata", {})
    transcript = export_data.get("transcript", [])
    lines = ["Session Export", "=============="]
    if isinstance(session_meta, dict):
        for key in ("session_id", "created_at", "updated_at", "provider", "model", "exchanges", "last_stop_reason"):
            value = session_meta.get(key)
            if value is not None:
                lines.append(f"{key.replace('_', ' ').title()}: {value}")
    lines.append("")
    if isinstance(transcript, list) and transcript:
        messages = [DisplayMessage.model_validate(entry) for entry in transcript]
        lines.append(format_transcript(messages))
    else:
        lines.append("(no transcript available)")
    return "\n".join(lines)


@app.command()
def history(
    session_id: str = typer.Argument(..., help="Session to export"),  # noqa: B008
    fmt: str = typer.Option("json", "--format", help="Export format: json or text"),  # noqa: B008
    output: Path | None = typer.Option(None, "--output", help="Write the export to this file"),  # noqa: B008
) -> None:
    """Export a stored session as a formatted, redacted transcript."""
    fmt_normalized = fmt.lower()
    if fmt_normalized not in {"json", "text"}:
        styled_echo(f"❌ Unsupported format '{fmt}'. Use 'json' or 'text'.")
        raise typer.Exit(code=1)

    export_data: dict[str, object] | None = None
    searched_roots: list[Path] = []
    try:
        for root in _candidate_session_roots():
            if not root.exists():
                searched_roots.append(root)
                continue
            try:
                export_data = SessionManager(root=root).export_session(session_id)
                break
            except FileNotFoundError:
                searched_roots.append(root)
    except SessionLoadError as exc:
        styled_echo(f"❌ Failed to load session '{session_id}': {exc}")
        raise typer.Exit(code=1) from exc

    if export_data is None:
        styled_echo(
            f"⚠️ Session '{session_id}' not found. Only the most recent {MAX_SESSIONS} sessions are retained."
        )
        if searched_roots:
            styled_echo(f"   Checked locations: {', '.join(str(path) for path in searched_roots)}")
        raise typer.Exit(code=1)

    if fmt_normalized == "json":
        payload = json.dumps(export_data, indent=2)
    else:
        payload = _format_session_text(export_data)

    if output is not None:
        destination = output.expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(payload)
        try:
            os.chmod(destination, 0o600)
        except PermissionError:
            pass
        styled_echo(f"✅ Session {session_id} exported to {destination}")
    else:
        CLI_CONSOLE.print(payload, markup=False, highlight=False, emoji=False, soft_wrap=True)


@app.command("set-key")
def set_key(
    provider: str | None = typer.Option(None, "--provider", help="Provider the key belongs to"),  # noqa: B008
    api_key: str | None = typer.Option(None, "--api-key", help="Key to store (prompted when omitted)"),  # noqa: B008
) -> None:
    """Store an encrypted API key for a provider."""
    manager = ConfigManager(config_dir=_global_home(), echo_fn=styled_echo)
    interactive = stdout_is_interactive()
    key = api_key
    if not key:
        if not interactive:
            styled_echo("❌ '--api-key' is required when not running interactively.")
            raise typer.Exit(code=2)
        key = typer.prompt("API key", hide_input=True)
    try:
        manager.store_api_key(key, provider=provider, interactive=interactive)
    except ConfigurationError as exc:
        styled_echo(f"❌ {exc}")
        raise typer.Exit(code=1) from exc


@app.command()
def version() -> None:
    """Show CLI version."""
    try:
        pkg_version = metadata.version("chatloop")
    except metadata.PackageNotFoundError:
        pkg_version = "0.0.0"
    styled_echo(f"chatloop version {pkg_version}")


def main() -> None:
    """Console script entrypoint."""
    app()


__all__ = ["CLI_CONSOLE", "app", "main", "styled_echo"]
