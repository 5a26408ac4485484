"""chatloop CLI theme and panel helpers."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme

CHATLOOP_THEME = Theme(
    {
        "chatloop.banner": "bold #38BDF8",
        "chatloop.prompt": "bold #A855F7",

        # Chat
        "chatloop.user.border": "#A855F7",
        "chatloop.user.header": "bold #A855F7",
        "chatloop.model.header": "bold #14F195",
        "chatloop.model.text": "#E6FFFA",
        "chatloop.thought": "italic #94A3B8",
        "chatloop.tool.call": "bold #FBBF24",
        "chatloop.tool.result": "#94A3B8",
        "chatloop.tool.error": "#FB7185",

        # Semantic states
        "chatloop.info.border": "#38BDF8",
        "chatloop.info.text": "#E6FFFA",
        "chatloop.warning.border": "#FBBF24",
        "chatloop.warning.text": "#FEF3C7",
        "chatloop.error.border": "#FB7185",
        "chatloop.error.text": "#FEE2E2",

        "chatloop.text.dim": "dim #64748B",
        "chatloop.log.info": "#38BDF8",
        "chatloop.log.warn": "#FBBF24",
        "chatloop.log.error": "#FB7185",
    }
)

_SEMANTIC_STYLES = {
    "info": ("ℹ Info", "chatloop.info.border", "chatloop.info.text"),
    "warning": ("⚠ Warning", "chatloop.warning.border", "chatloop.warning.text"),
    "error": ("✖ Error", "chatloop.error.border", "chatloop.error.text"),
}


def themed_console(**kwargs: object) -> Console:
    """Return a Console configured with the chatloop theme."""
    return Console(theme=CHATLOOP_THEME, **kwargs)


def create_semantic_panel(message: str, *, panel_type: str = "info", title: str | None = None) -> Panel:
    """Create a panel for info, warning, or error notices."""
    default_title, border_style, text_style = _SEMANTIC_STYLES.get(panel_type, _SEMANTIC_STYLES["info"])
    return Panel(
        Text(message, style=text_style),
        title=title or default_title,
        title_align="left",
        border_style=border_style,
        box=box.ROUNDED,
        padding=(0, 1),
        expand=False,
    )


def create_chat_panel(role: str, message: str, *, use_markdown: bool = False) -> Panel:
    """Create a chat panel for a user or model message in transcript views."""
    if role == "user":
        header, border_style = "You", "chatloop.user.border"
    else:
        header, border_style = "Assistant", "chatloop.info.border"
    content: Markdown | Text
    if use_markdown and role != "user":
        content = Markdown(message, code_theme="monokai")
    else:
        content = Text(message)
    return Panel(
        content,
        title=header,
        title_align="left",
        border_style=border_style,
        box=box.ROUNDED,
        padding=(0, 1),
        expand=False,
    )


__all__ = ["CHATLOOP_THEME", "create_chat_panel", "create_semantic_panel", "themed_console"]
