"""
envbanner Terminal UI
======================
Rich console output for the command line: startup summary and status lines.
"""

from __future__ import annotations

from rich.color import Color, ColorParseError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from envbanner import __version__
from envbanner.config import ProxyConfig

# ── Theme ────────────────────────────────────────────────────────────────────

ENVBANNER_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "title": "bold bright_green",
    "dim": "dim white",
})

console = Console(theme=ENVBANNER_THEME)


# ── Startup ──────────────────────────────────────────────────────────────────

def show_startup(config: ProxyConfig, address: tuple) -> None:
    """Display where the proxy listens, where it forwards, and what it stamps."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")

    host, port = address
    table.add_row("Listening", f"{host}:{port}")
    table.add_row("Upstream", Text(config.upstream))
    table.add_row("Message", Text(config.message))
    color = Text(config.color)
    if _is_rich_color(config.color):
        color.stylize(f"on {config.color}")
    table.add_row("Color", color)

    console.print(Panel(
        table,
        title=f"[title]envbanner[/] [dim]v{__version__}[/]",
        border_style="green",
        expand=False,
    ))


def _is_rich_color(color: str) -> bool:
    try:
        Color.parse(color)
    except ColorParseError:
        return False
    return True


# ── Messages ─────────────────────────────────────────────────────────────────

def print_info(text: str) -> None:
    console.print(f"[info]ℹ {escape(text)}[/]")


def print_warning(text: str) -> None:
    console.print(f"[warning]⚠️  {escape(text)}[/]")


def print_error(text: str) -> None:
    console.print(f"[error]❌ {escape(text)}[/]")
