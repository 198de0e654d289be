"""Rich console output for fortunes, council turns and action plans."""

import logging

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from src.models import CouncilTurn

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Persona colour tags from settings.yaml mapped to rich styles.
_COLOR_STYLES = {
    "purple": "magenta",
    "gold": "yellow",
    "orange": "dark_orange",
    "teal": "cyan",
}


def _style(color: str) -> str:
    return _COLOR_STYLES.get(color, color or "white")


def _preview(text: str, max_chars: int = 80) -> str:
    """Single-line preview of a question for headers."""
    flat = " ".join(text.split())
    return flat if len(flat) <= max_chars else flat[: max_chars - 3] + "..."


def print_question(question: str, mode: str) -> None:
    console.print(Rule(f"[bold cyan]Fortune Council[/bold cyan] ({mode})"))
    console.print(Text(f"Question: {_preview(question)}", style="italic"))


def print_fortune(fortune: str, title: str = "The Fortune Teller") -> None:
    console.print(Panel(Text(fortune), title=f"[bold]{title}[/bold]", border_style="magenta"))


def print_turn(turn: CouncilTurn) -> None:
    style = _style(turn.color)
    console.print(
        Panel(
            Text(turn.response),
            title=f"{turn.icon} [bold]{turn.display_name}[/bold]",
            border_style=style,
        )
    )


def print_action_plan(plan: str) -> None:
    console.print(Rule("[bold green]Action Plan[/bold green]"))
    console.print(Text(plan))
