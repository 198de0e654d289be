"""Click CLI: serve the proxy, ask the council from a terminal, ping upstream."""

import asyncio
import logging
import sys

import click
import uvicorn
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from src.catalog import select_model
from src.council import generate_action_plan, generate_council, generate_single_fortune
from src.errors import FortuneError
from src.healthcheck import ping_upstream
from src.models import CouncilTurn, GenerationParams
from src.output import print_action_plan, print_fortune, print_question, print_turn
from src.providers.base import CompletionClient
from src.providers.openrouter import OpenRouterClient
from src.server import create_app

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load(verbose: bool) -> AppConfig:
    # Model responses may contain characters the Windows console codepage lacks.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)
    try:
        return load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)


def _build_client(config: AppConfig) -> CompletionClient:
    try:
        return OpenRouterClient(config.upstream)
    except FortuneError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(exc.message)}. Set {config.upstream.api_key_env} in .env.")
        sys.exit(1)


def _params(config: AppConfig, temperature: float, max_tokens: int) -> GenerationParams:
    return GenerationParams(
        model=select_model(config.models, config.feature_flags),
        temperature=temperature,
        max_tokens=max_tokens,
    )


async def _run_ask(
    config: AppConfig,
    client: CompletionClient,
    question: str,
    council: bool,
    goal: str | None,
) -> None:
    print_question(question, "council" if council else "single")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        if council:
            task = progress.add_task("The council is gathering...", total=None)

            def on_turn_complete(turn: CouncilTurn) -> None:
                progress.print(f"[green]OK[/green] {turn.display_name} has spoken")

            sampling = config.generation.council
            turns = await generate_council(
                question,
                config.personas,
                client,
                _params(config, sampling.temperature, sampling.max_tokens),
                on_turn_complete=on_turn_complete,
            )
        else:
            task = progress.add_task("Reading the signs...", total=None)
            sampling = config.generation.fortune
            fortune = await generate_single_fortune(
                question,
                config.personas[0],
                client,
                _params(config, sampling.temperature, sampling.max_tokens),
            )

        plan: str | None = None
        if goal:
            progress.update(task, description="Drafting your action plan...")
            sampling = config.generation.action_plan
            plan = await generate_action_plan(
                question,
                goal,
                config.planner,
                client,
                _params(config, sampling.temperature, sampling.max_tokens),
            )

    if council:
        for turn in turns:
            print_turn(turn)
    else:
        print_fortune(fortune, title=config.personas[0].display_name)

    if plan:
        print_action_plan(plan)


@click.group()
def main() -> None:
    """Fortune Council -- edge proxy and terminal client for the fortune teller.

    \b
    Examples:
      python -m src.cli serve --port 8787
      python -m src.cli ask "Will I find love?"
      python -m src.cli ask "Should I move abroad?" --council --goal "Find a job in Lisbon"
      python -m src.cli ping
    """


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=8787, show_default=True, type=int, help="Port to listen on")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def serve(host: str, port: int, verbose: bool) -> None:
    """Run the HTTP proxy."""
    config = _load(verbose)
    app = create_app(config)
    # log_config=None keeps uvicorn on the RichHandler installed above
    uvicorn.run(app, host=host, port=port, log_config=None)


@main.command()
@click.argument("question")
@click.option("--council", "use_council", is_flag=True, help="Ask all personas in turn instead of one")
@click.option("--goal", default=None, help="Follow up with an action plan for this goal")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def ask(question: str, use_council: bool, goal: str | None, verbose: bool) -> None:
    """Ask a QUESTION and print the answer."""
    if not question.strip():
        console.print("[bold red]Error:[/bold red] QUESTION must not be empty.")
        sys.exit(1)

    config = _load(verbose)
    client = _build_client(config)
    try:
        asyncio.run(_run_ask(config, client, question, use_council, goal))
    except FortuneError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(exc.message)}")
        sys.exit(1)


@main.command()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def ping(verbose: bool) -> None:
    """Check that the upstream completion service answers."""
    config = _load(verbose)
    client = _build_client(config)
    model = select_model(config.models, config.feature_flags)

    console.print(f"\n[bold]Checking {client.name()} ({model})...[/bold]")
    ok, err = asyncio.run(ping_upstream(client, model))
    if ok:
        console.print(f"  [green]OK  [/green] {client.name()}")
        return

    short_err = err.splitlines()[0][:120] if err else "unknown error"
    console.print(f"  [red]FAIL[/red] {client.name()}: {escape(short_err)}")
    sys.exit(1)


if __name__ == "__main__":
    main()
