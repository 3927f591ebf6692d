"""Typer CLI for the Front to Gmail metadata migration tool."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from front_gmail_migration.config.settings import AppSettings, load_settings
from front_gmail_migration.errors import AuthError, MigrationError
from front_gmail_migration.front.client import FrontClient
from front_gmail_migration.gmail.auth import build_service
from front_gmail_migration.gmail.target import GmailTargetClient
from front_gmail_migration.mapping.mapper import LabelNameError, sanitize_label
from front_gmail_migration.models.migration import RunResult, RunStatistics
from front_gmail_migration.pipeline.orchestrator import MigrationOrchestrator
from front_gmail_migration.storage.report_writer import ReportWriter
from front_gmail_migration.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Copy Front tags and archive status onto Gmail threads, matched by Message-ID.",
)

EXIT_CONFIG = 2
EXIT_AUTH = 3

ENV_FILE_OPTION = typer.Option(
    None,
    "--env-file",
    exists=True,
    dir_okay=False,
    help="Optional path to a .env file (in addition to environment variables).",
)


def load_app_settings(*, env_file: Path | None) -> AppSettings:
    """Load application settings, exiting with a readable message if invalid.

    Args:
        env_file: Optional path to a .env file to load in addition to environment variables.

    Returns:
        Validated application settings.

    Raises:
        typer.Exit: If the settings fail validation.
    """
    try:
        return load_settings(env_file=env_file)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG) from None


def _require_front(settings: AppSettings) -> None:
    """Exit early when no Front token is configured."""
    if settings.front is None:
        typer.echo("Missing Front settings. Set MIG_FRONT__API_KEY.", err=True)
        raise typer.Exit(code=EXIT_CONFIG)


@app.command("migrate")
def migrate_cmd(
    *,
    env_file: Path | None = ENV_FILE_OPTION,
    dry_run: bool | None = typer.Option(
        None,
        "--dry-run/--live",
        help="Override MIG_MIGRATION__DRY_RUN. Dry runs never write to Gmail.",
    ),
    skip_archived: bool | None = typer.Option(
        None,
        "--skip-archived/--include-archived",
        help="Override MIG_MIGRATION__SKIP_ARCHIVED.",
    ),
    inbox_id: str | None = typer.Option(None, help="Only migrate this Front inbox."),
    batch_size: int | None = typer.Option(None, min=1, help="Items per batch."),
) -> None:
    """Run the migration pipeline."""
    settings = load_app_settings(env_file=env_file)
    console = Console(stderr=True)
    configure_logging(settings=settings.logging, console=console)
    _require_front(settings)

    overrides: dict[str, object] = {}
    if dry_run is not None:
        overrides["dry_run"] = dry_run
    if skip_archived is not None:
        overrides["skip_archived"] = skip_archived
    if inbox_id:
        overrides["inbox_id"] = inbox_id
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if overrides:
        settings.migration = settings.migration.model_copy(update=overrides)

    try:
        result = asyncio.run(_run_migration(settings, console=console))
    except AuthError as exc:
        typer.echo(f"Authentication failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_AUTH) from None
    except ValidationError as exc:
        # Provider payloads, not settings: those were validated above.
        logger.error("Unexpected API data: %s", exc)
        typer.echo(f"Migration failed on unexpected API data: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_CONFIG) from None
    except MigrationError as exc:
        logger.error("Migration failed: %s", exc)
        typer.echo(f"Migration failed: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None

    _print_summary(console, result)


async def _run_migration(settings: AppSettings, *, console: Console) -> RunResult:
    """Build the clients and run the orchestrator with a progress bar."""
    migration = settings.migration
    with console.status("[bold green]Initializing Gmail API...[/bold green]"):
        target = GmailTargetClient.from_settings(settings, read_only=migration.dry_run)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
        expand=True,
    )
    task = progress.add_task("[bold magenta]Conversations", total=None)

    def _on_progress(stats: RunStatistics) -> None:
        """Reflect the running counters in the progress bar."""
        progress.update(
            task,
            total=stats.total,
            completed=stats.processed,
            description=(
                f"[bold magenta]Conversations[/bold magenta] matched={stats.matched} "
                f"arch/inbox={stats.status_archived}/{stats.status_inbox} "
                f"skipped={stats.skipped} failed={stats.failed}"
            ),
        )

    async with FrontClient.from_settings(settings) as front:
        orchestrator = MigrationOrchestrator(
            source=front,
            target=target,
            settings=migration,
            report_writer=ReportWriter(reports_dir=settings.storage.reports_dir),
            on_progress=_on_progress,
        )
        with progress:
            return await orchestrator.run()


def _print_summary(console: Console, result: RunResult) -> None:
    """Render the final counters as a table."""
    table = Table(title="Migration summary", show_header=False)
    table.add_column("counter", style="dim")
    table.add_column("value", justify="right", style="bold")
    for name, value in result.stats.as_dict().items():
        table.add_row(name.replace("_", " "), str(value))
    console.print(table)
    if result.report_path is not None:
        console.print(f"[green]✔[/green] CSV report: {result.report_path}")
    if result.dry_run:
        console.print(
            "[yellow]This was a DRY RUN - no changes were made to Gmail.[/yellow] "
            "Pass --live (or set MIG_MIGRATION__DRY_RUN=false) to apply labels.",
        )


@app.command("gmail-auth")
def gmail_auth_cmd(*, env_file: Path | None = ENV_FILE_OPTION) -> None:
    """Run the Gmail OAuth flow and verify mailbox access."""
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)

    try:
        service = build_service(settings.gmail, interactive=True)
        profile = service.users().getProfile(userId=settings.gmail.user_id).execute()
    except ValueError as exc:
        # Usually config/token file issues.
        logger.error("Gmail auth configuration error: %s", exc)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_CONFIG) from None
    except Exception as exc:
        logger.exception("Gmail auth failed")
        typer.echo(f"Gmail auth failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_AUTH) from None

    if not isinstance(profile, dict) or "emailAddress" not in profile:
        typer.echo(f"Unexpected Gmail profile response: {profile!r}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Gmail OAuth OK for: {profile['emailAddress']}")
    if "threadsTotal" in profile:
        typer.echo(f"threadsTotal: {profile.get('threadsTotal')}")


@app.command("inboxes")
def inboxes_cmd(*, env_file: Path | None = ENV_FILE_OPTION) -> None:
    """List Front inboxes (ids usable with --inbox-id)."""
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    _require_front(settings)

    async def _list() -> list[tuple[str, str]]:
        """Fetch inbox ids and names."""
        async with FrontClient.from_settings(settings) as front:
            return [(inbox.id, inbox.name) for inbox in await front.list_inboxes()]

    try:
        inboxes = asyncio.run(_list())
    except AuthError as exc:
        typer.echo(f"Authentication failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_AUTH) from None
    except MigrationError as exc:
        typer.echo(f"Front request failed: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for inbox_id, name in inboxes:
        typer.echo(f"{inbox_id}\t{name}")


@app.command("tags")
def tags_cmd(*, env_file: Path | None = ENV_FILE_OPTION) -> None:
    """List Front tags and the Gmail label each one becomes."""
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    _require_front(settings)

    async def _list() -> list[str]:
        """Fetch tag names."""
        async with FrontClient.from_settings(settings) as front:
            return [tag.name for tag in await front.list_tags()]

    try:
        names = asyncio.run(_list())
    except AuthError as exc:
        typer.echo(f"Authentication failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_AUTH) from None
    except MigrationError as exc:
        typer.echo(f"Front request failed: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for name in names:
        try:
            label = sanitize_label(name)
        except LabelNameError:
            label = "(dropped)"
        typer.echo(f"{name}\t{label}")
