"""CLI interface for the daily request scheduler."""

import functools
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from .catalog import export_catalog, import_catalog_file, write_catalog
from .config import load_config, SchedulerConfig
from .durations import interpolate_time_spent
from .errors import AccountNotFound, DailyRequestsError, NotFoundError
from .models import UpdatePurchaseEventProgressRequest
from .planning import DailyPlan, DailyPlanner, format_remaining_time, remaining_seconds
from .scheduler import DailyRequestScheduler
from .storage import SQLiteStore
from .validators import validate_config, validate_config_or_raise, ValidationError
from .writers import OutputManager


console = Console()


@dataclass
class AppContext:
    """State shared by all commands of one invocation."""
    config_dict: dict
    database: Optional[Path] = None
    store: Optional[SQLiteStore] = None

    @property
    def config(self) -> SchedulerConfig:
        validate_config_or_raise(self.config_dict)
        return SchedulerConfig(self.config_dict)

    def open_store(self) -> SQLiteStore:
        if self.store is None:
            path = self.database or Path(self.config.database_path)
            self.store = SQLiteStore(path)
            self.store.init_schema()
        return self.store

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None


def print_banner():
    """Print application banner."""
    banner = """
╔══════════════════════════════════════════════════════════════════╗
║               Daily Requests: Milestone Scheduler                ║
╚══════════════════════════════════════════════════════════════════╝
    """
    console.print(banner, style="bold blue")


def print_validation_errors(errors: list[str], title: str = "Configuration Validation Failed"):
    """Print validation errors."""
    console.print(f"\n[red bold]{title}:[/red bold]")
    for error in errors:
        console.print(f"  [red]• {error}[/red]")


def handle_errors(func):
    """Report package errors on the console and exit with status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            print_validation_errors(e.errors, title="Validation Failed")
            sys.exit(1)
        except DailyRequestsError as e:
            console.print(f"[red]✗ {e}[/red]")
            sys.exit(1)
    return wrapper


def format_size(size: int) -> str:
    if size > 1024 * 1024 * 1024:
        return f"{size / (1024**3):.2f} GB"
    if size > 1024 * 1024:
        return f"{size / (1024**2):.2f} MB"
    if size > 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size} bytes"


@click.group()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, path_type=Path),
    default="configs/default.yaml",
    help="Base configuration file",
)
@click.option(
    "--override", "-o",
    type=click.Path(exists=True, path_type=Path),
    multiple=True,
    help="Override configuration file(s)",
)
@click.option(
    "--database",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite database file (overrides config)",
)
@click.pass_context
def main(ctx: click.Context, config: Path, override: tuple[Path, ...], database: Optional[Path]):
    """Compute the daily session/event requests of game accounts.

    Examples:

        python generate.py init-db

        python generate.py import-catalog configs/sample_catalog.yaml

        python generate.py daily 1 --date 2025-01-03

        python generate.py plan --seed 42

        python generate.py -o configs/overrides/legacy_payload.yaml plan
    """
    try:
        config_dict = load_config(config, list(override) if override else None)
    except Exception as e:
        console.print(f"[red]✗ Failed to load config: {e}[/red]")
        sys.exit(1)

    app = AppContext(config_dict=config_dict, database=database)
    ctx.obj = app
    ctx.call_on_close(app.close)


@main.command()
@click.pass_obj
def validate(app: AppContext):
    """Validate the merged configuration."""
    print_banner()
    console.print("[VALIDATE] Validating configuration...", style="bold")
    errors = validate_config(app.config_dict)

    if errors:
        print_validation_errors(errors)
        sys.exit(1)

    console.print("  ✓ All validations passed", style="green bold")


@main.command("init-db")
@click.pass_obj
@handle_errors
def init_db(app: AppContext):
    """Create the database schema."""
    store = app.open_store()
    console.print(f"  ✓ Database ready: {store.path}", style="green")


@main.command("import-catalog")
@click.argument("catalog_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def import_catalog_cmd(app: AppContext, catalog_file: Path):
    """Validate and import a YAML catalog of games, levels and accounts."""
    store = app.open_store()
    console.print(f"[IMPORT] {catalog_file}", style="bold")
    stats = import_catalog_file(store, catalog_file)

    table = Table(title="Imported", show_header=False)
    table.add_column("Record", style="cyan")
    table.add_column("Count", style="green")
    for key, count in sorted(stats.items()):
        table.add_row(key.replace("_", " "), str(count))
    console.print(table)


@main.command("export-catalog")
@click.argument("game_id", type=int)
@click.argument("catalog_file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def export_catalog_cmd(app: AppContext, game_id: int, catalog_file: Path):
    """Write one game's catalog to a YAML file."""
    store = app.open_store()
    write_catalog(catalog_file, export_catalog(store, game_id))
    console.print(f"  ✓ Exported game {game_id} to {catalog_file}", style="green")


@main.command()
@click.argument("account_id", type=int)
@click.option("--date", "-d", "target_date", default=None, help="Target date YYYY-MM-DD (default: today)")
@click.option("--seed", "-s", type=int, default=None, help="Override random seed")
@click.option(
    "--output", "-O",
    type=click.Path(path_type=Path),
    default=None,
    help="Write requests to this directory",
)
@click.option(
    "--format", "-f",
    type=click.Choice(["jsonl", "parquet", "both"]),
    default=None,
    help="Output format (overrides config)",
)
@click.option("--show-content", is_flag=True, help="Print rendered request content")
@click.pass_obj
@handle_errors
def daily(
    app: AppContext,
    account_id: int,
    target_date: Optional[str],
    seed: Optional[int],
    output: Optional[Path],
    format: Optional[str],
    show_content: bool,
):
    """Compute the requests due for one account."""
    config = app.config
    store = app.open_store()
    target_date = target_date or date.today().isoformat()
    if seed is None:
        seed = config.seed

    scheduler = DailyRequestScheduler.from_config(store, config, seed=seed)
    response = scheduler.compute_daily_requests(account_id, target_date)

    console.print(
        f"[DAILY] {response.account_name} (#{response.account_id}) | "
        f"{response.target_date} | day {response.days_passed}",
        style="bold",
    )

    table = Table(title=f"{len(response.requests)} requests")
    table.add_column("Type", style="cyan")
    table.add_column("Event Token")
    table.add_column("Level", justify="right")
    table.add_column("Time Spent", justify="right", style="green")
    for request in response.requests:
        table.add_row(
            request.request_type.value,
            request.event_token,
            "-" if request.level_id is None else str(request.level_id),
            f"{request.time_spent:,}",
        )
    console.print(table)

    if show_content:
        for request in response.requests:
            console.rule(f"{request.request_type.value} {request.event_token}")
            console.print(request.content, markup=False, highlight=False)

    if output is None:
        return

    run_dir = output / f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    output_manager = OutputManager(
        output_dir=run_dir,
        output_format=format or config.output_format,
        compression=config.output_compression,
        batch_size=config.output_batch_size,
        include_metadata=config.include_metadata,
    )
    with output_manager:
        output_manager.set_run(
            target_date,
            seed,
            {"purchase_duration": config.purchase_duration, "render_mode": config.render_mode},
        )
        output_manager.write_response(response)
    output_manager.finalize(datetime.now())

    console.print("\n[OUTPUT] Results:", style="bold")
    for file in sorted(run_dir.iterdir()):
        console.print(f"  ✓ {file.name} ({format_size(file.stat().st_size)})", style="green")


def print_plan(plan: DailyPlan, game_names: dict[int, str], now: datetime):
    """Print batches with per-group pacing and readiness."""
    for batch in plan.batches:
        table = Table(title=f"Batch {batch.index + 1}")
        table.add_column("Game", style="cyan")
        table.add_column("Account")
        table.add_column("Event Token")
        table.add_column("Requests", justify="right")
        table.add_column("Time Spent", justify="right", style="green")
        table.add_column("Offset", justify="right")
        table.add_column("Ready In", justify="right", style="yellow")

        for entry in batch.entries:
            account = entry.plan.account
            ready_at = entry.plan.first_request_allowed_at
            if ready_at is not None:
                ready_at += timedelta(seconds=entry.scheduled_offset)
            table.add_row(
                game_names.get(account.game_id, str(account.game_id)),
                account.name,
                entry.group.event_token,
                str(len(entry.group.requests)),
                f"{entry.group.time_spent:,}",
                format_remaining_time(entry.scheduled_offset),
                format_remaining_time(remaining_seconds(ready_at, now)),
            )
        console.print(table)


@main.command()
@click.option("--date", "-d", "target_date", default=None, help="Target date YYYY-MM-DD (default: today)")
@click.option("--seed", "-s", type=int, default=None, help="Override random seed")
@click.pass_obj
@handle_errors
def plan(app: AppContext, target_date: Optional[str], seed: Optional[int]):
    """Plan the requests of every account of every game."""
    print_banner()
    config = app.config
    store = app.open_store()
    target_date = target_date or date.today().isoformat()

    scheduler = DailyRequestScheduler.from_config(store, config, seed=seed)
    games = store.get_games()
    game_names = {game.id: game.name for game in games}

    console.print(f"[PLAN] Planning {target_date}...", style="bold")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("[cyan]Computing...", total=None)

        def progress_callback(done: int, total: int):
            progress.update(
                task,
                completed=done,
                total=total,
                description=f"[cyan]Account {done}/{total}",
            )

        planner = DailyPlanner(store, scheduler, progress_callback=progress_callback)
        result = planner.plan(target_date, games=games)

    print_plan(result, game_names, datetime.now())

    for failure in result.failures:
        console.print(f"  [red]✗ {failure.account.name}: {failure.error}[/red]")

    console.print(
        f"\n[DONE] {result.total_requests:,} requests in {len(result.batches)} batches "
        f"for {len(result.plans)} accounts",
        style="bold green",
    )


@main.command("complete-level")
@click.argument("account_id", type=int)
@click.argument("level_id", type=int)
@click.option("--undo", is_flag=True, help="Mark the level as not completed")
@click.pass_obj
@handle_errors
def complete_level(app: AppContext, account_id: int, level_id: int, undo: bool):
    """Mark a level as completed for an account."""
    store = app.open_store()
    if store.get_account(account_id) is None:
        raise AccountNotFound(account_id)
    if store.get_level(level_id) is None:
        raise NotFoundError(f"Level with ID {level_id} not found")

    store.ensure_level_progress(account_id, level_id)
    store.update_level_progress(account_id, level_id, not undo)
    state = "not completed" if undo else "completed"
    console.print(f"  ✓ Level {level_id} {state} for account {account_id}", style="green")


@main.command("schedule-purchase")
@click.argument("account_id", type=int)
@click.argument("event_id", type=int)
@click.option("--days-offset", type=click.IntRange(min=0), required=True, help="Day the purchase is due")
@click.option(
    "--time-spent",
    type=click.IntRange(min=0),
    default=None,
    help="Base duration (default: interpolated from levels)",
)
@click.pass_obj
@handle_errors
def schedule_purchase(
    app: AppContext,
    account_id: int,
    event_id: int,
    days_offset: int,
    time_spent: Optional[int],
):
    """Schedule a purchase event for an account."""
    store = app.open_store()
    account = store.get_account(account_id)
    if account is None:
        raise AccountNotFound(account_id)

    event = store.get_purchase_event(event_id)
    if event is None or event.game_id != account.game_id:
        raise NotFoundError(f"Purchase event with ID {event_id} not found for game {account.game_id}")

    if time_spent is None:
        time_spent = interpolate_time_spent(days_offset, store.get_levels_by_game(account.game_id))

    store.upsert_purchase_event_progress(account_id, event_id, days_offset, time_spent)
    console.print(
        f"  ✓ {event.event_token} scheduled on day {days_offset} ({time_spent}s) for {account.name}",
        style="green",
    )


@main.command("complete-purchase")
@click.argument("account_id", type=int)
@click.argument("event_id", type=int)
@click.option("--undo", is_flag=True, help="Mark the purchase as not completed")
@click.pass_obj
@handle_errors
def complete_purchase(app: AppContext, account_id: int, event_id: int, undo: bool):
    """Mark a scheduled purchase event as completed."""
    store = app.open_store()
    updated = store.update_purchase_event_progress(
        UpdatePurchaseEventProgressRequest(
            account_id=account_id,
            purchase_event_id=event_id,
            is_completed=not undo,
        )
    )
    if not updated:
        raise NotFoundError(
            f"Purchase event {event_id} is not scheduled for account {account_id}"
        )

    state = "not completed" if undo else "completed"
    console.print(f"  ✓ Purchase event {event_id} {state} for account {account_id}", style="green")


if __name__ == "__main__":
    main()
