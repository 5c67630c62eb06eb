"""CLI commands for the consensus engine."""

import random
import sys
from datetime import timedelta
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.table import Table

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.config import load_config_model
from cli.logging_config import setup_logging
from predictions.errors import ConfigurationError, EngineError

console = Console()
logger = structlog.get_logger()

RICH_COLORS = {"green": "green", "blue": "blue", "amber": "yellow", "red": "red"}


def get_service(ctx: click.Context):
    """Build the engine from the loaded config, exiting cleanly on bad config."""
    from predictions.service import PredictionService

    try:
        return PredictionService.from_config(ctx.obj["config"])
    except ConfigurationError as e:
        console.print(f"[red]Config error:[/] {e}")
        sys.exit(1)


def seed_offset_days(rng: random.Random) -> int:
    """Day offset after the reference date for a plausible synthetic guess.

    40% within 3 months, 30% 3-6 months, 20% 6-12 months, 10% 1-10 years out.
    """
    roll = rng.random()
    if roll < 0.4:
        return rng.randrange(90)
    if roll < 0.7:
        return 90 + rng.randrange(90)
    if roll < 0.9:
        return 180 + rng.randrange(180)
    return rng.randint(1, 10) * 365


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.option(
    "-c", "--config", "config_path", type=click.Path(path_type=Path), help="Config file path"
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, json_logs: bool, config_path: Path | None):
    """Release date consensus - community predictions and weighted median."""
    try:
        config = load_config_model(config_path)
    except ValueError as e:
        console.print(f"[red]Config error:[/] {e}")
        sys.exit(1)
    level = "DEBUG" if verbose else config.logging.level
    setup_logging(json_mode=json_logs or config.logging.json_mode, level=level)
    ctx.obj = {"config": config}


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    get_service(ctx)  # fail fast on missing salts before binding
    uvicorn.run("web.app:app", host=host, port=port, log_config=None)


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create the prediction database and schema."""
    from predictions.store import PredictionStore

    store_cfg = ctx.obj["config"].store
    store = PredictionStore(store_cfg.db_path, busy_timeout=store_cfg.busy_timeout)
    console.print(f"[green]Database ready:[/] {store.db_path}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show the current consensus statistics."""
    service = get_service(ctx)
    try:
        result = service.get_stats()
    except EngineError as e:
        console.print(f"[red]Error:[/] {e.public_message}")
        sys.exit(1)

    table = Table(show_header=True, title="Community Consensus")
    table.add_column("Median", style="cyan")
    table.add_column("Min")
    table.add_column("Max")
    table.add_column("Count", justify="right")
    table.add_row(
        result.median.isoformat(),
        result.min.isoformat() if result.min else "-",
        result.max.isoformat() if result.max else "-",
        str(result.count),
    )
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show the consensus status label."""
    service = get_service(ctx)
    try:
        result = service.get_status()
    except EngineError as e:
        console.print(f"[red]Error:[/] {e.public_message}")
        sys.exit(1)

    median = result.median_date.isoformat() if result.median_date else "-"
    style = RICH_COLORS.get(result.color, "white")
    console.print(
        f"[bold {style}]{result.label}[/]  median {median}  "
        f"({result.delta_days:+d} days, {result.count} predictions)"
    )


@cli.command()
@click.option("-n", "--count", default=100, help="Predictions to generate")
@click.option("--seed", "rng_seed", default=None, type=int, help="Random seed")
@click.pass_context
def seed(ctx: click.Context, count: int, rng_seed: int | None):
    """Fill the database with synthetic predictions from TEST-NET addresses."""
    service = get_service(ctx)
    rng = random.Random(rng_seed)
    engine = service.engine
    created = 0

    for i in range(count):
        address = f"198.18.{(i // 254) % 256}.{i % 254 + 1}"
        identity = service.resolver.resolve(address)
        predicted = engine.reference_date + timedelta(days=seed_offset_days(rng))
        predicted = min(max(predicted, engine.min_date), engine.max_date)
        try:
            service.store.create(
                identity.value,
                identity.salt_version,
                predicted,
                service.weight_for(predicted),
                other_hashes=[h.value for h in service.resolver.resolve_all(address)],
            )
            created += 1
        except EngineError:
            continue

    console.print(f"[green]Seeded:[/] {created} predictions ({count - created} skipped)")


@cli.command("clean-db")
@click.confirmation_option(prompt="Delete ALL predictions?")
@click.pass_context
def clean_db(ctx: click.Context):
    """Delete every prediction."""
    service = get_service(ctx)
    removed = service.store.clear()
    console.print(f"[yellow]Removed:[/] {removed} predictions")


@cli.command()
@click.pass_context
def reweigh(ctx: click.Context):
    """Recompute stored weights after changing weight thresholds or the reference date."""
    service = get_service(ctx)
    changed = service.store.reweigh(service.weight_for)
    console.print(f"[green]Reweighed:[/] {changed} predictions changed")


if __name__ == "__main__":
    cli()
