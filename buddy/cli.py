"""
Buddy CLI - run the delivery scheduler and administer its state.

Usage:
    buddy --help                  Show all commands
    buddy run                     Start the delivery scheduler (until Ctrl+C)
    buddy clear-checkpoints --yes Delete every stored conversation checkpoint
"""

import asyncio

import httpx
import typer

from buddy.config import get_config, get_settings
from buddy.core.logging import get_logger, setup_logging
from buddy.core.redis import create_redis
from buddy.core.scheduler import TickScheduler
from buddy.delivery.checkpoints import ConversationCheckpointStore
from buddy.dependencies import build_delivery_scheduler

app = typer.Typer(
    name="buddy",
    help="Buddy CLI - daily session delivery scheduler",
    no_args_is_help=True,
)

logger = get_logger(__name__)


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


async def _serve() -> None:
    config = get_config()
    redis_client = create_redis(config.settings)
    async with httpx.AsyncClient(timeout=config.scheduler.external_timeout_seconds) as http:
        delivery = build_delivery_scheduler(redis_client, http, config)
        ticks = TickScheduler(delivery, config.scheduler)
        ticks.start()
        try:
            await asyncio.Event().wait()
        finally:
            ticks.stop()
            await redis_client.aclose()


@app.command()
def run() -> None:
    """Start the delivery scheduler and block until interrupted."""
    setup_logging()
    if not get_settings().scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        typer.echo("Scheduler disabled (SCHEDULER_ENABLED=false)")
        raise typer.Exit(0)

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        typer.echo("\nStopped.")
    except Exception as e:
        _print_error(f"Scheduler crashed: {e}")
        raise typer.Exit(1) from e


@app.command("clear-checkpoints")
def clear_checkpoints(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every conversation checkpoint and partial write."""
    setup_logging()
    if not yes:
        typer.confirm("Delete ALL conversation checkpoints?", abort=True)

    async def _clear() -> int:
        config = get_config()
        redis_client = create_redis(config.settings)
        try:
            return await ConversationCheckpointStore(redis_client, config.checkpoints).delete_all()
        finally:
            await redis_client.aclose()

    removed = asyncio.run(_clear())
    typer.echo(f"  ✅ Removed {removed} keys")


if __name__ == "__main__":
    app()
