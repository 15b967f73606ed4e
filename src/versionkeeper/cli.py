"""versionkeeper command-line interface."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import click
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from structlog.stdlib import get_logger

from .config import Config
from .constants import CONFIG_PATH_ENV_VAR, CONFIGURATION_PATH, ROOT_LOGGER
from .factory import Factory

__all__ = [
    "help",
    "main",
    "reconcile",
    "run",
]

_config_path_option = click.option(
    "--config-path",
    "-c",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar=CONFIG_PATH_ENV_VAR,
    default=CONFIGURATION_PATH,
    show_default=True,
    help="Path to the operator configuration",
)


def _load_config(config_path: Path) -> Config:
    """Load the configuration and set up logging based on it."""
    config = Config.from_file(config_path)
    configure_logging(
        name=ROOT_LOGGER,
        profile=config.profile,
        log_level=config.log_level,
    )
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Command-line interface for versionkeeper."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command()
@_config_path_option
@run_with_asyncio
async def run(*, config_path: Path) -> None:
    """Run the operator until terminated."""
    config = _load_config(config_path)
    logger = get_logger(ROOT_LOGGER)
    await initialize_kubernetes()

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stopping.set)

    async with Factory.standalone(config) as factory:
        manager = factory.create_background_task_manager()
        await manager.start()
        logger.info("Watching workloads", namespace=config.namespace)
        await stopping.wait()
        logger.info("Shutting down")
        await manager.stop()


@main.command()
@click.argument("name")
@click.option(
    "--namespace",
    "-n",
    default=None,
    help="Namespace of the workload [default: configured namespace]",
)
@_config_path_option
@run_with_asyncio
async def reconcile(
    name: str, *, namespace: str | None, config_path: Path
) -> None:
    """Run one reconcile pass for the workload NAME."""
    config = _load_config(config_path)
    await initialize_kubernetes()
    async with Factory.standalone(config) as factory:
        reconciler = factory.create_workload_reconciler()
        namespace = namespace or config.namespace
        result = await reconciler.reconcile(name, namespace)
    if result.error:
        raise click.ClickException(str(result.error))
    if result.requeue_after:
        delay = int(result.requeue_after.total_seconds())
        click.echo(f"Reconciled {name}, next pass in {delay}s")
    else:
        click.echo(f"Workload {name} not found, nothing to do")
