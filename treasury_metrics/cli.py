"""
Main CLI module.

Loads configuration, sets up logging and registers the command groups on
the ``treasury-metrics`` entry point.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from treasury_metrics.core.cli_base import async_command
from treasury_metrics.core.config import ConfigError, ConfigManager, Settings
from treasury_metrics.core.context import AppContext
from treasury_metrics.core.logging import setup_logging as setup_structured_logging

console = Console(stderr=True)
logger = logging.getLogger(__name__)

_rich_handler: Optional[RichHandler] = None


def setup_logging(config: Dict[str, Any], debug: bool = False, verbose: bool = False) -> None:
    """Set up logging from configuration.

    Unless structured output is configured, console output goes through a
    RichHandler and the configured file and Sentry handlers are kept.
    """
    global _rich_handler

    log_config = dict(config.get('logging', {}) or {})
    structured = log_config.get('structured', False)
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    if debug:
        log_config['level'] = 'DEBUG'

    if not structured:
        handlers = dict(log_config.get('handlers', {}) or {})
        handlers['console'] = {'enabled': False}
        log_config['handlers'] = handlers

    setup_structured_logging({'logging': log_config})

    root_logger = logging.getLogger()
    if _rich_handler is not None:
        root_logger.removeHandler(_rich_handler)
        _rich_handler = None

    if not structured:
        _rich_handler = RichHandler(console=console, rich_tracebacks=True, show_path=debug)
        _rich_handler.setLevel(level)
        root_logger.addHandler(_rich_handler)

    logging.getLogger("treasury_metrics").setLevel(level)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config-dir', '-c', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory containing config.yaml overrides')
@click.option('--no-cache', is_flag=True, help='Do not read or write the result cache')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config_dir: Optional[Path], no_cache: bool) -> None:
    """
    Treasury Metrics - daily treasury and supply metrics from the treasury subgraphs.

    Records are fetched from each chain's subgraph, collapsed to the latest
    snapshot of each day and combined into per-day metrics.
    """
    app_ctx = ctx.ensure_object(AppContext)
    app_ctx.debug = debug
    app_ctx.verbose = verbose
    if no_cache:
        app_ctx.use_cache = False

    if app_ctx.settings is None:
        try:
            config_manager = ConfigManager(config_dir=config_dir)
            config_manager.initialize()
        except ConfigError as e:
            raise click.ClickException(str(e))

        app_ctx.config = config_manager.get_all()
        app_ctx.settings = Settings.from_config(config_manager)

    setup_logging(app_ctx.config, debug, verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
def version() -> None:
    """Show version information."""
    from treasury_metrics import __version__

    click.echo(f"Treasury Metrics v{__version__}")


@main.command()
@click.pass_obj
@async_command
async def health(app_ctx: AppContext) -> None:
    """Check that the subgraphs and the cache store are reachable."""
    async with app_ctx.service() as service:
        status = await service.health_check()

    for component, healthy in status.items():
        click.echo(f"{component}: {'ok' if healthy else 'unavailable'}")

    if not all(status.values()):
        raise click.exceptions.Exit(1)


def register_commands():
    """Register all command groups with the main CLI."""
    from treasury_metrics.commands import cache_group, metrics_group, records_group

    main.add_command(metrics_group)
    main.add_command(records_group)
    main.add_command(cache_group)


register_commands()


if __name__ == '__main__':
    main()
