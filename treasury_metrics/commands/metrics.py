"""CLI commands for treasury metrics."""

import json
import math
from typing import List, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from ..core.cli_base import async_command, handle_errors
from ..core.context import AppContext
from ..data.models import Chain, Metric

console = Console()


def _format_number(value: float, decimals: int = 2) -> str:
    if value is None or math.isnan(value):
        return "-"
    return f"{value:,.{decimals}f}"


def display_metrics_table(metrics: List[Metric]):
    """Display metrics in a table, newest first."""
    table = Table(title="Treasury Metrics", box=box.ROUNDED)
    table.add_column("Date", style="cyan")
    table.add_column("Index", justify="right")
    table.add_column("OHM Price", justify="right", style="green")
    table.add_column("Market Cap", justify="right")
    table.add_column("Circulating", justify="right")
    table.add_column("Floating", justify="right")
    table.add_column("Backed", justify="right")
    table.add_column("Market Value", justify="right", style="bold")
    table.add_column("Liquid Backing", justify="right", style="bold")
    table.add_column("LB / Backed OHM", justify="right", style="yellow")

    for metric in metrics:
        table.add_row(
            metric.date,
            _format_number(metric.ohm_index, 4),
            _format_number(metric.ohm_price),
            _format_number(metric.market_cap, 0),
            _format_number(metric.ohm_circulating_supply, 0),
            _format_number(metric.ohm_floating_supply, 0),
            _format_number(metric.ohm_backed_supply, 0),
            _format_number(metric.treasury_market_value, 0),
            _format_number(metric.treasury_liquid_backing, 0),
            _format_number(metric.treasury_liquid_backing_per_ohm_backed),
        )

    console.print(table)


def display_metrics_json(metrics: List[Metric]):
    """Display metrics as a JSON array."""
    click.echo(json.dumps([metric.to_dict() for metric in metrics], indent=2))


def display_metrics(metrics: List[Metric], output_format: str):
    if not metrics:
        console.print("[yellow]No metrics found[/yellow]")
        return

    if output_format == 'json':
        display_metrics_json(metrics)
    else:
        display_metrics_table(metrics)


format_option = click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
                             default='table', help='Output format')


@click.group(name="metrics")
def metrics_group():
    """Daily treasury metrics across all chains."""
    pass


@metrics_group.command()
@click.option('--start-date', required=True, help='Earliest date (YYYY-MM-DD)')
@click.option('--date-offset', type=click.IntRange(min=1), help='Days per upstream query')
@click.option('--cross-chain-complete', is_flag=True,
              help='Only include days that every reference chain has reported')
@click.option('--include-records', is_flag=True, help='Include the records behind each value')
@click.option('--ignore-cache', is_flag=True, help='Skip cached results')
@format_option
@click.pass_obj
@handle_errors
@async_command
async def paginated(app_ctx: AppContext, start_date: str, date_offset: Optional[int],
                    cross_chain_complete: bool, include_records: bool, ignore_cache: bool,
                    output_format: str):
    """Get one metric per day from a start date until today.

    Examples:
        treasury-metrics metrics paginated --start-date 2023-01-01
        treasury-metrics metrics paginated --start-date 2023-06-01 --format json
    """
    async with app_ctx.service() as service:
        results = await service.paginated_metrics(
            start_date,
            date_offset=date_offset,
            cross_chain_data_complete=cross_chain_complete,
            include_records=include_records,
            ignore_cache=ignore_cache,
        )

    display_metrics(results, output_format)


@metrics_group.command()
@format_option
@click.pass_obj
@handle_errors
@async_command
async def latest(app_ctx: AppContext, output_format: str):
    """Get the metric at the latest indexed blocks."""
    async with app_ctx.service() as service:
        metric = await service.latest_metric()

    display_metrics([metric], output_format)


@metrics_group.command()
@format_option
@click.pass_obj
@handle_errors
@async_command
async def earliest(app_ctx: AppContext, output_format: str):
    """Get the metric at the earliest indexed blocks."""
    async with app_ctx.service() as service:
        metric = await service.earliest_metric()

    display_metrics([metric], output_format)


@metrics_group.command('at-block')
@click.option('--arbitrum-block', type=int, help='Arbitrum block number')
@click.option('--ethereum-block', type=int, help='Ethereum block number')
@click.option('--fantom-block', type=int, help='Fantom block number')
@click.option('--polygon-block', type=int, help='Polygon block number')
@click.option('--include-records', is_flag=True, help='Include the records behind each value')
@format_option
@click.pass_obj
@handle_errors
@async_command
async def at_block(app_ctx: AppContext, arbitrum_block: Optional[int], ethereum_block: Optional[int],
                   fantom_block: Optional[int], polygon_block: Optional[int],
                   include_records: bool, output_format: str):
    """Get the metric for specific per-chain blocks.

    Examples:
        treasury-metrics metrics at-block --ethereum-block 17620000 --arbitrum-block 107000000
    """
    given = {
        Chain.ARBITRUM.value: arbitrum_block,
        Chain.ETHEREUM.value: ethereum_block,
        Chain.FANTOM.value: fantom_block,
        Chain.POLYGON.value: polygon_block,
    }
    blocks = {chain: block for chain, block in given.items() if block is not None}
    if not blocks:
        raise click.UsageError("At least one block number is required")

    async with app_ctx.service() as service:
        metric = await service.metric_at_block(blocks, include_records=include_records)

    display_metrics([metric], output_format)
