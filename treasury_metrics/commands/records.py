"""CLI commands for raw subgraph records."""

import json
from typing import List, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from ..core.cli_base import async_command, handle_errors
from ..core.context import AppContext

console = Console()

# Columns shown per record type in table output, as (header, attribute)
TOKEN_RECORD_COLUMNS = [
    ("Date", "date"), ("Chain", "blockchain"), ("Block", "block"), ("Token", "token"),
    ("Source", "source"), ("Category", "category"), ("Liquid", "is_liquid"),
    ("Balance", "balance"), ("Value", "value"),
]
TOKEN_SUPPLY_COLUMNS = [
    ("Date", "date"), ("Chain", "blockchain"), ("Block", "block"), ("Token", "token"),
    ("Type", "type"), ("Source", "source"), ("Supply Balance", "supply_balance"),
]
PROTOCOL_METRIC_COLUMNS = [
    ("Date", "date"), ("Block", "block"), ("Index", "current_index"),
    ("OHM Price", "ohm_price"), ("gOHM Price", "g_ohm_price"), ("TVL", "total_value_locked"),
]


def display_records(records: List, columns, title: str, output_format: str):
    """Display records as a table or JSON array."""
    if output_format == 'json':
        click.echo(json.dumps([record.to_dict() for record in records], indent=2))
        return

    if not records:
        console.print(f"[yellow]No {title.lower()} found[/yellow]")
        return

    table = Table(title=f"{title} ({len(records)})", box=box.ROUNDED)
    for header, _ in columns:
        table.add_column(header, justify="right" if header in ("Block", "Balance", "Value") else "left")

    for record in records:
        row = []
        for _, attribute in columns:
            value = getattr(record, attribute)
            row.append(f"{value:,.4f}" if isinstance(value, float) else str(value))
        table.add_row(*row)

    console.print(table)


format_option = click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
                             default='table', help='Output format')


def _resolve_mode(start_date: Optional[str], latest: bool, earliest: bool) -> str:
    chosen = [name for name, flag in (("start", bool(start_date)), ("latest", latest), ("earliest", earliest))
              if flag]
    if len(chosen) != 1:
        raise click.UsageError("Provide exactly one of --start-date, --latest or --earliest")
    return chosen[0]


@click.group(name="records")
def records_group():
    """Token records, token supplies and protocol metrics."""
    pass


@records_group.command('token-records')
@click.option('--start-date', help='Earliest date (YYYY-MM-DD)')
@click.option('--latest', is_flag=True, help='Records at the latest indexed blocks')
@click.option('--earliest', is_flag=True, help='Records at the earliest indexed blocks')
@click.option('--date-offset', type=click.IntRange(min=1), help='Days per upstream query')
@click.option('--cross-chain-complete', is_flag=True,
              help='Only include days that every reference chain has reported')
@click.option('--ignore-cache', is_flag=True, help='Skip cached results')
@format_option
@click.pass_obj
@handle_errors
@async_command
async def token_records(app_ctx: AppContext, start_date: Optional[str], latest: bool, earliest: bool,
                        date_offset: Optional[int], cross_chain_complete: bool, ignore_cache: bool,
                        output_format: str):
    """Get treasury token records.

    Examples:
        treasury-metrics records token-records --start-date 2023-01-01
        treasury-metrics records token-records --latest --format json
    """
    mode = _resolve_mode(start_date, latest, earliest)

    async with app_ctx.service() as service:
        if mode == "latest":
            results = await service.latest_token_records()
        elif mode == "earliest":
            results = await service.earliest_token_records()
        else:
            results = await service.paginated_token_records(
                start_date,
                date_offset=date_offset,
                cross_chain_data_complete=cross_chain_complete,
                ignore_cache=ignore_cache,
            )

    display_records(results, TOKEN_RECORD_COLUMNS, "Token Records", output_format)


@records_group.command('token-supplies')
@click.option('--start-date', help='Earliest date (YYYY-MM-DD)')
@click.option('--latest', is_flag=True, help='Supplies at the latest indexed blocks')
@click.option('--earliest', is_flag=True, help='Supplies at the earliest indexed blocks')
@click.option('--date-offset', type=click.IntRange(min=1), help='Days per upstream query')
@click.option('--cross-chain-complete', is_flag=True,
              help='Only include days that every reference chain has reported')
@click.option('--ignore-cache', is_flag=True, help='Skip cached results')
@format_option
@click.pass_obj
@handle_errors
@async_command
async def token_supplies(app_ctx: AppContext, start_date: Optional[str], latest: bool, earliest: bool,
                         date_offset: Optional[int], cross_chain_complete: bool, ignore_cache: bool,
                         output_format: str):
    """Get token supply records."""
    mode = _resolve_mode(start_date, latest, earliest)

    async with app_ctx.service() as service:
        if mode == "latest":
            results = await service.latest_token_supplies()
        elif mode == "earliest":
            results = await service.earliest_token_supplies()
        else:
            results = await service.paginated_token_supplies(
                start_date,
                date_offset=date_offset,
                cross_chain_data_complete=cross_chain_complete,
                ignore_cache=ignore_cache,
            )

    display_records(results, TOKEN_SUPPLY_COLUMNS, "Token Supplies", output_format)


@records_group.command('protocol-metrics')
@click.option('--start-date', help='Earliest date (YYYY-MM-DD)')
@click.option('--latest', is_flag=True, help='Metrics at the latest indexed block')
@click.option('--earliest', is_flag=True, help='Metrics at the earliest indexed block')
@click.option('--date-offset', type=click.IntRange(min=1), help='Days per upstream query')
@click.option('--ignore-cache', is_flag=True, help='Skip cached results')
@format_option
@click.pass_obj
@handle_errors
@async_command
async def protocol_metrics(app_ctx: AppContext, start_date: Optional[str], latest: bool, earliest: bool,
                           date_offset: Optional[int], ignore_cache: bool, output_format: str):
    """Get protocol metrics, which are only indexed on Ethereum."""
    mode = _resolve_mode(start_date, latest, earliest)

    async with app_ctx.service() as service:
        if mode == "latest":
            results = await service.latest_protocol_metrics()
        elif mode == "earliest":
            results = await service.earliest_protocol_metrics()
        else:
            results = await service.paginated_protocol_metrics(
                start_date,
                date_offset=date_offset,
                ignore_cache=ignore_cache,
            )

    display_records(results, PROTOCOL_METRIC_COLUMNS, "Protocol Metrics", output_format)
