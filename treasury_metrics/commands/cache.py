"""CLI commands for inspecting the result cache."""

import json
from typing import Optional

import click
from rich.console import Console

from ..core.cli_base import async_command
from ..core.context import AppContext
from ..data.cache import get_cache_key

console = Console()


@click.group(name="cache")
def cache_group():
    """Result cache management."""
    pass


@cache_group.command('get-key')
@click.argument('operation')
@click.option('--input', 'input_json', help='Operation input as a JSON object')
def get_key(operation: str, input_json: Optional[str]):
    """Print the cache key used for an operation and its input.

    Examples:
        treasury-metrics cache get-key paginated/metrics --input '{"startDate": "2023-01-01"}'
    """
    input = None
    if input_json:
        try:
            input = json.loads(input_json)
        except ValueError as e:
            raise click.BadParameter(f"Invalid JSON: {e}", param_hint='--input')

        if not isinstance(input, dict):
            raise click.BadParameter("Input must be a JSON object", param_hint='--input')

    click.echo(get_cache_key(operation, input))


@cache_group.command()
@click.pass_obj
@async_command
async def ping(app_ctx: AppContext):
    """Check that the cache store is reachable."""
    layer = app_ctx.cache()
    try:
        healthy = await layer.health_check()
    finally:
        await layer.close()

    if not healthy:
        console.print("[red]Cache store is not reachable[/red]")
        raise click.exceptions.Exit(1)

    console.print("[green]Cache store is reachable[/green]")


@cache_group.command()
@click.argument('key')
@click.pass_obj
@async_command
async def delete(app_ctx: AppContext, key: str):
    """Delete a cached entry by key."""
    layer = app_ctx.cache()
    try:
        result = await layer.delete(key)
    finally:
        await layer.close()

    if not result.ok:
        console.print(f"[red]{result.error.message}[/red]")
        raise click.exceptions.Exit(1)

    if result.value:
        console.print(f"[green]Deleted {key}[/green]")
    else:
        console.print(f"[yellow]No entry for {key}[/yellow]")
