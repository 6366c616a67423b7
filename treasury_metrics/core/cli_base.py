"""Shared helpers for click commands."""

import asyncio
import functools
import logging

import click
from rich.console import Console

from .errors import ErrorKind, TreasuryMetricsError, status_code_for
from .logging import capture_exception

console = Console()
logger = logging.getLogger(__name__)

# Click exit codes must fit in a byte, so client errors and server errors
# are reported with distinct small codes and the status in the message.
EXIT_CODES = {
    ErrorKind.INVALID_DATE: 2,
    ErrorKind.UPSTREAM_DATA: 1,
    ErrorKind.CACHE: 1,
}


def async_command(f):
    """Decorator to make Click commands async-compatible."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def handle_errors(f):
    """Report pipeline errors with their status code and exit non-zero."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except TreasuryMetricsError as e:
            status = status_code_for(e)
            logger.error(f"{e.kind.value} error ({status}): {e.message}")
            if status >= 500:
                capture_exception(e, {"status_code": status})

            console.print(f"[red]Error ({status}): {e.message}[/red]")
            raise click.exceptions.Exit(EXIT_CODES[e.kind])
    return wrapper
