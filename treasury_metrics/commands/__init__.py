"""
Command modules for the Treasury Metrics CLI.

Each module defines a click group that is registered on the main command.
"""

from treasury_metrics.commands.cache import cache_group
from treasury_metrics.commands.metrics import metrics_group
from treasury_metrics.commands.records import records_group

__all__ = [
    "cache_group",
    "metrics_group",
    "records_group",
]
