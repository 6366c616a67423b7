"""
Core components for treasury metrics.

Configuration, logging, the error taxonomy and date-window pagination.
"""

from treasury_metrics.core.config import ConfigManager, ConfigError, Settings, load_settings
from treasury_metrics.core.dates import DateWindow, DateWindowPaginator
from treasury_metrics.core.errors import (
    CacheError,
    ErrorKind,
    InvalidDateError,
    TreasuryMetricsError,
    UpstreamDataError,
)

__all__ = [
    "ConfigManager",
    "ConfigError",
    "Settings",
    "load_settings",
    "DateWindow",
    "DateWindowPaginator",
    "CacheError",
    "ErrorKind",
    "InvalidDateError",
    "TreasuryMetricsError",
    "UpstreamDataError",
]
