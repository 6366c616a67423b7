"""
Treasury Metrics - treasury and supply metrics aggregated from per-chain subgraphs.

This package fetches token records, token supplies and protocol metrics from
each chain's treasury subgraph, normalises them and composes daily metrics
such as circulating supply, market value and liquid backing.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from treasury_metrics.core.config import ConfigManager, Settings
from treasury_metrics.data.models import Metric
from treasury_metrics.data.service import MetricsService

__all__ = [
    "__version__",
    "__license__",
    "ConfigManager",
    "Settings",
    "Metric",
    "MetricsService",
]
