"""Data layer for treasury metrics.

This module provides the record models, normalisation and classification
of subgraph records, the metric composer, the subgraph client and the
result cache.
"""

from .models import (
    Chain,
    Metric,
    ProtocolMetric,
    RecordContainer,
    SupplyType,
    TokenRecord,
    TokenSupply,
)

from .cache import CacheLayer, CacheResult, get_cache_key
from .api_client import QueryResult, SubgraphClient, SubgraphClientConfig
from .service import MetricsService

__all__ = [
    'Chain',
    'Metric',
    'ProtocolMetric',
    'RecordContainer',
    'SupplyType',
    'TokenRecord',
    'TokenSupply',
    'CacheLayer',
    'CacheResult',
    'get_cache_key',
    'QueryResult',
    'SubgraphClient',
    'SubgraphClientConfig',
    'MetricsService',
]
