"""Aggregation service for treasury records and metrics."""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type
import logging

from ..core.config import Settings
from ..core.dates import DateWindowPaginator, get_iso8601_date_string
from ..core.errors import CacheError, UpstreamDataError
from ..core.logging import operation_context
from .api_client import QueryResult, UpstreamQuery, block_input_key
from .cache import CacheLayer, get_cache_key
from .completeness import CompletenessFilter
from .metrics import MetricComposer, compose_by_date
from .models import CHAINS, Metric, ProtocolMetric, RecordContainer, TokenRecord, TokenSupply
from .normalizer import RecordNormalizer, get_block_by_chain, group_by_date, sort_records_descending
from .supply import SupplyClassifier, TokenIdentityConfig

logger = logging.getLogger(__name__)

# Raised by from_dict on entries written with another schema
_DECODE_ERRORS = (TypeError, KeyError, ValueError, AttributeError)


def _decode_cached(cache_key: str, value: Any, decode: Callable[[Any], Any]) -> Optional[Any]:
    """Decode a cached value into models, or return None to force a recompute."""
    try:
        return decode(value)
    except _DECODE_ERRORS as e:
        error = CacheError(f"Failed to decode cached value for {cache_key}: {e}")
        logger.error(error.message)
        return None


def _block_input(blocks: Dict[str, int]) -> Dict[str, int]:
    return {block_input_key(chain): int(block) for chain, block in blocks.items()}


class MetricsService:
    """Service for aggregating treasury data across chain subgraphs.

    Results of paginated operations are cached as lists. Cache failures are
    logged and the result is recomputed from the upstream.
    """

    def __init__(self, upstream: UpstreamQuery, cache: Optional[CacheLayer] = None,
                 settings: Optional[Settings] = None,
                 identities: Optional[TokenIdentityConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize metrics service.

        Args:
            upstream: Upstream query capability, e.g. a SubgraphClient
            cache: Cache layer; caching is skipped when None
            settings: Loaded settings (defaults apply when None)
            identities: Token identities; derived from settings when None
            clock: Returns the current time, for pagination
        """
        self.upstream = upstream
        self.cache = cache
        self.settings = settings or Settings()
        self.identities = identities or TokenIdentityConfig.from_settings(self.settings)
        self.clock = clock

        self.normalizer = RecordNormalizer(tag_blockchain=True, latest_block=True)
        self.completeness = CompletenessFilter(self.settings.reference_chains)
        self.composer = MetricComposer(SupplyClassifier(self.identities))

    async def _query(self, operation_name: str, input: Optional[Dict[str, Any]] = None) -> QueryResult:
        result = await self.upstream.query(operation_name, input)

        if result.error or result.data is None:
            raise UpstreamDataError(f"{operation_name}: No data returned. Error: {result.error}")

        return result

    async def _cached_list(self, name: str, input: Dict[str, Any], ignore_cache: bool,
                           record_type: Type, compute: Callable[[], Awaitable[List[Any]]]) -> List[Any]:
        """Serve a list from the cache, or compute it and write it back."""
        cache_key = get_cache_key(name, input)

        if self.cache and not ignore_cache:
            cached = await self.cache.get_list(cache_key)
            if cached.hit:
                records = _decode_cached(
                    cache_key, cached.value, lambda items: [record_type.from_dict(item) for item in items])
                if records is not None:
                    logger.info(f"{name}: Returning {len(records)} cached records")
                    return records

        logger.info(f"{name}: No cached data found, querying subgraphs")
        records = await compute()

        if self.cache:
            # Failures are already logged by the cache layer
            await self.cache.set_list(cache_key, [record.to_dict() for record in records])

        logger.info(f"{name}: Returning {len(records)} records")
        return records

    def _paginator(self, start_date: str, date_offset: Optional[int]) -> DateWindowPaginator:
        return DateWindowPaginator(
            start_date,
            offset_days=date_offset or self.settings.offset_days,
            clock=self.clock,
        )

    async def _fetch_paginated(self, operation_name: str, record_type: Type,
                               paginator: DateWindowPaginator,
                               cross_chain_data_complete: bool = False) -> List[Any]:
        """Fetch all windows sequentially and return the records, newest first.

        When ``cross_chain_data_complete`` is set, windows are trimmed by the
        completeness filter until one yields records.
        """
        combined = []
        completeness_pending = cross_chain_data_complete

        for window in paginator:
            logger.info(f"{operation_name}: Querying for {window.start_date} to {window.end_date}")
            result = await self._query(operation_name, {
                "startDate": window.start_date,
                "endDate": window.end_date,
            })

            records_by_chain = self.normalizer.normalize_by_chain(result.data, record_type)

            if completeness_pending:
                records_by_chain = self.completeness.filter(records_by_chain)
                if not any(records_by_chain.values()):
                    logger.info(f"{operation_name}: Cross-chain data is incomplete, skipping window")
                    continue
                completeness_pending = False

            for records in records_by_chain.values():
                combined.extend(records)

        return sort_records_descending(combined)

    def _paginated_input(self, start_date: str, date_offset: Optional[int],
                         **options: Any) -> Dict[str, Any]:
        input = {"startDate": start_date}
        if date_offset:
            input["dateOffset"] = date_offset
        input.update({key: value for key, value in options.items() if value})
        return input

    async def paginated_token_records(self, start_date: str, date_offset: Optional[int] = None,
                                      cross_chain_data_complete: bool = False,
                                      ignore_cache: bool = False) -> List[TokenRecord]:
        """Get token records from ``start_date`` until today, newest first.

        Args:
            start_date: Earliest date, ``YYYY-MM-DD``
            date_offset: Days per upstream query; reduce if data is missing
            cross_chain_data_complete: Only return days every reference chain has reported
            ignore_cache: Skip the cache read (the result is still written)

        Returns:
            List of TokenRecord instances

        Raises:
            InvalidDateError: If ``start_date`` does not parse or ``date_offset`` is negative
            UpstreamDataError: If the upstream returns no data
        """
        name = "paginated/tokenRecords"
        with operation_context(name):
            paginator = self._paginator(start_date, date_offset)
            start = get_iso8601_date_string(paginator.final_start_date)
            input = self._paginated_input(start, date_offset, crossChainDataComplete=cross_chain_data_complete)

            return await self._cached_list(
                name, input, ignore_cache, TokenRecord,
                lambda: self._fetch_paginated("tokenRecords", TokenRecord, paginator, cross_chain_data_complete),
            )

    async def paginated_token_supplies(self, start_date: str, date_offset: Optional[int] = None,
                                       cross_chain_data_complete: bool = False,
                                       ignore_cache: bool = False) -> List[TokenSupply]:
        """Get token supply records from ``start_date`` until today, newest first.

        Takes the same arguments as ``paginated_token_records``.
        """
        name = "paginated/tokenSupplies"
        with operation_context(name):
            paginator = self._paginator(start_date, date_offset)
            start = get_iso8601_date_string(paginator.final_start_date)
            input = self._paginated_input(start, date_offset, crossChainDataComplete=cross_chain_data_complete)

            return await self._cached_list(
                name, input, ignore_cache, TokenSupply,
                lambda: self._fetch_paginated("tokenSupplies", TokenSupply, paginator, cross_chain_data_complete),
            )

    async def paginated_protocol_metrics(self, start_date: str, date_offset: Optional[int] = None,
                                         ignore_cache: bool = False) -> List[ProtocolMetric]:
        """Get protocol metrics from ``start_date`` until today, newest first."""
        name = "paginated/protocolMetrics"
        with operation_context(name):
            paginator = self._paginator(start_date, date_offset)
            start = get_iso8601_date_string(paginator.final_start_date)
            input = self._paginated_input(start, date_offset)

            return await self._cached_list(
                name, input, ignore_cache, ProtocolMetric,
                lambda: self._fetch_paginated("protocolMetrics", ProtocolMetric, paginator),
            )

    async def paginated_metrics(self, start_date: str, date_offset: Optional[int] = None,
                                cross_chain_data_complete: bool = False,
                                include_records: bool = False,
                                ignore_cache: bool = False) -> List[Metric]:
        """Get one Metric per day from ``start_date`` until today, newest first.

        Days for which any of token records, token supplies or protocol
        metrics are missing are skipped.

        Args:
            start_date: Earliest date, ``YYYY-MM-DD``
            date_offset: Days per upstream query
            cross_chain_data_complete: Only return days every reference chain has reported
            include_records: Attach the records behind each value
            ignore_cache: Skip cache reads (results are still written)

        Returns:
            List of Metric instances

        Raises:
            InvalidDateError: If ``start_date`` does not parse
            UpstreamDataError: If the upstream returns no data, or a supply
                record cannot be classified
        """
        name = "paginated/metrics"
        with operation_context(name):
            paginator = self._paginator(start_date, date_offset)
            start = get_iso8601_date_string(paginator.final_start_date)
            input = self._paginated_input(
                start, date_offset,
                crossChainDataComplete=cross_chain_data_complete,
                includeRecords=include_records,
            )

            async def compute() -> List[Metric]:
                token_records = await self.paginated_token_records(
                    start, date_offset, cross_chain_data_complete, ignore_cache)
                token_supplies = await self.paginated_token_supplies(
                    start, date_offset, cross_chain_data_complete, ignore_cache)
                protocol_metrics = await self.paginated_protocol_metrics(
                    start, date_offset, ignore_cache)

                records_by_date = group_by_date(token_records)
                supplies_by_date = group_by_date(token_supplies)
                protocol_metrics_by_date = group_by_date(protocol_metrics)

                containers: Dict[str, RecordContainer] = {}
                for date in sorted(set(records_by_date) | set(supplies_by_date) | set(protocol_metrics_by_date),
                                   reverse=True):
                    containers[date] = RecordContainer(
                        token_records=records_by_date.get(date, []),
                        token_supplies=supplies_by_date.get(date, []),
                        protocol_metrics=protocol_metrics_by_date.get(date, []),
                    )

                return compose_by_date(self.composer, containers, include_records=include_records)

            return await self._cached_list(name, input, ignore_cache, Metric, compute)

    async def _records(self, name: str, operation_name: str, record_type: Type,
                       input: Optional[Dict[str, Any]] = None) -> List[Any]:
        with operation_context(name):
            result = await self._query(operation_name, input)
            records = sort_records_descending(self.normalizer.flatten(result.data, record_type))
            logger.info(f"{name}: Returning {len(records)} records")
            return records

    async def latest_token_records(self) -> List[TokenRecord]:
        """Get the token records at the latest block of each chain."""
        return await self._records("latest/tokenRecords", "tokenRecordsLatest", TokenRecord)

    async def earliest_token_records(self) -> List[TokenRecord]:
        """Get the token records at the earliest block of each chain."""
        return await self._records("earliest/tokenRecords", "tokenRecordsEarliest", TokenRecord)

    async def latest_token_supplies(self) -> List[TokenSupply]:
        return await self._records("latest/tokenSupplies", "tokenSuppliesLatest", TokenSupply)

    async def earliest_token_supplies(self) -> List[TokenSupply]:
        return await self._records("earliest/tokenSupplies", "tokenSuppliesEarliest", TokenSupply)

    async def latest_protocol_metrics(self) -> List[ProtocolMetric]:
        return await self._records("latest/protocolMetrics", "protocolMetricsLatest", ProtocolMetric)

    async def earliest_protocol_metrics(self) -> List[ProtocolMetric]:
        return await self._records("earliest/protocolMetrics", "protocolMetricsEarliest", ProtocolMetric)

    async def token_records_at_block(self, blocks: Dict[str, int]) -> List[TokenRecord]:
        """Get the token records at the given block of each chain.

        Args:
            blocks: Block number per chain name, for every chain with an endpoint
        """
        return await self._records("atBlock/tokenRecords", "tokenRecordsAtBlock", TokenRecord,
                                   _block_input(blocks))

    async def token_supplies_at_block(self, blocks: Dict[str, int]) -> List[TokenSupply]:
        return await self._records("atBlock/tokenSupplies", "tokenSuppliesAtBlock", TokenSupply,
                                   _block_input(blocks))

    async def protocol_metrics_at_block(self, blocks: Dict[str, int]) -> List[ProtocolMetric]:
        return await self._records("atBlock/protocolMetrics", "protocolMetricsAtBlock", ProtocolMetric,
                                   _block_input(blocks))

    async def metric_at_block(self, blocks: Dict[str, int], include_records: bool = False,
                              ignore_cache: bool = False) -> Metric:
        """Compose the Metric for a set of per-chain blocks.

        Args:
            blocks: Block number per chain name
            include_records: Attach the records behind each value
            ignore_cache: Skip the cache read

        Raises:
            UpstreamDataError: If a record type is missing at these blocks
        """
        name = "atBlock/metrics"
        with operation_context(name):
            cache_key = get_cache_key(name, dict(_block_input(blocks), includeRecords=include_records))

            if self.cache and not ignore_cache:
                cached = await self.cache.get(cache_key)
                if cached.hit:
                    metric = _decode_cached(cache_key, cached.value, Metric.from_dict)
                    if metric is not None:
                        logger.info(f"{name}: Returning cached metric")
                        return metric

            token_records = await self.token_records_at_block(blocks)
            token_supplies = await self.token_supplies_at_block(blocks)
            protocol_metrics = await self.protocol_metrics_at_block(blocks)

            try:
                metric = self.composer.compose(token_records, token_supplies, protocol_metrics,
                                               include_records=include_records)
            except UpstreamDataError as e:
                raise UpstreamDataError(f"{name}: Could not generate metric for blocks {blocks}: {e.message}")

            if self.cache:
                await self.cache.set(cache_key, metric.to_dict())

            return metric

    async def _metric_at_edge(self, records: List[TokenRecord], edge: str) -> Metric:
        blocks = {}
        for chain in CHAINS:
            block = get_block_by_chain(records, chain)
            if block is not None:
                blocks[chain] = block

        if not blocks:
            raise UpstreamDataError(f"{edge}/metrics: No token records returned")

        logger.info(f"{edge}/metrics: Using blocks {blocks}")
        return await self.metric_at_block(blocks)

    async def latest_metric(self) -> Metric:
        """Compose the Metric at the latest indexed block of each chain."""
        with operation_context("latest/metrics"):
            return await self._metric_at_edge(await self.latest_token_records(), "latest")

    async def earliest_metric(self) -> Metric:
        """Compose the Metric at the earliest indexed block of each chain."""
        with operation_context("earliest/metrics"):
            return await self._metric_at_edge(await self.earliest_token_records(), "earliest")

    async def health_check(self) -> Dict[str, bool]:
        """Check the upstream and, when configured, the cache.

        Returns:
            Health status per component
        """
        status = {"upstream": await self.upstream.health_check()}
        if self.cache:
            status["cache"] = await self.cache.health_check()

        logger.info(f"Health check: {status}")
        return status
