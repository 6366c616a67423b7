"""GraphQL client for the per-chain treasury subgraphs."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Type
import logging

import aiohttp

from .models import Chain, ProtocolMetric, TokenRecord, TokenSupply

logger = logging.getLogger(__name__)

# Maximum number of entities the hosted subgraphs return per query
PAGE_SIZE = 1000


class QueryMode(Enum):
    """How the records of an operation are selected."""
    RANGE = "range"
    LATEST = "Latest"
    EARLIEST = "Earliest"
    AT_BLOCK = "AtBlock"


@dataclass(frozen=True)
class EntityQuery:
    """An upstream entity and the chains that index it."""

    collection: str
    record_type: Type
    chains: Tuple[str, ...]


ENTITIES: Dict[str, EntityQuery] = {
    "tokenRecords": EntityQuery("tokenRecords", TokenRecord, tuple(chain.value for chain in Chain)),
    "tokenSupplies": EntityQuery("tokenSupplies", TokenSupply, tuple(chain.value for chain in Chain)),
    # Protocol metrics are only indexed on Ethereum
    "protocolMetrics": EntityQuery("protocolMetrics", ProtocolMetric, (Chain.ETHEREUM.value,)),
}


def parse_operation_name(operation_name: str) -> Tuple[EntityQuery, QueryMode]:
    """Split an operation name such as ``tokenSuppliesAtBlock`` into entity and mode.

    Raises:
        ValueError: If the operation is unknown
    """
    for name, entity in ENTITIES.items():
        if operation_name == name:
            return entity, QueryMode.RANGE

        for mode in (QueryMode.LATEST, QueryMode.EARLIEST, QueryMode.AT_BLOCK):
            if operation_name == f"{name}{mode.value}":
                return entity, mode

    raise ValueError(f"Unknown operation: {operation_name}")


def block_input_key(chain: str) -> str:
    """Input key carrying the block number for a chain, e.g. ``ethereumBlock``."""
    return f"{chain.lower()}Block"


@dataclass
class QueryResult:
    """Result of an upstream query.

    ``data`` maps each chain to its raw records. It is None when ``error`` is set.
    """

    data: Optional[Dict[str, List[Dict[str, Any]]]] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.error is None and self.data is not None


class UpstreamQuery(Protocol):
    """Anything able to answer named upstream queries."""

    async def query(self, operation_name: str, input: Optional[Dict[str, Any]] = None) -> QueryResult:
        ...

    async def health_check(self) -> bool:
        ...


@dataclass
class SubgraphClientConfig:
    """Configuration for the subgraph client."""

    endpoints: Dict[str, str] = field(default_factory=dict)
    timeout: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_factor: float = 1.5
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> 'SubgraphClientConfig':
        return cls(
            endpoints=dict(settings.subgraph_endpoints),
            timeout=settings.subgraph_timeout,
            max_retries=settings.subgraph_max_retries,
            retry_delay=settings.subgraph_retry_delay,
        )


class SubgraphRequestError(Exception):
    """A subgraph request failed or returned GraphQL errors."""
    pass


def build_range_query(entity: EntityQuery) -> str:
    selection = " ".join(entity.record_type.wire_fields(exclude=("blockchain",)))
    return (
        "query ($startDate: String!, $endDate: String!) { "
        f"records: {entity.collection}(first: {PAGE_SIZE}, orderBy: date, orderDirection: desc, "
        "where: {date_gte: $startDate, date_lt: $endDate}) "
        f"{{ {selection} }} }}"
    )


def build_block_query(entity: EntityQuery) -> str:
    selection = " ".join(entity.record_type.wire_fields(exclude=("blockchain",)))
    return (
        "query ($block: BigInt!) { "
        f"records: {entity.collection}(first: {PAGE_SIZE}, orderBy: date, orderDirection: desc, "
        "where: {block: $block}) "
        f"{{ {selection} }} }}"
    )


def build_edge_block_query(entity: EntityQuery, mode: QueryMode) -> str:
    direction = "desc" if mode == QueryMode.LATEST else "asc"
    return (
        "query { "
        f"records: {entity.collection}(first: 1, orderBy: block, orderDirection: {direction}) "
        "{ block } }"
    )


class SubgraphClient:
    """Queries every configured chain subgraph and merges the results by chain.

    Supported operations are ``tokenRecords``, ``tokenSupplies`` and
    ``protocolMetrics`` (date range, with ``startDate`` and ``endDate``),
    each with ``Latest``, ``Earliest`` and ``AtBlock`` variants.

    Example:
        >>> async with SubgraphClient(config) as client:
        ...     result = await client.query("tokenRecordsLatest")
    """

    def __init__(self, config: SubgraphClientConfig):
        """Initialize subgraph client.

        Args:
            config: Endpoints and request behaviour
        """
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def start(self):
        """Start the HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self.config.headers
            )
            logger.info(f"Started subgraph client for {len(self.config.endpoints)} endpoints")

    async def stop(self):
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info("Stopped subgraph client")

    async def query(self, operation_name: str, input: Optional[Dict[str, Any]] = None) -> QueryResult:
        """Run a named operation against every chain that indexes its entity.

        Args:
            operation_name: Operation name, e.g. ``tokenRecords`` or ``protocolMetricsLatest``
            input: Operation variables (``startDate``/``endDate`` or per-chain blocks)

        Returns:
            QueryResult mapping chain name to raw records. If any chain fails,
            the result carries an error and no data.
        """
        try:
            entity, mode = parse_operation_name(operation_name)
        except ValueError as e:
            return QueryResult(error=str(e))

        input = input or {}
        data: Dict[str, List[Dict[str, Any]]] = {}

        for chain in entity.chains:
            url = self.config.endpoints.get(chain)
            if not url:
                logger.debug(f"No endpoint configured for {chain}, skipping {operation_name}")
                continue

            try:
                data[chain] = await self._query_chain(url, chain, entity, mode, input)
            except SubgraphRequestError as e:
                logger.error(f"{operation_name} failed for {chain}: {e}")
                return QueryResult(error=f"{chain}: {e}")

        return QueryResult(data=data)

    async def _query_chain(self, url: str, chain: str, entity: EntityQuery,
                           mode: QueryMode, input: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if mode == QueryMode.RANGE:
            variables = {"startDate": input.get("startDate"), "endDate": input.get("endDate")}
            if not variables["startDate"] or not variables["endDate"]:
                raise SubgraphRequestError("startDate and endDate are required")
            return await self._fetch_records(url, build_range_query(entity), variables)

        if mode == QueryMode.AT_BLOCK:
            block = input.get(block_input_key(chain))
            if block is None:
                raise SubgraphRequestError(f"{block_input_key(chain)} is required")
        else:
            edge = await self._fetch_records(url, build_edge_block_query(entity, mode), {})
            if not edge:
                return []
            block = edge[0]["block"]

        return await self._fetch_records(url, build_block_query(entity), {"block": str(block)})

    async def _fetch_records(self, url: str, query: str, variables: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = await self._make_request(url, {"query": query, "variables": variables})

        if payload.get("errors"):
            messages = "; ".join(str(error.get("message", error)) for error in payload["errors"])
            raise SubgraphRequestError(messages)

        records = (payload.get("data") or {}).get("records")
        if records is None:
            raise SubgraphRequestError("Response contained no records")

        return records

    async def _make_request(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a GraphQL request with retries and exponential backoff.

        Args:
            url: Subgraph endpoint
            body: GraphQL query and variables

        Returns:
            Decoded JSON response

        Raises:
            SubgraphRequestError: If every attempt fails
        """
        if not self._session:
            await self.start()

        start_time = time.time()
        last_exception = None

        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._session.post(url, json=body) as response:
                    response.raise_for_status()
                    data = await response.json()

                    logger.debug(f"POST {url} -> {response.status} ({time.time() - start_time:.3f}s)")
                    return data

            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_exception = e
                logger.warning(f"Request attempt {attempt + 1} to {url} failed: {e}")

                if attempt < self.config.max_retries:
                    delay = self.config.retry_delay * (self.config.backoff_factor ** attempt)
                    await asyncio.sleep(delay)

        raise SubgraphRequestError(
            f"Request failed after {self.config.max_retries + 1} attempts: {last_exception}"
        )

    async def health_check(self) -> bool:
        """Check that every configured endpoint answers a trivial query.

        Returns:
            True if all endpoints are healthy, False otherwise
        """
        if not self.config.endpoints:
            return False

        for chain, url in self.config.endpoints.items():
            try:
                payload = await self._make_request(url, {"query": "{ _meta { block { number } } }"})
            except SubgraphRequestError as e:
                logger.error(f"Health check failed for {chain}: {e}")
                return False

            if payload.get("errors"):
                logger.error(f"Health check failed for {chain}: {payload['errors']}")
                return False

        return True
