"""Tests for the subgraph client."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from treasury_metrics.data.api_client import (
    QueryMode,
    QueryResult,
    SubgraphClient,
    SubgraphClientConfig,
    build_block_query,
    build_range_query,
    parse_operation_name,
    ENTITIES,
)


def mock_response(payload, status=200):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    if status >= 400:
        response.raise_for_status = MagicMock(side_effect=aiohttp.ClientResponseError(
            request_info=MagicMock(), history=(), status=status))
    else:
        response.raise_for_status = MagicMock()

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def mock_session(*payloads):
    session = MagicMock()
    session.post = MagicMock(side_effect=[mock_response(payload) for payload in payloads])
    session.close = AsyncMock()
    return session


@pytest.fixture
def client_config():
    """Create a test client configuration."""
    return SubgraphClientConfig(
        endpoints={
            "Ethereum": "https://subgraph.test/ethereum",
            "Arbitrum": "https://subgraph.test/arbitrum",
        },
        timeout=5,
        max_retries=2,
        retry_delay=0.01,
    )


class TestOperationNames:
    """Test operation name parsing."""

    @pytest.mark.parametrize("name,collection,mode", [
        ("tokenRecords", "tokenRecords", QueryMode.RANGE),
        ("tokenSuppliesLatest", "tokenSupplies", QueryMode.LATEST),
        ("protocolMetricsEarliest", "protocolMetrics", QueryMode.EARLIEST),
        ("tokenRecordsAtBlock", "tokenRecords", QueryMode.AT_BLOCK),
    ])
    def test_parse(self, name, collection, mode):
        entity, parsed_mode = parse_operation_name(name)

        assert entity.collection == collection
        assert parsed_mode == mode

    def test_unknown_operation(self):
        with pytest.raises(ValueError):
            parse_operation_name("tokenPrices")

    def test_queries_select_wire_fields(self):
        query = build_range_query(ENTITIES["tokenSupplies"])

        assert "supplyBalance" in query
        assert "date_gte: $startDate" in query
        assert "date_lt: $endDate" in query
        assert "first: 1000" in query
        assert "blockchain" not in query

        assert "where: {block: $block}" in build_block_query(ENTITIES["protocolMetrics"])
        assert "currentAPY" in build_block_query(ENTITIES["protocolMetrics"])


class TestSubgraphClient:
    """Test SubgraphClient."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, client_config):
        """Test session start and stop."""
        async with SubgraphClient(client_config) as client:
            assert client._session is not None

        assert client._session is None

    @pytest.mark.asyncio
    async def test_range_query_per_chain(self, client_config):
        """Test that each chain's records are returned under its name."""
        client = SubgraphClient(client_config)
        client._session = mock_session(
            {"data": {"records": [{"id": "a", "date": "2023-01-01"}]}},
            {"data": {"records": [{"id": "b", "date": "2023-01-01"}]}},
        )

        result = await client.query("tokenRecords", {"startDate": "2023-01-01", "endDate": "2023-01-11"})

        assert result.is_success
        assert result.data == {
            "Arbitrum": [{"id": "a", "date": "2023-01-01"}],
            "Ethereum": [{"id": "b", "date": "2023-01-01"}],
        }

        _, kwargs = client._session.post.call_args
        assert kwargs["json"]["variables"] == {"startDate": "2023-01-01", "endDate": "2023-01-11"}

    @pytest.mark.asyncio
    async def test_protocol_metrics_only_query_ethereum(self, client_config):
        client = SubgraphClient(client_config)
        client._session = mock_session({"data": {"records": []}})

        result = await client.query("protocolMetrics", {"startDate": "2023-01-01", "endDate": "2023-01-11"})

        assert result.data == {"Ethereum": []}
        assert client._session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_latest_query_looks_up_block_first(self, client_config):
        """Test that latest queries fetch the newest block, then the records at it."""
        client_config.endpoints = {"Ethereum": "https://subgraph.test/ethereum"}
        client = SubgraphClient(client_config)
        client._session = mock_session(
            {"data": {"records": [{"block": "17000000"}]}},
            {"data": {"records": [{"id": "a", "block": "17000000"}]}},
        )

        result = await client.query("tokenRecordsLatest")

        assert result.data == {"Ethereum": [{"id": "a", "block": "17000000"}]}
        second_call = client._session.post.call_args_list[1]
        assert second_call.kwargs["json"]["variables"] == {"block": "17000000"}

    @pytest.mark.asyncio
    async def test_at_block_requires_block(self, client_config):
        client = SubgraphClient(client_config)
        client._session = mock_session({"data": {"records": []}})

        result = await client.query("tokenSuppliesAtBlock", {"ethereumBlock": 17000000})

        # Arbitrum is queried first and has no block
        assert not result.is_success
        assert "arbitrumBlock" in result.error

    @pytest.mark.asyncio
    async def test_graphql_errors_fail_whole_query(self, client_config):
        """Test that an error on one chain yields an error and no partial data."""
        client = SubgraphClient(client_config)
        client._session = mock_session(
            {"data": {"records": []}},
            {"errors": [{"message": "indexing error"}]},
        )

        result = await client.query("tokenRecords", {"startDate": "2023-01-01", "endDate": "2023-01-11"})

        assert result.data is None
        assert "indexing error" in result.error

    @pytest.mark.asyncio
    async def test_unknown_operation_is_an_error_result(self, client_config):
        result = await SubgraphClient(client_config).query("nope")

        assert result == QueryResult(error="Unknown operation: nope")

    @pytest.mark.asyncio
    async def test_retries_then_fails(self, client_config):
        """Test exponential backoff retries before giving up."""
        client = SubgraphClient(client_config)
        session = MagicMock()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        client._session = session

        with patch("treasury_metrics.data.api_client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await client.query("tokenRecords", {"startDate": "2023-01-01", "endDate": "2023-01-11"})

        assert not result.is_success
        assert session.post.call_count == client_config.max_retries + 1
        assert sleep.await_count == client_config.max_retries

    @pytest.mark.asyncio
    async def test_health_check(self, client_config):
        client = SubgraphClient(client_config)
        client._session = mock_session(
            {"data": {"_meta": {"block": {"number": 1}}}},
            {"data": {"_meta": {"block": {"number": 2}}}},
        )

        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_without_endpoints(self):
        assert await SubgraphClient(SubgraphClientConfig()).health_check() is False

    def test_config_from_settings(self, settings):
        config = SubgraphClientConfig.from_settings(settings)

        assert config.endpoints == settings.subgraph_endpoints
        assert config.max_retries == settings.subgraph_max_retries
