"""
Pytest configuration and shared fixtures for the test suite.

This module provides an in-memory upstream, a fake Redis store, settings
with the real token addresses and a small multi-chain data set.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import fakeredis
import pytest
from click.testing import CliRunner

from treasury_metrics.core.config import Settings
from treasury_metrics.data.api_client import QueryMode, QueryResult, block_input_key, parse_operation_name
from treasury_metrics.data.cache import CacheLayer
from treasury_metrics.data.service import MetricsService

OHM_ADDRESS = "0x64aa3364f17a4d01c6f1751fd97c2bd3d7e7f1d5"
GOHM_ADDRESS = "0x0ab87046fbb341d058f17cbc4c1133f25a20a52f"
GOHM_ARBITRUM_ADDRESS = "0x8d9ba570d6cb60c7e3e0f31343efe75ab8e65fb1"

# Tomorrow is 2023-06-11 at this time
NOW = datetime(2023, 6, 10, 12, 30, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


class FakeUpstream:
    """In-memory upstream answering the same operations as SubgraphClient."""

    def __init__(self, records: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None,
                 error: Optional[str] = None):
        self.records = records or {}
        self.error = error
        self.calls = []

    async def query(self, operation_name: str, input: Optional[Dict[str, Any]] = None) -> QueryResult:
        entity, mode = parse_operation_name(operation_name)
        input = input or {}
        self.calls.append((operation_name, dict(input)))

        if self.error:
            return QueryResult(error=self.error)

        data = {}
        for chain, rows in self.records.get(entity.collection, {}).items():
            if mode == QueryMode.RANGE:
                rows = [row for row in rows if input["startDate"] <= row["date"] < input["endDate"]]
            elif mode in (QueryMode.LATEST, QueryMode.EARLIEST):
                if rows:
                    pick = max if mode == QueryMode.LATEST else min
                    edge = pick(int(row["block"]) for row in rows)
                    rows = [row for row in rows if int(row["block"]) == edge]
            else:
                block = input.get(block_input_key(chain))
                rows = [row for row in rows if block is not None and int(row["block"]) == int(block)]

            data[chain] = rows

        return QueryResult(data=data)

    async def health_check(self) -> bool:
        return not self.error


def token_record(date: str, block: int, token: str = "DAI", category: str = "Stable",
                 value: float = 0.0, value_excluding_ohm: Optional[float] = None,
                 is_liquid: bool = True, **extra) -> Dict[str, Any]:
    """Build a raw token record as returned by the subgraph."""
    record = {
        "id": f"{date}/{token}/{block}",
        "date": date,
        "block": str(block),
        "timestamp": str(block * 12),
        "source": "Treasury Wallet",
        "sourceAddress": "0x9a315bdf513367c0377fb36545857d12e85813ef",
        "token": token,
        "tokenAddress": "0x6b175474e89094c44da98b954eedeac495271d0f",
        "category": category,
        "isLiquid": is_liquid,
        "isBluechip": False,
        "balance": str(value),
        "multiplier": "1",
        "rate": "1",
        "value": str(value),
        "valueExcludingOhm": str(value if value_excluding_ohm is None else value_excluding_ohm),
    }
    record.update(extra)
    return record


def token_supply(date: str, block: int, supply_type: str, supply_balance: float,
                 token_address: str = OHM_ADDRESS, token: str = "OHM", **extra) -> Dict[str, Any]:
    """Build a raw token supply record as returned by the subgraph."""
    record = {
        "id": f"{date}/{supply_type}/{token}/{block}",
        "date": date,
        "block": str(block),
        "timestamp": str(block * 12),
        "token": token,
        "tokenAddress": token_address,
        "type": supply_type,
        "balance": str(abs(supply_balance)),
        "supplyBalance": str(supply_balance),
        "source": "",
        "sourceAddress": "",
        "pool": "",
        "poolAddress": "",
    }
    record.update(extra)
    return record


def protocol_metric(date: str, block: int, index: float = 5.0, ohm_price: float = 10.0) -> Dict[str, Any]:
    """Build a raw protocol metric as returned by the subgraph."""
    return {
        "id": f"{date}/{block}",
        "date": date,
        "block": str(block),
        "timestamp": str(block * 12),
        "currentIndex": str(index),
        "currentAPY": "12.5",
        "ohmPrice": str(ohm_price),
        "gOhmPrice": str(ohm_price * index),
        "ohmTotalSupply": "1000",
        "gOhmTotalSupply": "200",
        "sOhmCirculatingSupply": "800",
        "totalValueLocked": "8000",
        "nextDistributedOhm": "10",
        "nextEpochRebase": "0.3",
    }


def day_token_records(date: str, ethereum_block: int, arbitrum_block: int):
    """Market value 1800 and liquid backing 1350 across both chains."""
    return (
        [
            token_record(date, ethereum_block, "DAI", "Stable", 1000),
            token_record(date, ethereum_block, "OHM-DAI LP", "Protocol-Owned Liquidity", 500, 250),
            token_record(date, ethereum_block, "FXS", "Volatile", 200, is_liquid=False),
        ],
        [
            token_record(date, arbitrum_block, "USDC", "Stable", 100),
        ],
    )


def day_token_supplies(date: str, ethereum_block: int, arbitrum_block: int):
    """Total 1050, circulating 920, floating 870 and backed 850 at index 5."""
    return (
        [
            token_supply(date, ethereum_block, "Total Supply", 1000),
            token_supply(date, ethereum_block, "Treasury", -100),
            token_supply(date, ethereum_block, "Boosted Liquidity Vault", -30),
            token_supply(date, ethereum_block, "Liquidity", -50),
            token_supply(date, ethereum_block, "Lending", -20),
        ],
        [
            token_supply(date, arbitrum_block, "Total Supply", 10,
                         token_address=GOHM_ARBITRUM_ADDRESS, token="gOHM"),
        ],
    )


def build_dataset(dates: List[str]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
    """Build upstream records for each date, newest first as the subgraph orders them."""
    dataset = {
        "tokenRecords": {"Ethereum": [], "Arbitrum": []},
        "tokenSupplies": {"Ethereum": [], "Arbitrum": []},
        "protocolMetrics": {"Ethereum": []},
    }

    for offset, date in enumerate(sorted(dates, reverse=True)):
        ethereum_block = 17000000 - offset * 7200
        arbitrum_block = 90000000 - offset * 300000

        ethereum_records, arbitrum_records = day_token_records(date, ethereum_block, arbitrum_block)
        dataset["tokenRecords"]["Ethereum"].extend(ethereum_records)
        dataset["tokenRecords"]["Arbitrum"].extend(arbitrum_records)

        ethereum_supplies, arbitrum_supplies = day_token_supplies(date, ethereum_block, arbitrum_block)
        dataset["tokenSupplies"]["Ethereum"].extend(ethereum_supplies)
        dataset["tokenSupplies"]["Arbitrum"].extend(arbitrum_supplies)

        dataset["protocolMetrics"]["Ethereum"].append(protocol_metric(date, ethereum_block))

    return dataset


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings():
    """Settings with the real token addresses and no endpoints."""
    return Settings(
        subgraph_endpoints={
            "Arbitrum": "https://subgraph.test/arbitrum",
            "Ethereum": "https://subgraph.test/ethereum",
        },
        native_token_addresses=(OHM_ADDRESS,),
        wrapped_token_addresses=(GOHM_ADDRESS, GOHM_ARBITRUM_ADDRESS),
        cache_ttl=60,
    )


@pytest.fixture
def dataset():
    """Three days of records on Ethereum and Arbitrum."""
    return build_dataset(["2023-06-08", "2023-06-09", "2023-06-10"])


@pytest.fixture
def upstream(dataset):
    """In-memory upstream serving the sample data set."""
    return FakeUpstream(dataset)


@pytest.fixture
def redis_client():
    """Fake Redis client that keeps data in memory."""
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def cache_layer(redis_client):
    """Cache layer backed by the fake Redis client."""
    return CacheLayer(redis_client, default_ttl=60, chunk_size=1000)


@pytest.fixture
def service(upstream, cache_layer, settings):
    """Metrics service over the fake upstream and cache, with a fixed clock."""
    return MetricsService(upstream, cache_layer, settings, clock=fixed_clock)
