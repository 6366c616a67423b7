"""Data models for treasury subgraph records and derived metrics."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import math


class Chain(Enum):
    """Blockchains with a treasury subgraph."""
    ARBITRUM = "Arbitrum"
    ETHEREUM = "Ethereum"
    FANTOM = "Fantom"
    POLYGON = "Polygon"


CHAINS: List[str] = [chain.value for chain in Chain]


class TokenCategory(Enum):
    """Categories of treasury assets."""
    STABLE = "Stable"
    VOLATILE = "Volatile"
    POL = "Protocol-Owned Liquidity"


TREASURY_CATEGORIES = frozenset(category.value for category in TokenCategory)


class SupplyType(Enum):
    """Closed enumeration of token supply types, keyed by upstream value."""
    BONDS_DEPOSITS = "OHM Bonds (Burnable Deposits)"
    BONDS_PREMINTED = "OHM Bonds (Pre-minted)"
    BONDS_VESTING_DEPOSITS = "OHM Bonds (Vesting Deposits)"
    BONDS_VESTING_TOKENS = "OHM Bonds (Vesting Tokens)"
    BOOSTED_LIQUIDITY_VAULT = "Boosted Liquidity Vault"
    LENDING = "Lending"
    LIQUIDITY = "Liquidity"
    MANUAL_OFFSET = "Manual Offset"
    TOTAL_SUPPLY = "Total Supply"
    TREASURY = "Treasury"

    @classmethod
    def parse(cls, value: str) -> Optional['SupplyType']:
        """Return the matching type, or None for values outside the enumeration."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def category_key(self) -> str:
        """Key used for this type in ``Metric.ohm_supply_categories``."""
        return _SUPPLY_CATEGORY_KEYS[self]


_SUPPLY_CATEGORY_KEYS = {
    SupplyType.BONDS_DEPOSITS: "BondsDeposits",
    SupplyType.BONDS_PREMINTED: "BondsPreminted",
    SupplyType.BONDS_VESTING_DEPOSITS: "BondsDepositsVesting",
    SupplyType.BONDS_VESTING_TOKENS: "BondsTokensVesting",
    SupplyType.BOOSTED_LIQUIDITY_VAULT: "BoostedLiquidityVault",
    SupplyType.LENDING: "LendingMarkets",
    SupplyType.LIQUIDITY: "ProtocolOwnedLiquidity",
    SupplyType.MANUAL_OFFSET: "MigrationOffset",
    SupplyType.TOTAL_SUPPLY: "TotalSupply",
    SupplyType.TREASURY: "Treasury",
}


def parse_number(value: Union[str, int, float, None]) -> float:
    """Convert a subgraph numeric value (often a string) into a float."""
    if value is None or value == "":
        return 0.0

    return float(value)


def parse_int(value: Union[str, int, float, None]) -> int:
    """Convert a block number or timestamp into an int."""
    if value is None or value == "":
        return 0

    if isinstance(value, int):
        return value

    return int(float(value))


def parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


_CONVERTERS = {int: parse_int, float: parse_number, bool: parse_bool}


class WireRecord:
    """Mixin translating between snake_case fields and the upstream camelCase keys."""

    @classmethod
    def _wire_name(cls, f) -> str:
        return f.metadata.get("wire", _camel(f.name))

    @classmethod
    def wire_fields(cls, exclude=()) -> List[str]:
        """Return the upstream key names of this record type."""
        return [cls._wire_name(f) for f in fields(cls) if f.name not in exclude]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create instance from an upstream or cached dictionary."""
        kwargs = {}
        for f in fields(cls):
            key = cls._wire_name(f)
            if key not in data:
                continue

            value = data[key]
            converter = _CONVERTERS.get(f.type)
            kwargs[f.name] = converter(value) if converter else value

        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary using upstream key names."""
        return {self._wire_name(f): getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class TokenRecord(WireRecord):
    """A balance-valued treasury holding for one chain and day."""

    id: str
    date: str
    block: int
    timestamp: int = 0
    source: str = ""
    source_address: str = ""
    token: str = ""
    token_address: str = ""
    category: str = ""
    is_liquid: bool = False
    is_bluechip: bool = False
    balance: float = 0.0
    multiplier: float = 0.0
    rate: float = 0.0
    value: float = 0.0
    value_excluding_ohm: float = 0.0
    blockchain: str = ""


@dataclass(frozen=True)
class TokenSupply(WireRecord):
    """A supply-affecting entry for one chain and day."""

    id: str
    date: str
    block: int
    timestamp: int = 0
    token: str = ""
    token_address: str = ""
    type: str = ""
    balance: float = 0.0
    supply_balance: float = 0.0
    source: str = ""
    source_address: str = ""
    pool: str = ""
    pool_address: str = ""
    blockchain: str = ""

    @property
    def supply_type(self) -> Optional[SupplyType]:
        return SupplyType.parse(self.type)


@dataclass(frozen=True)
class ProtocolMetric(WireRecord):
    """Protocol-level state for one chain and day."""

    id: str
    date: str
    block: int
    timestamp: int = 0
    current_index: float = 0.0
    current_apy: float = field(default=0.0, metadata={"wire": "currentAPY"})
    ohm_price: float = 0.0
    g_ohm_price: float = 0.0
    ohm_total_supply: float = 0.0
    g_ohm_total_supply: float = 0.0
    s_ohm_circulating_supply: float = 0.0
    total_value_locked: float = 0.0
    next_distributed_ohm: float = 0.0
    next_epoch_rebase: float = 0.0
    blockchain: str = ""


@dataclass
class RecordContainer:
    """Records for a single day, accumulated during one aggregation."""

    token_records: List[TokenRecord] = field(default_factory=list)
    token_supplies: List[TokenSupply] = field(default_factory=list)
    protocol_metrics: List[ProtocolMetric] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """True when all three record types are present."""
        return bool(self.token_records and self.token_supplies and self.protocol_metrics)


ChainValues = Dict[str, float]

_RECORD_FIELDS = {
    "ohm_total_supply_records": TokenSupply,
    "ohm_circulating_supply_records": TokenSupply,
    "ohm_floating_supply_records": TokenSupply,
    "ohm_backed_supply_records": TokenSupply,
    "treasury_market_value_records": TokenRecord,
    "treasury_liquid_backing_records": TokenRecord,
}


@dataclass(frozen=True)
class Metric:
    """Canonical treasury metrics for a single day, across all chains."""

    date: str
    blocks: Dict[str, int]
    timestamps: Dict[str, int]
    ohm_index: float
    ohm_apy: float
    ohm_total_supply: float
    ohm_total_supply_components: ChainValues
    ohm_circulating_supply: float
    ohm_circulating_supply_components: ChainValues
    ohm_floating_supply: float
    ohm_floating_supply_components: ChainValues
    ohm_backed_supply: float
    g_ohm_backed_supply: float
    ohm_backed_supply_components: ChainValues
    ohm_supply_categories: Dict[str, float]
    ohm_price: float
    g_ohm_price: float
    market_cap: float
    s_ohm_circulating_supply: float
    s_ohm_total_value_locked: float
    treasury_market_value: float
    treasury_market_value_components: ChainValues
    treasury_liquid_backing: float
    treasury_liquid_backing_components: ChainValues
    treasury_liquid_backing_per_ohm_floating: float
    treasury_liquid_backing_per_ohm_backed: float
    treasury_liquid_backing_per_g_ohm_backed: float
    ohm_total_supply_records: Optional[Dict[str, List[TokenSupply]]] = None
    ohm_circulating_supply_records: Optional[Dict[str, List[TokenSupply]]] = None
    ohm_floating_supply_records: Optional[Dict[str, List[TokenSupply]]] = None
    ohm_backed_supply_records: Optional[Dict[str, List[TokenSupply]]] = None
    treasury_market_value_records: Optional[Dict[str, List[TokenRecord]]] = None
    treasury_liquid_backing_records: Optional[Dict[str, List[TokenRecord]]] = None

    @property
    def has_records(self) -> bool:
        return self.ohm_total_supply_records is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary with camelCase keys.

        Record fields are omitted entirely when the metric was built
        without records.
        """
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _RECORD_FIELDS:
                if value is None:
                    continue
                value = {chain: [record.to_dict() for record in records]
                         for chain, records in value.items()}
            elif isinstance(value, dict):
                value = dict(value)

            result[_camel(f.name)] = value

        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Metric':
        """Create instance from a dictionary produced by ``to_dict``."""
        kwargs = {}
        for f in fields(cls):
            key = _camel(f.name)
            if key not in data:
                continue

            value = data[key]
            record_type = _RECORD_FIELDS.get(f.name)
            if record_type is not None and value is not None:
                value = {chain: [record_type.from_dict(item) for item in items]
                         for chain, items in value.items()}

            kwargs[f.name] = value

        return cls(**kwargs)

    def equals(self, other: 'Metric') -> bool:
        """Field-wise comparison that treats NaN values as equal."""
        for f in fields(self):
            left, right = getattr(self, f.name), getattr(other, f.name)
            if isinstance(left, float) and isinstance(right, float) and math.isnan(left) and math.isnan(right):
                continue
            if left != right:
                return False
        return True
