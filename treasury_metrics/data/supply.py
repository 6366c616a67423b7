"""Classification of token supply records into supply aggregates.

Supply measures are defined by which supply types they include. Each
measure's set is a superset of the previous one:

- total supply: the total supply records
- circulating supply: total, minus treasury holdings, the migration offset,
  bond deposits and pre-minted bond OHM, and the boosted liquidity vault
- floating supply: circulating, minus protocol-owned liquidity
- backed supply: floating, minus OHM deployed into lending markets

"Minus" is expressed by the sign of ``supplyBalance`` in the upstream data;
the classifier only sums.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
import logging

from ..core.errors import UpstreamDataError
from .models import CHAINS, SupplyType, TokenSupply

logger = logging.getLogger(__name__)

TOTAL_SUPPLY_TYPES: FrozenSet[SupplyType] = frozenset({
    SupplyType.TOTAL_SUPPLY,
})

CIRCULATING_SUPPLY_TYPES: FrozenSet[SupplyType] = TOTAL_SUPPLY_TYPES | {
    SupplyType.TREASURY,
    SupplyType.MANUAL_OFFSET,
    SupplyType.BONDS_PREMINTED,
    SupplyType.BONDS_VESTING_DEPOSITS,
    SupplyType.BONDS_DEPOSITS,
    SupplyType.BOOSTED_LIQUIDITY_VAULT,
}

FLOATING_SUPPLY_TYPES: FrozenSet[SupplyType] = CIRCULATING_SUPPLY_TYPES | {
    SupplyType.LIQUIDITY,
}

BACKED_SUPPLY_TYPES: FrozenSet[SupplyType] = FLOATING_SUPPLY_TYPES | {
    SupplyType.LENDING,
}

# Ethereum block after which the treasury stopped counting the boosted
# liquidity vault towards circulating and floating supply.
ETHEREUM_BLV_EXCLUSION_BLOCK = 17620000


@dataclass(frozen=True)
class TokenIdentityConfig:
    """Recognised token addresses for the native token and its wrapped variant."""

    native_addresses: FrozenSet[str] = frozenset()
    wrapped_addresses: FrozenSet[str] = frozenset()
    blv_exclusion_block: Optional[int] = None

    def __post_init__(self):
        # Addresses are compared case-insensitively
        object.__setattr__(self, 'native_addresses',
                           frozenset(address.lower() for address in self.native_addresses))
        object.__setattr__(self, 'wrapped_addresses',
                           frozenset(address.lower() for address in self.wrapped_addresses))

    @classmethod
    def from_settings(cls, settings) -> 'TokenIdentityConfig':
        return cls(
            native_addresses=frozenset(settings.native_token_addresses),
            wrapped_addresses=frozenset(settings.wrapped_token_addresses),
            blv_exclusion_block=settings.blv_exclusion_block,
        )

    @property
    def supported_addresses(self) -> FrozenSet[str]:
        return self.native_addresses | self.wrapped_addresses


@dataclass(frozen=True)
class SupplyAggregate:
    """A supply measure with its per-chain breakdown."""

    balance: float
    records: List[TokenSupply]
    chain_balances: Dict[str, float] = field(default_factory=dict)
    chain_records: Dict[str, List[TokenSupply]] = field(default_factory=dict)


class SupplyClassifier:
    """Sums token supply records into supply measures."""

    def __init__(self, identities: TokenIdentityConfig):
        """Initialize classifier.

        Args:
            identities: Recognised native and wrapped token addresses
        """
        self.identities = identities

    def get_balance_multiplier(self, record: TokenSupply, rebase_index: float) -> float:
        """Return the factor converting a record's balance into native units.

        Raises:
            UpstreamDataError: If the token address is not recognised
        """
        address = record.token_address.lower()

        if address in self.identities.native_addresses:
            return 1.0

        if address in self.identities.wrapped_addresses:
            return rebase_index

        raise UpstreamDataError(
            f"Unsupported token address {record.token_address} "
            f"({record.token}) in {record.blockchain or 'unknown chain'} supply record {record.id}"
        )

    def classify(self, records: Iterable[TokenSupply], included_types: Iterable[SupplyType],
                 rebase_index: float) -> Tuple[float, List[TokenSupply]]:
        """Sum the supply balance of records with an included type.

        Records whose type is outside the supply type enumeration are ignored.

        Args:
            records: Token supply records for a single point in time
            included_types: Supply types to include
            rebase_index: Multiplier applied to wrapped-token balances

        Returns:
            Tuple of (balance in native units, matched records)

        Raises:
            UpstreamDataError: If a matched record has an unrecognised token
        """
        included = frozenset(included_types)
        matched = [record for record in records if record.supply_type in included]

        balance = 0.0
        for record in matched:
            balance += record.supply_balance * self.get_balance_multiplier(record, rebase_index)

        return balance, matched

    def aggregate(self, records: Sequence[TokenSupply], included_types: Iterable[SupplyType],
                  rebase_index: float, chains: Sequence[str] = CHAINS) -> SupplyAggregate:
        """Classify records and break the result down per chain."""
        balance, matched = self.classify(records, included_types, rebase_index)

        chain_balances = {}
        chain_records = {}
        for chain in chains:
            chain_matched = [record for record in matched if record.blockchain == chain]
            chain_balances[chain] = sum(
                record.supply_balance * self.get_balance_multiplier(record, rebase_index)
                for record in chain_matched
            )
            chain_records[chain] = chain_matched

        return SupplyAggregate(
            balance=balance,
            records=matched,
            chain_balances=chain_balances,
            chain_records=chain_records,
        )

    def _with_blv_rule(self, included_types: FrozenSet[SupplyType],
                       ethereum_block: Optional[int]) -> FrozenSet[SupplyType]:
        cutoff = self.identities.blv_exclusion_block
        if cutoff is None or ethereum_block is None or ethereum_block < cutoff:
            return included_types

        return included_types - {SupplyType.BOOSTED_LIQUIDITY_VAULT}

    def total_supply(self, records: Sequence[TokenSupply], rebase_index: float) -> SupplyAggregate:
        return self.aggregate(records, TOTAL_SUPPLY_TYPES, rebase_index)

    def circulating_supply(self, records: Sequence[TokenSupply], rebase_index: float,
                           ethereum_block: Optional[int] = None) -> SupplyAggregate:
        types = self._with_blv_rule(CIRCULATING_SUPPLY_TYPES, ethereum_block)
        return self.aggregate(records, types, rebase_index)

    def floating_supply(self, records: Sequence[TokenSupply], rebase_index: float,
                        ethereum_block: Optional[int] = None) -> SupplyAggregate:
        types = self._with_blv_rule(FLOATING_SUPPLY_TYPES, ethereum_block)
        return self.aggregate(records, types, rebase_index)

    def backed_supply(self, records: Sequence[TokenSupply], rebase_index: float) -> SupplyAggregate:
        return self.aggregate(records, BACKED_SUPPLY_TYPES, rebase_index)

    def supply_categories(self, records: Sequence[TokenSupply], rebase_index: float) -> Dict[str, float]:
        """Return the balance of each supply type, keyed by category name."""
        return {
            supply_type.category_key: self.classify(records, [supply_type], rebase_index)[0]
            for supply_type in SupplyType
        }
