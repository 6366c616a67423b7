"""Cross-chain completeness filtering.

Subgraphs index independently, so the most recent day may be present on one
chain and missing on another. When strict consistency is requested, every
chain is trimmed back to the latest day reported by all reference chains.
"""

from typing import Dict, List, Mapping, Optional, Sequence, TypeVar
import logging

from .models import Chain

logger = logging.getLogger(__name__)

R = TypeVar('R')

DEFAULT_REFERENCE_CHAINS = (Chain.ARBITRUM.value, Chain.ETHEREUM.value)


def get_latest_date(records: Sequence[R]) -> Optional[str]:
    """Return the most recent date among ``records``."""
    if not records:
        return None
    return max(record.date for record in records)


class CompletenessFilter:
    """Trims per-chain records to the latest day common to the reference chains."""

    def __init__(self, reference_chains: Sequence[str] = DEFAULT_REFERENCE_CHAINS):
        if not reference_chains:
            raise ValueError("At least one reference chain is required")
        self.reference_chains = tuple(reference_chains)

    def get_cutoff_date(self, records_by_chain: Mapping[str, Sequence[R]]) -> Optional[str]:
        """Return the latest date every reference chain has reported.

        Returns None when any reference chain has no records.
        """
        latest_dates = []
        for chain in self.reference_chains:
            latest = get_latest_date(records_by_chain.get(chain) or [])
            if latest is None:
                logger.info(f"No {chain} records, cross-chain data is incomplete")
                return None
            latest_dates.append(latest)

        return min(latest_dates)

    def filter(self, records_by_chain: Mapping[str, Sequence[R]]) -> Dict[str, List[R]]:
        """Drop every record dated after the common cutoff date.

        Records on or before the cutoff are returned untouched and in order.
        If a reference chain has no records, every chain is returned empty.
        """
        cutoff = self.get_cutoff_date(records_by_chain)
        if cutoff is None:
            return {chain: [] for chain in records_by_chain}

        logger.info(f"Restricting records to {cutoff} and earlier")
        return {
            chain: [record for record in (records or []) if record.date <= cutoff]
            for chain, records in records_by_chain.items()
        }
