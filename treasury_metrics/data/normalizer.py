"""Flattening of per-chain subgraph results into a single record sequence."""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar
import logging

logger = logging.getLogger(__name__)

R = TypeVar('R')


def filter_latest_block_by_day(records: Sequence[R]) -> List[R]:
    """Keep only the records at the highest block for each date.

    Records sharing the highest block are all kept. Dates appear in the
    order they were first seen, and records keep their relative order.

    Args:
        records: Records from a single chain

    Returns:
        Records belonging to the latest snapshot of each day
    """
    latest: Dict[str, Dict[str, Any]] = {}

    for record in records:
        entry = latest.get(record.date)
        if entry is None or entry['block'] < record.block:
            # Replacing keeps the date's original insertion position
            latest[record.date] = {'block': record.block, 'records': [record]}
        elif entry['block'] == record.block:
            entry['records'].append(record)

    return [record for entry in latest.values() for record in entry['records']]


def set_blockchain_property(records: Iterable[R], blockchain: str) -> List[R]:
    """Stamp records lacking a blockchain with the source they came from."""
    return [record if record.blockchain else replace(record, blockchain=blockchain)
            for record in records]


def sort_records_descending(records: Iterable[R]) -> List[R]:
    """Sort records by date, newest first. Ties keep their relative order."""
    return sorted(records, key=lambda record: record.date, reverse=True)


def group_by_date(records: Iterable[R]) -> Dict[str, List[R]]:
    """Group records by their date, preserving order within a date."""
    grouped: Dict[str, List[R]] = {}
    for record in records:
        grouped.setdefault(record.date, []).append(record)
    return grouped


def get_block_by_chain(records: Iterable[R], chain: str) -> Optional[int]:
    """Return the block of the first record for ``chain``, if any."""
    for record in records:
        if record.blockchain == chain:
            return record.block
    return None


def parse_records(raw_records: Iterable[Any], record_type: Type[R]) -> List[R]:
    """Convert upstream dictionaries into typed records."""
    return [record if isinstance(record, record_type) else record_type.from_dict(record)
            for record in raw_records]


class RecordNormalizer:
    """Merges per-chain record arrays into one ordered sequence.

    Chains are processed in the mapping's order and records are never
    reordered across chains.
    """

    def __init__(self, tag_blockchain: bool = True, latest_block: bool = True):
        """Initialize normalizer.

        Args:
            tag_blockchain: Stamp each record with its source chain
            latest_block: Collapse each day to its latest-block snapshot
        """
        self.tag_blockchain = tag_blockchain
        self.latest_block = latest_block

    def normalize_by_chain(self, records_by_chain: Mapping[str, Iterable[Any]],
                           record_type: Type[R]) -> Dict[str, List[R]]:
        """Apply tagging and collapsing per chain, keeping the chain keys."""
        result: Dict[str, List[R]] = {}

        for chain, raw_records in records_by_chain.items():
            current = parse_records(raw_records or [], record_type)
            logger.debug(f"Got {len(current)} {chain} {record_type.__name__} records")

            if self.tag_blockchain:
                current = set_blockchain_property(current, chain)

            if self.latest_block:
                current = filter_latest_block_by_day(current)

            result[chain] = current

        return result

    def flatten(self, records_by_chain: Mapping[str, Iterable[Any]],
                record_type: Type[R]) -> List[R]:
        """Flatten per-chain arrays into a single list."""
        normalized = self.normalize_by_chain(records_by_chain, record_type)
        return [record for records in normalized.values() for record in records]
