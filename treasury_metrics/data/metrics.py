"""Composition of per-day records into a canonical Metric."""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from ..core.errors import UpstreamDataError
from .models import (
    CHAINS,
    Chain,
    Metric,
    ProtocolMetric,
    RecordContainer,
    TREASURY_CATEGORIES,
    TokenRecord,
    TokenSupply,
)
from .normalizer import sort_records_descending
from .supply import SupplyClassifier

logger = logging.getLogger(__name__)


def safe_divide(numerator: float, denominator: float) -> float:
    """Divide, returning NaN instead of raising when the denominator is zero."""
    if denominator == 0:
        return float("nan")
    return numerator / denominator


def get_treasury_asset_value(records: Iterable[TokenRecord], liquid_backing: bool,
                             categories: Iterable[str] = TREASURY_CATEGORIES) -> Tuple[float, List[TokenRecord]]:
    """Sum the value of treasury assets in the given categories.

    Args:
        records: Token records for a single point in time
        liquid_backing: If True, only liquid assets are included and their
            value excluding OHM is summed
        categories: Asset categories to include

    Returns:
        Tuple of (value, included records)
    """
    categories = frozenset(categories)
    included = [
        record for record in records
        if record.category in categories and (record.is_liquid or not liquid_backing)
    ]

    if liquid_backing:
        value = sum(record.value_excluding_ohm for record in included)
    else:
        value = sum(record.value for record in included)

    return value, included


def get_liquid_backing_per_ohm_floating(liquid_backing: float, floating_supply: float) -> float:
    return safe_divide(liquid_backing, floating_supply)


def get_liquid_backing_per_ohm_backed(liquid_backing: float, backed_supply: float) -> float:
    return safe_divide(liquid_backing, backed_supply)


def get_g_ohm_backed_supply(backed_supply: float, ohm_index: float) -> float:
    return safe_divide(backed_supply, ohm_index)


def get_liquid_backing_per_g_ohm_backed(liquid_backing: float, backed_supply: float, ohm_index: float) -> float:
    return safe_divide(liquid_backing, get_g_ohm_backed_supply(backed_supply, ohm_index))


def _filter_by_chain(records: Iterable[TokenRecord], chain: str) -> List[TokenRecord]:
    return [record for record in records if record.blockchain == chain]


def _first_block(records: Sequence[TokenRecord]) -> int:
    return records[0].block if records else 0


def _first_timestamp(records: Sequence[TokenRecord]) -> int:
    return records[0].timestamp if records else 0


class MetricComposer:
    """Builds a Metric from one day's token records, supplies and protocol metrics."""

    def __init__(self, classifier: SupplyClassifier, chains: Sequence[str] = CHAINS):
        """Initialize composer.

        Args:
            classifier: Supply classifier configured with token identities
            chains: Chains to report components for
        """
        self.classifier = classifier
        self.chains = list(chains)

    def compose(self, token_records: Sequence[TokenRecord], token_supplies: Sequence[TokenSupply],
                protocol_metrics: Sequence[ProtocolMetric], include_records: bool = False) -> Metric:
        """Compose a Metric for a single day.

        Args:
            token_records: Token records for the day, across chains
            token_supplies: Token supply records for the day, across chains
            protocol_metrics: Protocol metrics for the day
            include_records: Attach the per-chain records used

        Returns:
            Metric for the day

        Raises:
            UpstreamDataError: If any input is empty, or a supply record
                references an unrecognised token
        """
        if not token_records or not token_supplies or not protocol_metrics:
            raise UpstreamDataError(
                f"Cannot compose metric from partial data: {len(token_records)} token records, "
                f"{len(token_supplies)} token supplies, {len(protocol_metrics)} protocol metrics"
            )

        # Records for one day are expected to agree; the first is authoritative
        protocol_metric = protocol_metrics[0]
        ohm_index = protocol_metric.current_index
        ohm_price = protocol_metric.ohm_price

        ethereum_block = self._ethereum_block(token_supplies)

        total_supply = self.classifier.total_supply(token_supplies, ohm_index)
        circulating_supply = self.classifier.circulating_supply(token_supplies, ohm_index, ethereum_block)
        floating_supply = self.classifier.floating_supply(token_supplies, ohm_index, ethereum_block)
        backed_supply = self.classifier.backed_supply(token_supplies, ohm_index)
        supply_categories = self.classifier.supply_categories(token_supplies, ohm_index)

        market_value = get_treasury_asset_value(token_records, False)[0]
        liquid_backing = get_treasury_asset_value(token_records, True)[0]

        chain_token_records = {chain: _filter_by_chain(token_records, chain) for chain in self.chains}
        chain_market_values = {chain: get_treasury_asset_value(records, False)
                               for chain, records in chain_token_records.items()}
        chain_liquid_backing = {chain: get_treasury_asset_value(records, True)
                                for chain, records in chain_token_records.items()}

        record_fields = {}
        if include_records:
            record_fields = {
                "ohm_total_supply_records": total_supply.chain_records,
                "ohm_circulating_supply_records": circulating_supply.chain_records,
                "ohm_floating_supply_records": floating_supply.chain_records,
                "ohm_backed_supply_records": backed_supply.chain_records,
                "treasury_market_value_records": {chain: value[1] for chain, value in chain_market_values.items()},
                "treasury_liquid_backing_records": {chain: value[1] for chain, value in chain_liquid_backing.items()},
            }

        return Metric(
            date=token_records[0].date,
            blocks={chain: _first_block(records) for chain, records in chain_token_records.items()},
            timestamps={chain: _first_timestamp(records) for chain, records in chain_token_records.items()},
            ohm_index=ohm_index,
            ohm_apy=protocol_metric.current_apy,
            ohm_total_supply=total_supply.balance,
            ohm_total_supply_components=total_supply.chain_balances,
            ohm_circulating_supply=circulating_supply.balance,
            ohm_circulating_supply_components=circulating_supply.chain_balances,
            ohm_floating_supply=floating_supply.balance,
            ohm_floating_supply_components=floating_supply.chain_balances,
            ohm_backed_supply=backed_supply.balance,
            g_ohm_backed_supply=get_g_ohm_backed_supply(backed_supply.balance, ohm_index),
            ohm_backed_supply_components=backed_supply.chain_balances,
            ohm_supply_categories=supply_categories,
            ohm_price=ohm_price,
            g_ohm_price=protocol_metric.g_ohm_price,
            market_cap=ohm_price * circulating_supply.balance,
            s_ohm_circulating_supply=protocol_metric.s_ohm_circulating_supply,
            s_ohm_total_value_locked=protocol_metric.total_value_locked,
            treasury_market_value=market_value,
            treasury_market_value_components={chain: value[0] for chain, value in chain_market_values.items()},
            treasury_liquid_backing=liquid_backing,
            treasury_liquid_backing_components={chain: value[0] for chain, value in chain_liquid_backing.items()},
            treasury_liquid_backing_per_ohm_floating=get_liquid_backing_per_ohm_floating(
                liquid_backing, floating_supply.balance),
            treasury_liquid_backing_per_ohm_backed=get_liquid_backing_per_ohm_backed(
                liquid_backing, backed_supply.balance),
            treasury_liquid_backing_per_g_ohm_backed=get_liquid_backing_per_g_ohm_backed(
                liquid_backing, backed_supply.balance, ohm_index),
            **record_fields,
        )

    @staticmethod
    def _ethereum_block(token_supplies: Sequence[TokenSupply]) -> Optional[int]:
        for record in token_supplies:
            if record.blockchain == Chain.ETHEREUM.value:
                return record.block
        return None


def sort_metrics_descending(metrics: Iterable[Metric]) -> List[Metric]:
    """Sort metrics by date, newest first."""
    return sort_records_descending(metrics)


def compose_by_date(composer: MetricComposer, containers: Dict[str, RecordContainer],
                    include_records: bool = False) -> List[Metric]:
    """Compose one Metric per complete day, newest first.

    Days missing any of the three record types are skipped and logged.
    Classification errors on complete days propagate.
    """
    metrics = []
    for date, container in containers.items():
        if not container.is_complete:
            logger.info(f"Skipping date {date} because it is missing data")
            continue

        metrics.append(composer.compose(
            container.token_records,
            container.token_supplies,
            container.protocol_metrics,
            include_records=include_records,
        ))

    return sort_metrics_descending(metrics)
