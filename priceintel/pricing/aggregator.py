"""Market price aggregation.

Merges two sources of price evidence into keyed, confidence-scored entries:

- Active pricebook items, priced at their effective unit price
  (material cost + minutes x hourly rate / 60)
- Positions of completed offer reconstructions whose confidence reaches the
  configured threshold

Each source document contributes once (its newest reconstruction), so
re-uploading a file never inflates confidence.

aggregate() is a pure function of its inputs: the same catalog, records and
configuration always produce the same list of entries.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from priceintel.canonical.key_generator import market_key
from priceintel.config import PricingConfig
from priceintel.models import (
    ExtractedOfferRecord,
    MarketPriceEntry,
    PriceBookItem,
    PriceRange,
    to_money,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PriceObservation:
    """One price data point contributing to a market bucket."""

    key: str
    description: str
    unit: str
    trade_category: str
    price: Decimal
    source: str
    work_type: str | None = None
    region: str | None = None
    observed_at: datetime | None = None


def market_confidence(source_count: int, config: PricingConfig) -> float:
    """min(cap, base + step x n), non-decreasing in n."""
    if source_count <= 0:
        return 0.0
    raw = config.confidence_base + config.confidence_step * source_count
    return round(min(config.confidence_cap, raw), 4)


def _utc(moment: datetime | None) -> datetime | None:
    """Naive UTC, so timestamps from the store and from memory compare."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def catalog_observations(
    catalog: Iterable[PriceBookItem], config: PricingConfig
) -> list[PriceObservation]:
    observations = []
    for item in catalog:
        if not item.is_active:
            continue
        observations.append(
            PriceObservation(
                key=market_key(
                    item.title,
                    item.unit,
                    item.branch,
                    partition_by_region=config.region_partitioning,
                ),
                description=item.title,
                unit=item.unit,
                trade_category=item.branch,
                price=item.effective_unit_price(config.hourly_rate),
                source=f"pricebook:{item.code}",
                work_type=item.variant_group,
                observed_at=_utc(item.updated_at or item.created_at),
            )
        )
    return observations


def latest_per_source(records: Iterable[ExtractedOfferRecord]) -> list[ExtractedOfferRecord]:
    """Keep the newest reconstruction of each source document.

    Re-uploading the same file yields another record with the same
    ``source_document``; it is one piece of evidence, not a corroboration.
    Records without a source document stand for themselves.
    """
    latest: dict[str, ExtractedOfferRecord] = {}
    for record in records:
        origin = record.source_document or str(record.id)
        current = latest.get(origin)
        if current is None or _recency(record) > _recency(current):
            latest[origin] = record
    return list(latest.values())


def _recency(record: ExtractedOfferRecord) -> tuple[datetime, str]:
    return _utc(record.created_at), str(record.id)


def record_observations(
    records: Iterable[ExtractedOfferRecord], config: PricingConfig
) -> list[PriceObservation]:
    observations = []
    for record in latest_per_source(records):
        region = record.metadata.region
        origin = record.source_document or str(record.id)
        for position in record.qualifying_positions(config.confidence_threshold):
            observations.append(
                PriceObservation(
                    key=market_key(
                        position.description,
                        position.unit,
                        position.trade_category,
                        region=region,
                        partition_by_region=config.region_partitioning,
                    ),
                    description=position.description,
                    unit=position.unit,
                    trade_category=position.trade_category,
                    price=position.unit_price,
                    source=f"offer:{origin}:{position.code}",
                    work_type=position.work_type,
                    region=region,
                    observed_at=_utc(record.created_at),
                )
            )
    return observations


def aggregate(
    catalog: Iterable[PriceBookItem],
    records: Iterable[ExtractedOfferRecord],
    config: PricingConfig | None = None,
) -> list[MarketPriceEntry]:
    """Build market entries, sorted by confidence descending then key.

    Args:
        catalog: Pricebook items (inactive items are ignored)
        records: Offer reconstructions from completed analyses
        config: Pricing economics and thresholds

    Returns:
        One MarketPriceEntry per normalized key with at least one valid price
    """
    config = config or PricingConfig()

    buckets: dict[str, list[PriceObservation]] = defaultdict(list)
    for obs in catalog_observations(catalog, config) + record_observations(records, config):
        if obs.price <= 0 or not obs.key.strip("|"):
            continue
        buckets[obs.key].append(obs)

    entries = []
    for key, observations in buckets.items():
        entry = _build_entry(key, observations, config)
        if entry is not None:
            entries.append(entry)

    entries.sort(key=lambda e: (-e.confidence, e.key))
    logger.info(f"Aggregated {len(entries)} market entries from {len(buckets)} buckets")
    return entries


def _build_entry(
    key: str, observations: list[PriceObservation], config: PricingConfig
) -> MarketPriceEntry | None:
    # Input order must not leak into the result
    observations = sorted(observations, key=lambda o: (o.source, o.price))
    prices = [o.price for o in observations]
    if not prices:
        return None

    avg = to_money(sum(prices, Decimal("0")) / len(prices))
    representative = observations[0]

    regions = {o.region for o in observations}
    region = regions.pop() if len(regions) == 1 else None

    timestamps = [o.observed_at for o in observations if o.observed_at is not None]
    work_type = next((o.work_type for o in observations if o.work_type), None)

    return MarketPriceEntry(
        key=key,
        description=representative.description,
        unit=representative.unit,
        trade_category=representative.trade_category,
        work_type=work_type,
        price_range=PriceRange(min=min(prices), max=max(prices), avg=avg),
        confidence=market_confidence(len(prices), config),
        source_count=len(prices),
        sources=[o.source for o in observations],
        last_updated=max(timestamps) if timestamps else None,
        region=region,
    )
