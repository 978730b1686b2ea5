"""Market index snapshots.

A MarketIndex is built once and never mutated. Rebuilds produce a new
snapshot which MarketIndexHolder publishes with a single reference swap, so
concurrent readers see either the old or the new index, never a mix.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Iterator, Sequence

from priceintel.canonical.key_generator import market_key, normalize_text, normalize_unit
from priceintel.config import PricingConfig
from priceintel.models import ExtractedOfferRecord, MarketPriceEntry, PriceBookItem, utcnow
from priceintel.pricing.aggregator import aggregate

logger = logging.getLogger(__name__)

SourceLoader = Callable[[], Awaitable[tuple[Sequence[PriceBookItem], Sequence[ExtractedOfferRecord]]]]


class MarketIndex:
    """Immutable, keyed view over aggregated market entries."""

    def __init__(
        self,
        entries: Iterable[MarketPriceEntry] = (),
        partition_by_region: bool = False,
        built_at: datetime | None = None,
    ):
        self._entries = tuple(entries)
        self._by_key = {entry.key: entry for entry in self._entries}
        self.partition_by_region = partition_by_region
        self.built_at = built_at or utcnow()

    @classmethod
    def build(
        cls,
        catalog: Iterable[PriceBookItem],
        records: Iterable[ExtractedOfferRecord],
        config: PricingConfig,
    ) -> MarketIndex:
        return cls(
            aggregate(catalog, records, config),
            partition_by_region=config.region_partitioning,
        )

    @property
    def entries(self) -> tuple[MarketPriceEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MarketPriceEntry]:
        return iter(self._entries)

    def get(self, key: str) -> MarketPriceEntry | None:
        return self._by_key.get(key)

    def key_for(
        self, description: str, unit: str, trade_category: str, region: str | None = None
    ) -> str:
        return market_key(
            description,
            unit,
            trade_category,
            region=region,
            partition_by_region=self.partition_by_region,
        )

    def lookup(
        self, description: str, unit: str, trade_category: str, region: str | None = None
    ) -> MarketPriceEntry | None:
        """Exact normalized-key lookup."""
        return self.get(self.key_for(description, unit, trade_category, region))

    def search(
        self,
        trade_category: str | None = None,
        unit: str | None = None,
        query: str | None = None,
        region: str | None = None,
        limit: int | None = None,
    ) -> list[MarketPriceEntry]:
        """Browse entries by trade, unit, description substring and region."""
        trade = normalize_text(trade_category) if trade_category else None
        unit_norm = normalize_unit(unit) if unit else None
        needle = normalize_text(query) if query else None
        region_norm = normalize_text(region) if region else None

        results = []
        for entry in self._entries:
            if trade and normalize_text(entry.trade_category) != trade:
                continue
            if unit_norm and normalize_unit(entry.unit) != unit_norm:
                continue
            if needle and needle not in normalize_text(entry.description):
                continue
            if region_norm and normalize_text(entry.region) != region_norm:
                continue
            results.append(entry)
            if limit is not None and len(results) >= limit:
                break
        return results


class MarketIndexHolder:
    """Publishes the current MarketIndex; rebuilds are serialized."""

    def __init__(self, index: MarketIndex | None = None):
        self._index = index if index is not None else MarketIndex()
        self._rebuild_lock = asyncio.Lock()

    @property
    def current(self) -> MarketIndex:
        return self._index

    def swap(self, index: MarketIndex) -> MarketIndex:
        """Publish a new snapshot and return the previous one."""
        previous, self._index = self._index, index
        return previous

    async def rebuild(self, loader: SourceLoader, config: PricingConfig) -> MarketIndex:
        """Load sources, aggregate off to the side, then swap the snapshot in."""
        async with self._rebuild_lock:
            catalog, records = await loader()
            index = MarketIndex.build(catalog, records, config)
            self.swap(index)
        logger.info(f"Market index rebuilt with {len(index)} entries")
        return index
