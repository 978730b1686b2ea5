"""Locating the pricebook item an extracted position refers to.

Two stages, tried in order:

1. Exact: the normalized description|unit|trade key, the same key the
   aggregator buckets by (catalog items carry no region, so the key never
   includes one here)
2. Fuzzy (opt-in): RapidFuzz token_set_ratio between normalized description
   and item title, restricted to items with the same unit and trade, accepted
   at or above the configured minimum score
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from rapidfuzz import fuzz

from priceintel.canonical.key_generator import market_key, normalize_text, normalize_unit
from priceintel.config import PricingConfig
from priceintel.models import PriceBookItem

EXACT = "exact"
FUZZY = "fuzzy"
NO_MATCH = "none"


@dataclass(frozen=True)
class CatalogMatch:
    item: PriceBookItem
    method: str
    score: float


def _preference(item: PriceBookItem) -> tuple[bool, str]:
    # Active items first, then by code for a stable choice
    return (not item.is_active, item.code)


class CatalogMatcher:
    """Matches positions against a fixed set of candidate pricebook items."""

    def __init__(self, items: Iterable[PriceBookItem], config: PricingConfig):
        self.config = config
        self._by_key: dict[str, list[PriceBookItem]] = defaultdict(list)
        for item in items:
            self.add(item)

    def add(self, item: PriceBookItem) -> None:
        """Make an item matchable (e.g. one created earlier in the same run)."""
        bucket = self._by_key[market_key(item.title, item.unit, item.branch)]
        bucket.append(item)
        bucket.sort(key=_preference)

    def match(self, description: str, unit: str, trade_category: str) -> CatalogMatch | None:
        exact = self._by_key.get(market_key(description, unit, trade_category))
        if exact:
            return CatalogMatch(item=exact[0], method=EXACT, score=100.0)

        if not self.config.fuzzy_matching_enabled:
            return None
        return self._fuzzy(description, unit, trade_category)

    def _fuzzy(self, description: str, unit: str, trade_category: str) -> CatalogMatch | None:
        target = normalize_text(description)
        unit_norm = normalize_unit(unit)
        trade = normalize_text(trade_category)
        if not target:
            return None

        best: tuple[float, tuple[bool, str]] | None = None
        best_item: PriceBookItem | None = None
        for bucket in self._by_key.values():
            for item in bucket:
                if normalize_unit(item.unit) != unit_norm or normalize_text(item.branch) != trade:
                    continue
                score = fuzz.token_set_ratio(target, normalize_text(item.title))
                if score < self.config.fuzzy_min_score:
                    continue
                rank = (-score, _preference(item))
                if best is None or rank < best:
                    best, best_item = rank, item

        if best_item is None:
            return None
        return CatalogMatch(item=best_item, method=FUZZY, score=-best[0])
