"""Price recommendations from the market index.

Lookup is an exact match on the aggregation key. Without a matching entry the
result says so explicitly; no price is ever fabricated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence

from priceintel.config import PricingConfig
from priceintel.models import (
    MarketPriceEntry,
    MarketTrend,
    PriceRecommendation,
    RecommendationQuery,
    to_money,
)
from priceintel.pricing.index import MarketIndex

logger = logging.getLogger(__name__)

NO_MARKET_DATA = "Keine Marktdaten verfügbar"


@dataclass
class RecommendationSummary:
    total_positions: int
    with_recommendation: int
    average_confidence: float


@dataclass
class RecommendationBatch:
    recommendations: list[PriceRecommendation] = field(default_factory=list)
    summary: RecommendationSummary = field(
        default_factory=lambda: RecommendationSummary(0, 0, 0.0)
    )


def needs_safety_margin(confidence: float, config: PricingConfig) -> bool:
    """Margin applies strictly below the boundary (boundary itself is safe)."""
    return confidence < config.safety_margin_min_confidence


def market_trend(
    price: Decimal, market_avg: Decimal, tolerance_pct: Decimal
) -> MarketTrend:
    """Classify a price against the market average within a +/- tolerance band."""
    if market_avg <= 0:
        return MarketTrend.AT_MARKET
    deviation_pct = (price - market_avg) / market_avg * 100
    if deviation_pct > tolerance_pct:
        return MarketTrend.ABOVE_MARKET
    if deviation_pct < -tolerance_pct:
        return MarketTrend.BELOW_MARKET
    return MarketTrend.AT_MARKET


def recommend(
    query: RecommendationQuery, index: MarketIndex, config: PricingConfig | None = None
) -> PriceRecommendation:
    """Recommend a price for one target position."""
    config = config or PricingConfig()
    key = index.key_for(query.description, query.unit, query.trade_category, query.region)
    entry = index.get(key)

    if entry is None:
        logger.debug(f"No market data for {key!r}")
        return PriceRecommendation(
            query=query,
            has_market_data=False,
            confidence=0.0,
            market_key=key,
            message=NO_MARKET_DATA,
        )

    return _from_entry(query, key, entry, config)


def _from_entry(
    query: RecommendationQuery, key: str, entry: MarketPriceEntry, config: PricingConfig
) -> PriceRecommendation:
    avg = entry.price_range.avg
    margin = needs_safety_margin(entry.confidence, config)
    recommended = avg * (1 + config.safety_margin_pct / 100) if margin else avg

    trend = None
    if query.proposed_price is not None:
        trend = market_trend(query.proposed_price, avg, config.market_tolerance_pct)

    message = f"Basierend auf {entry.source_count} Quelle(n)"
    if margin:
        message += f", inkl. {config.safety_margin_pct}% Sicherheitszuschlag"

    return PriceRecommendation(
        query=query,
        has_market_data=True,
        recommended_price=to_money(recommended),
        price_range=entry.price_range,
        confidence=entry.confidence,
        source_count=entry.source_count,
        sources=list(entry.sources),
        safety_margin_applied=margin,
        market_trend=trend,
        market_key=key,
        message=message,
    )


def recommend_many(
    queries: Sequence[RecommendationQuery],
    index: MarketIndex,
    config: PricingConfig | None = None,
) -> RecommendationBatch:
    """Recommendations for several positions plus a summary."""
    recommendations = [recommend(q, index, config) for q in queries]
    with_data = sum(1 for r in recommendations if r.has_market_data)
    average = (
        round(sum(r.confidence for r in recommendations) / len(recommendations), 4)
        if recommendations
        else 0.0
    )
    return RecommendationBatch(
        recommendations=recommendations,
        summary=RecommendationSummary(
            total_positions=len(recommendations),
            with_recommendation=with_data,
            average_confidence=average,
        ),
    )
