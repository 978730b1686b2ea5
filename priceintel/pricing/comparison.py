"""Offer-versus-market price analysis."""

from __future__ import annotations

import logging
from decimal import Decimal

from pydantic import BaseModel, Field

from priceintel.config import PricingConfig
from priceintel.models import ExtractedOfferRecord, MarketTrend, to_money
from priceintel.pricing.index import MarketIndex
from priceintel.pricing.recommender import market_trend

logger = logging.getLogger(__name__)


class PriceAdjustment(BaseModel):
    position_code: str
    description: str
    current_price: Decimal
    suggested_price: Decimal
    market_trend: MarketTrend
    reason: str


class OfferMarketComparison(BaseModel):
    offer_title: str
    total_positions: int = 0
    analyzed_positions: int = 0
    matched_positions: int = 0
    new_positions: int = 0
    average_markup_pct: Decimal | None = None
    price_trend: MarketTrend | None = None
    competitive_score: float = 0.0
    price_adjustments: list[PriceAdjustment] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    data_quality_score: float = 0.0
    completeness_pct: float = 0.0


def compare_offer_to_market(
    record: ExtractedOfferRecord, index: MarketIndex, config: PricingConfig | None = None
) -> OfferMarketComparison:
    """Compare the qualifying positions of an offer with market averages.

    Positions below the confidence threshold count towards completeness and
    data quality but are not priced against the market.
    """
    config = config or PricingConfig()
    tolerance = config.market_tolerance_pct
    result = OfferMarketComparison(offer_title=record.title, total_positions=len(record.positions))

    if record.positions:
        result.data_quality_score = round(
            sum(p.confidence for p in record.positions) / len(record.positions), 4
        )
        complete = sum(1 for p in record.positions if p.quantity > 0 and p.unit_price > 0)
        result.completeness_pct = round(complete / len(record.positions) * 100, 1)

    analyzed = record.qualifying_positions(config.confidence_threshold)
    result.analyzed_positions = len(analyzed)

    markups: list[Decimal] = []
    competitive = 0
    for position in analyzed:
        entry = index.lookup(
            position.description, position.unit, position.trade_category, record.metadata.region
        )
        if entry is None:
            continue

        avg = entry.price_range.avg
        markups.append((position.unit_price - avg) / avg * 100)
        trend = market_trend(position.unit_price, avg, tolerance)
        if trend is not MarketTrend.ABOVE_MARKET:
            competitive += 1
        if trend is MarketTrend.AT_MARKET:
            continue

        direction = "über" if trend is MarketTrend.ABOVE_MARKET else "unter"
        result.price_adjustments.append(
            PriceAdjustment(
                position_code=position.code,
                description=position.description,
                current_price=position.unit_price,
                suggested_price=avg,
                market_trend=trend,
                reason=(
                    f"{position.unit_price} liegt mehr als {tolerance}% {direction} dem "
                    f"Marktdurchschnitt von {avg} ({entry.source_count} Quelle(n))"
                ),
            )
        )

    result.matched_positions = len(markups)
    result.new_positions = result.analyzed_positions - result.matched_positions

    if markups:
        mean_markup = sum(markups, Decimal("0")) / len(markups)
        result.average_markup_pct = to_money(mean_markup)
        if mean_markup > tolerance:
            result.price_trend = MarketTrend.ABOVE_MARKET
        elif mean_markup < -tolerance:
            result.price_trend = MarketTrend.BELOW_MARKET
        else:
            result.price_trend = MarketTrend.AT_MARKET
        result.competitive_score = round(competitive / len(markups), 4)

    result.recommendations = _recommendations(result, config)
    logger.info(
        f"Compared offer {record.title!r}: {result.matched_positions}/{result.analyzed_positions} "
        f"positions matched, trend {result.price_trend.value if result.price_trend else 'n/a'}"
    )
    return result


def _recommendations(result: OfferMarketComparison, config: PricingConfig) -> list[str]:
    notes = []
    if result.total_positions == 0:
        return ["Das Angebot enthält keine Positionen."]

    if result.matched_positions == 0:
        notes.append("Keine Position konnte mit Marktdaten abgeglichen werden.")
    elif result.price_trend is MarketTrend.ABOVE_MARKET:
        notes.append(
            f"Das Angebot liegt im Schnitt {result.average_markup_pct}% über dem Markt; "
            "Preise der markierten Positionen prüfen."
        )
    elif result.price_trend is MarketTrend.BELOW_MARKET:
        notes.append(
            f"Das Angebot liegt im Schnitt {abs(result.average_markup_pct)}% unter dem Markt; "
            "möglicherweise wird Marge verschenkt."
        )
    else:
        notes.append("Die Preise liegen im marktüblichen Rahmen.")

    if result.new_positions:
        notes.append(
            f"{result.new_positions} Position(en) ohne Marktdaten erweitern die Preisdatenbank."
        )
    if result.analyzed_positions < result.total_positions:
        skipped = result.total_positions - result.analyzed_positions
        notes.append(
            f"{skipped} Position(en) unter der Konfidenzschwelle {config.confidence_threshold} "
            "oder ohne Preis wurden nicht bewertet."
        )
    if result.completeness_pct < 80:
        notes.append("Viele Positionen ohne Menge oder Einzelpreis; Datenqualität verbessern.")
    return notes
