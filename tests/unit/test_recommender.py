"""Unit tests for price recommendations and offer-versus-market comparison."""

from __future__ import annotations

from decimal import Decimal

import pytest

from priceintel.models import (
    ExtractedOfferRecord,
    MarketTrend,
    OfferPosition,
    RecommendationQuery,
)
from priceintel.pricing.comparison import compare_offer_to_market
from priceintel.pricing.index import MarketIndex
from priceintel.pricing.recommender import (
    NO_MARKET_DATA,
    market_trend,
    needs_safety_margin,
    recommend,
    recommend_many,
)


def query(description: str = "Steckdose montieren", **kwargs) -> RecommendationQuery:
    return RecommendationQuery(
        description=description,
        unit=kwargs.pop("unit", "Stk"),
        trade_category=kwargs.pop("trade_category", "Elektrik"),
        **kwargs,
    )


@pytest.fixture
def index(make_record, pricing_config) -> MarketIndex:
    """Three sources for sockets (0.8), one for cables (0.6)."""
    records = [
        make_record("42.00"),
        make_record("45.00"),
        make_record("48.00"),
        make_record("8.00", description="Kabel verlegen", unit="m"),
    ]
    return MarketIndex.build([], records, pricing_config)


class TestSafetyMargin:
    def test_boundary_is_excluded(self, pricing_config):
        assert not needs_safety_margin(0.8, pricing_config)
        assert needs_safety_margin(0.79, pricing_config)


class TestMarketTrend:
    @pytest.mark.parametrize(
        ("price", "expected"),
        [
            ("50", MarketTrend.ABOVE_MARKET),
            ("47.25", MarketTrend.AT_MARKET),
            ("42.75", MarketTrend.AT_MARKET),
            ("40", MarketTrend.BELOW_MARKET),
        ],
    )
    def test_tolerance_band(self, price, expected):
        assert market_trend(Decimal(price), Decimal("45"), Decimal("5")) is expected


class TestRecommend:
    def test_confidence_at_boundary_has_no_margin(self, index, pricing_config):
        result = recommend(query(), index, pricing_config)

        assert result.has_market_data
        assert result.confidence == 0.8
        assert not result.safety_margin_applied
        assert result.recommended_price == Decimal("45.00")
        assert result.price_range.min == Decimal("42.00")
        assert result.source_count == 3
        assert result.message == "Basierend auf 3 Quelle(n)"

    def test_low_confidence_gets_margin(self, index, pricing_config):
        result = recommend(query("Kabel verlegen", unit="lfm"), index, pricing_config)

        assert result.confidence == 0.6
        assert result.safety_margin_applied
        assert result.recommended_price == Decimal("8.80")
        assert "Sicherheitszuschlag" in result.message

    def test_unseen_key(self, index, pricing_config):
        result = recommend(query("Wallbox installieren"), index, pricing_config)

        assert not result.has_market_data
        assert result.confidence == 0.0
        assert result.recommended_price is None
        assert result.message == NO_MARKET_DATA
        assert result.market_key == "wallbox installieren|stk|elektrik"

    def test_proposed_price_trend(self, index, pricing_config):
        result = recommend(query(proposed_price=Decimal("55")), index, pricing_config)
        assert result.market_trend is MarketTrend.ABOVE_MARKET

    def test_empty_index(self, pricing_config):
        assert not recommend(query(), MarketIndex(), pricing_config).has_market_data

    def test_recommend_many_summary(self, index, pricing_config):
        batch = recommend_many(
            [query(), query("Kabel verlegen", unit="m"), query("Wallbox installieren")],
            index,
            pricing_config,
        )

        assert batch.summary.total_positions == 3
        assert batch.summary.with_recommendation == 2
        assert batch.summary.average_confidence == pytest.approx((0.8 + 0.6 + 0.0) / 3, abs=1e-4)

    def test_recommend_many_empty(self, index):
        assert recommend_many([], index).summary.average_confidence == 0.0


class TestCompareOfferToMarket:
    def offer(self, *positions: OfferPosition) -> ExtractedOfferRecord:
        return ExtractedOfferRecord(title="Angebot Schule", positions=list(positions))

    def position(self, code: str, description: str, price: str, **kwargs) -> OfferPosition:
        return OfferPosition(
            code=code,
            description=description,
            quantity=Decimal("1"),
            unit=kwargs.pop("unit", "Stk"),
            unit_price=Decimal(price),
            trade_category="Elektrik",
            confidence=kwargs.pop("confidence", 0.9),
        )

    def test_above_market_position_flagged(self, index, pricing_config):
        record = self.offer(
            self.position("1", "Steckdose montieren", "60.00"),
            self.position("2", "Kabel verlegen", "8.00", unit="m"),
        )

        result = compare_offer_to_market(record, index, pricing_config)

        assert result.matched_positions == 2
        assert result.new_positions == 0
        assert len(result.price_adjustments) == 1
        adjustment = result.price_adjustments[0]
        assert adjustment.position_code == "1"
        assert adjustment.suggested_price == Decimal("45.00")
        assert adjustment.market_trend is MarketTrend.ABOVE_MARKET
        assert result.competitive_score == 0.5
        assert result.price_trend is MarketTrend.ABOVE_MARKET

    def test_unmatched_and_low_confidence_positions(self, index, pricing_config):
        record = self.offer(
            self.position("1", "Steckdose montieren", "45.00"),
            self.position("2", "Wallbox installieren", "900.00"),
            self.position("3", "Kabel verlegen", "8.00", unit="m", confidence=0.3),
        )

        result = compare_offer_to_market(record, index, pricing_config)

        assert result.total_positions == 3
        assert result.analyzed_positions == 2
        assert result.matched_positions == 1
        assert result.new_positions == 1
        assert result.price_trend is MarketTrend.AT_MARKET
        assert result.average_markup_pct == Decimal("0.00")
        assert any("Konfidenzschwelle" in note for note in result.recommendations)

    def test_empty_offer(self, index, pricing_config):
        result = compare_offer_to_market(self.offer(), index, pricing_config)
        assert result.recommendations == ["Das Angebot enthält keine Positionen."]
        assert result.price_trend is None
