"""Unit tests for market price aggregation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from priceintel.config import PricingConfig
from priceintel.pricing.aggregator import aggregate, latest_per_source, market_confidence


class TestMarketConfidence:
    def test_zero_sources(self, pricing_config):
        assert market_confidence(0, pricing_config) == 0.0

    def test_formula(self, pricing_config):
        assert market_confidence(1, pricing_config) == 0.6
        assert market_confidence(3, pricing_config) == 0.8

    def test_capped(self, pricing_config):
        assert market_confidence(5, pricing_config) == 0.95
        assert market_confidence(50, pricing_config) == 0.95

    def test_monotonic(self, pricing_config):
        values = [market_confidence(n, pricing_config) for n in range(30)]
        assert values == sorted(values)


class TestAggregate:
    def test_three_offers_one_bucket(self, make_record, pricing_config):
        """Test 42/45/48 for the same position yields avg 45 at confidence 0.8."""
        records = [
            make_record("42.00", source_document="a"),
            make_record("45.00", description="STECKDOSE  montieren", source_document="b"),
            make_record("48.00", unit="Stück", source_document="c"),
        ]

        entries = aggregate([], records, pricing_config)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.key == "steckdose montieren|stk|elektrik"
        assert entry.price_range.min == Decimal("42.00")
        assert entry.price_range.max == Decimal("48.00")
        assert entry.price_range.avg == Decimal("45.00")
        assert entry.confidence == 0.8
        assert entry.source_count == 3
        assert entry.sources == ["offer:a:01.001", "offer:b:01.001", "offer:c:01.001"]

    def test_idempotent_and_order_independent(self, make_record, make_item, pricing_config):
        records = [make_record("42"), make_record("45"), make_record("30", description="Kabel verlegen")]
        catalog = [make_item("50.00")]

        first = aggregate(catalog, records, pricing_config)
        again = aggregate(catalog, records, pricing_config)
        reversed_input = aggregate(list(reversed(catalog)), list(reversed(records)), pricing_config)

        dump = [e.model_dump(exclude={"sources"}) for e in first]
        assert dump == [e.model_dump(exclude={"sources"}) for e in again]
        assert dump == [e.model_dump(exclude={"sources"}) for e in reversed_input]

    def test_catalog_and_offers_merge(self, make_record, make_item, pricing_config):
        entries = aggregate([make_item("40.00")], [make_record("50.00", source_document="x")], pricing_config)

        assert len(entries) == 1
        assert entries[0].price_range.avg == Decimal("45.00")
        assert "pricebook:EL-001" in entries[0].sources

    def test_labor_catalog_item_priced_at_hourly_rate(self, make_item):
        config = PricingConfig(hourly_rate=Decimal("60"))
        entries = aggregate([make_item("0", minutes="45")], [], config)
        assert entries[0].price_range.avg == Decimal("45.00")

    def test_inactive_items_excluded(self, make_item, pricing_config):
        assert aggregate([make_item(is_active=False)], [], pricing_config) == []

    def test_low_confidence_excluded(self, make_record, pricing_config):
        assert aggregate([], [make_record("45", confidence=0.5)], pricing_config) == []

    def test_threshold_is_inclusive(self, make_record, pricing_config):
        assert len(aggregate([], [make_record("45", confidence=0.7)], pricing_config)) == 1

    def test_non_positive_prices_excluded(self, make_record, make_item, pricing_config):
        entries = aggregate([make_item("0")], [make_record("0")], pricing_config)
        assert entries == []

    def test_sorted_by_confidence_then_key(self, make_record, pricing_config):
        records = [
            make_record("10", description="Zählerschrank"),
            make_record("20", description="Abzweigdose"),
            make_record("30", description="Kabel verlegen"),
            make_record("31", description="Kabel verlegen"),
        ]

        entries = aggregate([], records, pricing_config)

        assert [e.description for e in entries] == ["Kabel verlegen", "Abzweigdose", "Zählerschrank"]

    def test_regions_merge_without_partitioning(self, make_record, pricing_config):
        entries = aggregate(
            [], [make_record("40", region="Bayern"), make_record("50", region="Hessen")], pricing_config
        )
        assert len(entries) == 1
        assert entries[0].region is None

    def test_region_partitioning(self, make_record):
        config = PricingConfig(region_partitioning=True)
        entries = aggregate(
            [], [make_record("40", region="Bayern"), make_record("50", region="Hessen")], config
        )
        assert sorted(e.region for e in entries) == ["Bayern", "Hessen"]

    def test_last_updated_is_latest_observation(self, make_record, make_item, pricing_config):
        record = make_record("50")
        entries = aggregate([make_item("40")], [record], pricing_config)
        assert entries[0].last_updated == record.created_at.replace(tzinfo=None)


class TestRepeatedSourceDocuments:
    def test_reupload_counts_once(self, make_record, pricing_config):
        """Test three uploads of one file stay a single source below the margin boundary."""
        records = [make_record("45.00", source_document="sha-a") for _ in range(3)]

        [entry] = aggregate([], records, pricing_config)

        assert entry.source_count == 1
        assert entry.confidence == 0.6

    def test_newest_reconstruction_wins(self, make_record, pricing_config):
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        older = make_record("40.00", source_document="sha-a").model_copy(update={"created_at": base})
        newer = make_record("44.00", source_document="sha-a").model_copy(
            update={"created_at": base + timedelta(days=1)}
        )

        assert latest_per_source([newer, older]) == [newer]
        [entry] = aggregate([], [older, newer], pricing_config)
        assert entry.price_range.avg == Decimal("44.00")

    def test_distinct_documents_still_corroborate(self, make_record, pricing_config):
        records = [make_record("45.00", source_document=name) for name in ("sha-a", "sha-b", "sha-a")]

        [entry] = aggregate([], records, pricing_config)

        assert entry.source_count == 2

    def test_records_without_source_are_independent(self, make_record, pricing_config):
        [entry] = aggregate([], [make_record("45.00"), make_record("47.00")], pricing_config)
        assert entry.source_count == 2
