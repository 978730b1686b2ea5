"""Unit tests for configuration loading."""

from __future__ import annotations

from decimal import Decimal

import pytest

from priceintel.config import MEGABYTE, AppConfig, DBConfig, PricingConfig, get_config, reset_config
from priceintel.db.connection import engine_options


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


class TestAppConfigFromEnv:
    def test_missing_database_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(KeyError, match="DATABASE_URL"):
            AppConfig.from_env()

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        for name in ("MAX_FILE_SIZE_MB", "MAX_FILES_PER_BATCH", "HOURLY_RATE", "PRICING_CONFIG_PATH"):
            monkeypatch.delenv(name, raising=False)

        config = AppConfig.from_env()

        assert config.db.url == "sqlite+aiosqlite:///./test.db"
        assert config.ingestion.max_file_size_bytes == 10 * MEGABYTE
        assert config.ingestion.max_files_per_batch == 5
        assert config.pricing.hourly_rate == Decimal("65")
        assert config.pricing.safety_margin_min_confidence == 0.8

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        monkeypatch.setenv("MAX_FILE_SIZE_MB", "2")
        monkeypatch.setenv("SAFETY_MARGIN_PCT", "12.5")
        monkeypatch.setenv("REGION_PARTITIONING", "true")
        monkeypatch.delenv("PRICING_CONFIG_PATH", raising=False)

        config = AppConfig.from_env()

        assert config.ingestion.max_file_size_bytes == 2 * MEGABYTE
        assert config.pricing.safety_margin_pct == Decimal("12.5")
        assert config.pricing.region_partitioning is True

    def test_pricing_yaml_overlay(self, monkeypatch, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text("hourly_rate: 72.5\nconfidence_cap: 0.9\n", encoding="utf-8")
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        monkeypatch.setenv("PRICING_CONFIG_PATH", str(path))

        config = AppConfig.from_env()

        assert config.pricing.hourly_rate == Decimal("72.5")
        assert config.pricing.confidence_cap == 0.9

    def test_singleton(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        assert get_config() is get_config()


class TestPricingConfigYaml:
    def test_keeps_base_values(self, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text("fuzzy_matching_enabled: true\n", encoding="utf-8")
        base = PricingConfig(hourly_rate=Decimal("80"))

        config = PricingConfig.from_yaml(path, base=base)

        assert config.fuzzy_matching_enabled is True
        assert config.hourly_rate == Decimal("80")

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text("hourly_rat: 80\n", encoding="utf-8")
        with pytest.raises(ValueError, match="hourly_rat"):
            PricingConfig.from_yaml(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text("", encoding="utf-8")
        assert PricingConfig.from_yaml(path) == PricingConfig()


class TestEngineOptions:
    def test_sqlite_has_no_pool_sizing(self):
        assert engine_options(DBConfig(url="sqlite+aiosqlite:///prices.db")) == {"echo": False}

    def test_server_database_pool(self):
        options = engine_options(DBConfig(url="postgresql+asyncpg://localhost/prices", pool_size=5))
        assert options["pool_size"] == 5
        assert options["pool_pre_ping"] is True
