"""Price intelligence configuration management.

Loads configuration from environment variables with sensible defaults.
Pricing economics (hourly rate, markups, confidence thresholds, tolerance
bands) live in PricingConfig so they can be swapped per deployment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

MEGABYTE = 1024 * 1024

DEFAULT_ALLOWED_EXTENSIONS: tuple[str, ...] = (
    ".pdf",
    ".xlsx",
    ".xls",
    ".txt",
    ".x80",
    ".x81",
    ".x82",
    ".x83",
    ".x84",
)


@dataclass
class DBConfig:
    """Database connection configuration."""

    url: str
    pool_size: int = 10
    pool_max_overflow: int = 20
    pool_timeout: int = 30
    echo: bool = False  # SQL logging


@dataclass
class IngestionConfig:
    """Upload validation limits and batch processing settings."""

    max_file_size_bytes: int = 10 * MEGABYTE
    max_files_per_batch: int = 5
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    max_concurrency: int = 3
    document_timeout_seconds: float = 120.0
    max_analysis_chars: int = 60000
    propose_updates: bool = True


@dataclass
class PricingConfig:
    """Economics and thresholds used by aggregation, recommendation and workflow."""

    currency: str = "EUR"
    hourly_rate: Decimal = Decimal("65")
    default_markup_pct: Decimal = Decimal("20")
    default_overhead_pct: Decimal = Decimal("15")
    default_region_factor: Decimal = Decimal("1.0")

    # Extracted positions below this confidence are kept for audit only
    confidence_threshold: float = 0.7

    # Market confidence = min(cap, base + step * source_count)
    confidence_base: float = 0.5
    confidence_step: float = 0.1
    confidence_cap: float = 0.95

    # Recommendation safety margin below the (inclusive) confidence boundary
    safety_margin_min_confidence: float = 0.8
    safety_margin_pct: Decimal = Decimal("10")

    # Trend band around the market average, in percent
    market_tolerance_pct: Decimal = Decimal("5")

    region_partitioning: bool = False

    fuzzy_matching_enabled: bool = False
    fuzzy_min_score: int = 85

    @classmethod
    def from_yaml(cls, path: Path, base: PricingConfig | None = None) -> PricingConfig:
        """Overlay values from a YAML mapping onto ``base`` (or defaults).

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file contains unknown keys
        """
        with open(path, encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

        base = base or cls()
        known = {f.name: f for f in fields(cls)}
        unknown = set(raw) - set(known)
        if unknown:
            raise ValueError(f"Unknown pricing settings in {path}: {sorted(unknown)}")

        values = {}
        for f in fields(cls):
            current = getattr(base, f.name)
            if f.name not in raw:
                values[f.name] = current
            elif isinstance(current, Decimal):
                values[f.name] = Decimal(str(raw[f.name]))
            elif isinstance(current, bool):
                values[f.name] = bool(raw[f.name])
            else:
                values[f.name] = type(current)(raw[f.name])
        return cls(**values)


@dataclass
class LLMConfig:
    """Structured generation backend configuration."""

    provider: str = "openai"
    api_key: str | None = None
    model: str = "gpt-4o"
    temperature: float = 0.1
    max_tokens: int = 4000
    timeout_seconds: float = 90.0
    base_url: str | None = None


@dataclass
class AppConfig:
    """Root application configuration.

    Loads from environment variables with fail-fast on missing required values.
    """

    db: DBConfig
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables.

        Required environment variables:
        - DATABASE_URL: async SQLAlchemy connection string

        Optional (with defaults):
        - LOG_LEVEL: Logging verbosity (default: "INFO")
        - PRICING_CONFIG_PATH: YAML file overriding pricing economics
        - All other settings have sensible defaults

        Raises:
            KeyError: If required environment variables are missing
        """
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise KeyError(
                "DATABASE_URL environment variable is required. "
                "Example: sqlite+aiosqlite:///./priceintel.db"
            )

        pricing = PricingConfig(
            currency=os.getenv("DEFAULT_CURRENCY", "EUR"),
            hourly_rate=Decimal(os.getenv("HOURLY_RATE", "65")),
            default_markup_pct=Decimal(os.getenv("DEFAULT_MARKUP_PCT", "20")),
            default_overhead_pct=Decimal(os.getenv("DEFAULT_OVERHEAD_PCT", "15")),
            confidence_threshold=float(os.getenv("CONFIDENCE_THRESHOLD", "0.7")),
            safety_margin_min_confidence=float(
                os.getenv("SAFETY_MARGIN_MIN_CONFIDENCE", "0.8")
            ),
            safety_margin_pct=Decimal(os.getenv("SAFETY_MARGIN_PCT", "10")),
            market_tolerance_pct=Decimal(os.getenv("MARKET_TOLERANCE_PCT", "5")),
            region_partitioning=os.getenv("REGION_PARTITIONING", "false").lower()
            == "true",
            fuzzy_matching_enabled=os.getenv("FUZZY_MATCHING_ENABLED", "false").lower()
            == "true",
            fuzzy_min_score=int(os.getenv("FUZZY_MIN_SCORE", "85")),
        )

        pricing_path = os.getenv("PRICING_CONFIG_PATH")
        if pricing_path:
            pricing = PricingConfig.from_yaml(Path(pricing_path), base=pricing)

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            db=DBConfig(
                url=database_url,
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                pool_max_overflow=int(os.getenv("DB_POOL_MAX_OVERFLOW", "20")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
                echo=os.getenv("DB_ECHO", "false").lower() == "true",
            ),
            ingestion=IngestionConfig(
                max_file_size_bytes=int(
                    float(os.getenv("MAX_FILE_SIZE_MB", "10")) * MEGABYTE
                ),
                max_files_per_batch=int(os.getenv("MAX_FILES_PER_BATCH", "5")),
                max_concurrency=int(os.getenv("INGEST_MAX_CONCURRENCY", "3")),
                document_timeout_seconds=float(
                    os.getenv("DOCUMENT_TIMEOUT_SECONDS", "120")
                ),
                max_analysis_chars=int(os.getenv("MAX_ANALYSIS_CHARS", "60000")),
                propose_updates=os.getenv("PROPOSE_UPDATES", "true").lower() == "true",
            ),
            pricing=pricing,
            llm=LLMConfig(
                provider=os.getenv("LLM_PROVIDER", "openai"),
                api_key=os.getenv("OPENAI_API_KEY"),
                model=os.getenv("LLM_MODEL", "gpt-4o"),
                temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
                max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4000")),
                timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "90")),
                base_url=os.getenv("OPENAI_BASE_URL"),
            ),
        )


# Singleton instance (lazy-loaded)
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create singleton AppConfig instance from environment.

    Raises:
        KeyError: If required environment variables are missing
    """
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (tests, reloads)."""
    global _config
    _config = None
