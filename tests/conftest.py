"""Pytest configuration and fixtures for price intelligence tests.

Provides common fixtures for testing.
"""

from __future__ import annotations

import inspect
import os
from decimal import Decimal
from typing import Any, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Config is read lazily, but importing the CLI or API needs a URL to exist
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from priceintel.analysis.prompts import Prompt  # noqa: E402
from priceintel.analysis.schemas import GeneratedOffer, GeneratedPosition  # noqa: E402
from priceintel.config import IngestionConfig, PricingConfig  # noqa: E402
from priceintel.db.models import Base  # noqa: E402
from priceintel.models import (  # noqa: E402
    ExtractedOfferRecord,
    OfferMetadata,
    OfferPosition,
    PositionCategory,
    PriceBookItem,
)


class StubGenerator:
    """StructuredGenerator test double.

    ``handler(prompt, schema)`` returns the schema instance (or an awaitable
    of it) or raises; every call is recorded in ``calls``.
    """

    def __init__(self, handler: Callable[[Prompt, type], Any]):
        self.handler = handler
        self.calls: list[tuple[Prompt, type]] = []

    async def generate(self, prompt, schema):
        self.calls.append((prompt, schema))
        result = self.handler(prompt, schema)
        if inspect.isawaitable(result):
            result = await result
        return result


def generated_offer(title: str = "Angebot Elektro", positions: list[dict] | None = None, **kwargs) -> GeneratedOffer:
    """GeneratedOffer built from snake_case position dicts."""
    positions = positions if positions is not None else [
        {
            "code": "01.001",
            "description": "Steckdose montieren",
            "quantity": Decimal("10"),
            "unit": "Stk",
            "unit_price": Decimal("45.00"),
            "category": PositionCategory.LABOR,
            "trade_category": "Elektrik",
            "work_type": "Installation",
            "confidence": 0.9,
        }
    ]
    return GeneratedOffer(
        title=title,
        positions=[GeneratedPosition(**p) for p in positions],
        **kwargs,
    )


@pytest.fixture
def make_offer() -> Callable[..., GeneratedOffer]:
    return generated_offer


@pytest.fixture
def make_generator() -> type[StubGenerator]:
    return StubGenerator


@pytest.fixture
def pricing_config() -> PricingConfig:
    """Default pricing economics."""
    return PricingConfig()


@pytest.fixture
def ingestion_config() -> IngestionConfig:
    """Ingestion limits with a short timeout for tests."""
    return IngestionConfig(document_timeout_seconds=5.0)


@pytest.fixture
def make_record() -> Callable[..., ExtractedOfferRecord]:
    """Factory for offer reconstructions with one position each."""

    def _make(
        unit_price: str | Decimal,
        description: str = "Steckdose montieren",
        unit: str = "Stk",
        trade_category: str = "Elektrik",
        confidence: float = 0.9,
        region: str | None = None,
        source_document: str | None = None,
        code: str = "01.001",
    ) -> ExtractedOfferRecord:
        return ExtractedOfferRecord(
            title=f"Angebot {source_document or description}",
            source_document=source_document,
            positions=[
                OfferPosition(
                    code=code,
                    description=description,
                    quantity=Decimal("1"),
                    unit=unit,
                    unit_price=Decimal(str(unit_price)),
                    category=PositionCategory.LABOR,
                    trade_category=trade_category,
                    work_type="Installation",
                    confidence=confidence,
                )
            ],
            metadata=OfferMetadata(region=region),
        )

    return _make


@pytest.fixture
def make_item() -> Callable[..., PriceBookItem]:
    """Factory for pricebook items priced purely as material."""

    def _make(
        material_cost: str | Decimal = "40.00",
        title: str = "Steckdose montieren",
        code: str = "EL-001",
        unit: str = "Stk",
        branch: str = "Elektrik",
        minutes: str | Decimal = "0",
        is_active: bool = True,
    ) -> PriceBookItem:
        return PriceBookItem(
            title=title,
            code=code,
            unit=unit,
            branch=branch,
            base_material_cost=Decimal(str(material_cost)),
            base_minutes=Decimal(str(minutes)),
            is_active=is_active,
        )

    return _make


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to a fresh SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'priceintel.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()
