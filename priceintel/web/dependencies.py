"""Shared dependencies for the JSON API.

Route handlers receive one Services container through FastAPI's Depends();
tests replace it with ``app.dependency_overrides[get_services]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from priceintel.analysis.analyzer import OfferAnalyzer
from priceintel.analysis.generator import OpenAIStructuredGenerator, StructuredGenerator
from priceintel.config import AppConfig, get_config
from priceintel.db.connection import get_session_factory
from priceintel.ingestion.pipeline import IngestionPipeline, market_source_loader
from priceintel.pricing.index import MarketIndex, MarketIndexHolder
from priceintel.workflow.service import PricebookWorkflow


@dataclass
class Services:
    """Long-lived collaborators of the API process."""

    config: AppConfig
    session_factory: async_sessionmaker[AsyncSession]
    index_holder: MarketIndexHolder = field(default_factory=MarketIndexHolder)
    generator: StructuredGenerator | None = None
    _index_loaded: bool = False

    def analyzer(self) -> OfferAnalyzer:
        if self.generator is None:
            self.generator = OpenAIStructuredGenerator(self.config.llm)
        return OfferAnalyzer(self.generator, self.config.ingestion.max_analysis_chars)

    def workflow(self) -> PricebookWorkflow:
        return PricebookWorkflow(self.session_factory, self.config.pricing)

    def pipeline(self) -> IngestionPipeline:
        return IngestionPipeline(
            self.session_factory,
            self.analyzer(),
            self.config.ingestion,
            self.config.pricing,
            index_holder=self.index_holder,
            workflow=self.workflow(),
        )

    def mark_index_loaded(self) -> None:
        """Record that the holder was rebuilt elsewhere (e.g. by ingestion)."""
        self._index_loaded = True

    async def market_index(self, refresh: bool = False) -> MarketIndex:
        """Current index snapshot, built from the store on first use."""
        if refresh or not self._index_loaded:
            await self.index_holder.rebuild(market_source_loader(self.session_factory), self.config.pricing)
            self._index_loaded = True
        return self.index_holder.current


_services: Services | None = None


def get_services() -> Services:
    """Get or create the process-wide Services container."""
    global _services
    if _services is None:
        _services = Services(config=get_config(), session_factory=get_session_factory())
    return _services
