"""Request/response models for the JSON API.

Domain models (PriceRecommendation, OfferMarketComparison, Assessment, ...)
are returned as-is; these wrap batches and summaries around them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from priceintel.ingestion.pipeline import BatchResult, DocumentOutcome
from priceintel.models import (
    MarketPriceEntry,
    PriceRecommendation,
    PriceUpdateProposal,
    RecommendationQuery,
)


# ============================================================================
# Ingestion
# ============================================================================


class DocumentOutcomeResponse(BaseModel):
    filename: str
    outcome: str
    ok: bool
    document_id: Optional[UUID] = None
    offer_id: Optional[UUID] = None
    title: Optional[str] = None
    positions: int = 0
    total_amount: Optional[Decimal] = None
    proposals: int = 0
    proposal_error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: DocumentOutcome) -> DocumentOutcomeResponse:
        record = outcome.record
        return cls(
            filename=outcome.filename,
            outcome=outcome.outcome,
            ok=outcome.ok,
            document_id=outcome.document_id,
            offer_id=record.id if record else None,
            title=record.title if record else None,
            positions=len(record.positions) if record else 0,
            total_amount=record.total_amount if record else None,
            proposals=len(outcome.proposals),
            proposal_error=outcome.proposal_error,
        )


class UploadResponse(BaseModel):
    """Used by: POST /api/offers/upload"""

    processed: int
    succeeded: int
    failed: int
    market_entries: Optional[int] = None
    results: List[DocumentOutcomeResponse]

    @classmethod
    def from_batch(cls, batch: BatchResult) -> UploadResponse:
        return cls(
            processed=len(batch.outcomes),
            succeeded=len(batch.succeeded),
            failed=len(batch.failed),
            market_entries=len(batch.index) if batch.index is not None else None,
            results=[DocumentOutcomeResponse.from_outcome(o) for o in batch.outcomes],
        )


# ============================================================================
# Pricing
# ============================================================================


class RecommendationRequest(BaseModel):
    """Used by: POST /api/pricing/recommendations"""

    positions: List[RecommendationQuery] = Field(min_length=1)


class RecommendationSummaryResponse(BaseModel):
    total_positions: int
    with_recommendation: int
    average_confidence: float


class RecommendationResponse(BaseModel):
    recommendations: List[PriceRecommendation]
    summary: RecommendationSummaryResponse


class MarketIndexResponse(BaseModel):
    """Used by: GET /api/market/index"""

    total: int
    returned: int
    entries: List[MarketPriceEntry]


# ============================================================================
# Proposals
# ============================================================================


class ProposalDecisionRequest(BaseModel):
    resolved_by: Optional[str] = None
    note: Optional[str] = None


class ProposalListResponse(BaseModel):
    count: int
    proposals: List[PriceUpdateProposal]


class StatsResponse(BaseModel):
    """Used by: GET /api/stats"""

    total_documents: int
    analyzed_documents: int
    failed_documents: int
    extracted_offers: int
    extracted_prices: int
    active_pricebook_items: int
    pending_proposals: int
    total_offer_value: Decimal
    analysis_rate_pct: float
    market_entries: int
