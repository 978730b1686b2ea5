"""JSON API routes.

Routes:
- POST /api/offers/upload                 - Ingest a batch of offer documents
- GET  /api/offers/{offer_id}/comparison  - Compare a stored offer with the market
- POST /api/assess                        - Assess a customer request
- POST /api/pricing/recommendations       - Recommend prices for positions
- GET  /api/market/index                  - Browse the market price index
- GET  /api/proposals                     - List pricebook update proposals
- POST /api/proposals/{id}/approve        - Approve and apply a proposal
- POST /api/proposals/{id}/reject         - Reject a proposal
- GET  /api/stats                         - Price database statistics
- GET  /health                            - Database connectivity
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, replace
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import text

from priceintel.analysis.analyzer import AssessmentContext
from priceintel.analysis.schemas import Assessment
from priceintel.db.documents import get_offer_record, get_price_database_stats
from priceintel.extraction.extractors import extract_text
from priceintel.extraction.validator import RawUpload, validate_batch
from priceintel.models import Decision, PriceUpdateProposal, ProposalStatus
from priceintel.pricing.comparison import OfferMarketComparison, compare_offer_to_market
from priceintel.pricing.recommender import recommend_many
from priceintel.web.dependencies import Services, get_services
from priceintel.web.models import (
    MarketIndexResponse,
    ProposalDecisionRequest,
    ProposalListResponse,
    RecommendationRequest,
    RecommendationResponse,
    RecommendationSummaryResponse,
    StatsResponse,
    UploadResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["price-intelligence"])
health_router = APIRouter(prefix="/health", tags=["Health"])


async def _read_uploads(files: List[UploadFile]) -> list[RawUpload]:
    uploads = []
    for file in files:
        uploads.append(
            RawUpload(
                filename=file.filename or "upload",
                content=await file.read(),
                content_type=file.content_type,
            )
        )
    return uploads


# ============================================================================
# Offers
# ============================================================================


@router.post("/offers/upload", response_model=UploadResponse)
async def upload_offers(
    files: List[UploadFile] = File(...),
    propose_updates: bool = Query(True, description="Create pricebook update proposals"),
    services: Services = Depends(get_services),
):
    """Ingest historical offers; one outcome per file, in upload order."""
    uploads = await _read_uploads(files)
    pipeline = services.pipeline()
    if not propose_updates:
        pipeline.ingestion = replace(pipeline.ingestion, propose_updates=False)

    batch = await pipeline.ingest_batch(uploads)
    if batch.index is not None:
        services.mark_index_loaded()
    return UploadResponse.from_batch(batch)


@router.get("/offers/{offer_id}/comparison", response_model=OfferMarketComparison)
async def offer_comparison(offer_id: UUID, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        record = await get_offer_record(session, offer_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Offer not found")

    index = await services.market_index()
    return compare_offer_to_market(record, index, services.config.pricing)


@router.post("/assess", response_model=Assessment, response_model_by_alias=True)
async def assess_request(
    message: str = Form(""),
    budget: Optional[str] = Form(None),
    timeline: Optional[str] = Form(None),
    urgency: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    services: Services = Depends(get_services),
):
    """Lead qualification for a customer request with optional documents."""
    uploads = await _read_uploads(files or [])
    validation = validate_batch(uploads, services.config.ingestion)
    if validation.rejected:
        raise validation.rejected[0]

    texts = []
    for upload in validation.accepted:
        extraction = await asyncio.to_thread(extract_text, upload)
        if not extraction.ok:
            logger.warning("assessment_document_unreadable", filename=upload.filename, error=extraction.error)
        texts.append(extraction.text)

    context = AssessmentContext(budget=budget, timeline=timeline, urgency=urgency)
    return await services.analyzer().assess(message, texts, context)


# ============================================================================
# Pricing
# ============================================================================


@router.post("/pricing/recommendations", response_model=RecommendationResponse)
async def price_recommendations(
    request: RecommendationRequest,
    services: Services = Depends(get_services),
):
    index = await services.market_index()
    batch = recommend_many(request.positions, index, services.config.pricing)
    return RecommendationResponse(
        recommendations=batch.recommendations,
        summary=RecommendationSummaryResponse(
            total_positions=batch.summary.total_positions,
            with_recommendation=batch.summary.with_recommendation,
            average_confidence=batch.summary.average_confidence,
        ),
    )


@router.get("/market/index", response_model=MarketIndexResponse)
async def market_index(
    trade_category: Optional[str] = Query(None),
    unit: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Description contains"),
    region: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    refresh: bool = Query(False, description="Rebuild from the store first"),
    services: Services = Depends(get_services),
):
    index = await services.market_index(refresh=refresh)
    entries = index.search(trade_category=trade_category, unit=unit, query=q, region=region, limit=limit)
    return MarketIndexResponse(total=len(index), returned=len(entries), entries=entries)


# ============================================================================
# Proposals
# ============================================================================


@router.get("/proposals", response_model=ProposalListResponse)
async def list_proposals(
    status_filter: Optional[ProposalStatus] = Query(ProposalStatus.PENDING, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    proposals = await services.workflow().list_proposals(status_filter, limit)
    return ProposalListResponse(count=len(proposals), proposals=proposals)


async def _resolve(
    services: Services, proposal_id: UUID, decision: Decision, body: ProposalDecisionRequest | None
) -> PriceUpdateProposal:
    body = body or ProposalDecisionRequest()
    proposal = await services.workflow().apply_proposal(
        proposal_id, decision, resolved_by=body.resolved_by, note=body.note
    )
    if decision is Decision.APPROVE:
        # Approved items change the catalog side of the market
        await services.market_index(refresh=True)
    return proposal


@router.post("/proposals/{proposal_id}/approve", response_model=PriceUpdateProposal)
async def approve_proposal(
    proposal_id: UUID,
    body: Optional[ProposalDecisionRequest] = None,
    services: Services = Depends(get_services),
):
    return await _resolve(services, proposal_id, Decision.APPROVE, body)


@router.post("/proposals/{proposal_id}/reject", response_model=PriceUpdateProposal)
async def reject_proposal(
    proposal_id: UUID,
    body: Optional[ProposalDecisionRequest] = None,
    services: Services = Depends(get_services),
):
    return await _resolve(services, proposal_id, Decision.REJECT, body)


# ============================================================================
# Statistics & health
# ============================================================================


@router.get("/stats", response_model=StatsResponse)
async def stats(services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        result = await get_price_database_stats(session)
    index = await services.market_index()
    return StatsResponse(**asdict(result), market_entries=len(index))


@health_router.get("", status_code=status.HTTP_200_OK)
async def health_check(services: Services = Depends(get_services)):
    """Check application health.

    Verifies database connectivity.
    """
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("health_check_failed", error=str(e))
        return {"status": "error", "database": "disconnected", "detail": str(e)}
    return {"status": "ok", "database": "connected"}
