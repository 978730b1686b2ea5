"""Queries for uploaded documents, offer reconstructions and statistics."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from priceintel.canonical.key_generator import market_key
from priceintel.db.models import (
    ExtractedOfferModel,
    ExtractedPriceModel,
    PriceBookItemModel,
    PriceUpdateModel,
    UploadedDocumentModel,
)
from priceintel.models import (
    DocumentStatus,
    ExtractedOfferRecord,
    Level,
    OfferMetadata,
    OfferPosition,
    PositionCategory,
    ProposalStatus,
    UploadedDocument,
    to_money,
)


@dataclass
class PriceDatabaseStats:
    total_documents: int
    analyzed_documents: int
    failed_documents: int
    extracted_offers: int
    extracted_prices: int
    active_pricebook_items: int
    pending_proposals: int
    total_offer_value: Decimal
    analysis_rate_pct: float


async def add_document(session: AsyncSession, document: UploadedDocument) -> None:
    session.add(
        UploadedDocumentModel(
            id=document.id,
            filename=document.filename,
            content_type=document.content_type,
            file_type=document.file_type,
            size_bytes=document.size_bytes,
            checksum=document.checksum,
            extracted_text=document.extracted_text,
            status=document.status.value,
            error_message=document.error_message,
            uploaded_at=document.uploaded_at,
            processed_at=document.processed_at,
        )
    )
    await session.flush()


async def update_document(session: AsyncSession, document: UploadedDocument) -> None:
    """Write status, text and error fields of an existing document row.

    Raises:
        LookupError: If the document row does not exist
    """
    row = await session.get(UploadedDocumentModel, document.id)
    if row is None:
        raise LookupError(f"Uploaded document {document.id} not found")

    row.file_type = document.file_type
    row.extracted_text = document.extracted_text
    row.status = document.status.value
    row.error_message = document.error_message
    row.processed_at = document.processed_at
    await session.flush()


async def get_document(session: AsyncSession, document_id: UUID) -> UploadedDocument | None:
    row = await session.get(UploadedDocumentModel, document_id)
    return _row_to_document(row) if row is not None else None


async def list_documents(
    session: AsyncSession, status: DocumentStatus | None = None, limit: int = 50
) -> list[UploadedDocument]:
    stmt = select(UploadedDocumentModel).order_by(UploadedDocumentModel.uploaded_at.desc())
    if status is not None:
        stmt = stmt.where(UploadedDocumentModel.status == status.value)
    result = await session.execute(stmt.limit(limit))
    return [_row_to_document(row) for row in result.scalars()]


async def save_offer_record(
    session: AsyncSession, record: ExtractedOfferRecord, partition_by_region: bool = False
) -> None:
    """Persist a reconstruction with all of its positions.

    Positions below the confidence threshold are stored too (audit trail);
    the threshold is applied when records are aggregated.
    """
    offer = ExtractedOfferModel(
        id=record.id,
        document_id=record.document_id,
        source_document=record.source_document,
        title=record.title,
        offer_date=record.offer_date,
        customer_name=record.customer_name,
        project_type=record.project_type,
        total_amount=record.total_amount,
        currency=record.currency,
        region=record.metadata.region,
        trade_type=record.metadata.trade_type,
        project_size=record.metadata.project_size,
        complexity=record.metadata.complexity.value,
        created_at=record.created_at,
    )
    offer.prices = [
        ExtractedPriceModel(
            position_index=index,
            code=position.code,
            description=position.description,
            quantity=position.quantity,
            unit=position.unit,
            unit_price=position.unit_price,
            total_price=position.total_price,
            category=position.category.value,
            trade_category=position.trade_category,
            work_type=position.work_type,
            confidence=position.confidence,
            market_key=market_key(
                position.description,
                position.unit,
                position.trade_category,
                region=record.metadata.region,
                partition_by_region=partition_by_region,
            ),
        )
        for index, position in enumerate(record.positions)
    ]
    session.add(offer)
    await session.flush()


async def get_offer_record(session: AsyncSession, record_id: UUID) -> ExtractedOfferRecord | None:
    row = await session.get(ExtractedOfferModel, record_id)
    return _row_to_record(row) if row is not None else None


async def list_offer_records(session: AsyncSession, limit: int = 50) -> list[ExtractedOfferRecord]:
    stmt = select(ExtractedOfferModel).order_by(ExtractedOfferModel.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return [_row_to_record(row) for row in result.scalars()]


async def load_completed_records(session: AsyncSession) -> list[ExtractedOfferRecord]:
    """Reconstructions whose source document finished processing."""
    stmt = (
        select(ExtractedOfferModel)
        .outerjoin(UploadedDocumentModel, ExtractedOfferModel.document_id == UploadedDocumentModel.id)
        .where(
            or_(
                ExtractedOfferModel.document_id.is_(None),
                UploadedDocumentModel.status == DocumentStatus.COMPLETED.value,
            )
        )
        .order_by(ExtractedOfferModel.created_at, ExtractedOfferModel.id)
    )
    result = await session.execute(stmt)
    return [_row_to_record(row) for row in result.scalars()]


async def get_price_database_stats(session: AsyncSession) -> PriceDatabaseStats:
    async def count(stmt) -> int:
        return (await session.execute(stmt)).scalar_one() or 0

    total_documents = await count(select(func.count()).select_from(UploadedDocumentModel))
    analyzed = await count(
        select(func.count())
        .select_from(UploadedDocumentModel)
        .where(UploadedDocumentModel.status == DocumentStatus.COMPLETED.value)
    )
    failed = await count(
        select(func.count())
        .select_from(UploadedDocumentModel)
        .where(UploadedDocumentModel.status == DocumentStatus.FAILED.value)
    )
    offers = await count(select(func.count()).select_from(ExtractedOfferModel))
    prices = await count(select(func.count()).select_from(ExtractedPriceModel))
    active_items = await count(
        select(func.count())
        .select_from(PriceBookItemModel)
        .where(PriceBookItemModel.is_active.is_(True))
    )
    pending = await count(
        select(func.count())
        .select_from(PriceUpdateModel)
        .where(PriceUpdateModel.status == ProposalStatus.PENDING.value)
    )
    total_value = (
        await session.execute(select(func.coalesce(func.sum(ExtractedOfferModel.total_amount), 0)))
    ).scalar_one()

    return PriceDatabaseStats(
        total_documents=total_documents,
        analyzed_documents=analyzed,
        failed_documents=failed,
        extracted_offers=offers,
        extracted_prices=prices,
        active_pricebook_items=active_items,
        pending_proposals=pending,
        total_offer_value=to_money(total_value),
        analysis_rate_pct=round(analyzed / total_documents * 100, 1) if total_documents else 0.0,
    )


def _row_to_document(row: UploadedDocumentModel) -> UploadedDocument:
    return UploadedDocument(
        id=row.id,
        filename=row.filename,
        content_type=row.content_type,
        file_type=row.file_type,
        size_bytes=row.size_bytes,
        checksum=row.checksum,
        extracted_text=row.extracted_text,
        status=DocumentStatus(row.status),
        error_message=row.error_message,
        uploaded_at=row.uploaded_at,
        processed_at=row.processed_at,
    )


def _row_to_record(row: ExtractedOfferModel) -> ExtractedOfferRecord:
    return ExtractedOfferRecord(
        id=row.id,
        document_id=row.document_id,
        source_document=row.source_document,
        title=row.title,
        offer_date=row.offer_date,
        customer_name=row.customer_name,
        project_type=row.project_type,
        total_amount=row.total_amount,
        currency=row.currency,
        positions=[
            OfferPosition(
                code=price.code,
                description=price.description,
                quantity=price.quantity,
                unit=price.unit,
                unit_price=price.unit_price,
                category=PositionCategory(price.category),
                trade_category=price.trade_category,
                work_type=price.work_type,
                confidence=price.confidence,
            )
            for price in row.prices
        ],
        metadata=OfferMetadata(
            region=row.region,
            trade_type=row.trade_type,
            project_size=row.project_size,
            complexity=Level(row.complexity),
        ),
        created_at=row.created_at,
    )
