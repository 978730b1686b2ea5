"""Batch ingestion of historical offer documents.

Stages for one batch:

1. Validate the batch (size, type, empty, duplicate names) before parsing
2. Register accepted uploads as ``processing`` documents
3. Extract and analyze every document concurrently, bounded by a semaphore
   and a per-document timeout; this stage touches no shared state
4. Store results one document at a time (status, text, reconstruction);
   a document whose results cannot be stored is marked failed
5. Propose pricebook updates from qualifying positions
6. Rebuild the market index and swap it in

One failing document never aborts the others; each gets its own outcome.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterator, Sequence
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from priceintel.analysis.analyzer import OfferAnalyzer
from priceintel.config import IngestionConfig, PricingConfig
from priceintel.db.documents import (
    add_document,
    load_completed_records,
    save_offer_record,
    update_document,
)
from priceintel.errors import AnalysisError, PersistenceError, ValidationError
from priceintel.extraction.extractors import extract_text
from priceintel.extraction.validator import RawUpload, validate_batch
from priceintel.models import (
    DocumentStatus,
    ExtractedOfferRecord,
    PriceBookItem,
    PriceUpdateProposal,
    UploadedDocument,
    utcnow,
)
from priceintel.pricing.index import MarketIndex, MarketIndexHolder, SourceLoader
from priceintel.workflow.repository import SqlPricingCatalogStore
from priceintel.workflow.service import PricebookWorkflow

logger = structlog.get_logger(__name__)

VALIDATED_OK = "validated-ok"
STORE_FAILED = "analysis-failed:persistence"


@dataclass
class DocumentOutcome:
    """User-visible result for one uploaded file."""

    filename: str
    outcome: str
    document_id: UUID | None = None
    record: ExtractedOfferRecord | None = None
    proposals: list[PriceUpdateProposal] = field(default_factory=list)
    proposal_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == VALIDATED_OK


@dataclass
class BatchResult:
    outcomes: list[DocumentOutcome] = field(default_factory=list)
    index: MarketIndex | None = None

    @property
    def succeeded(self) -> list[DocumentOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[DocumentOutcome]:
        return [o for o in self.outcomes if not o.ok]


@dataclass
class _Processed:
    upload: RawUpload
    document: UploadedDocument
    outcome: str = VALIDATED_OK
    record: ExtractedOfferRecord | None = None


def market_source_loader(session_factory: async_sessionmaker[AsyncSession]) -> SourceLoader:
    """Loader returning active pricebook items and completed reconstructions."""

    async def load() -> tuple[list[PriceBookItem], list[ExtractedOfferRecord]]:
        async with session_factory() as session:
            catalog = await SqlPricingCatalogStore(session).list_active_items()
            records = await load_completed_records(session)
        return catalog, records

    return load


class IngestionPipeline:
    """Validates, extracts, analyzes and stores batches of offer documents."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        analyzer: OfferAnalyzer,
        ingestion: IngestionConfig,
        pricing: PricingConfig,
        index_holder: MarketIndexHolder | None = None,
        workflow: PricebookWorkflow | None = None,
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.ingestion = ingestion
        self.pricing = pricing
        self.index_holder = index_holder
        self.workflow = workflow or PricebookWorkflow(session_factory, pricing)

    async def ingest_batch(self, uploads: Sequence[RawUpload]) -> BatchResult:
        """Ingest a batch and report one outcome per file, in upload order.

        Raises:
            ValidationError: If the batch as a whole exceeds the file limit
            PersistenceError: If the batch's documents cannot be registered
        """
        validation = validate_batch(uploads, self.ingestion)
        log = logger.bind(batch_size=len(uploads), accepted=len(validation.accepted))
        log.info("batch_started")

        rejected = {
            id(upload): f"validation-failed:{error.reason}"
            for upload, error in _pair_rejections(uploads, validation.accepted, validation.rejected)
        }

        documents = await self._register(validation.accepted)

        semaphore = asyncio.Semaphore(self.ingestion.max_concurrency)
        processed = await asyncio.gather(
            *(self._process(semaphore, upload, doc) for upload, doc in zip(validation.accepted, documents))
        )

        by_upload: dict[int, DocumentOutcome] = {}
        for item in processed:
            try:
                await self._store(item)
            except PersistenceError as exc:
                log.error("document_store_failed", filename=item.upload.filename, error=str(exc))
                await self._mark_failed(item, exc)
            outcome = DocumentOutcome(
                filename=item.upload.filename,
                outcome=item.outcome,
                document_id=item.document.id,
                record=item.record,
            )
            if item.record is not None and self.ingestion.propose_updates:
                await self._propose(item, outcome)
            by_upload[id(item.upload)] = outcome

        result = BatchResult()
        for upload in uploads:
            if id(upload) in by_upload:
                result.outcomes.append(by_upload[id(upload)])
            else:
                result.outcomes.append(DocumentOutcome(filename=upload.filename, outcome=rejected[id(upload)]))

        if self.index_holder is not None and any(p.record is not None for p in processed):
            result.index = await self.index_holder.rebuild(
                market_source_loader(self.session_factory), self.pricing
            )

        log.info(
            "batch_finished",
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    async def _register(self, uploads: Sequence[RawUpload]) -> list[UploadedDocument]:
        documents = [
            UploadedDocument(
                filename=upload.filename,
                content_type=upload.content_type,
                size_bytes=upload.size_bytes,
                checksum=upload.checksum,
            )
            for upload in uploads
        ]
        try:
            async with self.session_factory() as session:
                for doc in documents:
                    doc.status = DocumentStatus.PROCESSING
                    await add_document(session, doc)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not register uploaded documents: {exc}") from exc
        return documents

    async def _process(
        self, semaphore: asyncio.Semaphore, upload: RawUpload, doc: UploadedDocument
    ) -> _Processed:
        item = _Processed(upload=upload, document=doc)
        log = logger.bind(filename=upload.filename, document_id=str(doc.id))

        async with semaphore:
            try:
                await asyncio.wait_for(
                    self._extract_and_analyze(item),
                    timeout=self.ingestion.document_timeout_seconds,
                )
            except asyncio.TimeoutError:
                stage = "extraction" if doc.extracted_text is None else "analysis"
                reason = f"timeout after {self.ingestion.document_timeout_seconds:g}s"
                item.outcome = f"{stage}-failed:{reason}"
                doc.status = DocumentStatus.FAILED
                doc.error_message = reason
            except Exception as exc:
                log.exception("document_processing_error")
                item.outcome = f"analysis-failed:{exc}"
                doc.status = DocumentStatus.FAILED
                doc.error_message = str(exc)

        doc.processed_at = utcnow()
        log.info("document_processed", outcome=item.outcome)
        return item

    async def _extract_and_analyze(self, item: _Processed) -> None:
        doc = item.document
        extraction = await asyncio.to_thread(extract_text, item.upload)
        doc.file_type = extraction.file_type
        doc.extracted_text = extraction.text

        if not extraction.ok:
            item.outcome = f"extraction-failed:{extraction.error}"
            doc.status = DocumentStatus.FAILED
            doc.error_message = extraction.error
            return

        try:
            item.record = await self.analyzer.analyze(doc)
        except AnalysisError as exc:
            item.outcome = f"analysis-failed:{exc}"
            doc.status = DocumentStatus.FAILED
            doc.error_message = str(exc)
            return

        doc.status = DocumentStatus.COMPLETED

    async def _store(self, item: _Processed) -> None:
        try:
            async with self.session_factory() as session:
                await update_document(session, item.document)
                if item.record is not None:
                    await save_offer_record(
                        session, item.record, partition_by_region=self.pricing.region_partitioning
                    )
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not store results for {item.upload.filename}: {exc}") from exc

    async def _mark_failed(self, item: _Processed, exc: PersistenceError) -> None:
        """Drop an unstorable result and leave its document in a terminal state."""
        item.outcome = STORE_FAILED
        item.record = None
        item.document.status = DocumentStatus.FAILED
        item.document.error_message = str(exc)
        try:
            async with self.session_factory() as session:
                await update_document(session, item.document)
                await session.commit()
        except SQLAlchemyError as status_exc:
            logger.error(
                "document_status_update_failed",
                filename=item.upload.filename,
                document_id=str(item.document.id),
                error=str(status_exc),
            )

    async def _propose(self, item: _Processed, outcome: DocumentOutcome) -> None:
        try:
            outcome.proposals = await self.workflow.propose_updates(
                item.record.positions, item.document.source_document
            )
        except PersistenceError as exc:
            logger.error("proposal_creation_failed", filename=item.upload.filename, error=str(exc))
            outcome.proposal_error = str(exc)


def _pair_rejections(
    uploads: Sequence[RawUpload],
    accepted: Sequence[RawUpload],
    rejected: Sequence[ValidationError],
) -> Iterator[tuple[RawUpload, ValidationError]]:
    """Pair rejected uploads with their validation errors, in upload order."""
    accepted_ids = {id(u) for u in accepted}
    errors = iter(rejected)
    for upload in uploads:
        if id(upload) not in accepted_ids:
            yield upload, next(errors)
