"""Integration tests for batch ingestion.

Covers per-document isolation, timeouts, validation before parsing,
document lifecycle, proposal creation and the market index rebuild.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from priceintel.config import MEGABYTE, IngestionConfig
from priceintel.db.documents import get_document, get_offer_record, get_price_database_stats
from priceintel.errors import GenerationError, PersistenceError, ValidationError
from priceintel.extraction import extractors
from priceintel.extraction.validator import RawUpload
from priceintel.ingestion import pipeline as pipeline_module
from priceintel.ingestion.pipeline import STORE_FAILED, VALIDATED_OK, IngestionPipeline
from priceintel.models import DocumentStatus, UpdateType
from priceintel.pricing.index import MarketIndexHolder

SOCKET_OFFER = "Pos 01.001 Steckdose montieren 10 Stk à 45,00 EUR".encode("utf-8")


def upload(name: str, content: bytes = SOCKET_OFFER) -> RawUpload:
    return RawUpload(filename=name, content=content, content_type="text/plain")


@pytest.fixture
def handler(make_offer):
    """Generation behaviour keyed by the filename in the prompt."""

    async def _handle(prompt, schema):
        if "DATEI: broken.txt" in prompt.user:
            raise GenerationError("model unavailable")
        if "DATEI: slow.txt" in prompt.user:
            await asyncio.sleep(5)
        return make_offer(title="Angebot Elektro")

    return _handle


@pytest.fixture
def index_holder() -> MarketIndexHolder:
    return MarketIndexHolder()


@pytest.fixture
def build_pipeline(session_factory, pricing_config, make_generator, handler, index_holder):
    def _build(ingestion: IngestionConfig | None = None) -> IngestionPipeline:
        from priceintel.analysis.analyzer import OfferAnalyzer

        return IngestionPipeline(
            session_factory,
            OfferAnalyzer(make_generator(handler)),
            ingestion or IngestionConfig(document_timeout_seconds=2.0),
            pricing_config,
            index_holder=index_holder,
        )

    return _build


class TestIngestBatch:
    async def test_successful_document(self, build_pipeline, session_factory, index_holder):
        result = await build_pipeline().ingest_batch([upload("angebot.txt")])

        [outcome] = result.outcomes
        assert outcome.outcome == VALIDATED_OK
        assert outcome.ok
        assert outcome.record.total_amount == Decimal("450.00")

        async with session_factory() as session:
            document = await get_document(session, outcome.document_id)
            stored = await get_offer_record(session, outcome.record.id)
        assert document.status is DocumentStatus.COMPLETED
        assert document.file_type == "text"
        assert document.processed_at is not None
        assert "Steckdose montieren" in document.extracted_text
        assert stored.positions[0].unit_price == Decimal("45.00")
        assert stored.source_document == document.checksum

    async def test_one_failure_does_not_abort_batch(self, build_pipeline, session_factory):
        result = await build_pipeline().ingest_batch(
            [upload("a.txt"), upload("broken.txt"), upload("b.txt", SOCKET_OFFER + b" ")]
        )

        assert [o.outcome for o in result.outcomes] == [
            VALIDATED_OK,
            "analysis-failed:model unavailable",
            VALIDATED_OK,
        ]
        async with session_factory() as session:
            failed = await get_document(session, result.outcomes[1].document_id)
        assert failed.status is DocumentStatus.FAILED
        assert failed.error_message == "model unavailable"

    async def test_timeout(self, build_pipeline):
        pipeline = build_pipeline(IngestionConfig(document_timeout_seconds=0.2))

        result = await pipeline.ingest_batch([upload("slow.txt"), upload("fast.txt")])

        assert result.outcomes[0].outcome == "analysis-failed:timeout after 0.2s"
        assert result.outcomes[1].outcome == VALIDATED_OK

    async def test_validation_failures_in_upload_order(self, build_pipeline):
        result = await build_pipeline().ingest_batch(
            [
                upload("leer.txt", b""),
                upload("a.txt"),
                upload("angebot.docx"),
                upload("a.txt", b"zweite Datei"),
            ]
        )

        assert [o.outcome for o in result.outcomes] == [
            "validation-failed:empty",
            VALIDATED_OK,
            "validation-failed:disallowed_type",
            "validation-failed:duplicate",
        ]
        assert result.outcomes[0].document_id is None

    async def test_oversized_file_never_parsed(self, build_pipeline, monkeypatch):
        """Test a 12MB PDF is rejected before any extractor runs."""
        parsed: list[str] = []
        original = extractors.extract_text

        def recording_extract(raw):
            parsed.append(raw.filename)
            return original(raw)

        monkeypatch.setattr(pipeline_module, "extract_text", recording_extract)

        result = await build_pipeline().ingest_batch(
            [RawUpload("gross.pdf", b"%PDF" + b"0" * (12 * MEGABYTE)), upload("a.txt")]
        )

        assert result.outcomes[0].outcome == "validation-failed:too_large"
        assert parsed == ["a.txt"]

    async def test_batch_over_limit(self, build_pipeline):
        with pytest.raises(ValidationError) as exc_info:
            await build_pipeline().ingest_batch([upload(f"{i}.txt") for i in range(6)])
        assert exc_info.value.reason == "batch_too_large"

    async def test_extraction_failure_keeps_placeholder(self, build_pipeline, session_factory):
        result = await build_pipeline().ingest_batch([upload("kaputt.pdf", b"this is not a pdf")])

        [outcome] = result.outcomes
        assert outcome.outcome.startswith("extraction-failed:")
        assert outcome.record is None
        async with session_factory() as session:
            document = await get_document(session, outcome.document_id)
        assert document.status is DocumentStatus.FAILED
        assert document.extracted_text.startswith("[Inhalt von kaputt.pdf")


class TestIndexAndProposals:
    async def test_index_rebuilt_and_swapped(self, build_pipeline, index_holder):
        result = await build_pipeline().ingest_batch([upload("a.txt"), upload("b.txt", SOCKET_OFFER + b"!")])

        assert result.index is index_holder.current
        entry = result.index.lookup("Steckdose montieren", "Stk", "Elektrik")
        assert entry.source_count == 2
        assert entry.price_range.avg == Decimal("45.00")

    async def test_no_rebuild_without_records(self, build_pipeline, index_holder):
        before = index_holder.current
        result = await build_pipeline().ingest_batch([upload("broken.txt")])

        assert result.index is None
        assert index_holder.current is before

    async def test_failed_documents_excluded_from_index(self, build_pipeline, index_holder):
        await build_pipeline().ingest_batch([upload("a.txt"), upload("broken.txt")])
        assert index_holder.current.lookup("Steckdose montieren", "Stk", "Elektrik").source_count == 1

    async def test_new_item_proposals(self, build_pipeline, session_factory):
        result = await build_pipeline().ingest_batch([upload("a.txt")])

        [proposal] = result.outcomes[0].proposals
        assert proposal.update_type is UpdateType.NEW_ITEM
        assert proposal.source_document == result.outcomes[0].record.source_document

        async with session_factory() as session:
            stats = await get_price_database_stats(session)
        assert stats.total_documents == 1
        assert stats.analyzed_documents == 1
        assert stats.pending_proposals == 1
        assert stats.active_pricebook_items == 0
        assert stats.total_offer_value == Decimal("450.00")
        assert stats.analysis_rate_pct == 100.0

    async def test_proposals_can_be_disabled(self, build_pipeline):
        pipeline = build_pipeline(IngestionConfig(propose_updates=False))
        result = await pipeline.ingest_batch([upload("a.txt")])
        assert result.outcomes[0].proposals == []

    async def test_proposal_failure_keeps_document_outcome(self, build_pipeline, monkeypatch):
        pipeline = build_pipeline()

        async def failing(positions, source_document):
            raise PersistenceError("Commit failed: disk full")

        monkeypatch.setattr(pipeline.workflow, "propose_updates", failing)

        result = await pipeline.ingest_batch([upload("a.txt")])

        assert result.outcomes[0].ok
        assert result.outcomes[0].proposal_error == "Commit failed: disk full"


class TestStoreFailures:
    async def test_one_store_failure_does_not_abort_batch(self, build_pipeline, session_factory, monkeypatch):
        """Test a document whose results cannot be written fails alone and ends in a terminal state."""
        original = pipeline_module.save_offer_record
        calls: list[str] = []

        async def flaky_save(session, record, **kwargs):
            calls.append(record.source_document)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO extracted_offers", {}, Exception("disk I/O error"))
            return await original(session, record, **kwargs)

        monkeypatch.setattr(pipeline_module, "save_offer_record", flaky_save)

        result = await build_pipeline().ingest_batch([upload("a.txt"), upload("b.txt", SOCKET_OFFER + b" ")])

        assert [o.outcome for o in result.outcomes] == [STORE_FAILED, VALIDATED_OK]
        assert result.outcomes[0].record is None
        assert result.outcomes[0].proposals == []

        async with session_factory() as session:
            failed = await get_document(session, result.outcomes[0].document_id)
            stored = await get_document(session, result.outcomes[1].document_id)
            record = await get_offer_record(session, result.outcomes[1].record.id)
        assert failed.status is DocumentStatus.FAILED
        assert "disk I/O error" in failed.error_message
        assert stored.status is DocumentStatus.COMPLETED
        assert record is not None

        assert result.index.lookup("Steckdose montieren", "Stk", "Elektrik").source_count == 1


class TestRepeatedUploads:
    async def test_identical_bytes_share_source_document(self, build_pipeline, session_factory):
        result = await build_pipeline().ingest_batch([upload("a.txt"), upload("kopie.txt")])

        first, second = result.outcomes
        assert first.ok and second.ok
        assert first.record.source_document == second.record.source_document

    async def test_reupload_counts_as_one_source(self, build_pipeline, index_holder):
        """Test the same offer uploaded three times is still a single market source."""
        pipeline = build_pipeline()

        await pipeline.ingest_batch([upload("a.txt"), upload("kopie.txt")])
        result = await pipeline.ingest_batch([upload("nochmal.txt")])

        entry = result.index.lookup("Steckdose montieren", "Stk", "Elektrik")
        assert entry.source_count == 1
        assert entry.confidence == 0.6
        assert index_holder.current is result.index
