"""Offer analyzer: extracted text to validated structured data.

Two contracts are offered on top of a StructuredGenerator:

- ``analyze``: full reconstruction of a finished historical offer, feeding
  the market index
- ``assess``: quick lead-qualification of a customer request

Totals coming back from generation are never trusted; position totals and the
offer total are recomputed from quantities and unit prices.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from priceintel.analysis.generator import StructuredGenerator
from priceintel.analysis.prompts import assessment_prompt, reconstruction_prompt
from priceintel.analysis.schemas import Assessment, GeneratedOffer
from priceintel.errors import AnalysisError
from priceintel.models import (
    ExtractedOfferRecord,
    OfferMetadata,
    OfferPosition,
    UploadedDocument,
    to_money,
)

logger = logging.getLogger(__name__)


@dataclass
class AssessmentContext:
    """Optional framing supplied with a customer request."""

    budget: str | None = None
    timeline: str | None = None
    urgency: str | None = None


class OfferAnalyzer:
    """Schema-validated analysis of offer documents and customer requests."""

    def __init__(self, generator: StructuredGenerator, max_chars: int = 60000):
        self.generator = generator
        self.max_chars = max_chars

    async def analyze(self, document: UploadedDocument) -> ExtractedOfferRecord:
        """Reconstruct the offer contained in an uploaded document.

        Raises:
            AnalysisError: If the document has no text or generation fails
        """
        if not document.extracted_text or not document.extracted_text.strip():
            raise AnalysisError(f"Document {document.filename!r} has no extracted text")

        record = await self.analyze_text(document.extracted_text, filename=document.filename)
        record.document_id = document.id
        record.source_document = document.source_document
        return record

    async def analyze_text(self, text: str, filename: str | None = None) -> ExtractedOfferRecord:
        """Reconstruct an offer from plain text."""
        prompt = reconstruction_prompt(self._truncate(text, filename), filename)
        generated = await self.generator.generate(prompt, GeneratedOffer)

        record = to_record(generated)
        logger.info(
            f"Reconstructed offer {record.title!r} with {len(record.positions)} positions "
            f"(total {record.total_amount} {record.currency})"
        )
        return record

    async def assess(
        self,
        message: str,
        documents: Sequence[str] = (),
        context: AssessmentContext | None = None,
    ) -> Assessment:
        """Assess a customer request with optional supporting document texts.

        Raises:
            AnalysisError: If there is nothing to assess or generation fails
        """
        if not message.strip() and not any(doc.strip() for doc in documents):
            raise AnalysisError("Assessment needs a message or at least one document")

        context = context or AssessmentContext()
        budget = self.max_chars
        texts = []
        for doc in documents:
            texts.append(doc[: max(budget, 0)])
            budget -= len(doc)
        if budget < 0:
            logger.warning(f"Assessment documents truncated to {self.max_chars} characters")

        prompt = assessment_prompt(
            message,
            [t for t in texts if t],
            budget=context.budget,
            timeline=context.timeline,
            urgency=context.urgency,
        )
        assessment = await self.generator.generate(prompt, Assessment)
        logger.info(
            f"Assessed request as {assessment.project_type!r} "
            f"({assessment.complexity.value}/{assessment.urgency.value})"
        )
        return assessment

    def _truncate(self, text: str, filename: str | None) -> str:
        if len(text) <= self.max_chars:
            return text
        logger.warning(
            f"Text of {filename or 'document'} truncated from {len(text)} to {self.max_chars} characters"
        )
        return text[: self.max_chars]


def to_record(generated: GeneratedOffer) -> ExtractedOfferRecord:
    """Convert generation output into a record with recomputed totals."""
    positions = []
    for index, gp in enumerate(generated.positions, 1):
        if gp.total_price is not None and to_money(gp.total_price) != to_money(gp.quantity * gp.unit_price):
            logger.debug(
                f"Position {gp.code or index}: stated total {gp.total_price} replaced by "
                f"{gp.quantity} x {gp.unit_price}"
            )
        positions.append(
            OfferPosition(
                code=gp.code.strip() or f"{index:03d}",
                description=gp.description.strip(),
                quantity=gp.quantity,
                unit=gp.unit.strip() or "Stk",
                unit_price=gp.unit_price,
                category=gp.category,
                trade_category=gp.trade_category.strip() or "Allgemein",
                work_type=gp.work_type.strip() or "Sonstiges",
                confidence=gp.confidence,
            )
        )

    if positions:
        total = sum((p.total_price for p in positions), Decimal("0"))
    else:
        total = generated.total_amount or Decimal("0")

    return ExtractedOfferRecord(
        title=generated.title.strip(),
        offer_date=generated.offer_date,
        customer_name=generated.customer_name,
        project_type=generated.project_type,
        total_amount=to_money(total),
        currency=generated.currency.upper(),
        positions=positions,
        metadata=OfferMetadata(
            region=generated.metadata.region,
            trade_type=generated.metadata.trade_type,
            project_size=generated.metadata.project_size,
            complexity=generated.metadata.complexity,
        ),
    )
