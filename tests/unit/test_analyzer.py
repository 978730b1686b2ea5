"""Unit tests for offer reconstruction and request assessment."""

from __future__ import annotations

from decimal import Decimal

import pytest

from priceintel.analysis.analyzer import AssessmentContext, OfferAnalyzer, to_record
from priceintel.analysis.schemas import Assessment, GeneratedOffer
from priceintel.errors import AnalysisError, SchemaValidationError
from priceintel.models import Level, UploadedDocument


def assessment() -> Assessment:
    return Assessment(
        project_type="Badsanierung",
        estimated_value=Decimal("18000"),
        complexity=Level.MEDIUM,
        urgency=Level.HIGH,
        key_requirements=["Bodengleiche Dusche"],
        suggested_positions=[
            {
                "code": "01.001",
                "title": "Fliesen entfernen",
                "quantity": Decimal("20"),
                "unit": "m²",
                "estimatedPrice": Decimal("900"),
            }
        ],
    )


class TestToRecord:
    def test_totals_recomputed(self, make_offer):
        """Test stated position totals are ignored and the offer total is summed."""
        generated = make_offer(
            positions=[
                {"description": "Kabel verlegen", "quantity": Decimal("100"), "unit": "m",
                 "unit_price": Decimal("8.40"), "total_price": Decimal("1"), "confidence": 0.9},
                {"description": "Verteiler setzen", "quantity": Decimal("1"), "unit": "Stk",
                 "unit_price": Decimal("350"), "confidence": 0.8},
            ],
            total_amount=Decimal("5"),
        )

        record = to_record(generated)

        assert [p.total_price for p in record.positions] == [Decimal("840.00"), Decimal("350.00")]
        assert record.total_amount == Decimal("1190.00")

    def test_missing_codes_numbered(self, make_offer):
        generated = make_offer(
            positions=[
                {"description": "a", "unit_price": Decimal("1")},
                {"code": "  ", "description": "b", "unit_price": Decimal("1")},
            ]
        )
        assert [p.code for p in to_record(generated).positions] == ["001", "002"]

    def test_total_without_positions(self, make_offer):
        record = to_record(make_offer(positions=[], total_amount=Decimal("1234.5")))
        assert record.total_amount == Decimal("1234.50")

    def test_currency_uppercased(self, make_offer):
        assert to_record(make_offer(currency="eur")).currency == "EUR"

    def test_camel_case_wire_format(self):
        generated = GeneratedOffer.model_validate(
            {
                "title": "Angebot",
                "offerDate": "2024-03-01",
                "positions": [
                    {"description": "Heizkörper tauschen", "unitPrice": "320.00",
                     "tradeCategory": "Heizung", "workType": "Austausch"}
                ],
                "metadata": {"region": "Bayern"},
            }
        )
        record = to_record(generated)
        assert record.offer_date.isoformat() == "2024-03-01"
        assert record.positions[0].trade_category == "Heizung"
        assert record.metadata.region == "Bayern"


class TestOfferAnalyzer:
    async def test_analyze_document(self, make_generator, make_offer):
        generator = make_generator(lambda prompt, schema: make_offer())
        document = UploadedDocument(
            filename="angebot.pdf", checksum="abc123", extracted_text="Steckdose montieren 10 Stk 45,00"
        )

        record = await OfferAnalyzer(generator).analyze(document)

        assert record.document_id == document.id
        assert record.source_document == "abc123"
        assert record.total_amount == Decimal("450.00")
        prompt, schema = generator.calls[0]
        assert schema is GeneratedOffer
        assert "DATEI: angebot.pdf" in prompt.user
        assert "Steckdose montieren 10 Stk 45,00" in prompt.user

    async def test_document_without_text(self, make_generator, make_offer):
        generator = make_generator(lambda prompt, schema: make_offer())
        with pytest.raises(AnalysisError, match="no extracted text"):
            await OfferAnalyzer(generator).analyze(UploadedDocument(filename="a.pdf", extracted_text="  "))
        assert generator.calls == []

    async def test_schema_error_propagates(self, make_generator):
        def fail(prompt, schema):
            raise SchemaValidationError("bad output", schema_name="GeneratedOffer", raw_output="{}")

        with pytest.raises(SchemaValidationError) as exc_info:
            await OfferAnalyzer(make_generator(fail)).analyze_text("text")
        assert exc_info.value.raw_output == "{}"

    async def test_text_truncated(self, make_generator, make_offer):
        generator = make_generator(lambda prompt, schema: make_offer())
        await OfferAnalyzer(generator, max_chars=10).analyze_text("0123456789ABCDEF")
        prompt, _ = generator.calls[0]
        assert "0123456789" in prompt.user
        assert "ABCDEF" not in prompt.user


class TestAssess:
    async def test_assess_with_context(self, make_generator):
        generator = make_generator(lambda prompt, schema: assessment())

        result = await OfferAnalyzer(generator).assess(
            "Bad komplett sanieren",
            ["Grundriss 8 m²"],
            AssessmentContext(budget="20.000 €", timeline="Juni"),
        )

        assert result.urgency is Level.HIGH
        assert result.suggested_positions[0].estimated_price == Decimal("900")
        prompt, schema = generator.calls[0]
        assert schema is Assessment
        assert "Bad komplett sanieren" in prompt.user
        assert "Budget: 20.000 €" in prompt.user
        assert "DOKUMENT 1:\nGrundriss 8 m²" in prompt.user

    async def test_documents_only(self, make_generator):
        generator = make_generator(lambda prompt, schema: assessment())
        await OfferAnalyzer(generator).assess("", ["Anfrage per Dokument"])
        assert len(generator.calls) == 1

    async def test_nothing_to_assess(self, make_generator):
        generator = make_generator(lambda prompt, schema: assessment())
        with pytest.raises(AnalysisError):
            await OfferAnalyzer(generator).assess("  ", ["", " "])

    async def test_documents_share_char_budget(self, make_generator):
        generator = make_generator(lambda prompt, schema: assessment())
        await OfferAnalyzer(generator, max_chars=8).assess("Anfrage", ["AAAAAA", "BBBBBB"])
        prompt, _ = generator.calls[0]
        assert "AAAAAA" in prompt.user
        assert "BB" in prompt.user
        assert "BBB" not in prompt.user
