"""Output schemas for structured generation.

Field names are camelCase on the wire (what the model is asked to emit) and
snake_case in Python. Every schema is validated as a whole: a single bad
field fails the call.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from priceintel.models import Level, PositionCategory


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeneratedPosition(_Schema):
    code: str = Field("", description='Positionsnummer (z.B. "01.001")')
    description: str = Field(..., min_length=1, description="Beschreibung der Leistung")
    quantity: Decimal = Field(Decimal("1"), ge=0, description="Menge")
    unit: str = Field("Stk", description="Einheit (m², m³, Stk, h, psch, ...)")
    unit_price: Decimal = Field(Decimal("0"), ge=0, description="Einzelpreis netto")
    total_price: Decimal | None = Field(None, description="Gesamtpreis laut Dokument")
    category: PositionCategory = Field(
        PositionCategory.OTHER, description="labor, material, equipment oder other"
    )
    trade_category: str = Field("Allgemein", description="Handwerkssparte (Elektrik, Sanitär, ...)")
    work_type: str = Field("Sonstiges", description="Arbeitstyp (Installation, Reparatur, ...)")
    confidence: float = Field(0.7, ge=0, le=1, description="Sicherheit der Extraktion (0-1)")


class GeneratedOfferMetadata(_Schema):
    region: str | None = Field(None, description="Region oder Ort des Projekts")
    trade_type: str | None = Field(None, description="Hauptgewerk")
    project_size: str | None = Field(None, description="small, medium oder large")
    complexity: Level = Field(Level.MEDIUM, description="low, medium oder high")


class GeneratedOffer(_Schema):
    """Full reconstruction of a historical offer."""

    title: str = Field(..., min_length=1, description="Titel des Angebots")
    offer_date: date | None = Field(None, description="Angebotsdatum im Format YYYY-MM-DD")
    customer_name: str | None = Field(None, description="Name des Kunden")
    project_type: str | None = Field(None, description="Art des Projekts")
    total_amount: Decimal | None = Field(None, description="Gesamtsumme laut Dokument")
    currency: str = Field("EUR", min_length=3, max_length=3, description="ISO-Währungscode")
    positions: list[GeneratedPosition] = Field(default_factory=list)
    metadata: GeneratedOfferMetadata = Field(default_factory=GeneratedOfferMetadata)


class SuggestedPosition(_Schema):
    code: str = Field(..., description='Positionscode (z.B. "01.001")')
    title: str = Field(..., description="Kurzer Titel der Position")
    description: str = Field("", description="Detaillierte Beschreibung")
    quantity: Decimal = Field(..., ge=0, description="Geschätzte Menge")
    unit: str = Field(..., description="Einheit (m², m³, Stk, etc.)")
    estimated_price: Decimal = Field(..., ge=0, description="Geschätzter Gesamtpreis der Position")


class Assessment(_Schema):
    """Quick lead-qualification assessment of a customer request."""

    project_type: str = Field(..., description="Art des Bauprojekts")
    estimated_value: Decimal = Field(..., ge=0, description="Geschätzter Projektwert in Euro")
    complexity: Level = Field(..., description="Komplexität des Projekts")
    urgency: Level = Field(..., description="Dringlichkeit basierend auf Kundenwünschen")
    key_requirements: list[str] = Field(default_factory=list, description="Hauptanforderungen")
    suggested_positions: list[SuggestedPosition] = Field(
        default_factory=list, description="Vorgeschlagene Angebotspositionen"
    )
    risk_factors: list[str] = Field(default_factory=list, description="Risikofaktoren")
    recommendations: list[str] = Field(default_factory=list, description="Empfehlungen")
