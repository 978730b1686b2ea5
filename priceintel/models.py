"""Pydantic domain models for the price intelligence engine.

Money is carried as Decimal rounded to cents; confidence as float in [0, 1].
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Round a value half-up to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PositionCategory(str, Enum):
    LABOR = "labor"
    MATERIAL = "material"
    EQUIPMENT = "equipment"
    OTHER = "other"


class Level(str, Enum):
    """Three-step scale used for complexity and urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UpdateType(str, Enum):
    PRICE_UPDATE = "price_update"
    NEW_ITEM = "new_item"


class ProposalStatus(str, Enum):
    """Proposal states; APPROVED and REJECTED are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ProposalStatus.PENDING


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class MarketTrend(str, Enum):
    ABOVE_MARKET = "above_market"
    AT_MARKET = "at_market"
    BELOW_MARKET = "below_market"


class UploadedDocument(BaseModel):
    """An uploaded file and the text extracted from it."""

    id: UUID = Field(default_factory=uuid4)
    filename: str
    content_type: str | None = None
    file_type: str | None = None  # pdf, spreadsheet, text, gaeb
    size_bytes: int = 0
    checksum: str | None = None  # sha256 of the raw bytes
    extracted_text: str | None = None
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: str | None = None
    uploaded_at: datetime = Field(default_factory=utcnow)
    processed_at: datetime | None = None

    @property
    def source_document(self) -> str:
        """Stable identity of the document content (falls back to filename)."""
        return self.checksum or self.filename


class OfferPosition(BaseModel):
    """One line item of an offer.

    total_price is always recomputed from quantity and unit_price; whatever
    the source claimed is discarded.
    """

    code: str
    description: str
    quantity: Decimal = Decimal("1")
    unit: str = "Stk"
    unit_price: Decimal = Decimal("0")
    total_price: Decimal = Decimal("0")
    category: PositionCategory = PositionCategory.OTHER
    trade_category: str = "Allgemein"
    work_type: str = "Sonstiges"
    confidence: float = 0.7

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("confidence must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def recompute_total(self) -> OfferPosition:
        self.unit_price = to_money(self.unit_price)
        self.total_price = to_money(self.quantity * self.unit_price)
        return self

    def qualifies_for_market(self, threshold: float) -> bool:
        """High-confidence, priced positions feed aggregation and proposals."""
        return self.confidence >= threshold and self.unit_price > 0


class OfferMetadata(BaseModel):
    region: str | None = None
    trade_type: str | None = None
    project_size: str | None = None
    complexity: Level = Level.MEDIUM


class ExtractedOfferRecord(BaseModel):
    """Structured reconstruction of one historical offer."""

    id: UUID = Field(default_factory=uuid4)
    document_id: UUID | None = None
    source_document: str | None = None
    title: str
    offer_date: date | None = None
    customer_name: str | None = None
    project_type: str | None = None
    total_amount: Decimal = Decimal("0")
    currency: str = "EUR"
    positions: list[OfferPosition] = Field(default_factory=list)
    metadata: OfferMetadata = Field(default_factory=OfferMetadata)
    created_at: datetime = Field(default_factory=utcnow)

    def qualifying_positions(self, threshold: float) -> list[OfferPosition]:
        return [p for p in self.positions if p.qualifies_for_market(threshold)]


class PriceRange(BaseModel):
    min: Decimal
    max: Decimal
    avg: Decimal

    @model_validator(mode="after")
    def check_order(self) -> PriceRange:
        if not self.min <= self.avg <= self.max:
            raise ValueError(
                f"price range must satisfy min <= avg <= max, got {self.min}/{self.avg}/{self.max}"
            )
        return self


class MarketPriceEntry(BaseModel):
    """Aggregated market price for one normalized key (derived, rebuildable)."""

    key: str
    description: str
    unit: str
    trade_category: str
    work_type: str | None = None
    price_range: PriceRange
    confidence: float
    source_count: int
    sources: list[str] = Field(default_factory=list)
    last_updated: datetime | None = None
    region: str | None = None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0 <= v <= 0.95:
            raise ValueError("market confidence must be between 0 and 0.95")
        return v

    @property
    def unit_price(self) -> Decimal:
        return self.price_range.avg


class RecommendationQuery(BaseModel):
    """Target position for a price recommendation."""

    description: str
    unit: str
    trade_category: str
    region: str | None = None
    quantity: Decimal | None = None
    proposed_price: Decimal | None = None


class PriceRecommendation(BaseModel):
    query: RecommendationQuery
    has_market_data: bool
    recommended_price: Decimal | None = None
    price_range: PriceRange | None = None
    confidence: float = 0.0
    source_count: int = 0
    sources: list[str] = Field(default_factory=list)
    safety_margin_applied: bool = False
    market_trend: MarketTrend | None = None
    market_key: str | None = None
    message: str | None = None


class PriceBookItem(BaseModel):
    """Canonical catalog entry. Changed only through approved proposals."""

    id: UUID = Field(default_factory=uuid4)
    title: str
    code: str
    unit: str
    branch: str
    base_material_cost: Decimal = Decimal("0")
    base_minutes: Decimal = Decimal("0")
    markup_material_pct: Decimal = Decimal("20")
    overhead_pct: Decimal = Decimal("15")
    region_factor: Decimal = Decimal("1.0")
    is_active: bool = True
    variant_group: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def effective_unit_price(self, hourly_rate: Decimal) -> Decimal:
        """Material cost plus labor minutes at the hourly rate."""
        return to_money(self.base_material_cost + self.base_minutes * hourly_rate / 60)


class PriceUpdateProposal(BaseModel):
    """Pending, human-approvable mutation of the pricebook."""

    id: UUID = Field(default_factory=uuid4)
    pricebook_item_id: UUID | None
    source_document: str
    update_type: UpdateType
    old_price: Decimal | None = None
    new_price: Decimal
    price_change_pct: Decimal | None = None
    status: ProposalStatus = ProposalStatus.PENDING
    match_method: str | None = None  # exact, fuzzy, none
    description: str | None = None
    unit: str | None = None
    trade_category: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    note: str | None = None
