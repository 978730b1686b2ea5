"""SQLAlchemy async database models for the price intelligence engine.

Uploads and offer reconstructions are owned by the ingestion run that created
them; pricebook items are the single long-lived mutable resource and change
only when a price update proposal is approved.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class UploadedDocumentModel(Base):
    """Uploaded offer document and its extracted text."""

    __tablename__ = "uploaded_documents"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str | None] = mapped_column(Text)
    file_type: Mapped[str | None] = mapped_column(Text)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # sha256 of the raw bytes; identifies re-uploads of the same file
    checksum: Mapped[str | None] = mapped_column(String(64), index=True)

    extracted_text: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", index=True)
    error_message: Mapped[str | None] = mapped_column(Text)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="check_document_status",
        ),
    )


class ExtractedOfferModel(Base):
    """Structured reconstruction of one historical offer."""

    __tablename__ = "extracted_offers"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("uploaded_documents.id", ondelete="CASCADE"), index=True
    )
    source_document: Mapped[str | None] = mapped_column(Text, index=True)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    offer_date: Mapped[date | None] = mapped_column(Date)
    customer_name: Mapped[str | None] = mapped_column(Text)
    project_type: Mapped[str | None] = mapped_column(Text)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    # Metadata
    region: Mapped[str | None] = mapped_column(Text)
    trade_type: Mapped[str | None] = mapped_column(Text)
    project_size: Mapped[str | None] = mapped_column(Text)
    complexity: Mapped[str] = mapped_column(Text, nullable=False, default="medium")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    prices: Mapped[list[ExtractedPriceModel]] = relationship(
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="ExtractedPriceModel.position_index",
        lazy="selectin",
    )


class ExtractedPriceModel(Base):
    """One position of a reconstructed offer, kept regardless of confidence."""

    __tablename__ = "extracted_prices"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    offer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("extracted_offers.id", ondelete="CASCADE"), nullable=False
    )
    position_index: Mapped[int] = mapped_column(Integer, nullable=False)

    code: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default="other")
    trade_category: Mapped[str] = mapped_column(Text, nullable=False)
    work_type: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)

    market_key: Mapped[str] = mapped_column(Text, nullable=False)
    extraction_method: Mapped[str] = mapped_column(Text, nullable=False, default="ai_analysis")

    offer: Mapped[ExtractedOfferModel] = relationship(back_populates="prices")

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="check_price_confidence"),
        CheckConstraint("unit_price >= 0", name="check_extracted_price_non_negative"),
        Index("idx_extracted_prices_offer", "offer_id", "position_index"),
        Index("idx_extracted_prices_key", "market_key"),
    )


class PriceBookItemModel(Base):
    """Canonical catalog entry priced by material cost and labor minutes."""

    __tablename__ = "pricebook_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    branch: Mapped[str] = mapped_column(Text, nullable=False)

    # Cost model
    base_material_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    base_minutes: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=0)
    markup_material_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=20)
    overhead_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=15)
    region_factor: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(nullable=False, default=True, index=True)
    variant_group: Mapped[str | None] = mapped_column(Text)

    # Normalized description|unit|branch
    market_key: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("base_material_cost >= 0", name="check_material_cost_non_negative"),
        CheckConstraint("base_minutes >= 0", name="check_minutes_non_negative"),
    )


class PriceUpdateModel(Base):
    """Human-approvable pricebook mutation (price_update or new_item)."""

    __tablename__ = "price_updates"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    pricebook_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("pricebook_items.id", ondelete="CASCADE"), index=True
    )
    source_document: Mapped[str] = mapped_column(Text, nullable=False)
    update_type: Mapped[str] = mapped_column(Text, nullable=False)

    old_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    new_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_change_pct: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", index=True)
    match_method: Mapped[str | None] = mapped_column(Text)

    # Position the proposal was derived from
    description: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str | None] = mapped_column(Text)
    trade_category: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolved_by: Mapped[str | None] = mapped_column(Text)
    note: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "update_type IN ('price_update', 'new_item')", name="check_update_type"
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="check_update_status"
        ),
        # At most one open proposal per (item, source document)
        Index(
            "idx_price_updates_open_unique",
            "pricebook_item_id",
            "source_document",
            unique=True,
            postgresql_where=text("status IN ('pending', 'approved')"),
            sqlite_where=text("status IN ('pending', 'approved')"),
        ),
        Index("idx_price_updates_status_created", "status", "created_at"),
    )
