"""Database layer for the price intelligence engine with async SQLAlchemy."""

from priceintel.db.connection import close_db, get_session, init_db
from priceintel.db.models import (
    Base,
    ExtractedOfferModel,
    ExtractedPriceModel,
    PriceBookItemModel,
    PriceUpdateModel,
    UploadedDocumentModel,
)

__all__ = [
    "Base",
    "UploadedDocumentModel",
    "ExtractedOfferModel",
    "ExtractedPriceModel",
    "PriceBookItemModel",
    "PriceUpdateModel",
    "get_session",
    "init_db",
    "close_db",
]
