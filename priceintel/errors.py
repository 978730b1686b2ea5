"""Error taxonomy for the price intelligence engine."""

from __future__ import annotations


class PriceIntelError(Exception):
    """Base class for all engine errors."""


class ValidationError(PriceIntelError):
    """Upload rejected before any parser was invoked (size/type/empty/duplicate)."""

    def __init__(self, message: str, filename: str | None = None, reason: str = "invalid"):
        super().__init__(message)
        self.filename = filename
        self.reason = reason


class ExtractionError(PriceIntelError):
    """A parser failed to turn document bytes into text."""


class AnalysisError(PriceIntelError):
    """Structured analysis of a document or request failed."""


class SchemaValidationError(AnalysisError):
    """Generation output did not validate against the declared schema."""

    def __init__(self, message: str, schema_name: str | None = None, raw_output: str | None = None):
        super().__init__(message)
        self.schema_name = schema_name
        self.raw_output = raw_output


class GenerationError(AnalysisError):
    """The generation backend could not be reached or returned no content."""


class PersistenceError(PriceIntelError):
    """A store write failed; the unit of work was rolled back."""


class ConflictError(PriceIntelError):
    """Duplicate proposal for the same (item, source document) pair."""


class NotFoundError(PriceIntelError):
    """Referenced record does not exist."""


class ProposalStateError(PriceIntelError):
    """Proposal is already in a terminal state."""
