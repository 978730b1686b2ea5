"""Text extraction from uploaded offer documents.

Turns raw bytes into plain text tagged with structural hints (pages, sheets).
Per-document failures never raise: the caller receives an ExtractionResult
with ``ok=False`` and a descriptive placeholder text.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

import pandas as pd
import pdfplumber
from pypdf import PdfReader

from priceintel.errors import ExtractionError
from priceintel.extraction.gaeb import parse_gaeb
from priceintel.extraction.validator import RawUpload

logger = logging.getLogger(__name__)

PDF = "pdf"
SPREADSHEET = "spreadsheet"
TEXT = "text"
GAEB = "gaeb"

_EXTENSION_TYPES = {
    ".pdf": PDF,
    ".xlsx": SPREADSHEET,
    ".xls": SPREADSHEET,
    ".txt": TEXT,
    ".x80": GAEB,
    ".x81": GAEB,
    ".x82": GAEB,
    ".x83": GAEB,
    ".x84": GAEB,
}

_MIME_TYPES = {
    "application/pdf": PDF,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": SPREADSHEET,
    "application/vnd.ms-excel": SPREADSHEET,
    "text/plain": TEXT,
}


@dataclass
class ExtractionResult:
    """Outcome of extracting one document."""

    filename: str
    file_type: str | None
    text: str
    ok: bool = True
    error: str | None = None
    pages: int | None = None
    sheets: list[str] = field(default_factory=list)
    used_fallback: bool = False


def detect_file_type(upload: RawUpload) -> str:
    """Determine the parser for an upload (extension first, then mime type).

    Raises:
        ExtractionError: If neither extension nor mime type is supported
    """
    file_type = _EXTENSION_TYPES.get(upload.extension)
    if file_type is None and upload.content_type:
        file_type = _MIME_TYPES.get(upload.content_type.split(";")[0].strip().lower())
    if file_type is None:
        raise ExtractionError(
            f"Unsupported file type for {upload.filename!r} "
            f"(extension {upload.extension!r}, mime {upload.content_type!r})"
        )
    return file_type


def placeholder_text(filename: str, reason: str) -> str:
    return f"[Inhalt von {filename} konnte nicht extrahiert werden: {reason}]"


def extract_text(upload: RawUpload) -> ExtractionResult:
    """Extract text from an upload, degrading to a placeholder on failure.

    Blocking (parsers are synchronous); run it in a worker thread from async code.
    """
    file_type: str | None = None
    try:
        file_type = detect_file_type(upload)
        if file_type == PDF:
            result = _extract_pdf(upload)
        elif file_type == SPREADSHEET:
            result = _extract_spreadsheet(upload)
        elif file_type == GAEB:
            result = _extract_gaeb(upload)
        else:
            result = _extract_plain(upload)
    except ExtractionError as exc:
        logger.warning(f"Extraction failed for {upload.filename}: {exc}")
        return ExtractionResult(
            filename=upload.filename,
            file_type=file_type,
            text=placeholder_text(upload.filename, str(exc)),
            ok=False,
            error=str(exc),
        )

    logger.info(
        f"Extracted {len(result.text)} characters from {upload.filename} ({file_type})"
    )
    return result


def _extract_pdf(upload: RawUpload) -> ExtractionResult:
    """Page-aware extraction with pdfplumber, raw pypdf text as fallback."""
    try:
        chunks = []
        with pdfplumber.open(io.BytesIO(upload.content)) as pdf:
            page_count = len(pdf.pages)
            for page_num, page in enumerate(pdf.pages, 1):
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    chunks.append(f"--- Seite {page_num} ---\n{page_text}")
    except Exception as exc:
        # pdfminer raises a wide range of syntax errors for damaged files
        logger.info(f"Structured PDF parsing failed for {upload.filename}, using raw text: {exc}")
        try:
            text, page_count = _raw_pdf_text(upload.content)
        except Exception as fallback_exc:
            raise ExtractionError(f"PDF could not be parsed: {exc}; raw text: {fallback_exc}") from exc
        if not text:
            raise ExtractionError(f"PDF could not be parsed: {exc}") from exc
        return ExtractionResult(
            filename=upload.filename, file_type=PDF, text=text, pages=page_count, used_fallback=True
        )

    if not chunks:
        raise ExtractionError("PDF contains no extractable text (scanned document?)")

    return ExtractionResult(
        filename=upload.filename,
        file_type=PDF,
        text="\n\n".join(chunks),
        pages=page_count,
    )


def _raw_pdf_text(content: bytes) -> tuple[str, int]:
    """Plain page text via pypdf, which tolerates broken cross-reference tables."""
    reader = PdfReader(io.BytesIO(content), strict=False)
    chunks = []
    for page_num, page in enumerate(reader.pages, 1):
        page_text = (page.extract_text() or "").strip()
        if page_text:
            chunks.append(f"--- Seite {page_num} ---\n{page_text}")
    return "\n\n".join(chunks), len(reader.pages)


def _extract_spreadsheet(upload: RawUpload) -> ExtractionResult:
    """Every sheet, labelled, with its non-blank rows tab-joined."""
    try:
        sheets = pd.read_excel(
            io.BytesIO(upload.content), sheet_name=None, header=None, dtype=str
        )
    except Exception as exc:
        raise ExtractionError(f"Spreadsheet could not be read: {exc}") from exc

    chunks = []
    for sheet_name, df in sheets.items():
        rows = []
        for row in df.itertuples(index=False):
            cells = ["" if pd.isna(value) else str(value).strip() for value in row]
            if not any(cells):
                continue
            rows.append("\t".join(cells).rstrip("\t"))
        if rows:
            chunks.append(f"=== Blatt: {sheet_name} ===\n" + "\n".join(rows))

    if not chunks:
        raise ExtractionError("Spreadsheet contains no data rows")

    return ExtractionResult(
        filename=upload.filename,
        file_type=SPREADSHEET,
        text="\n\n".join(chunks),
        sheets=[str(name) for name in sheets],
    )


def _extract_gaeb(upload: RawUpload) -> ExtractionResult:
    document = parse_gaeb(upload.content, upload.extension)
    if not document.positions:
        raise ExtractionError("GAEB bill of quantities contains no positions")
    return ExtractionResult(filename=upload.filename, file_type=GAEB, text=document.render_text())


def _extract_plain(upload: RawUpload) -> ExtractionResult:
    try:
        text = upload.content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = upload.content.decode("cp1252", errors="replace")
    text = text.strip()
    if not text:
        raise ExtractionError("Text file contains only whitespace")
    return ExtractionResult(filename=upload.filename, file_type=TEXT, text=text)
