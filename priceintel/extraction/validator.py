"""Upload validation performed before any parser is invoked."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Sequence

from priceintel.config import IngestionConfig
from priceintel.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RawUpload:
    """Raw bytes of an uploaded file plus its declared name and mime type."""

    filename: str
    content: bytes
    content_type: str | None = None

    @property
    def extension(self) -> str:
        return PurePath(self.filename).suffix.lower()

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


@dataclass
class BatchValidation:
    """Accepted uploads and the validation errors of the rejected ones."""

    accepted: list[RawUpload] = field(default_factory=list)
    rejected: list[ValidationError] = field(default_factory=list)


def validate_upload(upload: RawUpload, config: IngestionConfig) -> None:
    """Validate a single upload.

    Raises:
        ValidationError: If the file is empty, too large or of a disallowed type
    """
    if upload.size_bytes == 0:
        raise ValidationError(
            f"File {upload.filename!r} is empty", filename=upload.filename, reason="empty"
        )

    if upload.size_bytes > config.max_file_size_bytes:
        size_mb = upload.size_bytes / (1024 * 1024)
        limit_mb = config.max_file_size_bytes / (1024 * 1024)
        raise ValidationError(
            f"File {upload.filename!r} is {size_mb:.1f}MB, maximum is {limit_mb:.0f}MB",
            filename=upload.filename,
            reason="too_large",
        )

    if upload.extension not in config.allowed_extensions:
        allowed = ", ".join(config.allowed_extensions)
        raise ValidationError(
            f"File type {upload.extension or '(none)'!r} of {upload.filename!r} is not allowed "
            f"(allowed: {allowed})",
            filename=upload.filename,
            reason="disallowed_type",
        )


def validate_batch(uploads: Sequence[RawUpload], config: IngestionConfig) -> BatchValidation:
    """Validate a batch of uploads.

    The first occurrence of a filename is validated normally; later uploads
    with the same name are rejected as duplicates.

    Raises:
        ValidationError: If the batch exceeds the configured file count
    """
    if len(uploads) > config.max_files_per_batch:
        raise ValidationError(
            f"Batch contains {len(uploads)} files, maximum is {config.max_files_per_batch}",
            reason="batch_too_large",
        )

    result = BatchValidation()
    seen: set[str] = set()

    for upload in uploads:
        if upload.filename in seen:
            result.rejected.append(
                ValidationError(
                    f"Duplicate filename {upload.filename!r} in batch",
                    filename=upload.filename,
                    reason="duplicate",
                )
            )
            continue
        seen.add(upload.filename)

        try:
            validate_upload(upload, config)
        except ValidationError as exc:
            logger.info(f"Rejected upload {upload.filename}: {exc}")
            result.rejected.append(exc)
            continue

        result.accepted.append(upload)

    return result
