"""Unit tests for upload validation."""

from __future__ import annotations

import pytest

from priceintel.config import MEGABYTE, IngestionConfig
from priceintel.errors import ValidationError
from priceintel.extraction.validator import RawUpload, validate_batch, validate_upload


@pytest.fixture
def config() -> IngestionConfig:
    return IngestionConfig()


class TestValidateUpload:
    def test_accepts_supported_types(self, config):
        for name in ("a.pdf", "b.XLSX", "c.xls", "d.txt", "e.x83", "f.X84"):
            validate_upload(RawUpload(filename=name, content=b"data"), config)

    def test_rejects_empty(self, config):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(RawUpload(filename="a.pdf", content=b""), config)
        assert exc_info.value.reason == "empty"

    def test_rejects_oversized_file(self, config):
        """Test a 12MB PDF is rejected on size alone."""
        upload = RawUpload(filename="big.pdf", content=b"x" * (12 * MEGABYTE))
        with pytest.raises(ValidationError, match="12.0MB") as exc_info:
            validate_upload(upload, config)
        assert exc_info.value.reason == "too_large"
        assert exc_info.value.filename == "big.pdf"

    def test_limit_is_inclusive(self):
        config = IngestionConfig(max_file_size_bytes=4)
        validate_upload(RawUpload(filename="a.txt", content=b"1234"), config)

    def test_rejects_disallowed_type(self, config):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(RawUpload(filename="angebot.docx", content=b"data"), config)
        assert exc_info.value.reason == "disallowed_type"

    def test_rejects_missing_extension(self, config):
        with pytest.raises(ValidationError):
            validate_upload(RawUpload(filename="angebot", content=b"data"), config)


class TestValidateBatch:
    def test_batch_too_large(self, config):
        uploads = [RawUpload(filename=f"{i}.txt", content=b"data") for i in range(6)]
        with pytest.raises(ValidationError) as exc_info:
            validate_batch(uploads, config)
        assert exc_info.value.reason == "batch_too_large"

    def test_partitions_accepted_and_rejected(self, config):
        good = RawUpload(filename="a.txt", content=b"data")
        empty = RawUpload(filename="b.txt", content=b"")
        result = validate_batch([good, empty], config)
        assert result.accepted == [good]
        assert [e.filename for e in result.rejected] == ["b.txt"]

    def test_duplicate_filenames(self, config):
        """Test the first occurrence wins, later ones are rejected."""
        first = RawUpload(filename="a.txt", content=b"one")
        second = RawUpload(filename="a.txt", content=b"two")
        result = validate_batch([first, second], config)
        assert result.accepted == [first]
        assert result.rejected[0].reason == "duplicate"

    def test_checksum_is_stable(self):
        assert RawUpload("a.txt", b"data").checksum == RawUpload("b.txt", b"data").checksum
