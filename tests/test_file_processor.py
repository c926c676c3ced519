"""
Tests for upload validation and image preprocessing
"""

import io
import asyncio

import pytest
from PIL import Image

from gradescan.utils.file_processor import FileProcessor
from gradescan.utils.exceptions import (
    FileProcessingError,
    FileTooLargeError,
    InvalidFileTypeError,
)

from conftest import make_image


@pytest.fixture
def processor():
    return FileProcessor()


class TestValidation:

    def test_empty_file(self, processor):
        with pytest.raises(FileProcessingError):
            processor.validate_file("scan.jpg", 0)

    def test_file_too_large(self, processor):
        with pytest.raises(FileTooLargeError):
            processor.validate_file("scan.jpg", processor.max_file_size + 1)

    def test_wrong_extension(self, processor):
        with pytest.raises(InvalidFileTypeError) as exc_info:
            processor.validate_file("notes.txt", 100)
        assert exc_info.value.error_code == "INVALID_FILE_TYPE"

    @pytest.mark.parametrize("filename", ["scan.jpg", "SCAN.PNG", "page.pdf", "photo.webp"])
    def test_accepted(self, processor, filename):
        processor.validate_file(filename, 1024)

    def test_mime_types(self, processor):
        assert processor.mime_type_for("a.png") == "image/png"
        assert processor.mime_type_for("a.pdf") == "application/pdf"
        assert processor.mime_type_for("a.jpeg") == "image/jpeg"
        assert processor.mime_type_for("a.heic") == "image/jpeg"


class TestPreprocess:

    def test_wide_image_is_downscaled(self, processor):
        content, mime = asyncio.run(processor.preprocess(make_image(2400, 1200), "scan.png", 1200))

        assert mime == "image/jpeg"
        assert Image.open(io.BytesIO(content)).size == (1200, 600)

    def test_small_image_keeps_its_size(self, processor):
        content, mime = asyncio.run(processor.preprocess(make_image(300, 200), "scan.png", 1200))
        assert mime == "image/jpeg"
        assert Image.open(io.BytesIO(content)).size == (300, 200)

    def test_pdf_passes_through(self, processor):
        pdf = b"%PDF-1.4 fake"
        assert asyncio.run(processor.preprocess(pdf, "bulletin.pdf", 1200)) == (pdf, "application/pdf")

    def test_undecodable_image_is_sent_as_is(self, processor):
        garbage = b"not really a png"
        assert asyncio.run(processor.preprocess(garbage, "scan.png", 1200)) == (garbage, "image/png")
