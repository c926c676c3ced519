
import io
import logging
from pathlib import Path
from typing import Tuple
from PIL import Image

from gradescan.core.config import settings
from gradescan.utils.exceptions import (
    FileTooLargeError,
    InvalidFileTypeError,
    FileProcessingError
)

logger = logging.getLogger(__name__)


class FileProcessor:

    ALLOWED_PDF_TYPES = {"pdf"}

    MIME_TYPES = {
        "png": "image/png",
        "webp": "image/webp",
        "pdf": "application/pdf",
    }

    def __init__(self):
        self.max_file_size = settings.max_file_size_bytes
        self.allowed_extensions = set(settings.allowed_extensions_list)
        self.jpeg_quality = settings.jpeg_quality

    def validate_file(self, filename: str, file_size: int) -> None:

        if file_size == 0:
            raise FileProcessingError("Uploaded file is empty")

        # Check file size (error handling for large files)
        if file_size > self.max_file_size:
            raise FileTooLargeError(
                f"File size ({file_size / 1024 / 1024:.2f} MB) exceeds "
                f"maximum allowed size ({settings.max_file_size_mb} MB)"
            )

        # Check file extension (error handling for wrong format)
        extension = self._get_extension(filename)
        if extension not in self.allowed_extensions:
            raise InvalidFileTypeError(
                f"File type '.{extension}' not allowed. "
                f"Allowed types: {', '.join(sorted(self.allowed_extensions))}"
            )

    def _get_extension(self, filename: str) -> str:
        return Path(filename or "").suffix.lower().lstrip(".")

    def is_pdf(self, filename: str) -> bool:
        return self._get_extension(filename) in self.ALLOWED_PDF_TYPES

    def mime_type_for(self, filename: str) -> str:
        # anything we do not recognise is sent as jpeg
        return self.MIME_TYPES.get(self._get_extension(filename), "image/jpeg")

    async def preprocess(
        self,
        file_content: bytes,
        filename: str,
        max_width: int
    ) -> Tuple[bytes, str]:
        """
        Shrink the image to `max_width` and re-encode it as JPEG.

        PDFs go through untouched. If the image cannot be decoded the
        original bytes are sent as they are, the model may still read them.
        """
        if self.is_pdf(filename):
            return file_content, self.mime_type_for(filename)

        try:
            image = Image.open(io.BytesIO(file_content))

            if image.mode != "RGB":
                image = image.convert("RGB")

            if image.width > max_width:
                image = self._resize_image(image, max_width)

            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=self.jpeg_quality)

            logger.info(
                f"Image preprocessed: {image.width}x{image.height}, "
                f"{len(buffer.getvalue())} bytes"
            )
            return buffer.getvalue(), "image/jpeg"

        except Exception as e:
            logger.error(f"Image preprocessing failed, sending original: {e}")
            return file_content, self.mime_type_for(filename)

    def _resize_image(self, image: Image.Image, max_width: int) -> Image.Image:
        width, height = image.size
        new_height = max(1, int(height * (max_width / width)))
        return image.resize((max_width, new_height), Image.Resampling.LANCZOS)


file_processor = FileProcessor()
