"""
PDF handling utilities for in-memory processing.
Validates uploads, builds safe storage names and rasterizes pages for image-based services.
"""
import base64
import logging
import re
import uuid
from typing import List, Optional
from io import BytesIO
from pdf2image import convert_from_bytes
from PIL import Image

logger = logging.getLogger(__name__)

PDF_MAGIC = b'%PDF'

_UNSAFE_NAME_CHARS = re.compile(r'[^\w.\-()]+')


class PDFHandler:
    """Handler for PDF processing in memory."""

    @staticmethod
    def is_pdf(data: Optional[bytes]) -> bool:
        """Check the PDF magic bytes."""
        return bool(data) and data.startswith(PDF_MAGIC)

    @staticmethod
    def safe_name(filename: Optional[str], default: str = 'report.pdf') -> str:
        """
        Make an uploaded filename safe to use as a storage key segment.

        Runs of anything other than word characters, dots, dashes and
        parentheses become a single underscore.
        """
        name = (filename or '').strip().replace('\\', '/').split('/')[-1]
        name = _UNSAFE_NAME_CHARS.sub('_', name).strip('_')
        return name or default

    @staticmethod
    def storage_path(filename: Optional[str], prefix: str = 'analyze') -> str:
        """Storage path for one upload: <prefix>/<uuid>/<safe name>."""
        return f"{prefix}/{uuid.uuid4()}/{PDFHandler.safe_name(filename)}"

    @staticmethod
    def pdf_to_images(pdf_bytes: bytes, first_page_only: bool = True, dpi: int = 200) -> List[Image.Image]:
        """
        Convert PDF bytes to PIL Image objects.

        Args:
            pdf_bytes: PDF file as bytes
            first_page_only: If True, only convert first page
            dpi: Rasterization resolution

        Returns:
            List of PIL Image objects
        """
        try:
            if first_page_only:
                images = convert_from_bytes(pdf_bytes, dpi=dpi, first_page=1, last_page=1)
            else:
                images = convert_from_bytes(pdf_bytes, dpi=dpi)

            logger.info(f"Converted PDF to {len(images)} image(s)")
            return images

        except Exception as e:
            logger.error(f"Error converting PDF to images: {e}")
            return []

    @staticmethod
    def image_to_bytes(image: Image.Image, format: str = 'PNG') -> bytes:
        """
        Convert PIL Image to bytes.

        Args:
            image: PIL Image object
            format: Image format (PNG, JPEG, etc.)

        Returns:
            Image as bytes
        """
        buffer = BytesIO()
        image.save(buffer, format=format)
        return buffer.getvalue()

    @staticmethod
    def pdf_to_base64_pngs(pdf_bytes: bytes, max_pages: int = 4, dpi: int = 150) -> List[str]:
        """
        Rasterize up to max_pages pages as base64-encoded PNGs for chat-completion image input.

        Returns:
            List of base64 strings (empty if conversion fails)
        """
        images = PDFHandler.pdf_to_images(pdf_bytes, first_page_only=False, dpi=dpi)
        return [
            base64.b64encode(PDFHandler.image_to_bytes(image)).decode('utf-8')
            for image in images[:max_pages]
        ]
