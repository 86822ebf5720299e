"""
Transcription services: raw PDF bytes -> best-effort plain text.

- TextractTranscriptionService: AWS Textract analyze_document with TABLES.
  Lines are emitted as text and every detected table is rendered in
  place as markdown pipe rows, which the pipe layouts understand.
- VisionTranscriptionService: page images sent to an OpenAI-compatible
  chat completion, asked to transcribe the score tables (honours the
  region hint).

Both return a TranscriptionResult and never raise; an empty text with an
error is the failure signal.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from scorecard.config import Config
from scorecard.utils.rate_limiter import RateLimiter, SERVICE_TRANSCRIPTION
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.services.llm_client import ChatCompletionClient

logger = logging.getLogger(__name__)

# Synchronous Textract calls accept documents up to 5MB
TEXTRACT_MAX_BYTES = 5 * 1024 * 1024


@dataclass
class TranscriptionResult:
    success: bool
    text: str = ""
    error: Optional[str] = None
    backend: str = ""
    pages: int = 0
    confidence: Optional[float] = None


class TextractTranscriptionService:
    """Transcription with AWS Textract (LINE + TABLE blocks)."""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, client=None):
        """
        Initialize Textract transcription.

        Args:
            rate_limiter: Optional rate limiter instance
            client: Optional pre-configured boto3 Textract client
        """
        self.rate_limiter = rate_limiter
        self.service_name = SERVICE_TRANSCRIPTION
        self.pdf_handler = PDFHandler()

        if client is not None:
            self.client = client
            return

        try:
            config = Config.get_boto3_config()
            if 'profile_name' in config:
                session = boto3.Session(profile_name=config['profile_name'])
                self.client = session.client('textract', region_name=config['region_name'])
            else:
                self.client = boto3.client('textract', **config)

            logger.info("Initialized AWS Textract transcription service")
        except Exception as e:
            logger.error(f"Failed to initialize Textract client: {e}")
            raise

    def transcribe(self, pdf_bytes: bytes, region_hint: Optional[str] = None) -> TranscriptionResult:
        """
        Transcribe a PDF with Textract.

        Textract reads the whole page; region_hint is accepted for contract
        compatibility and ignored.

        Args:
            pdf_bytes: PDF file as bytes
            region_hint: Ignored

        Returns:
            TranscriptionResult
        """
        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(self.service_name)
            if not can_call:
                logger.warning(f"Rate limit exceeded: {reason}")
                return TranscriptionResult(False, error=f"Rate limit exceeded: {reason}", backend='textract')

        if not self.pdf_handler.is_pdf(pdf_bytes):
            logger.error("Bytes do not appear to be a valid PDF (missing PDF magic bytes)")
            return TranscriptionResult(False, error='Invalid PDF format: missing PDF magic bytes', backend='textract')

        try:
            logger.info(f"Transcribing PDF with Textract ({len(pdf_bytes)} bytes)")
            response = None

            # PDF directly first (no poppler needed), page image otherwise
            if len(pdf_bytes) <= TEXTRACT_MAX_BYTES:
                try:
                    response = self._analyze(pdf_bytes)
                except ClientError as pdf_error:
                    logger.warning(f"Textract failed with PDF directly: {pdf_error}. Falling back to image conversion.")

            if response is None:
                images = self.pdf_handler.pdf_to_images(pdf_bytes, first_page_only=True)
                if not images:
                    return TranscriptionResult(
                        False,
                        error='Failed to convert PDF to image. Poppler may not be installed.',
                        backend='textract'
                    )
                response = self._analyze(self.pdf_handler.image_to_bytes(images[0], format='PNG'))

            blocks = response.get('Blocks', [])
            text = self.render_blocks(blocks)

            confidences = [b.get('Confidence', 0) for b in blocks if 'Confidence' in b]
            avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0
            pages = response.get('DocumentMetadata', {}).get('Pages', 1)

            logger.info(f"Textract transcription complete: {len(text)} chars, confidence: {avg_confidence:.2f}%")
            return TranscriptionResult(True, text=text, backend='textract', pages=pages, confidence=avg_confidence)

        except ClientError as e:
            error_msg = str(e)
            logger.error(f"Textract error: {e}")

            if "ExpiredTokenException" in error_msg or "expired" in error_msg.lower():
                error_msg = f"AWS credentials have expired. {error_msg}"
            elif "InvalidClientTokenId" in error_msg:
                error_msg = f"AWS credentials are invalid. {error_msg}"

            return TranscriptionResult(False, error=error_msg, backend='textract')
        except Exception as e:
            logger.error(f"Unexpected error transcribing PDF with Textract: {e}")
            return TranscriptionResult(False, error=str(e), backend='textract')

    def _analyze(self, document_bytes: bytes) -> Dict[str, Any]:
        response = self.client.analyze_document(
            Document={'Bytes': document_bytes},
            FeatureTypes=['TABLES']
        )
        if self.rate_limiter:
            self.rate_limiter.record_call(self.service_name)
        return response

    @staticmethod
    def render_blocks(blocks: List[Dict[str, Any]]) -> str:
        """
        Render Textract blocks as text in reading order.

        LINE blocks become plain lines. Each TABLE becomes markdown pipe rows
        (separator under the first row) placed where the table sits on the
        page; LINE blocks inside a table's bounding box are dropped so table
        text is not emitted twice.
        """
        block_map = {block['Id']: block for block in blocks if 'Id' in block}

        def child_ids(block: Dict[str, Any]) -> List[str]:
            ids = []
            for relationship in block.get('Relationships', []) or []:
                if relationship.get('Type') == 'CHILD':
                    ids.extend(relationship.get('Ids', []))
            return ids

        def box(block: Dict[str, Any]) -> Dict[str, float]:
            bbox = block.get('Geometry', {}).get('BoundingBox', {})
            return {
                'left': bbox.get('Left', 0.0),
                'top': bbox.get('Top', 0.0),
                'width': bbox.get('Width', 0.0),
                'height': bbox.get('Height', 0.0),
            }

        def cell_text(cell: Dict[str, Any]) -> str:
            words = []
            for child_id in child_ids(cell):
                child = block_map.get(child_id, {})
                if child.get('BlockType') == 'WORD':
                    words.append(child.get('Text', ''))
                elif child.get('BlockType') == 'SELECTION_ELEMENT' and child.get('SelectionStatus') == 'SELECTED':
                    words.append('X')
            return ' '.join(w for w in words if w).replace('|', ' ')

        # (page, top, lines)
        items = []
        table_boxes = []

        for table in (b for b in blocks if b.get('BlockType') == 'TABLE'):
            rows: Dict[int, Dict[int, str]] = {}
            for cell_id in child_ids(table):
                cell = block_map.get(cell_id, {})
                if cell.get('BlockType') != 'CELL':
                    continue
                rows.setdefault(cell.get('RowIndex', 0), {})[cell.get('ColumnIndex', 0)] = cell_text(cell)
            if not rows:
                continue

            width = max(max(columns) for columns in rows.values())
            rendered = []
            for position, row_index in enumerate(sorted(rows)):
                cells = [rows[row_index].get(column, '') for column in range(1, width + 1)]
                rendered.append("| " + " | ".join(cells) + " |")
                if position == 0:
                    rendered.append("|" + "|".join(["---"] * width) + "|")

            page = table.get('Page', 1)
            table_box = box(table)
            if table_box['width'] > 0 and table_box['height'] > 0:
                table_boxes.append((page, table_box))
            items.append((page, table_box['top'], rendered))

        def inside_table(page: int, line_box: Dict[str, float]) -> bool:
            centre_x = line_box['left'] + line_box['width'] / 2
            centre_y = line_box['top'] + line_box['height'] / 2
            for table_page, t in table_boxes:
                if (table_page == page
                        and t['left'] <= centre_x <= t['left'] + t['width']
                        and t['top'] <= centre_y <= t['top'] + t['height']):
                    return True
            return False

        for line in (b for b in blocks if b.get('BlockType') == 'LINE' and b.get('Text')):
            page = line.get('Page', 1)
            line_box = box(line)
            if table_boxes and inside_table(page, line_box):
                continue
            items.append((page, line_box['top'], [line['Text']]))

        # Stable sort keeps the original block order for equal positions
        items.sort(key=lambda item: (item[0], item[1]))
        return '\n'.join(text for _, _, lines in items for text in lines)


class VisionTranscriptionService:
    """Transcription with a vision-capable chat completion model."""

    SYSTEM_PROMPT = (
        "You transcribe scanned Japanese cram-school grade reports. "
        "Copy text exactly as printed; do not compute, infer or correct values. "
        "Render every table as markdown pipe rows, one row per printed row, "
        "keeping blank cells empty and dashes as '-'."
    )

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, client: Optional[ChatCompletionClient] = None,
                 max_pages: int = 4):
        self.rate_limiter = rate_limiter
        self.service_name = SERVICE_TRANSCRIPTION
        self.client = client or ChatCompletionClient(**Config.get_llm_config())
        self.max_pages = max_pages
        self.pdf_handler = PDFHandler()

        if not self.client.is_available:
            logger.warning("LLM API key not configured. Vision transcription will return no text.")

    def transcribe(self, pdf_bytes: bytes, region_hint: Optional[str] = None) -> TranscriptionResult:
        """
        Transcribe a PDF by sending its rasterized pages to the model.

        Args:
            pdf_bytes: PDF file as bytes
            region_hint: Optional description of the region to transcribe
                (e.g. "the yearly periodic-growth table")

        Returns:
            TranscriptionResult
        """
        if not self.client.is_available:
            return TranscriptionResult(False, error="LLM API key not configured", backend='vision')

        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(self.service_name)
            if not can_call:
                logger.warning(f"Rate limit exceeded: {reason}")
                return TranscriptionResult(False, error=f"Rate limit exceeded: {reason}", backend='vision')

        pages = self.pdf_handler.pdf_to_base64_pngs(pdf_bytes, max_pages=self.max_pages)
        if not pages:
            return TranscriptionResult(False, error="Failed to rasterize PDF pages", backend='vision')

        instruction = "Transcribe all score tables on these pages."
        if region_hint:
            instruction = f"Transcribe only this part of the pages: {region_hint}."

        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": [{"type": "text", "text": instruction}]
                + [ChatCompletionClient.image_part(page) for page in pages]},
        ]

        try:
            text, tokens_used = self.client.complete(messages, max_tokens=4000)
        except Exception as e:
            logger.error(f"Vision transcription failed: {e}")
            return TranscriptionResult(False, error=str(e), backend='vision')
        finally:
            if self.rate_limiter:
                self.rate_limiter.record_call(self.service_name)

        logger.info(f"Vision transcription complete: {len(text)} chars, {tokens_used} tokens")
        return TranscriptionResult(True, text=text, backend='vision', pages=len(pages))


def create_transcriber(rate_limiter: Optional[RateLimiter] = None):
    """Transcription backend for the current configuration."""
    if Config.TRANSCRIPTION_BACKEND == 'vision':
        return VisionTranscriptionService(rate_limiter=rate_limiter)
    return TextractTranscriptionService(rate_limiter=rate_limiter)
