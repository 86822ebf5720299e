"""
Schema-constrained extraction: PDF pages -> report JSON -> ReportPayload.

The degraded path of the pipeline. The model sees the page images and must
answer with JSON following REPORT_JSON_SCHEMA. Anything that does not
validate comes back as ExtractionResult(ok=False) with the raw text kept
for diagnosis. Nothing here raises.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from scorecard.config import Config
from scorecard.utils.rate_limiter import RateLimiter, SERVICE_EXTRACTION
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.services.llm_client import ChatCompletionClient
from scorecard.services.score_pipeline.payload import REPORT_JSON_SCHEMA, ReportPayload, parse_report_payload

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    ok: bool
    payload: Optional[ReportPayload] = None
    raw: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0


class SchemaExtractionService:
    """Direct report extraction with a vision-capable chat completion model."""

    SYSTEM_PROMPT = """You read scanned Japanese cram-school grade reports and output JSON only.

RULES:
1. Output exactly one JSON object following the provided schema; docType is "score_report"
2. Only extract periodic-growth tests (育成テスト / 学習力育成テスト, testType "ikusei") and open mock exams (公開模試, testType "kokai_moshi")
3. Skip diagnostic or placement tests (学判, 学力判定, 学力診断, 学力到達度)
4. Copy numbers exactly as printed; use null for blank or unreadable cells, never guess
5. grade is the 3-10 tier printed for periodic-growth tests; deviation is the 偏差値 printed for open mock exams
6. date as printed (YYYY-MM-DD when the full date is visible, otherwise the partial date)
7. Put anything uncertain in the test's notes"""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, client: Optional[ChatCompletionClient] = None,
                 max_pages: int = 4):
        """
        Initialize the extraction service.

        Args:
            rate_limiter: Optional rate limiter instance
            client: Optional chat completion client (defaults to Config.get_llm_config())
            max_pages: Maximum number of pages sent to the model
        """
        self.rate_limiter = rate_limiter
        self.service_name = SERVICE_EXTRACTION
        self.client = client or ChatCompletionClient(**Config.get_llm_config())
        self.max_pages = max_pages
        self.pdf_handler = PDFHandler()

        if not self.client.is_available:
            logger.warning(
                "LLM API key not configured. Schema extraction is disabled. "
                "Set LLM_API_KEY or OPENAI_API_KEY environment variable."
            )

    @property
    def is_available(self) -> bool:
        return self.client.is_available

    def extract(self, pdf_bytes: bytes, filename: Optional[str] = None) -> ExtractionResult:
        """
        Extract the report JSON from a PDF.

        Args:
            pdf_bytes: PDF file as bytes
            filename: Optional original filename (passed to the model as context)

        Returns:
            ExtractionResult (ok False on any failure, raw text kept when available)
        """
        if not self.client.is_available:
            return ExtractionResult(ok=False, error="LLM API key not configured")

        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(self.service_name)
            if not can_call:
                logger.warning(f"Rate limit exceeded: {reason}")
                return ExtractionResult(ok=False, error=f"Rate limit exceeded: {reason}")

        pages = self.pdf_handler.pdf_to_base64_pngs(pdf_bytes, max_pages=self.max_pages)
        if not pages:
            return ExtractionResult(ok=False, error="Failed to rasterize PDF pages")

        prompt = "Extract the score report from these pages."
        if filename:
            prompt += f" Source file: {filename}"

        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": [{"type": "text", "text": prompt}]
                + [ChatCompletionClient.image_part(page) for page in pages]},
        ]
        response_format = {"type": "json_schema", "json_schema": REPORT_JSON_SCHEMA}

        try:
            raw, tokens_used = self.client.complete(messages, max_tokens=4000, response_format=response_format)
        except Exception as e:
            logger.error(f"Schema extraction call failed: {e}")
            return ExtractionResult(ok=False, error=str(e))
        finally:
            if self.rate_limiter:
                self.rate_limiter.record_call(self.service_name)

        return self.parse(raw, tokens_used)

    @staticmethod
    def parse(raw: str, tokens_used: int = 0) -> ExtractionResult:
        """Validate raw model output into an ExtractionResult."""
        payload, error = parse_report_payload(raw)
        if payload is None:
            logger.warning(f"Schema extraction output rejected: {error}")
            return ExtractionResult(ok=False, raw=raw, error=error, tokens_used=tokens_used)

        logger.info(f"Schema extraction complete: {len(payload.tests)} tests, {tokens_used} tokens")
        return ExtractionResult(ok=True, payload=payload, raw=raw, tokens_used=tokens_used)
