"""
Score Report Pipeline
=====================

Orchestrates one document from storage handle to validated report.

Pipeline Stages:
----------------
1. FETCH: raw bytes from document storage (failure is fatal)
2. TRANSCRIBE: best-effort text from the transcription service, one call
   per configured region hint (concurrent); failures degrade to no text
3. PARSE: format disambiguation + table parsing into provisional records
4. FALLBACK: when the text path yields no rows, schema-constrained
   extraction straight from the document
5. RECONCILE: repair, filter, deduplicate, order
6. TRENDS: per-category trend summaries

Design Principles:
------------------
- Service handles are injected; the core stages need no network
- ok is True only when canonical records exist; otherwise error says why
- A failed document never affects its siblings in process_batch
- Only DocumentStorageError escapes process()

Output Schema:
--------------
{
  "ok": bool,
  "error": string | null,
  "records": [TestRecord],
  "trends": {"periodic_growth": TrendSummary, "open_mock": TrendSummary},
  "diagnostics": {...}
}
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from .classifier import CLASSIFIER, TestTypeClassifier
from .disambiguator import AUTO, FormatDisambiguator
from .errors import DocumentStorageError
from .payload import SCHEMA_SOURCE, payload_to_records
from .reconciler import ReconciliationReport, RecordReconciler
from .records import TestCategory, TestRecord
from .table_parser import TableFormatParser
from .trends import TrendAggregator, TrendSummary

logger = logging.getLogger(__name__)

KIND_YEARLY = "yearly"
KIND_SINGLE = "single"

PATH_TABLE = "table"
PATH_SCHEMA = SCHEMA_SOURCE
PATH_NONE = "none"


@dataclass
class DocumentRequest:
    """One document to process."""
    handle: str
    layout_hint: str = AUTO
    filename: Optional[str] = None
    kind: str = KIND_YEARLY


@dataclass
class Diagnostics:
    """Why the pipeline produced what it produced."""
    variant: Optional[str] = None
    variant_method: Optional[str] = None
    candidate_yields: Dict[str, int] = field(default_factory=dict)
    header_hits: Dict[str, int] = field(default_factory=dict)
    rows_skipped: int = 0
    transcription_length: int = 0
    transcription_errors: List[str] = field(default_factory=list)
    extraction_path: str = PATH_NONE
    extraction_error: Optional[str] = None
    extraction_raw: Optional[str] = None
    repairs: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReportOutput:
    """Final, validated result for one document."""
    ok: bool
    records: List[TestRecord] = field(default_factory=list)
    trends: Dict[TestCategory, TrendSummary] = field(default_factory=dict)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    error: Optional[str] = None
    handle: Optional[str] = None
    filename: Optional[str] = None
    kind: str = KIND_YEARLY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'ok': self.ok,
            'error': self.error,
            'handle': self.handle,
            'filename': self.filename,
            'kind': self.kind,
            'records': [r.to_dict() for r in self.records],
            'trends': {category.value: summary.to_dict() for category, summary in self.trends.items()},
            'diagnostics': self.diagnostics.to_dict(),
        }


class ScoreReportPipeline:
    """
    Score-report extraction pipeline.

    Example usage:

        pipeline = ScoreReportPipeline(
            storage=LocalDocumentStorage("./uploads"),
            transcriber=TextractTranscriptionService(),
            extractor=SchemaExtractionService(),
        )
        handle = pipeline.storage.store(pdf_bytes, "analyze/yearly.pdf")
        output = pipeline.process(DocumentRequest(handle=handle))

        if output.ok:
            print(output.to_dict()["trends"])

    Service contracts (duck-typed):
        storage.fetch(handle) -> bytes, raising DocumentStorageError
        transcriber.transcribe(data, region_hint=None) -> object with .text, .error
        extractor.extract(data, filename=None) -> object with .ok, .payload, .raw, .error
    """

    def __init__(
        self,
        storage=None,
        transcriber=None,
        extractor=None,
        region_hints: Optional[Sequence[Optional[str]]] = None,
        max_workers: int = 4,
        classifier: Optional[TestTypeClassifier] = None,
        trend_thresholds: Optional[Dict[str, float]] = None
    ):
        """
        Initialize the pipeline.

        Args:
            storage: Document storage handle
            transcriber: Transcription service handle (optional)
            extractor: Schema-constrained extraction service handle (optional)
            region_hints: Region-of-interest hints; one transcription call each
            max_workers: Thread pool size for transcription and batches
            classifier: Test-type classifier (defaults to the shared instance)
            trend_thresholds: Overrides for the trend thresholds per metric
        """
        self.storage = storage
        self.transcriber = transcriber
        self.extractor = extractor
        self.region_hints = list(region_hints) if region_hints else [None]
        self.max_workers = max(1, max_workers)

        self.classifier = classifier or CLASSIFIER
        self.parser = TableFormatParser(self.classifier)
        self.disambiguator = FormatDisambiguator(self.parser)
        self.reconciler = RecordReconciler(self.classifier)
        self.aggregator = TrendAggregator(trend_thresholds)

        logger.info(
            f"Initialized ScoreReportPipeline - "
            f"transcriber: {type(transcriber).__name__ if transcriber else None}, "
            f"extractor: {type(extractor).__name__ if extractor else None}, "
            f"region hints: {len(self.region_hints)}"
        )

    def process(self, request: DocumentRequest) -> ReportOutput:
        """
        Process one stored document.

        Args:
            request: Document handle, layout hint, filename, kind

        Returns:
            ReportOutput (ok False with a specific error when no records)

        Raises:
            DocumentStorageError: If the document cannot be fetched
            UnknownLayoutError: If the layout hint names no known variant
        """
        start_time = time.time()
        diagnostics = Diagnostics()

        if self.storage is None:
            raise DocumentStorageError("No document storage configured", request.handle)

        # === STAGE 1: FETCH ===
        data = self.storage.fetch(request.handle)
        logger.info(f"Processing {request.kind} document {request.filename or request.handle} ({len(data)} bytes)")

        # === STAGE 2: TRANSCRIBE ===
        text = self._transcribe(data, diagnostics)
        diagnostics.transcription_length = len(text)

        if text.strip() and request.kind == KIND_SINGLE and not self.classifier.looks_like_grade_report(text):
            diagnostics.warnings.append("Transcription does not look like a score report")

        # === STAGE 3: PARSE ===
        provisional = self._parse(text, request.layout_hint, diagnostics)

        # === STAGE 4: FALLBACK ===
        if not provisional:
            provisional = self._extract(data, request.filename, diagnostics)
            if provisional is None:
                return self._finish(
                    ReportOutput(ok=False, diagnostics=diagnostics, error=self._failure_reason(text, diagnostics)),
                    request, start_time
                )

        output = self._reconcile_and_summarize(provisional, diagnostics)
        return self._finish(output, request, start_time)

    def process_text(self, text: str, layout_hint: Optional[str] = AUTO) -> ReportOutput:
        """
        Run the text-only stages on an existing transcription.

        No services are used, so there is no fallback path.
        """
        start_time = time.time()
        diagnostics = Diagnostics(transcription_length=len(text or ""))

        provisional = self._parse(text or "", layout_hint, diagnostics)
        if not provisional:
            output = ReportOutput(ok=False, diagnostics=diagnostics, error="No score rows recognized in text")
        else:
            output = self._reconcile_and_summarize(provisional, diagnostics)

        output.diagnostics.processing_time_ms = int((time.time() - start_time) * 1000)
        return output

    def process_records(self, provisional: List[TestRecord]) -> ReportOutput:
        """Run reconciliation and trends on already-built provisional records."""
        diagnostics = Diagnostics(extraction_path=PATH_NONE)
        if not provisional:
            return ReportOutput(ok=False, diagnostics=diagnostics, error="No records supplied")
        return self._reconcile_and_summarize(provisional, diagnostics)

    def process_batch(self, requests: List[DocumentRequest]) -> List[ReportOutput]:
        """
        Process several documents concurrently, results in request order.

        A document that fails for any reason other than storage yields an
        ok False output; storage failures are re-raised.
        """
        if not requests:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(requests))) as executor:
            futures = [executor.submit(self.process, request) for request in requests]

            outputs = []
            for request, future in zip(requests, futures):
                try:
                    outputs.append(future.result())
                except DocumentStorageError:
                    raise
                except Exception as e:
                    logger.error(f"Document {request.filename or request.handle} failed: {e}", exc_info=True)
                    outputs.append(ReportOutput(
                        ok=False,
                        error=f"Processing failed: {e}",
                        handle=request.handle,
                        filename=request.filename,
                        kind=request.kind,
                    ))
        return outputs

    def _transcribe(self, data: bytes, diagnostics: Diagnostics) -> str:
        if self.transcriber is None:
            diagnostics.transcription_errors.append("No transcription service configured")
            return ""

        def call(hint: Optional[str]) -> str:
            try:
                result = self.transcriber.transcribe(data, region_hint=hint)
            except Exception as e:
                logger.error(f"Transcription failed (hint={hint!r}): {e}")
                diagnostics.transcription_errors.append(str(e))
                return ""
            if getattr(result, 'error', None):
                logger.warning(f"Transcription degraded (hint={hint!r}): {result.error}")
                diagnostics.transcription_errors.append(result.error)
            return getattr(result, 'text', "") or ""

        if len(self.region_hints) == 1:
            texts = [call(self.region_hints[0])]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.region_hints))) as executor:
                texts = list(executor.map(call, self.region_hints))

        return "\n".join(t for t in texts if t.strip())

    def _parse(self, text: str, layout_hint: Optional[str], diagnostics: Diagnostics) -> List[TestRecord]:
        resolution = self.disambiguator.resolve(text, layout_hint)
        diagnostics.variant = resolution.variant
        diagnostics.variant_method = resolution.method
        diagnostics.candidate_yields = dict(resolution.candidate_yields)
        diagnostics.header_hits = dict(resolution.header_hits)
        diagnostics.rows_skipped = resolution.parse_result.rows_skipped

        records = resolution.parse_result.records
        if records:
            diagnostics.extraction_path = PATH_TABLE
        return records

    def _extract(self, data: bytes, filename: Optional[str], diagnostics: Diagnostics) -> Optional[List[TestRecord]]:
        """Schema-constrained fallback. Returns None when it cannot help."""
        if self.extractor is None:
            diagnostics.extraction_error = "No extraction service configured"
            return None

        logger.info("Text path produced no rows; falling back to schema extraction")
        try:
            result = self.extractor.extract(data, filename=filename)
        except Exception as e:
            logger.error(f"Schema extraction failed: {e}")
            diagnostics.extraction_error = str(e)
            return None

        if not result.ok or result.payload is None:
            diagnostics.extraction_error = result.error or "Extraction returned no payload"
            diagnostics.extraction_raw = result.raw
            logger.warning(f"Schema extraction unusable: {diagnostics.extraction_error}")
            return None

        diagnostics.extraction_path = PATH_SCHEMA
        return payload_to_records(result.payload, self.classifier)

    def _reconcile_and_summarize(self, provisional: List[TestRecord], diagnostics: Diagnostics) -> ReportOutput:
        # === STAGE 5: RECONCILE ===
        reconciled = self.reconciler.reconcile(provisional)
        diagnostics.repairs = reconciled.report.to_dict()

        if not reconciled.records:
            return ReportOutput(
                ok=False,
                diagnostics=diagnostics,
                error=self._empty_reason(reconciled.report),
            )

        # === STAGE 6: TRENDS ===
        trends = self.aggregator.summarize(reconciled.records)
        return ReportOutput(ok=True, records=reconciled.records, trends=trends, diagnostics=diagnostics)

    @staticmethod
    def _empty_reason(report: ReconciliationReport) -> str:
        if report.dropped_other and report.dropped_other == report.input_records:
            return (
                f"All {report.input_records} extracted records were excluded "
                f"(diagnostic/placement or unrecognized test types)"
            )
        return f"No periodic-growth or open-mock records survived reconciliation ({report.input_records} extracted)"

    @staticmethod
    def _failure_reason(text: str, diagnostics: Diagnostics) -> str:
        if text.strip():
            reason = "Transcription contained no recognizable score rows"
        else:
            reason = "No transcription available"
        if diagnostics.extraction_error:
            reason += f"; schema extraction failed: {diagnostics.extraction_error}"
        return reason

    @staticmethod
    def _finish(output: ReportOutput, request: DocumentRequest, start_time: float) -> ReportOutput:
        output.handle = request.handle
        output.filename = request.filename
        output.kind = request.kind
        output.diagnostics.processing_time_ms = int((time.time() - start_time) * 1000)

        if output.ok:
            logger.info(
                f"Pipeline complete for {request.filename or request.handle}: "
                f"{len(output.records)} records via {output.diagnostics.extraction_path}, "
                f"{output.diagnostics.processing_time_ms}ms"
            )
        else:
            logger.warning(f"Pipeline produced no records for {request.filename or request.handle}: {output.error}")
        return output

    def get_statistics(self, output: ReportOutput) -> Dict[str, Any]:
        """
        Summary counts for a pipeline output.

        Useful for monitoring extraction quality across documents.
        """
        category_counts: Dict[str, int] = {}
        annotated = 0
        for record in output.records:
            category_counts[record.category.value] = category_counts.get(record.category.value, 0) + 1
            if record.annotations:
                annotated += 1

        total = len(output.records)
        return {
            'ok': output.ok,
            'total_records': total,
            'category_distribution': category_counts,
            'annotated_records': annotated,
            'annotated_rate': annotated / total if total > 0 else 0.0,
            'variant': output.diagnostics.variant,
            'extraction_path': output.diagnostics.extraction_path,
            'verdicts': {category.value: summary.verdict for category, summary in output.trends.items()},
            'processing_time_ms': output.diagnostics.processing_time_ms,
        }
