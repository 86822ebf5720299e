"""
Score Report API Routes
=======================

REST API endpoints for the score extraction pipeline.

Endpoints:
- POST /api/v1/score-reports/analyze - Analyze a yearly report PDF (plus optional single-test PDFs)
- POST /api/v1/score-reports/analyze-text - Analyze an existing transcription
- POST /api/v1/score-reports/commentary - Commentary for already-extracted tests
- GET /api/v1/score-reports/layouts - Registered layout variants
- GET /api/v1/score-reports/health - Component status
"""

import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, File, UploadFile, HTTPException, Query

from scorecard.config import Config
from scorecard.models import (
    AnalyzeResponse, AnalyzeTextRequest, CommentaryOutput, CommentaryRequest, CommentaryResponse,
    ComponentHealth, DocumentReport, LayoutsResponse, LayoutVariantOutput, StudentProfileOutput
)
from scorecard.services.commentary_service import Audience, Focus, Tone
from scorecard.services.score_pipeline import (
    DocumentRequest, DocumentStorageError, LAYOUT_VARIANTS, PRIMARY_VARIANT, ReportOutput,
    ScoreReportPipeline, UnknownLayoutError, build_profile
)
from scorecard.services.score_pipeline.disambiguator import AUTO
from scorecard.services.score_pipeline.layouts import get_variant, variant_names
from scorecard.services.score_pipeline.payload import DOC_TYPE, ReportPayload, payload_to_records
from scorecard.services.score_pipeline.pipeline import KIND_SINGLE, KIND_YEARLY
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/score-reports", tags=["Score Reports"])


# ============================================================================
# Service Instances (Singletons)
# ============================================================================

_rate_limiter_instance = None
_pipeline_instance = None
_text_pipeline_instance = None
_commentary_instance = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the shared rate limiter."""
    global _rate_limiter_instance

    if _rate_limiter_instance is None:
        _rate_limiter_instance = RateLimiter(max_total_calls=Config.MAX_TOTAL_CALLS)

    return _rate_limiter_instance


def get_pipeline() -> ScoreReportPipeline:
    """Get or create the document pipeline (storage, transcription, extraction)."""
    global _pipeline_instance

    if _pipeline_instance is None:
        from scorecard.services.storage_service import create_storage
        from scorecard.services.transcription_service import create_transcriber
        from scorecard.services.extraction_service import SchemaExtractionService

        rate_limiter = get_rate_limiter()
        _pipeline_instance = ScoreReportPipeline(
            storage=create_storage(),
            transcriber=create_transcriber(rate_limiter),
            extractor=SchemaExtractionService(rate_limiter=rate_limiter),
            max_workers=Config.MAX_WORKERS,
        )
        logger.info("Initialized ScoreReportPipeline singleton")

    return _pipeline_instance


def get_text_pipeline() -> ScoreReportPipeline:
    """Get or create the service-free pipeline used for text and record input."""
    global _text_pipeline_instance

    if _text_pipeline_instance is None:
        _text_pipeline_instance = ScoreReportPipeline()

    return _text_pipeline_instance


def get_commentary_service():
    """Get or create the commentary service."""
    global _commentary_instance

    if _commentary_instance is None:
        from scorecard.services.commentary_service import CommentaryService

        _commentary_instance = CommentaryService(rate_limiter=get_rate_limiter())
        logger.info("Initialized CommentaryService singleton")

    return _commentary_instance


# ============================================================================
# Helpers
# ============================================================================

async def _read_pdf(upload: UploadFile) -> bytes:
    """Read an uploaded file, rejecting anything that is not a PDF."""
    if not (upload.filename or '').lower().endswith('.pdf'):
        raise HTTPException(
            status_code=400,
            detail=f"Only PDF files are supported: {upload.filename}"
        )

    pdf_bytes = await upload.read()

    if len(pdf_bytes) == 0:
        raise HTTPException(
            status_code=400,
            detail=f"Empty file uploaded: {upload.filename}"
        )

    if not PDFHandler.is_pdf(pdf_bytes):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid PDF format: {upload.filename}"
        )

    return pdf_bytes


def _check_layout(layout: str):
    if layout != AUTO and get_variant(layout) is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown layout '{layout}'. Known layouts: {', '.join([AUTO] + variant_names())}"
        )


def _document_report(pipeline: ScoreReportPipeline, output: ReportOutput) -> DocumentReport:
    return DocumentReport(**output.to_dict(), statistics=pipeline.get_statistics(output))


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_reports(
    yearly: UploadFile = File(..., description="Yearly report PDF"),
    single: Optional[List[UploadFile]] = File(None, description="Single-test report PDFs"),
    layout: str = Query(AUTO, description="Layout variant name or 'auto'"),
    include_commentary: bool = Query(False, description="Generate commentary for the yearly report"),
    tone: Tone = Query(Tone.BALANCED, description="Commentary tone"),
    target: Audience = Query(Audience.PARENT, description="Commentary reader"),
    focus: Focus = Query(Focus.PROCESS, description="Commentary focus")
) -> AnalyzeResponse:
    """
    Analyze a yearly grade report and optional single-test reports.

    Every file is stored first, then all documents go through the pipeline
    concurrently:
    1. Transcription
    2. Layout disambiguation and table parsing
    3. Schema extraction fallback when no rows are found
    4. Reconciliation and trend summaries

    A failed single-test document never fails the request; its report
    carries ok=false and the reason.
    """
    singles = single or []
    if len(singles) > Config.MAX_SINGLE_DOCUMENTS:
        raise HTTPException(
            status_code=400,
            detail=f"At most {Config.MAX_SINGLE_DOCUMENTS} single-test documents are allowed (got {len(singles)})"
        )
    _check_layout(layout)

    try:
        uploads = [(yearly, KIND_YEARLY)] + [(upload, KIND_SINGLE) for upload in singles]
        contents = [await _read_pdf(upload) for upload, _ in uploads]

        pipeline = get_pipeline()
        requests = []
        for (upload, kind), pdf_bytes in zip(uploads, contents):
            handle = pipeline.storage.store(pdf_bytes, PDFHandler.storage_path(upload.filename))
            requests.append(DocumentRequest(handle=handle, layout_hint=layout, filename=upload.filename, kind=kind))

        logger.info(f"Analyzing yearly report {yearly.filename} with {len(singles)} single-test document(s)")
        outputs = pipeline.process_batch(requests)
        yearly_output, single_outputs = outputs[0], outputs[1:]

        profile = None
        commentary = None
        if yearly_output.ok:
            student_profile = build_profile(yearly_output.records, has_single_documents=bool(singles))
            profile = StudentProfileOutput(**student_profile.to_dict())

            if include_commentary:
                result = get_commentary_service().generate(
                    yearly_output.records,
                    yearly_output.trends,
                    tone=tone,
                    target=target,
                    focus=focus,
                    profile=student_profile.to_dict()
                )
                commentary = CommentaryOutput(**result.to_dict())

        return AnalyzeResponse(
            success=yearly_output.ok,
            yearly=_document_report(pipeline, yearly_output),
            singles=[_document_report(pipeline, output) for output in single_outputs],
            profile=profile,
            commentary=commentary,
            error=yearly_output.error
        )

    except HTTPException:
        raise
    except DocumentStorageError as e:
        logger.error(f"Document storage failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except UnknownLayoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Pipeline error: {e}", exc_info=True)
        return AnalyzeResponse(
            success=False,
            error=str(e)
        )


@router.post("/analyze-text", response_model=DocumentReport)
async def analyze_text(request: AnalyzeTextRequest) -> DocumentReport:
    """
    Analyze an already-transcribed report.

    Runs parsing, reconciliation and trends only; no external service is
    called, so there is no extraction fallback.
    """
    if not request.text.strip():
        raise HTTPException(
            status_code=400,
            detail="No text provided"
        )
    _check_layout(request.layout)

    try:
        pipeline = get_text_pipeline()
        output = pipeline.process_text(request.text, request.layout)
        return _document_report(pipeline, output)

    except UnknownLayoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Pipeline error: {e}", exc_info=True)
        return DocumentReport(ok=False, error=str(e))


@router.post("/commentary", response_model=CommentaryResponse)
async def generate_commentary(request: CommentaryRequest) -> CommentaryResponse:
    """
    Generate commentary for tests given in the extraction payload format.

    The tests are reconciled and summarized exactly like extracted ones
    before the commentary is written.
    """
    if not request.tests:
        raise HTTPException(
            status_code=400,
            detail="No tests provided"
        )

    try:
        payload = ReportPayload(doc_type=DOC_TYPE, tests=request.tests)
        pipeline = get_text_pipeline()
        output = pipeline.process_records(payload_to_records(payload, pipeline.classifier))

        trends = {category.value: summary.to_dict() for category, summary in output.trends.items()}
        if not output.ok:
            return CommentaryResponse(success=False, trends=trends, error=output.error)

        result = get_commentary_service().generate(
            output.records,
            output.trends,
            tone=request.tone,
            target=request.target,
            focus=request.focus
        )
        return CommentaryResponse(success=True, commentary=CommentaryOutput(**result.to_dict()), trends=trends)

    except Exception as e:
        logger.error(f"Commentary error: {e}", exc_info=True)
        return CommentaryResponse(
            success=False,
            error=str(e)
        )


@router.get("/layouts", response_model=LayoutsResponse)
async def get_layouts() -> LayoutsResponse:
    """
    Get the registered layout variants.

    Any of the names can be passed as the layout hint; 'auto' lets the
    pipeline choose by row yield.
    """
    variants = [
        LayoutVariantOutput(**variant.to_dict(), is_primary=variant.name == PRIMARY_VARIANT)
        for variant in LAYOUT_VARIANTS
    ]
    return LayoutsResponse(total_variants=len(variants), variants=variants)


@router.get("/health", response_model=ComponentHealth)
async def score_reports_health() -> ComponentHealth:
    """Component status without touching any external service."""
    return ComponentHealth(
        status="healthy",
        timestamp=datetime.now(),
        transcription_backend=Config.TRANSCRIPTION_BACKEND,
        storage_backend="s3" if Config.REPORT_BUCKET else "local",
        extraction_available=bool(Config.LLM_API_KEY),
        commentary_mode="llm" if Config.LLM_API_KEY else "template",
        layout_variants=variant_names()
    )
