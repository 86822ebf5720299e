"""
Pydantic models for API request/response schemas.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime

from scorecard.services.commentary_service import Audience, Focus, Tone
from scorecard.services.score_pipeline.payload import TestPayload


class RateLimitStatus(BaseModel):
    """Rate limit status response model."""
    total_calls: int
    max_calls: int
    remaining_calls: int
    calls_by_service: Dict[str, int]
    refused_by_service: Dict[str, int] = {}


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime


class ComponentHealth(BaseModel):
    """Status of the score-report components."""
    status: str
    timestamp: datetime
    transcription_backend: str
    storage_backend: str
    extraction_available: bool
    commentary_mode: str = Field(..., description="llm | template")
    layout_variants: List[str]


class CommentaryOptions(BaseModel):
    """Commentary tone, reader and focus."""
    tone: Tone = Tone.BALANCED
    target: Audience = Audience.PARENT
    focus: Focus = Focus.PROCESS


class CommentaryOutput(BaseModel):
    """Generated commentary."""
    text: str
    source: str = Field(..., description="llm | template")
    error: Optional[str] = None


class DocumentReport(BaseModel):
    """Pipeline result for one document."""
    ok: bool
    error: Optional[str] = None
    handle: Optional[str] = None
    filename: Optional[str] = None
    kind: str = "yearly"
    records: List[Dict[str, Any]] = []
    trends: Dict[str, Dict[str, Any]] = {}
    diagnostics: Dict[str, Any] = {}
    statistics: Optional[Dict[str, Any]] = None


class StudentProfileOutput(BaseModel):
    """Student profile derived from the yearly report."""
    student_type: str = Field(..., description="two | four")
    is_two_subject_student: bool
    analysis_mode: str = Field(..., description="full | yearly-only")
    warnings: List[str] = []


class AnalyzeResponse(BaseModel):
    """Response for the analyze endpoint."""
    success: bool
    yearly: Optional[DocumentReport] = None
    singles: List[DocumentReport] = []
    profile: Optional[StudentProfileOutput] = None
    commentary: Optional[CommentaryOutput] = None
    error: Optional[str] = None


class AnalyzeTextRequest(BaseModel):
    """Request for analyzing an existing transcription."""
    text: str = Field(..., description="Transcribed report text")
    layout: str = Field("auto", description="Layout variant name or 'auto'")


class CommentaryRequest(CommentaryOptions):
    """Request for commentary on already-extracted tests."""
    tests: List[TestPayload] = Field(..., description="Tests in the extraction payload format")


class CommentaryResponse(BaseModel):
    """Response for the commentary endpoint."""
    success: bool
    commentary: Optional[CommentaryOutput] = None
    trends: Dict[str, Dict[str, Any]] = {}
    error: Optional[str] = None


class LayoutVariantOutput(BaseModel):
    """Registered layout variant."""
    name: str
    description: str
    header_hints: List[str]
    categories: List[str]
    is_primary: bool


class LayoutsResponse(BaseModel):
    """All registered layout variants."""
    total_variants: int
    variants: List[LayoutVariantOutput]
