"""
Score Extraction Pipeline
=========================

Turns noisy transcriptions of tutoring-center grade reports into a clean,
validated, de-duplicated time series of test results with per-category
trends.

Pipeline Stages:
1. FETCH + TRANSCRIBE: document storage, transcription service
2. PARSE: layout disambiguation and table parsing
3. FALLBACK: schema-constrained extraction when the text path finds nothing
4. RECONCILE: column-swap repair, suspicious-value suppression, grade
   derivation, reclassification, filtering, deduplication, ordering
5. TRENDS: first-vs-last verdict per category

Design Principles:
- Out-of-range values are nulled, never clipped
- Every repair is annotated on the record
- Diagnostic / placement tests never reach the output
- Core stages have no network dependency
"""

from .records import (
    TestCategory,
    SubjectName,
    TotalKind,
    SubjectScore,
    TotalSlot,
    CombinedTotals,
    TestRecord,
)
from .classifier import TestTypeClassifier, CLASSIFIER
from .layouts import LayoutVariant, SectionSpec, LAYOUT_VARIANTS, PRIMARY_VARIANT
from .table_parser import TableFormatParser, ParseResult
from .disambiguator import FormatDisambiguator, DisambiguationResult
from .reconciler import RecordReconciler, ReconciliationReport, ReconciliationResult
from .trends import TrendAggregator, TrendSummary
from .profile import StudentProfile, build_profile
from .errors import ScorePipelineError, DocumentStorageError, UnknownLayoutError
from .pipeline import ScoreReportPipeline, DocumentRequest, ReportOutput, Diagnostics

__all__ = [
    'ScoreReportPipeline',
    'DocumentRequest',
    'ReportOutput',
    'Diagnostics',
    'TestCategory',
    'SubjectName',
    'TotalKind',
    'SubjectScore',
    'TotalSlot',
    'CombinedTotals',
    'TestRecord',
    'TestTypeClassifier',
    'CLASSIFIER',
    'LayoutVariant',
    'SectionSpec',
    'LAYOUT_VARIANTS',
    'PRIMARY_VARIANT',
    'TableFormatParser',
    'ParseResult',
    'FormatDisambiguator',
    'DisambiguationResult',
    'RecordReconciler',
    'ReconciliationReport',
    'ReconciliationResult',
    'TrendAggregator',
    'TrendSummary',
    'StudentProfile',
    'build_profile',
    # Errors
    'ScorePipelineError',
    'DocumentStorageError',
    'UnknownLayoutError',
]
