"""
Extraction Payload Boundary
===========================

The schema-constrained extraction service answers with JSON that is
supposed to follow REPORT_JSON_SCHEMA. This module is the only place that
touches that untyped data:

1. strip_code_fences / parse_report_payload - text -> validated ReportPayload
2. payload_to_records - ReportPayload -> provisional TestRecords

Numeric fields are coerced leniently ("120点" -> 120, "-" -> None).
Structural violations (wrong docType, tests not a list, ...) are reported
as a parse error, never raised.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .classifier import CLASSIFIER, TestTypeClassifier
from .normalizer import dash_to_null, parse_loose_date, to_number
from .records import CombinedTotals, SubjectName, SubjectScore, TestRecord, TotalSlot

logger = logging.getLogger(__name__)

DOC_TYPE = "score_report"
SCHEMA_SOURCE = "schema_extraction"

# Subject headings as they appear on reports
SUBJECT_ALIASES: Dict[SubjectName, List[str]] = {
    SubjectName.LANGUAGE: ["国語", "国", "language", "japanese"],
    SubjectName.MATH: ["算数", "算", "数学", "数", "math", "mathematics", "arithmetic"],
    SubjectName.SCIENCE: ["理科", "理", "science"],
    SubjectName.SOCIAL: ["社会", "社", "social", "social studies"],
}


def subject_from_name(name: Optional[str]) -> SubjectName:
    """Map a subject heading onto SubjectName (UNKNOWN when unrecognized)."""
    if not name:
        return SubjectName.UNKNOWN
    cleaned = str(name).strip().lower()
    for subject, aliases in SUBJECT_ALIASES.items():
        if cleaned == subject.value or cleaned in aliases:
            return subject
    for subject, aliases in SUBJECT_ALIASES.items():
        if any(len(alias) > 1 and alias in cleaned for alias in aliases):
            return subject
    return SubjectName.UNKNOWN


# ============================================================================
# Payload Models
# ============================================================================

class _Lenient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubjectPayload(_Lenient):
    name: Optional[str] = None
    score: Optional[float] = None
    deviation: Optional[float] = None
    rank: Optional[float] = None
    avg: Optional[float] = None
    diff_from_avg: Optional[float] = Field(None, alias="diffFromAvg")

    @field_validator("score", "deviation", "rank", "avg", "diff_from_avg", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> Optional[float]:
        return to_number(value)


class TotalPayload(SubjectPayload):
    grade: Optional[float] = None

    @field_validator("grade", mode="before")
    @classmethod
    def _coerce_grade(cls, value: Any) -> Optional[float]:
        return to_number(value)


class TotalsPayload(_Lenient):
    two: TotalPayload = Field(default_factory=TotalPayload)
    four: TotalPayload = Field(default_factory=TotalPayload)

    @field_validator("two", "four", mode="before")
    @classmethod
    def _null_slot(cls, value: Any) -> Any:
        return {} if value is None else value


class TestPayload(_Lenient):
    __test__ = False  # not a pytest test class

    test_type: Optional[str] = Field(None, alias="testType")
    test_name: Optional[str] = Field(None, alias="testName")
    date: Optional[str] = None
    subjects: List[SubjectPayload] = Field(default_factory=list)
    totals: TotalsPayload = Field(default_factory=TotalsPayload)
    notes: List[str] = Field(default_factory=list)

    @field_validator("date", "test_name", "test_type", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        value = dash_to_null(value)
        return None if value is None else str(value)

    @field_validator("subjects", "notes", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class StudentPayload(_Lenient):
    name: Optional[str] = None
    id: Optional[str] = None


class MetaPayload(_Lenient):
    source_filename: Optional[str] = Field(None, alias="sourceFilename")
    title: Optional[str] = None


class ReportPayload(_Lenient):
    """Validated extraction output."""
    doc_type: str = Field(..., alias="docType")
    student: StudentPayload = Field(default_factory=StudentPayload)
    meta: MetaPayload = Field(default_factory=MetaPayload)
    tests: List[TestPayload] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)

    @field_validator("doc_type")
    @classmethod
    def _check_doc_type(cls, value: str) -> str:
        if value != DOC_TYPE:
            raise ValueError(f"docType must be '{DOC_TYPE}', got '{value}'")
        return value


def _nullable(kind: str) -> Dict[str, Any]:
    return {"type": [kind, "null"]}


def _object(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": properties,
        "required": list(properties),
    }


_TOTAL_FIELDS = {name: _nullable("number") for name in ("score", "deviation", "rank", "avg", "diffFromAvg", "grade")}

# JSON schema handed to the extraction service
REPORT_JSON_SCHEMA: Dict[str, Any] = {
    "name": "score_report_json",
    "strict": True,
    "schema": _object({
        "docType": {"const": DOC_TYPE},
        "student": _object({"name": _nullable("string"), "id": _nullable("string")}),
        "meta": _object({"sourceFilename": _nullable("string"), "title": _nullable("string")}),
        "tests": {
            "type": "array",
            "items": _object({
                "testType": {"type": "string"},
                "testName": _nullable("string"),
                "date": _nullable("string"),
                "subjects": {
                    "type": "array",
                    "items": _object({
                        "name": _nullable("string"),
                        **{k: v for k, v in _TOTAL_FIELDS.items() if k != "grade"},
                    }),
                },
                "totals": _object({"two": _object(dict(_TOTAL_FIELDS)), "four": _object(dict(_TOTAL_FIELDS))}),
                "notes": {"type": "array", "items": {"type": "string"}},
            }),
        },
        "notes": {"type": "array", "items": {"type": "string"}},
    }),
}


# ============================================================================
# Parsing and Coercion
# ============================================================================

def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    response_text = (text or "").strip()
    if "```json" in response_text:
        json_start = response_text.find("```json") + 7
        json_end = response_text.find("```", json_start)
        response_text = response_text[json_start:json_end if json_end != -1 else None].strip()
    elif "```" in response_text:
        json_start = response_text.find("```") + 3
        json_end = response_text.find("```", json_start)
        response_text = response_text[json_start:json_end if json_end != -1 else None].strip()
    return response_text


def parse_report_payload(raw_text: str) -> Tuple[Optional[ReportPayload], Optional[str]]:
    """
    Parse and validate extraction output.

    Returns:
        (payload, None) on success, (None, error message) otherwise
    """
    text = strip_code_fences(raw_text)
    if not text:
        return None, "Extraction returned empty output"

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return None, f"Extraction output is not valid JSON: {e}"

    if not isinstance(data, dict):
        return None, "Extraction output is not a JSON object"

    try:
        return ReportPayload.model_validate(data), None
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return None, f"Extraction output does not match the report schema ({location}: {first.get('msg', e)})"


def _slot_from(total: TotalPayload) -> TotalSlot:
    return TotalSlot(
        raw_score=to_number(total.score),
        percentile_deviation=to_number(total.deviation),
        rank=to_number(total.rank),
        average=to_number(total.avg),
        average_delta=to_number(total.diff_from_avg),
        grade_level=to_number(total.grade),
    )


def payload_to_records(payload: ReportPayload,
                       classifier: Optional[TestTypeClassifier] = None) -> List[TestRecord]:
    """
    Convert a validated payload into provisional TestRecords.

    The declared testType is kept on the record and consulted (here and at
    final reclassification) only when the test name itself does not
    identify the category. Range checks are left to the reconciler.
    """
    classifier = classifier or CLASSIFIER
    records = []

    for test in payload.tests:
        record = TestRecord(
            label=test.test_name,
            occurred_on=parse_loose_date(test.date),
            subject_scores=[
                SubjectScore(
                    subject=subject_from_name(s.name),
                    raw_score=to_number(s.score),
                    percentile_deviation=to_number(s.deviation),
                    rank=to_number(s.rank),
                    average=to_number(s.avg),
                    average_delta=to_number(s.diff_from_avg),
                )
                for s in test.subjects
            ],
            totals=CombinedTotals(two_subject=_slot_from(test.totals.two), four_subject=_slot_from(test.totals.four)),
            source=SCHEMA_SOURCE,
            declared_type=test.test_type,
        )
        for note in test.notes:
            if note and note.strip():
                record.annotate(note.strip())

        record.category = classifier.classify(record)
        records.append(record)

    logger.debug(f"Coerced {len(records)} records from extraction payload")
    return records
