"""
Score Record Model
==================

Typed structures flowing between the pipeline stages.

A TestRecord is one administration of one test. It is created as a
*provisional* record by the table parser (or by payload coercion on the
schema-extraction fallback path), mutated in place by the reconciler, and
becomes *canonical* once it survives category filtering and deduplication.
Canonical records are never mutated again.

Design Principles:
------------------
- Every numeric field is independently nullable
- Combined totals always have both slots (never a missing key)
- Annotations are an audit trail and are never dropped
"""

import json
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

Number = Union[int, float]


class TestCategory(str, Enum):
    """Recognized test categories."""
    __test__ = False  # not a pytest test class

    PERIODIC_GROWTH = "periodic_growth"   # recurring in-house progress test (3-10 tier)
    OPEN_MOCK = "open_mock"               # inter-school mock exam (percentile deviation)
    OTHER = "other"                       # unrecognized / excluded, never canonical


# Canonical ordering: periodic-growth, then open-mock, then leftovers
CATEGORY_ORDER: Dict[TestCategory, int] = {
    TestCategory.PERIODIC_GROWTH: 0,
    TestCategory.OPEN_MOCK: 1,
    TestCategory.OTHER: 9,
}


class SubjectName(str, Enum):
    """Subjects appearing on score reports."""
    LANGUAGE = "language"
    MATH = "math"
    SCIENCE = "science"
    SOCIAL = "social"
    UNKNOWN = "unknown"


class TotalKind(str, Enum):
    """The two combined-total slots."""
    TWO_SUBJECT = "two_subject"
    FOUR_SUBJECT = "four_subject"


@dataclass
class SubjectScore:
    """Per-subject entry of a test record."""
    subject: SubjectName = SubjectName.UNKNOWN
    raw_score: Optional[Number] = None
    percentile_deviation: Optional[Number] = None
    rank: Optional[Number] = None
    average: Optional[Number] = None
    average_delta: Optional[Number] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['subject'] = self.subject.value
        return data


@dataclass
class TotalSlot:
    """
    One combined-total slot (2-subject or 4-subject).

    grade_level is only meaningful for periodic-growth records and
    percentile_deviation only for open-mock records.
    """
    raw_score: Optional[Number] = None
    percentile_deviation: Optional[Number] = None
    rank: Optional[Number] = None
    average: Optional[Number] = None
    average_delta: Optional[Number] = None
    grade_level: Optional[Number] = None

    def is_empty(self) -> bool:
        """True when every sub-field is null."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CombinedTotals:
    """Fixed pair of total slots."""
    two_subject: TotalSlot = field(default_factory=TotalSlot)
    four_subject: TotalSlot = field(default_factory=TotalSlot)

    def slot(self, kind: TotalKind) -> TotalSlot:
        return self.two_subject if kind == TotalKind.TWO_SUBJECT else self.four_subject

    def slots(self) -> List[TotalSlot]:
        return [self.two_subject, self.four_subject]

    def to_dict(self) -> Dict[str, Any]:
        return {
            TotalKind.TWO_SUBJECT.value: self.two_subject.to_dict(),
            TotalKind.FOUR_SUBJECT.value: self.four_subject.to_dict(),
        }


@dataclass
class TestRecord:
    """
    One administration of one test.

    round_number, source and declared_type are bookkeeping only; they are
    not part of the structural fingerprint used for deduplication.
    """
    __test__ = False  # not a pytest test class

    category: TestCategory = TestCategory.OTHER
    label: Optional[str] = None
    occurred_on: Optional[str] = None  # ISO YYYY-MM-DD
    subject_scores: List[SubjectScore] = field(default_factory=list)
    totals: CombinedTotals = field(default_factory=CombinedTotals)
    annotations: List[str] = field(default_factory=list)

    round_number: Optional[int] = None
    source: str = ""  # "table:<variant>" or "schema_extraction"
    declared_type: Optional[str] = None  # testType reported by schema extraction

    def annotate(self, note: str):
        """Append an audit note (duplicates of the same note are kept once)."""
        if note not in self.annotations:
            self.annotations.append(note)

    def describe(self) -> str:
        """Short human-readable identity used in annotations and logs."""
        parts = [self.label or "(unlabeled)"]
        if self.occurred_on:
            parts.append(self.occurred_on)
        return " ".join(parts)

    def has_deviation(self) -> bool:
        return (
            any(slot.percentile_deviation is not None for slot in self.totals.slots())
            or any(s.percentile_deviation is not None for s in self.subject_scores)
        )

    def has_grade_or_delta(self) -> bool:
        return (
            any(slot.grade_level is not None for slot in self.totals.slots())
            or any(slot.average_delta is not None for slot in self.totals.slots())
            or any(s.average_delta is not None for s in self.subject_scores)
        )

    def fingerprint(self) -> str:
        """
        Structural fingerprint for exact-duplicate detection.

        Covers category, label, date, subject scores sorted by subject
        name, combined totals and annotations.
        """
        key = {
            'category': self.category.value,
            'label': self.label,
            'date': self.occurred_on,
            'subjects': sorted(
                (s.to_dict() for s in self.subject_scores),
                key=lambda s: (s['subject'], json.dumps(s, sort_keys=True))
            ),
            'totals': self.totals.to_dict(),
            'annotations': list(self.annotations),
        }
        return json.dumps(key, sort_keys=True, ensure_ascii=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'category': self.category.value,
            'label': self.label,
            'occurred_on': self.occurred_on,
            'round_number': self.round_number,
            'subject_scores': [s.to_dict() for s in self.subject_scores],
            'totals': self.totals.to_dict(),
            'annotations': list(self.annotations),
            'source': self.source,
        }
