"""
Student profile derived from the yearly report's canonical records.

- Two-subject vs four-subject student, judged on periodic-growth records
  (open mocks are routinely four-subject only, so they are not counted)
- Analysis mode: "full" when single-test documents accompany the yearly
  report, "yearly-only" otherwise
- Non-destructive sanity warnings on totals that are in range but unusual
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .records import TestCategory, TestRecord

logger = logging.getLogger(__name__)

STUDENT_TWO_SUBJECT = "two"
STUDENT_FOUR_SUBJECT = "four"

MODE_FULL = "full"
MODE_YEARLY_ONLY = "yearly-only"

DOMINANT_SHARE = 0.7
RARE_SHARE = 0.3

# Above this 2-subject total a score is kept but reported
SANITY_TWO_SUBJECT_MAX = 300


@dataclass
class StudentProfile:
    student_type: str = STUDENT_FOUR_SUBJECT
    analysis_mode: str = MODE_YEARLY_ONLY
    warnings: List[str] = field(default_factory=list)

    @property
    def is_two_subject_student(self) -> bool:
        return self.student_type == STUDENT_TWO_SUBJECT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'student_type': self.student_type,
            'is_two_subject_student': self.is_two_subject_student,
            'analysis_mode': self.analysis_mode,
            'warnings': list(self.warnings),
        }


def detect_student_type(records: List[TestRecord], warnings: List[str]) -> str:
    """
    Decide two- vs four-subject from which total is consistently present.

    One slot must be present on at least 70% of periodic-growth records
    while the other is present on at most 30%. Anything else is reported
    as mixed and treated as four-subject.
    """
    growth = [r for r in records if r.category == TestCategory.PERIODIC_GROWTH]
    n = len(growth)
    if n == 0:
        return STUDENT_FOUR_SUBJECT

    two_present = sum(1 for r in growth if r.totals.two_subject.raw_score is not None)
    four_present = sum(1 for r in growth if r.totals.four_subject.raw_score is not None)

    almost_all = max(1, int(n * DOMINANT_SHARE))
    rare = int(n * RARE_SHARE)

    if two_present >= almost_all and four_present <= rare:
        return STUDENT_TWO_SUBJECT
    if four_present >= almost_all and two_present <= rare:
        return STUDENT_FOUR_SUBJECT

    warnings.append(
        f"Mixed 2-subject/4-subject totals on periodic-growth tests "
        f"(2-subject={two_present}, 4-subject={four_present}, n={n}); treating as 4-subject"
    )
    return STUDENT_FOUR_SUBJECT


def sanity_check_scores(records: List[TestRecord], warnings: List[str]):
    """Warn about 2-subject totals that are in range but above the usual scale."""
    for record in records:
        two = record.totals.two_subject.raw_score
        if two is not None and two > SANITY_TWO_SUBJECT_MAX:
            warnings.append(f"2-subject total {two} is unusually high ({record.describe()})")


def build_profile(records: List[TestRecord], has_single_documents: bool) -> StudentProfile:
    """
    Build the student profile for a yearly report.

    Args:
        records: Canonical records of the yearly report
        has_single_documents: Whether single-test documents were supplied

    Returns:
        StudentProfile
    """
    warnings: List[str] = []
    sanity_check_scores(records, warnings)
    student_type = detect_student_type(records, warnings)

    if has_single_documents:
        mode = MODE_FULL
    else:
        mode = MODE_YEARLY_ONLY
        warnings.append("No single-test documents supplied; analysis mode is yearly-only (trend reference only)")

    profile = StudentProfile(student_type=student_type, analysis_mode=mode, warnings=warnings)
    logger.info(f"Student profile: type={profile.student_type} mode={profile.analysis_mode} warnings={len(warnings)}")
    return profile
