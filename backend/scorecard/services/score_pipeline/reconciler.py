"""
Record Reconciler
=================

Best-effort repair pass turning provisional records into the canonical set.

Applied per record, in order:
0. Range sanitation (records from schema extraction never saw the parser;
   the periodic-growth 2-subject score keeps its provisional ceiling)
1. Category-exclusive nulling (no deviation on periodic-growth, no grade
   level on open-mock)
2. Missing-total nulling (an empty slot becomes an explicit all-null slot)
3. Column-swap repair (periodic-growth), then the 2-subject ceiling
4. Suspicious-value suppression (open-mock 4-subject score 1-20)
5. Grade-level derivation from average-delta
6. Final reclassification

Then over the whole set:
7. Drop "other"
8. Drop exact duplicates (structural fingerprint)
9. Canonical ordering

No step raises for data-shape reasons. Every repair leaves an annotation.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple

from .classifier import CLASSIFIER, TestTypeClassifier
from .normalizer import Number
from .records import CATEGORY_ORDER, TestCategory, TestRecord, TotalKind, TotalSlot
from .table_parser import SLOT_NAMES, TOTAL_SCORE_RANGES, check_range, sanitize_record

logger = logging.getLogger(__name__)

# Column-swap triggers
SWAP_TWO_SUBJECT_MIN = 401
SWAP_TWO_SUBJECT_MAX = 500
SWAP_FOUR_SUBJECT_CEILING = 400
SWAP_SMALL_FOUR_SUBJECT = 170
SWAP_LARGE_TWO_SUBJECT = 220

# Open-mock 4-subject scores in this range are misread date fragments
SUSPICIOUS_FOUR_SUBJECT_RANGE = (1, 20)

# (minimum average-delta, grade level), checked top-down
GRADE_BANDS: List[Tuple[Number, int]] = [
    (8, 10),
    (6, 9),
    (4, 8),
    (2, 7),
    (1, 6),
    (-1, 5),
    (-3, 4),
]
GRADE_FLOOR = 3


def grade_from_delta(delta: Number) -> int:
    """Map an average-delta onto the 3-10 grade scale."""
    for minimum, grade in GRADE_BANDS:
        if delta >= minimum:
            return grade
    return GRADE_FLOOR


@dataclass
class ReconciliationReport:
    """Counts of each repair, reported in the pipeline diagnostics."""
    input_records: int = 0
    range_nulled: int = 0
    exclusive_nulled: int = 0
    empty_totals: int = 0
    columns_swapped: int = 0
    suspicious_suppressed: int = 0
    grades_derived: int = 0
    reclassified: int = 0
    dropped_other: int = 0
    duplicates_removed: int = 0
    output_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationResult:
    records: List[TestRecord]
    report: ReconciliationReport


class RecordReconciler:
    """
    Applies the repair heuristics and produces the canonical record set.

    Records are mutated in place; the returned list holds the survivors.
    """

    def __init__(self, classifier: Optional[TestTypeClassifier] = None):
        self.classifier = classifier or CLASSIFIER

    def reconcile(self, records: List[TestRecord]) -> ReconciliationResult:
        """
        Repair, filter, deduplicate and order provisional records.

        Args:
            records: Provisional records (parser or schema extraction)

        Returns:
            ReconciliationResult with canonical records and repair counts
        """
        report = ReconciliationReport(input_records=len(records))

        for record in records:
            self.repair(record, report)

        # === STEP 7: Category filter ===
        kept = [r for r in records if r.category != TestCategory.OTHER]
        report.dropped_other = len(records) - len(kept)
        for record in records:
            if record.category == TestCategory.OTHER:
                logger.info(f"Dropping uncategorized record: {record.describe()}")

        # === STEP 8: Deduplication ===
        unique: List[TestRecord] = []
        seen = set()
        for record in kept:
            key = record.fingerprint()
            if key in seen:
                report.duplicates_removed += 1
                continue
            seen.add(key)
            unique.append(record)

        # === STEP 9: Canonical ordering ===
        unique.sort(key=lambda r: (CATEGORY_ORDER.get(r.category, 9), r.label or ""))

        report.output_records = len(unique)
        logger.info(
            f"Reconciled {report.input_records} provisional records into {report.output_records} "
            f"(swapped={report.columns_swapped}, derived={report.grades_derived}, "
            f"dropped_other={report.dropped_other}, duplicates={report.duplicates_removed})"
        )
        return ReconciliationResult(records=unique, report=report)

    def repair(self, record: TestRecord, report: Optional[ReconciliationReport] = None) -> TestRecord:
        """Run the per-record steps 0-6 on one record in place."""
        report = report or ReconciliationReport()

        # === STEP 0: Range sanitation ===
        before = len(record.annotations)
        sanitize_record(record, provisional=True)
        report.range_nulled += len(record.annotations) - before

        # === STEP 1: Category-exclusive nulling ===
        if self.null_exclusive_fields(record):
            report.exclusive_nulled += 1

        # === STEP 2: Missing-total nulling ===
        report.empty_totals += self.normalize_empty_totals(record)

        # === STEP 3: Column-swap repair ===
        if record.category == TestCategory.PERIODIC_GROWTH:
            if self.repair_column_swap(record):
                report.columns_swapped += 1
            self.enforce_two_subject_ceiling(record)

        # === STEP 4: Suspicious-value suppression ===
        if record.category == TestCategory.OPEN_MOCK and self.suppress_suspicious(record):
            report.suspicious_suppressed += 1

        # === STEP 5: Grade-level derivation ===
        if record.category in (TestCategory.PERIODIC_GROWTH, TestCategory.OTHER):
            report.grades_derived += self.derive_grade_levels(record)

        # === STEP 6: Final reclassification ===
        new_category = self.classifier.reclassify(record)
        if new_category != record.category:
            record.annotate(f"reclassified from {record.category.value} to {new_category.value}")
            record.category = new_category
            report.reclassified += 1
            if self.null_exclusive_fields(record):
                report.exclusive_nulled += 1

        return record

    @staticmethod
    def null_exclusive_fields(record: TestRecord) -> bool:
        """Null the field family the record's category must not carry."""
        changed = False

        if record.category == TestCategory.PERIODIC_GROWTH:
            for kind in TotalKind:
                slot = record.totals.slot(kind)
                if slot.percentile_deviation is not None:
                    record.annotate(
                        f"{SLOT_NAMES[kind]} deviation {slot.percentile_deviation} "
                        f"removed from periodic-growth record"
                    )
                    slot.percentile_deviation = None
                    changed = True
            for subject in record.subject_scores:
                if subject.percentile_deviation is not None:
                    record.annotate(
                        f"{subject.subject.value} deviation {subject.percentile_deviation} "
                        f"removed from periodic-growth record"
                    )
                    subject.percentile_deviation = None
                    changed = True

        elif record.category == TestCategory.OPEN_MOCK:
            for kind in TotalKind:
                slot = record.totals.slot(kind)
                if slot.grade_level is not None:
                    record.annotate(
                        f"{SLOT_NAMES[kind]} grade level {slot.grade_level} "
                        f"removed from open-mock record"
                    )
                    slot.grade_level = None
                    changed = True

        return changed

    @staticmethod
    def normalize_empty_totals(record: TestRecord) -> int:
        """Replace every all-empty total slot with a fresh all-null slot."""
        count = 0
        if record.totals.two_subject is None or record.totals.two_subject.is_empty():
            record.totals.two_subject = TotalSlot()
            count += 1
        if record.totals.four_subject is None or record.totals.four_subject.is_empty():
            record.totals.four_subject = TotalSlot()
            count += 1
        return count

    @staticmethod
    def repair_column_swap(record: TestRecord) -> bool:
        """
        Swap 2- and 4-subject score/grade pairs read into the wrong columns.

        Triggers:
        - 2-subject score in 401-500 while the 4-subject score is absent
          or no higher than 400
        - 4-subject score <= 170 while the 2-subject score is >= 220
        """
        two = record.totals.two_subject
        four = record.totals.four_subject

        high_two = (
            two.raw_score is not None
            and SWAP_TWO_SUBJECT_MIN <= two.raw_score <= SWAP_TWO_SUBJECT_MAX
            and (four.raw_score is None or four.raw_score <= SWAP_FOUR_SUBJECT_CEILING)
        )
        inverted = (
            two.raw_score is not None and four.raw_score is not None
            and four.raw_score <= SWAP_SMALL_FOUR_SUBJECT
            and two.raw_score >= SWAP_LARGE_TWO_SUBJECT
        )
        if not (high_two or inverted):
            return False

        record.annotate(
            f"2-subject/4-subject columns swapped "
            f"(2-subject {two.raw_score} -> 4-subject, 4-subject {four.raw_score} -> 2-subject)"
        )
        two.raw_score, four.raw_score = four.raw_score, two.raw_score
        two.grade_level, four.grade_level = four.grade_level, two.grade_level
        return True

    @staticmethod
    def enforce_two_subject_ceiling(record: TestRecord):
        two = record.totals.two_subject
        two.raw_score = check_range(
            record, two.raw_score, TOTAL_SCORE_RANGES[TotalKind.TWO_SUBJECT], "2-subject total score"
        )

    @staticmethod
    def suppress_suspicious(record: TestRecord) -> bool:
        """Null an open-mock 4-subject score that looks like a date fragment."""
        four = record.totals.four_subject
        low, high = SUSPICIOUS_FOUR_SUBJECT_RANGE
        if four.raw_score is None or not (low <= four.raw_score <= high):
            return False

        record.annotate(
            f"4-subject score {four.raw_score} looks like a misread date fragment; "
            f"score and deviation {four.percentile_deviation} nulled"
        )
        four.raw_score = None
        four.percentile_deviation = None
        return True

    @staticmethod
    def derive_grade_levels(record: TestRecord) -> int:
        """Fill missing grade levels from average-delta. Returns slots filled."""
        derived = 0
        for kind in TotalKind:
            slot = record.totals.slot(kind)
            if slot.grade_level is None and slot.average_delta is not None:
                slot.grade_level = grade_from_delta(slot.average_delta)
                record.annotate(
                    f"{SLOT_NAMES[kind]} grade level {slot.grade_level} derived from "
                    f"average-delta {slot.average_delta}"
                )
                derived += 1
        return derived
