"""
Table-Format Parser
===================

Extracts one provisional TestRecord per table row from transcribed text,
for one known layout variant (see layouts.py).

Processing per category section:
1. Slice the block: earliest start marker, then the earliest end marker
   after it (or end of text)
2. Match rows: round number, date fragment, four numeric-or-dash cells
3. Resolve the date; rows without a usable date are skipped and counted
4. Write cells into the record's total slots per the variant's column map
5. Apply the range policy: out-of-range values are nulled, never clamped,
   and every nulling is annotated

The range policy below is shared with the reconciler, which re-applies it
to records that did not come through this parser.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .classifier import CLASSIFIER, TestTypeClassifier
from .layouts import LayoutVariant, SectionSpec
from .normalizer import Number, clamp_to_range, dash_to_null, normalize_transcript, parse_loose_date, to_number
from .records import TestCategory, TestRecord, TotalKind, TotalSlot

logger = logging.getLogger(__name__)


# ============================================================================
# Range Policy
# ============================================================================

TOTAL_SCORE_RANGES: Dict[TotalKind, Tuple[int, int]] = {
    TotalKind.TWO_SUBJECT: (0, 400),
    TotalKind.FOUR_SUBJECT: (0, 500),
}
GRADE_LEVEL_RANGE = (3, 10)
MISREAD_GRADE_LEVELS = (1, 2)
DEVIATION_RANGE = (10, 90)
SUBJECT_SCORE_RANGE = (0, 200)
SUBJECT_DELTA_RANGE = (-200, 200)
TOTAL_DELTA_RANGES: Dict[TotalKind, Tuple[int, int]] = {
    TotalKind.TWO_SUBJECT: (-400, 400),
    TotalKind.FOUR_SUBJECT: (-500, 500),
}
MIN_RANK = 1

# Periodic-growth 2-subject scores up to this value survive until the
# reconciler has had a chance to detect swapped columns.
PROVISIONAL_TWO_SUBJECT_CEILING = 500

SLOT_NAMES: Dict[TotalKind, str] = {
    TotalKind.TWO_SUBJECT: "2-subject",
    TotalKind.FOUR_SUBJECT: "4-subject",
}


def check_range(record: TestRecord, value: Any, bounds: Tuple[Number, Number], what: str) -> Optional[Number]:
    """
    Coerce and range-check one value, annotating the record when it is nulled.

    Args:
        record: Record receiving the annotation
        value: Raw value (number, numeric string, dash, None)
        bounds: Inclusive (minimum, maximum)
        what: Field description used in the annotation

    Returns:
        The number, or None
    """
    number = to_number(value)
    if number is None:
        return None
    kept = clamp_to_range(number, bounds[0], bounds[1])
    if kept is None:
        record.annotate(f"{what} {number} outside {bounds[0]}..{bounds[1]}; nulled")
    return kept


def check_grade_level(record: TestRecord, value: Any, what: str) -> Optional[Number]:
    """Range-check a grade level; 1 and 2 get a dedicated misread note."""
    number = to_number(value)
    if number is None:
        return None
    if number in MISREAD_GRADE_LEVELS:
        record.annotate(f"{what} {number} is below the 3-10 scale; likely misread, nulled")
        return None
    return check_range(record, number, GRADE_LEVEL_RANGE, what)


def check_rank(record: TestRecord, value: Any, what: str) -> Optional[Number]:
    number = to_number(value)
    if number is None:
        return None
    if number < MIN_RANK:
        record.annotate(f"{what} {number} is not a valid rank; nulled")
        return None
    return number


def sanitize_slot(record: TestRecord, kind: TotalKind, provisional: bool = False):
    """Apply the range policy to one total slot in place."""
    slot: TotalSlot = record.totals.slot(kind)
    name = f"{SLOT_NAMES[kind]} total"

    score_range = TOTAL_SCORE_RANGES[kind]
    if (provisional and kind == TotalKind.TWO_SUBJECT
            and record.category == TestCategory.PERIODIC_GROWTH):
        score_range = (score_range[0], PROVISIONAL_TWO_SUBJECT_CEILING)

    slot.raw_score = check_range(record, slot.raw_score, score_range, f"{name} score")
    slot.average = check_range(record, slot.average, TOTAL_SCORE_RANGES[kind], f"{name} average")
    slot.average_delta = check_range(record, slot.average_delta, TOTAL_DELTA_RANGES[kind], f"{name} average-delta")
    slot.percentile_deviation = check_range(record, slot.percentile_deviation, DEVIATION_RANGE, f"{name} deviation")
    slot.grade_level = check_grade_level(record, slot.grade_level, f"{name} grade level")
    slot.rank = check_rank(record, slot.rank, f"{name} rank")


def sanitize_record(record: TestRecord, provisional: bool = False) -> TestRecord:
    """
    Apply the full range policy to a record in place.

    Idempotent: values already inside their ranges pass through untouched
    and produce no annotation.

    Args:
        record: Record to sanitize
        provisional: Keep periodic-growth 2-subject scores up to the
            provisional ceiling (for column-swap detection)

    Returns:
        The same record
    """
    for kind in TotalKind:
        sanitize_slot(record, kind, provisional=provisional)

    for subject in record.subject_scores:
        name = f"{subject.subject.value} subject"
        subject.raw_score = check_range(record, subject.raw_score, SUBJECT_SCORE_RANGE, f"{name} score")
        subject.average = check_range(record, subject.average, SUBJECT_SCORE_RANGE, f"{name} average")
        subject.average_delta = check_range(record, subject.average_delta, SUBJECT_DELTA_RANGE, f"{name} average-delta")
        subject.percentile_deviation = check_range(
            record, subject.percentile_deviation, DEVIATION_RANGE, f"{name} deviation"
        )
        subject.rank = check_rank(record, subject.rank, f"{name} rank")

    return record


# ============================================================================
# Parse Result
# ============================================================================

@dataclass
class ParseResult:
    """Outcome of parsing one text under one layout variant."""
    variant: str
    records: List[TestRecord] = field(default_factory=list)
    rows_matched: int = 0
    rows_skipped: int = 0
    sections_found: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        """Rows that produced a provisional record (the variant's yield)."""
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'variant': self.variant,
            'row_count': self.row_count,
            'rows_matched': self.rows_matched,
            'rows_skipped': self.rows_skipped,
            'sections_found': list(self.sections_found),
        }


# ============================================================================
# Parser
# ============================================================================

class TableFormatParser:
    """
    Row extractor driven by LayoutVariant descriptors.

    Stateless apart from the injected classifier; safe to share.
    """

    def __init__(self, classifier: Optional[TestTypeClassifier] = None):
        self.classifier = classifier or CLASSIFIER

    @staticmethod
    def slice_block(text: str, section: SectionSpec) -> Optional[str]:
        """
        Cut out the block of text belonging to one section.

        Returns:
            The block (start marker included), or None if no start marker
            is present
        """
        starts = [m for m in (p.search(text) for p in section.start_patterns) if m]
        if not starts:
            return None
        start = min(starts, key=lambda m: m.start())

        ends = [m.start() for m in (p.search(text, start.end()) for p in section.end_patterns) if m]
        end = min(ends) if ends else len(text)
        return text[start.start():end]

    def parse(self, text: str, variant: LayoutVariant) -> ParseResult:
        """
        Parse every category section of text under one layout variant.

        Args:
            text: Transcribed text (normalized here)
            variant: Layout descriptor

        Returns:
            ParseResult with provisional records in row order
        """
        result = ParseResult(variant=variant.name)
        normalized = normalize_transcript(text)
        if not normalized.strip():
            return result

        for section in variant.sections:
            block = self.slice_block(normalized, section)
            if block is None:
                continue
            result.sections_found.append(section.category.value)

            for match in section.row_pattern.finditer(block):
                result.rows_matched += 1
                record = self._row_to_record(match, section, variant)
                if record is None:
                    result.rows_skipped += 1
                    continue
                result.records.append(record)

        logger.debug(
            f"Variant {variant.name}: {result.row_count} rows "
            f"({result.rows_skipped} skipped, sections={result.sections_found})"
        )
        return result

    def _row_to_record(self, match, section: SectionSpec, variant: LayoutVariant) -> Optional[TestRecord]:
        occurred_on = parse_loose_date(match.group("date"))
        if occurred_on is None:
            logger.debug(f"Skipping row without usable date: {match.group(0).strip()!r}")
            return None

        round_text = match.group("round") or match.group("round_alt")
        round_number = int(round_text) if round_text else None

        record = TestRecord(
            category=section.category,
            label=section.label_for(round_number),
            occurred_on=occurred_on,
            round_number=round_number,
            source=f"table:{variant.name}",
        )

        for index, (kind, attribute) in enumerate(section.columns, start=1):
            cell = dash_to_null(match.group(f"c{index}"))
            setattr(record.totals.slot(kind), attribute, to_number(cell))

        sanitize_record(record, provisional=True)
        record.category = self.classifier.classify(record)
        return record
