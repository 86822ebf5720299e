"""
Layout Variant Registry
=======================

Score tables come in a small, closed set of shapes. Each shape is described
here as data; the table parser and the format disambiguator iterate over
these descriptors instead of carrying one hand-written parser per shape.

A LayoutVariant holds:
- name / description
- header_hints: phrases that only appear on this shape's column headers,
  used to break row-count ties during disambiguation
- sections: one SectionSpec per test category

A SectionSpec holds:
- start_patterns: candidate markers opening the category's block
- end_patterns: candidate markers closing it
- row_pattern: one test administration per matching line
- columns: which (total slot, field) each of the four numeric cells feeds

Known variants:
- four_first      (primary) whitespace separated, 4-subject columns first
- two_first       whitespace separated, 2-subject columns first
- pipe_table      markdown pipe rows, 4-subject columns first (the shape a
                  table-aware transcription produces)
- pipe_two_first  markdown pipe rows, 2-subject columns first
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from .records import TestCategory, TotalKind

# Round markers: "第12回", "第 3 回", "Round 4", "No.5"
ROUND = r"(?:第\s*(?P<round>\d{1,2})\s*回|(?:Round|No\.)\s*(?P<round_alt>\d{1,2}))"

# Full, year-month or bare-year date. The trailing catch-all keeps rows with
# garbled dates matchable so they can be counted as skipped.
DATE = (
    r"\d{4}\s*[年/.\-]\s*\d{1,2}(?!\d)"
    r"(?:\s*月(?:\s*\d{1,2}\s*日)?|[/.\-]\d{1,2}(?!\d)\s*日?)?"
    r"|\d{4}\s*年?"
    r"|[^\s|]+"
)

# Numeric cell or a blank-cell dash
VALUE = r"\d+(?:\.\d+)?|[-‐‒–—―−ー]"

# A column is the (slot, field) a numeric cell is written to
Column = Tuple[TotalKind, str]

FOUR_SCORE: Column = (TotalKind.FOUR_SUBJECT, "raw_score")
FOUR_GRADE: Column = (TotalKind.FOUR_SUBJECT, "grade_level")
FOUR_DEVIATION: Column = (TotalKind.FOUR_SUBJECT, "percentile_deviation")
TWO_SCORE: Column = (TotalKind.TWO_SUBJECT, "raw_score")
TWO_GRADE: Column = (TotalKind.TWO_SUBJECT, "grade_level")
TWO_DEVIATION: Column = (TotalKind.TWO_SUBJECT, "percentile_deviation")


def whitespace_row() -> Pattern:
    """Row pattern for whitespace-separated tables."""
    cells = r"[ \t]+".join(f"(?P<c{i}>{VALUE})" for i in range(1, 5))
    return re.compile(
        rf"^[ \t]*{ROUND}[ \t]*(?P<date>{DATE})[ \t]+{cells}[ \t]*$",
        re.IGNORECASE | re.MULTILINE
    )


def pipe_row() -> Pattern:
    """Row pattern for markdown pipe tables; numeric cells may be empty."""
    cells = r"[ \t]*\|[ \t]*".join(f"(?P<c{i}>{VALUE})?" for i in range(1, 5))
    return re.compile(
        rf"^[ \t]*\|?[ \t]*{ROUND}[ \t]*\|[ \t]*(?P<date>[^|\n]*?)[ \t]*\|[ \t]*{cells}[ \t]*\|?[ \t]*$",
        re.IGNORECASE | re.MULTILINE
    )


# Section boundary markers shared by every variant
PERIODIC_GROWTH_START = [r"学習力育成テスト", r"育成テスト", r"periodic[- ]?growth"]
OPEN_MOCK_START = [r"公開模試", r"公開模擬試験", r"open[- ]?mock"]
DIAGNOSTIC_START = [r"学力判定", r"学判", r"学力診断", r"diagnostic", r"placement"]
NOTES_START = [r"備考", r"notes?\s*[:：]"]

PERIODIC_GROWTH_END = OPEN_MOCK_START + DIAGNOSTIC_START + NOTES_START
OPEN_MOCK_END = PERIODIC_GROWTH_START + DIAGNOSTIC_START + NOTES_START

SECTION_LABELS: Dict[TestCategory, str] = {
    TestCategory.PERIODIC_GROWTH: "育成テスト",
    TestCategory.OPEN_MOCK: "公開模試",
}


@dataclass(frozen=True)
class SectionSpec:
    """How one category's block is found and read."""
    category: TestCategory
    start_patterns: Tuple[Pattern, ...]
    end_patterns: Tuple[Pattern, ...]
    row_pattern: Pattern
    columns: Tuple[Column, ...]

    def label_for(self, round_number: Optional[int]) -> str:
        """Label assigned to a parsed row, e.g. "第12回 育成テスト"."""
        name = SECTION_LABELS.get(self.category, self.category.value)
        if round_number is None:
            return name
        return f"第{round_number}回 {name}"


@dataclass(frozen=True)
class LayoutVariant:
    """One known score-table shape."""
    name: str
    description: str
    header_hints: Tuple[Pattern, ...]
    sections: Tuple[SectionSpec, ...]

    def count_header_hits(self, text: str) -> int:
        """Number of header-phrase occurrences for this variant in text."""
        return sum(len(pattern.findall(text)) for pattern in self.header_hints)

    def to_dict(self) -> Dict[str, object]:
        return {
            'name': self.name,
            'description': self.description,
            'header_hints': [p.pattern for p in self.header_hints],
            'categories': [s.category.value for s in self.sections],
        }


def _compile_all(patterns: List[str]) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE | re.MULTILINE) for p in patterns)


def _sections(row_pattern: Pattern, growth_columns: Tuple[Column, ...],
              mock_columns: Tuple[Column, ...]) -> Tuple[SectionSpec, ...]:
    return (
        SectionSpec(
            category=TestCategory.PERIODIC_GROWTH,
            start_patterns=_compile_all(PERIODIC_GROWTH_START),
            end_patterns=_compile_all(PERIODIC_GROWTH_END),
            row_pattern=row_pattern,
            columns=growth_columns,
        ),
        SectionSpec(
            category=TestCategory.OPEN_MOCK,
            start_patterns=_compile_all(OPEN_MOCK_START),
            end_patterns=_compile_all(OPEN_MOCK_END),
            row_pattern=row_pattern,
            columns=mock_columns,
        ),
    )


PRIMARY_VARIANT = "four_first"

LAYOUT_VARIANTS: Tuple[LayoutVariant, ...] = (
    LayoutVariant(
        name="four_first",
        description="Whitespace-separated rows, 4-subject columns before 2-subject columns",
        header_hints=_compile_all([
            r"4\s*科[^\n]*2\s*科",
            r"four[- ]subject[^\n]*two[- ]subject",
        ]),
        sections=_sections(
            whitespace_row(),
            (FOUR_SCORE, FOUR_GRADE, TWO_SCORE, TWO_GRADE),
            (FOUR_SCORE, FOUR_DEVIATION, TWO_SCORE, TWO_DEVIATION),
        ),
    ),
    LayoutVariant(
        name="two_first",
        description="Whitespace-separated rows, 2-subject columns before 4-subject columns",
        header_hints=_compile_all([
            r"2\s*科[^\n]*4\s*科",
            r"two[- ]subject[^\n]*four[- ]subject",
        ]),
        sections=_sections(
            whitespace_row(),
            (TWO_SCORE, TWO_GRADE, FOUR_SCORE, FOUR_GRADE),
            (TWO_SCORE, TWO_DEVIATION, FOUR_SCORE, FOUR_DEVIATION),
        ),
    ),
    LayoutVariant(
        name="pipe_table",
        description="Markdown pipe rows, 4-subject columns before 2-subject columns",
        header_hints=_compile_all([
            r"4\s*科[^\n]*2\s*科",
            r"four[- ]subject[^\n]*two[- ]subject",
        ]),
        sections=_sections(
            pipe_row(),
            (FOUR_SCORE, FOUR_GRADE, TWO_SCORE, TWO_GRADE),
            (FOUR_SCORE, FOUR_DEVIATION, TWO_SCORE, TWO_DEVIATION),
        ),
    ),
    LayoutVariant(
        name="pipe_two_first",
        description="Markdown pipe rows, 2-subject columns before 4-subject columns",
        header_hints=_compile_all([
            r"2\s*科[^\n]*4\s*科",
            r"two[- ]subject[^\n]*four[- ]subject",
        ]),
        sections=_sections(
            pipe_row(),
            (TWO_SCORE, TWO_GRADE, FOUR_SCORE, FOUR_GRADE),
            (TWO_SCORE, TWO_DEVIATION, FOUR_SCORE, FOUR_DEVIATION),
        ),
    ),
)

_BY_NAME: Dict[str, LayoutVariant] = {variant.name: variant for variant in LAYOUT_VARIANTS}


def get_variant(name: str) -> Optional[LayoutVariant]:
    """Look up a layout variant by name."""
    return _BY_NAME.get(name)


def variant_names() -> List[str]:
    """Registered variant names in registry order."""
    return [variant.name for variant in LAYOUT_VARIANTS]
