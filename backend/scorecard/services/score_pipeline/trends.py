"""
Trend Aggregator
================

Reduces the canonical record set to one directional verdict per category.

Comparison values:
- periodic-growth: grade level (2-subject slot, else 4-subject slot). Only
  when no record in the series carries a grade level does the series fall
  back to the raw 2-subject score. Scales are never mixed in one series.
- open-mock: percentile deviation (4-subject slot, else 2-subject slot)

Verdict: last value minus first value against the metric's threshold.
Intermediate values are reported but do not affect the verdict.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .normalizer import Number
from .records import TestCategory, TestRecord

logger = logging.getLogger(__name__)

RISING = "rising"
FALLING = "falling"
FLAT = "flat"
INDETERMINATE = "indeterminate"

METRIC_GRADE_LEVEL = "grade_level"
METRIC_TWO_SUBJECT_SCORE = "two_subject_score"
METRIC_DEVIATION = "percentile_deviation"

DEFAULT_THRESHOLDS: Dict[str, Number] = {
    METRIC_GRADE_LEVEL: 1,
    METRIC_TWO_SUBJECT_SCORE: 10,
    METRIC_DEVIATION: 3,
}

TREND_CATEGORIES = (TestCategory.PERIODIC_GROWTH, TestCategory.OPEN_MOCK)


@dataclass
class TrendPoint:
    label: Optional[str]
    occurred_on: Optional[str]
    value: Number

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'occurred_on': self.occurred_on, 'value': self.value}


@dataclass
class TrendSummary:
    """Trend of one category's comparison values."""
    category: TestCategory
    metric: Optional[str]
    threshold: Optional[Number]
    verdict: str = INDETERMINATE
    points: List[TrendPoint] = field(default_factory=list)

    @property
    def values(self) -> List[Number]:
        return [p.value for p in self.points]

    @property
    def first(self) -> Optional[Number]:
        return self.points[0].value if self.points else None

    @property
    def last(self) -> Optional[Number]:
        return self.points[-1].value if self.points else None

    @property
    def delta(self) -> Optional[Number]:
        if len(self.points) < 2:
            return None
        return round(self.last - self.first, 6)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category.value,
            'metric': self.metric,
            'threshold': self.threshold,
            'verdict': self.verdict,
            'values': self.values,
            'first': self.first,
            'last': self.last,
            'delta': self.delta,
            'points': [p.to_dict() for p in self.points],
        }


def judge(values: List[Number], threshold: Number) -> str:
    """First-vs-last verdict for a value series."""
    if len(values) < 2:
        return INDETERMINATE
    difference = round(values[-1] - values[0], 6)
    if difference >= threshold:
        return RISING
    if difference <= -threshold:
        return FALLING
    return FLAT


def order_by_date(records: List[TestRecord]) -> List[TestRecord]:
    """Stable date order; undated records keep their order, after dated ones."""
    return sorted(records, key=lambda r: (r.occurred_on is None, r.occurred_on or ""))


def _grade_level(record: TestRecord) -> Optional[Number]:
    two = record.totals.two_subject.grade_level
    return two if two is not None else record.totals.four_subject.grade_level


def _deviation(record: TestRecord) -> Optional[Number]:
    four = record.totals.four_subject.percentile_deviation
    return four if four is not None else record.totals.two_subject.percentile_deviation


class TrendAggregator:
    """Computes per-category TrendSummary objects from canonical records."""

    def __init__(self, thresholds: Optional[Dict[str, Number]] = None):
        self.thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)

    def summarize(self, records: List[TestRecord]) -> Dict[TestCategory, TrendSummary]:
        """One summary per trend category, present even when empty."""
        summaries = {}
        for category in TREND_CATEGORIES:
            summaries[category] = self.summarize_category(
                [r for r in records if r.category == category], category
            )
        return summaries

    def summarize_category(self, records: List[TestRecord], category: TestCategory) -> TrendSummary:
        """
        Build the trend for one category.

        Args:
            records: Canonical records, already restricted to category
            category: The category

        Returns:
            TrendSummary (indeterminate with fewer than two values)
        """
        ordered = order_by_date(records)
        metric, points = self._extract(ordered, category)
        threshold = self.thresholds.get(metric) if metric else None

        summary = TrendSummary(category=category, metric=metric, threshold=threshold, points=points)
        if threshold is not None:
            summary.verdict = judge(summary.values, threshold)

        logger.debug(f"Trend {category.value}: metric={metric} values={summary.values} verdict={summary.verdict}")
        return summary

    def _extract(self, records: List[TestRecord], category: TestCategory) -> Tuple[Optional[str], List[TrendPoint]]:
        if category == TestCategory.PERIODIC_GROWTH:
            grades = [(r, _grade_level(r)) for r in records]
            if any(value is not None for _, value in grades):
                return METRIC_GRADE_LEVEL, self._points(grades)
            scores = [(r, r.totals.two_subject.raw_score) for r in records]
            return METRIC_TWO_SUBJECT_SCORE, self._points(scores)

        if category == TestCategory.OPEN_MOCK:
            return METRIC_DEVIATION, self._points([(r, _deviation(r)) for r in records])

        return None, []

    @staticmethod
    def _points(pairs: List[Tuple[TestRecord, Optional[Number]]]) -> List[TrendPoint]:
        return [
            TrendPoint(label=record.label, occurred_on=record.occurred_on, value=value)
            for record, value in pairs
            if value is not None
        ]
