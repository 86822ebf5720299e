"""
Test-Type Classifier
====================

Decides which test category a record belongs to.

The category set is CLOSED: periodic-growth, open-mock, or other. Records
that end up as "other" never reach canonical output.

Two independent signals:
1. Label match - the name as read ("第12回 育成テスト", "公開模試") or a
   declared type from the extraction service ("ikusei", "kokai_moshi").
2. Structural inference - which numeric fields are populated:
   - percentile deviation anywhere  -> open-mock
   - grade level or average-delta   -> periodic-growth
   - neither                        -> other

Label wins when it names a category. Diagnostic / placement tests
(学力判定, 学判, ...) are out-of-catalog and ALWAYS classify as other,
whatever numeric evidence the record carries.
"""

import logging
import re
import unicodedata
from typing import Dict, List, Optional, Pattern

from .records import TestCategory, TestRecord

logger = logging.getLogger(__name__)


class TestTypeClassifier:
    """
    Label- and structure-based test category classifier.

    Thread-safe: all data is immutable after initialization.
    """
    __test__ = False  # not a pytest test class

    # Checked first; a match forces OTHER
    EXCLUDED_PATTERNS: List[str] = [
        r"学判",
        r"学力判定",
        r"学力診断",
        r"学力到達度",
        r"到達度テスト",
        r"diagnostic",
        r"placement",
    ]

    # Order matters: open-mock names are checked before periodic-growth names
    CATEGORY_PATTERNS: Dict[TestCategory, List[str]] = {
        TestCategory.OPEN_MOCK: [
            r"公開模試",
            r"公開模擬試験",
            r"公開",
            r"open[-_]?mock",
            r"mockexam",
            r"kokai",
        ],
        TestCategory.PERIODIC_GROWTH: [
            r"学習力育成テスト",
            r"育成テスト",
            r"学習力育成",
            r"育成",
            r"periodic[-_]?growth",
            r"growthtest",
            r"ikusei",
        ],
    }

    # Words that suggest a transcription is a score report at all
    GRADE_REPORT_KEYWORDS = re.compile(
        r"(育成|公開模試|偏差|成績|テスト|第\s*\d+\s*回|deviation|score|mock|growth)",
        re.IGNORECASE
    )

    def __init__(self):
        """Compile the pattern tables."""
        self._excluded: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in self.EXCLUDED_PATTERNS]
        self._categories: Dict[TestCategory, List[Pattern]] = {
            category: [re.compile(p, re.IGNORECASE) for p in patterns]
            for category, patterns in self.CATEGORY_PATTERNS.items()
        }

    @staticmethod
    def normalize_label(text: Optional[str]) -> str:
        """NFKC-normalize and strip all whitespace."""
        if not text:
            return ""
        return re.sub(r"\s+", "", unicodedata.normalize("NFKC", str(text)))

    def is_excluded_label(self, text: Optional[str]) -> bool:
        """True if the text names a diagnostic / placement test."""
        normalized = self.normalize_label(text)
        return bool(normalized) and any(p.search(normalized) for p in self._excluded)

    def match_label(self, text: Optional[str]) -> Optional[TestCategory]:
        """
        Classify from a label alone.

        Returns:
            OTHER for excluded test types, the matching category, or None
            when the label is absent or names no known category
        """
        normalized = self.normalize_label(text)
        if not normalized:
            return None

        if self.is_excluded_label(normalized):
            return TestCategory.OTHER

        for category, patterns in self._categories.items():
            if any(p.search(normalized) for p in patterns):
                return category

        return None

    def infer_structural(self, record: TestRecord) -> TestCategory:
        """Classify from which numeric fields are populated."""
        if record.has_deviation():
            return TestCategory.OPEN_MOCK
        if record.has_grade_or_delta():
            return TestCategory.PERIODIC_GROWTH
        return TestCategory.OTHER

    def classify(self, record: TestRecord, declared_type: Optional[str] = None) -> TestCategory:
        """
        Initial classification: label priority, then structural fallback.

        Args:
            record: The record to classify (not modified)
            declared_type: Type string supplied by the extraction service;
                defaults to record.declared_type

        Returns:
            The category
        """
        for text in (record.label, declared_type or record.declared_type):
            category = self.match_label(text)
            if category is not None:
                return category
        return self.infer_structural(record)

    def reclassify(self, record: TestRecord) -> TestCategory:
        """
        Final classification pass, run after derived fields are populated.

        - A label or declared type naming an excluded test type always
          yields OTHER
        - A label or declared type naming a category keeps that category
        - Otherwise structural evidence decides; without any evidence the
          record keeps its current category

        Returns:
            The (possibly unchanged) category
        """
        for text in (record.label, record.declared_type):
            from_label = self.match_label(text)
            if from_label is not None:
                return from_label

        structural = self.infer_structural(record)
        if structural != TestCategory.OTHER:
            return structural

        return record.category

    def looks_like_grade_report(self, text: Optional[str]) -> bool:
        """Keyword check: does this transcription resemble a score report?"""
        if not text:
            return False
        return bool(self.GRADE_REPORT_KEYWORDS.search(unicodedata.normalize("NFKC", text)))


# Global singleton instance
CLASSIFIER = TestTypeClassifier()
