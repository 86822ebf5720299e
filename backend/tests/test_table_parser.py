"""
Test: Table-format parser (block slicing, row extraction, range policy).
"""
import copy

import pytest

from scorecard.services.score_pipeline.layouts import get_variant
from scorecard.services.score_pipeline.records import TestCategory, TestRecord, TotalSlot, CombinedTotals
from scorecard.services.score_pipeline.table_parser import TableFormatParser, sanitize_record


@pytest.fixture
def parser():
    return TableFormatParser()


class TestParseFourFirst:
    def test_rows_and_sections(self, parser, four_first_text):
        result = parser.parse(four_first_text, get_variant("four_first"))
        assert result.row_count == 6
        assert result.rows_skipped == 0
        assert result.sections_found == ["periodic_growth", "open_mock"]

    def test_periodic_growth_columns(self, parser, four_first_text):
        records = parser.parse(four_first_text, get_variant("four_first")).records
        first = records[0]
        assert first.category == TestCategory.PERIODIC_GROWTH
        assert first.label == "第1回 育成テスト"
        assert first.round_number == 1
        assert first.occurred_on == "2024-04-14"
        assert first.totals.four_subject.raw_score == 320
        assert first.totals.four_subject.grade_level == 6
        assert first.totals.two_subject.raw_score == 210
        assert first.totals.two_subject.grade_level == 6
        assert first.source == "table:four_first"

    def test_dash_cells_are_null(self, parser, four_first_text):
        second = parser.parse(four_first_text, get_variant("four_first")).records[1]
        assert second.totals.four_subject.raw_score is None
        assert second.totals.four_subject.grade_level is None
        assert second.totals.two_subject.raw_score == 230

    def test_open_mock_columns(self, parser, four_first_text):
        mock = parser.parse(four_first_text, get_variant("four_first")).records[3]
        assert mock.category == TestCategory.OPEN_MOCK
        assert mock.label == "第1回 公開模試"
        assert mock.totals.four_subject.percentile_deviation == 54
        assert mock.totals.two_subject.percentile_deviation == 53
        assert mock.totals.four_subject.grade_level is None

    def test_two_first_column_map(self, parser, two_first_text):
        first = parser.parse(two_first_text, get_variant("two_first")).records[0]
        assert first.totals.two_subject.raw_score == 210
        assert first.totals.four_subject.raw_score == 320


class TestParsePipeTable:
    def test_pipe_rows(self, parser, pipe_text):
        result = parser.parse(pipe_text, get_variant("pipe_table"))
        assert result.row_count == 3
        blank = result.records[1]
        assert blank.totals.four_subject.raw_score is None
        assert blank.totals.two_subject.raw_score == 230

    def test_whitespace_variant_finds_nothing(self, parser, pipe_text):
        assert parser.parse(pipe_text, get_variant("four_first")).row_count == 0


class TestRangePolicy:
    def test_out_of_range_nulled_and_annotated(self, parser, noisy_text):
        first = parser.parse(noisy_text, get_variant("four_first")).records[0]
        assert first.totals.four_subject.raw_score is None
        assert first.totals.two_subject.grade_level is None
        assert first.totals.two_subject.raw_score == 180
        assert "4-subject total score 612 outside 0..500; nulled" in first.annotations
        assert "2-subject total grade level 11 outside 3..10; nulled" in first.annotations

    def test_misread_grade_level_flagged(self, parser, noisy_text):
        first = parser.parse(noisy_text, get_variant("four_first")).records[0]
        assert first.totals.four_subject.grade_level is None
        assert any("likely misread" in note for note in first.annotations)

    def test_row_without_date_skipped(self, parser, noisy_text):
        result = parser.parse(noisy_text, get_variant("four_first"))
        assert result.rows_skipped == 1
        assert 2 not in [r.round_number for r in result.records if r.category == TestCategory.PERIODIC_GROWTH]

    def test_partial_date(self, parser, noisy_text):
        records = parser.parse(noisy_text, get_variant("four_first")).records
        fourth = [r for r in records if r.round_number == 4][0]
        assert fourth.occurred_on == "2024-07-01"

    def test_high_two_subject_kept_for_swap_detection(self, parser, noisy_text):
        records = parser.parse(noisy_text, get_variant("four_first")).records
        third = [r for r in records if r.round_number == 3][0]
        assert third.totals.two_subject.raw_score == 450

    def test_diagnostic_block_not_parsed(self, parser, noisy_text):
        result = parser.parse(noisy_text, get_variant("four_first"))
        assert all(r.occurred_on != "2024-10-06" for r in result.records)

    def test_sanitize_idempotent(self):
        record = TestRecord(
            category=TestCategory.OPEN_MOCK,
            totals=CombinedTotals(four_subject=TotalSlot(raw_score=612, percentile_deviation=95, rank=0)),
        )
        sanitize_record(record)
        once = copy.deepcopy(record)
        sanitize_record(record)
        assert record == once
        assert len(record.annotations) == 3


class TestSliceBlock:
    def test_no_start_marker(self, parser):
        section = get_variant("four_first").sections[0]
        assert parser.slice_block("no tables here", section) is None

    def test_block_runs_to_end_without_end_marker(self, parser):
        section = get_variant("four_first").sections[0]
        text = "intro\n育成テスト\n第1回 2024/4/14 320 6 210 6\n"
        assert parser.slice_block(text, section) == "育成テスト\n第1回 2024/4/14 320 6 210 6\n"

    def test_block_stops_at_end_marker(self, parser, four_first_text):
        section = get_variant("four_first").sections[0]
        block = parser.slice_block(four_first_text, section)
        assert block.startswith("学習力育成テスト")
        assert "公開模試" not in block

    def test_empty_text(self, parser):
        assert parser.parse("", get_variant("four_first")).row_count == 0
