"""
Test: Format disambiguator (yield, header tie-break, default, hints).
"""
import pytest

from scorecard.services.score_pipeline.disambiguator import FormatDisambiguator
from scorecard.services.score_pipeline.errors import UnknownLayoutError
from scorecard.services.score_pipeline.layouts import get_variant


@pytest.fixture
def disambiguator():
    return FormatDisambiguator()


class TestAutomaticSelection:
    def test_strict_yield_wins(self, pipe_text):
        disambiguator = FormatDisambiguator(variants=[get_variant("four_first"), get_variant("pipe_table")])
        result = disambiguator.resolve(pipe_text)
        assert result.variant == "pipe_table"
        assert result.method == "yield"
        assert result.candidate_yields == {"four_first": 0, "pipe_table": 3}

    def test_pipe_rows_four_first(self, disambiguator, pipe_text):
        result = disambiguator.resolve(pipe_text)
        assert result.variant == "pipe_table"
        assert result.method == "header"
        assert result.candidate_yields == {
            "four_first": 0, "two_first": 0, "pipe_table": 3, "pipe_two_first": 3
        }
        assert result.header_hits == {"pipe_table": 2, "pipe_two_first": 0}

    def test_pipe_rows_two_first(self, disambiguator, pipe_two_first_text):
        result = disambiguator.resolve(pipe_two_first_text)
        assert result.variant == "pipe_two_first"
        assert result.method == "header"
        first = result.parse_result.records[0]
        assert first.totals.two_subject.raw_score == 250
        assert first.totals.two_subject.percentile_deviation == 61
        assert first.totals.four_subject.raw_score == 410
        assert first.totals.four_subject.percentile_deviation == 58
        assert first.annotations == []

    def test_tie_broken_by_header_four_first(self, disambiguator, four_first_text):
        result = disambiguator.resolve(four_first_text)
        assert result.candidate_yields["four_first"] == result.candidate_yields["two_first"] == 6
        assert result.method == "header"
        assert result.variant == "four_first"
        assert result.header_hits["four_first"] > result.header_hits["two_first"]

    def test_tie_broken_by_header_two_first(self, disambiguator, two_first_text):
        result = disambiguator.resolve(two_first_text)
        assert result.method == "header"
        assert result.variant == "two_first"
        assert result.parse_result.records[0].totals.two_subject.raw_score == 210

    def test_inconclusive_header_defaults_to_primary(self, disambiguator, no_header_text):
        result = disambiguator.resolve(no_header_text)
        assert result.method == "default"
        assert result.variant == "four_first"
        assert result.header_hits == {"four_first": 0, "two_first": 0}

    def test_empty_text_defaults(self, disambiguator):
        result = disambiguator.resolve("")
        assert result.variant == "four_first"
        assert result.parse_result.row_count == 0
        assert set(result.candidate_yields) == {"four_first", "two_first", "pipe_table", "pipe_two_first"}

    def test_none_hint_is_auto(self, disambiguator, pipe_text):
        assert disambiguator.resolve(pipe_text, None).method == "header"


class TestHints:
    def test_hint_bypasses_selection(self, disambiguator, four_first_text):
        result = disambiguator.resolve(four_first_text, "two_first")
        assert result.method == "hint"
        assert result.variant == "two_first"
        assert result.candidate_yields == {"two_first": 6}

    def test_unknown_hint(self, disambiguator, four_first_text):
        with pytest.raises(UnknownLayoutError) as excinfo:
            disambiguator.resolve(four_first_text, "three_column")
        assert "three_column" in str(excinfo.value)
        assert isinstance(excinfo.value, ValueError)

    def test_known_variants(self, disambiguator):
        names = [v["name"] for v in disambiguator.known_variants()]
        assert names == ["four_first", "two_first", "pipe_table", "pipe_two_first"]
