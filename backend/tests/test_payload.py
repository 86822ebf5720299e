"""
Test: Extraction payload parsing, coercion and the schema extraction service.
"""
import json

import pytest

from scorecard.services.extraction_service import SchemaExtractionService
from scorecard.services.score_pipeline.payload import (
    DOC_TYPE, REPORT_JSON_SCHEMA, SCHEMA_SOURCE, parse_report_payload, payload_to_records, strip_code_fences,
    subject_from_name,
)
from scorecard.services.score_pipeline.records import SubjectName, TestCategory, TotalSlot
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.utils.rate_limiter import RateLimiter


def report(*tests, **extra):
    data = {"docType": DOC_TYPE, "student": {"name": None, "id": None}, "tests": list(tests)}
    data.update(extra)
    return json.dumps(data, ensure_ascii=False)


GROWTH_TEST = {
    "testType": "ikusei",
    "testName": "第3回 育成テスト",
    "date": "2024年6月9日",
    "subjects": [
        {"name": "算数", "score": "１２０点", "deviation": None, "rank": None, "avg": "98.5", "diffFromAvg": "+21.5"},
        {"name": "国語", "score": "-", "deviation": None, "rank": None, "avg": None, "diffFromAvg": None},
    ],
    "totals": {
        "two": {"score": 215, "grade": "7", "deviation": None, "rank": 120, "avg": 200, "diffFromAvg": 15},
        "four": None,
    },
    "notes": ["grade column partly smudged", "  "],
}


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_unterminated_fence(self):
        assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParseReportPayload:
    def test_valid_payload(self):
        payload, error = parse_report_payload(report(GROWTH_TEST))
        assert error is None
        assert payload.doc_type == DOC_TYPE
        assert len(payload.tests) == 1

    def test_fenced_payload(self):
        payload, error = parse_report_payload(f"```json\n{report(GROWTH_TEST)}\n```")
        assert error is None
        assert payload.tests[0].test_name == "第3回 育成テスト"

    def test_empty_output(self):
        payload, error = parse_report_payload("")
        assert payload is None
        assert error == "Extraction returned empty output"

    def test_invalid_json(self):
        payload, error = parse_report_payload("{not json")
        assert payload is None
        assert error.startswith("Extraction output is not valid JSON")

    def test_not_an_object(self):
        payload, error = parse_report_payload("[1, 2]")
        assert payload is None
        assert error == "Extraction output is not a JSON object"

    def test_wrong_doc_type(self):
        payload, error = parse_report_payload(json.dumps({"docType": "invoice", "tests": []}))
        assert payload is None
        assert "does not match the report schema" in error
        assert "docType" in error

    def test_missing_doc_type(self):
        payload, error = parse_report_payload(json.dumps({"tests": []}))
        assert payload is None
        assert "docType" in error

    def test_tests_not_a_list(self):
        payload, error = parse_report_payload(json.dumps({"docType": DOC_TYPE, "tests": "none"}))
        assert payload is None
        assert "tests" in error

    def test_unknown_keys_ignored(self):
        payload, error = parse_report_payload(report(GROWTH_TEST, extraField=True))
        assert error is None


class TestPayloadToRecords:
    def test_coercion(self):
        payload, _ = parse_report_payload(report(GROWTH_TEST))
        record = payload_to_records(payload)[0]
        assert record.category == TestCategory.PERIODIC_GROWTH
        assert record.occurred_on == "2024-06-09"
        assert record.source == SCHEMA_SOURCE
        math = record.subject_scores[0]
        assert math.subject == SubjectName.MATH
        assert math.raw_score == 120
        assert isinstance(math.raw_score, int)
        assert math.average == 98.5
        assert math.average_delta == 21.5
        assert record.subject_scores[1].subject == SubjectName.LANGUAGE
        assert record.subject_scores[1].raw_score is None

    def test_totals(self):
        payload, _ = parse_report_payload(report(GROWTH_TEST))
        record = payload_to_records(payload)[0]
        two = record.totals.two_subject
        assert (two.raw_score, two.grade_level, two.rank, two.average_delta) == (215, 7, 120, 15)
        assert record.totals.four_subject == TotalSlot()

    def test_notes_become_annotations(self):
        payload, _ = parse_report_payload(report(GROWTH_TEST))
        record = payload_to_records(payload)[0]
        assert record.annotations == ["grade column partly smudged"]

    def test_label_beats_declared_type(self):
        test = dict(GROWTH_TEST, testType="ikusei", testName="第2回 公開模試")
        payload, _ = parse_report_payload(report(test))
        assert payload_to_records(payload)[0].category == TestCategory.OPEN_MOCK

    def test_declared_type_used_when_label_silent(self):
        test = dict(GROWTH_TEST, testType="kokai_moshi", testName="第2回")
        payload, _ = parse_report_payload(report(test))
        assert payload_to_records(payload)[0].category == TestCategory.OPEN_MOCK

    def test_diagnostic_label_is_other(self):
        test = dict(GROWTH_TEST, testType="kokai_moshi", testName="学力判定テスト")
        payload, _ = parse_report_payload(report(test))
        assert payload_to_records(payload)[0].category == TestCategory.OTHER

    def test_partial_date(self):
        test = dict(GROWTH_TEST, date="2024年5月")
        payload, _ = parse_report_payload(report(test))
        assert payload_to_records(payload)[0].occurred_on == "2024-05-01"

    def test_dash_date_is_null(self):
        test = dict(GROWTH_TEST, date="－")
        payload, _ = parse_report_payload(report(test))
        assert payload_to_records(payload)[0].occurred_on is None


class TestSubjectFromName:
    @pytest.mark.parametrize("name, subject", [
        ("算数", SubjectName.MATH),
        ("国", SubjectName.LANGUAGE),
        ("理科", SubjectName.SCIENCE),
        ("Social Studies", SubjectName.SOCIAL),
        ("社会科", SubjectName.SOCIAL),
        ("英語", SubjectName.UNKNOWN),
        (None, SubjectName.UNKNOWN),
    ])
    def test_aliases(self, name, subject):
        assert subject_from_name(name) == subject


class TestSchemaDefinition:
    def test_strict_schema_requires_every_property(self):
        schema = REPORT_JSON_SCHEMA["schema"]
        assert schema["properties"]["docType"] == {"const": DOC_TYPE}
        assert set(schema["required"]) == set(schema["properties"])
        item = schema["properties"]["tests"]["items"]
        assert "grade" in item["properties"]["totals"]["properties"]["two"]["properties"]
        assert "grade" not in item["properties"]["subjects"]["items"]["properties"]


@pytest.fixture
def one_page(monkeypatch):
    monkeypatch.setattr(PDFHandler, "pdf_to_base64_pngs", staticmethod(lambda pdf_bytes, max_pages=4, dpi=150: ["AAAA"]))


class TestSchemaExtractionService:
    def test_parse_success(self):
        result = SchemaExtractionService.parse(report(GROWTH_TEST), tokens_used=10)
        assert result.ok
        assert result.tokens_used == 10
        assert result.payload.tests[0].test_type == "ikusei"

    def test_parse_failure_keeps_raw(self):
        result = SchemaExtractionService.parse("sorry, I cannot read this")
        assert not result.ok
        assert result.raw == "sorry, I cannot read this"
        assert "not valid JSON" in result.error

    def test_unavailable_without_key(self, fakes):
        service = SchemaExtractionService(client=fakes.ChatClient(available=False))
        result = service.extract(b"%PDF-1.4")
        assert not result.ok
        assert result.error == "LLM API key not configured"

    def test_extract_sends_pages_and_schema(self, fakes, one_page):
        client = fakes.ChatClient(content=report(GROWTH_TEST))
        limiter = RateLimiter(max_total_calls=5, enabled=True)
        service = SchemaExtractionService(rate_limiter=limiter, client=client)

        result = service.extract(b"%PDF-1.4", filename="yearly.pdf")

        assert result.ok
        assert result.tokens_used == 42
        user_content = client.messages[0][1]["content"]
        assert "yearly.pdf" in user_content[0]["text"]
        assert user_content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"
        assert client.kwargs[0]["response_format"]["json_schema"] is REPORT_JSON_SCHEMA
        assert limiter.get_stats()["total_calls"] == 1

    def test_rate_limit_refusal(self, fakes, one_page):
        client = fakes.ChatClient(content=report(GROWTH_TEST))
        service = SchemaExtractionService(rate_limiter=RateLimiter(max_total_calls=0, enabled=True), client=client)
        result = service.extract(b"%PDF-1.4")
        assert not result.ok
        assert result.error.startswith("Rate limit exceeded")
        assert client.messages == []

    def test_call_failure_is_recorded(self, fakes, one_page):
        limiter = RateLimiter(max_total_calls=5, enabled=True)
        service = SchemaExtractionService(rate_limiter=limiter, client=fakes.ChatClient(error=RuntimeError("timeout")))
        result = service.extract(b"%PDF-1.4")
        assert not result.ok
        assert result.error == "timeout"
        assert limiter.get_stats()["total_calls"] == 1

    def test_rasterize_failure(self, fakes, monkeypatch):
        monkeypatch.setattr(PDFHandler, "pdf_to_base64_pngs", staticmethod(lambda pdf_bytes, max_pages=4, dpi=150: []))
        service = SchemaExtractionService(client=fakes.ChatClient(content="{}"))
        result = service.extract(b"not a pdf")
        assert not result.ok
        assert result.error == "Failed to rasterize PDF pages"
