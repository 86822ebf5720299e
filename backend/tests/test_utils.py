"""
Test: PDF handler, rate limiter, chat completion client.
"""
from datetime import datetime, timedelta

import pytest
import requests

from scorecard.services.llm_client import ChatCompletionClient
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.utils.rate_limiter import RateLimiter, SERVICE_COMMENTARY, SERVICE_EXTRACTION


class TestPDFHandler:
    def test_is_pdf(self):
        assert PDFHandler.is_pdf(b"%PDF-1.7\n...")
        assert not PDFHandler.is_pdf(b"PK\x03\x04")
        assert not PDFHandler.is_pdf(b"")
        assert not PDFHandler.is_pdf(None)

    @pytest.mark.parametrize("filename, expected", [
        ("yearly.pdf", "yearly.pdf"),
        ("C:\\reports\\2024 成績表.pdf", "2024_成績表.pdf"),
        ("../../etc/passwd", "passwd"),
        ("", "report.pdf"),
        (None, "report.pdf"),
        ("???", "report.pdf"),
    ])
    def test_safe_name(self, filename, expected):
        assert PDFHandler.safe_name(filename) == expected

    def test_storage_path(self):
        path = PDFHandler.storage_path("yearly report.pdf")
        prefix, token, name = path.split("/")
        assert prefix == "analyze"
        assert len(token) == 36
        assert name == "yearly_report.pdf"
        assert PDFHandler.storage_path("a.pdf") != PDFHandler.storage_path("a.pdf")

    def test_unreadable_pdf_gives_no_images(self):
        assert PDFHandler.pdf_to_images(b"not a pdf") == []
        assert PDFHandler.pdf_to_base64_pngs(b"not a pdf") == []


class TestRateLimiter:
    def test_total_budget_shared_across_services(self):
        limiter = RateLimiter(max_total_calls=2, enabled=True)
        limiter.record_call(SERVICE_EXTRACTION)
        assert limiter.can_make_call(SERVICE_COMMENTARY) == (True, "OK")
        limiter.record_call(SERVICE_COMMENTARY)
        allowed, reason = limiter.can_make_call(SERVICE_EXTRACTION)
        assert not allowed
        assert "2/2" in reason
        assert limiter.get_stats()["refused_by_service"] == {SERVICE_EXTRACTION: 1}
        assert limiter.get_stats(SERVICE_EXTRACTION)["refused_calls"] == 1

    def test_disabled(self):
        limiter = RateLimiter(max_total_calls=0, enabled=False)
        assert limiter.can_make_call(SERVICE_EXTRACTION) == (True, "OK")

    def test_stats(self):
        limiter = RateLimiter(max_total_calls=10, enabled=True)
        limiter.record_call(SERVICE_EXTRACTION)
        stats = limiter.get_stats()
        assert stats["total_calls"] == 1
        assert stats["remaining_calls"] == 9
        service_stats = limiter.get_stats(SERVICE_EXTRACTION)
        assert service_stats["calls_last_hour"] == 1

    def test_history_pruned_on_record(self):
        limiter = RateLimiter(max_total_calls=10, enabled=True)
        stale = datetime.now() - timedelta(days=2)
        limiter.call_history[SERVICE_EXTRACTION].extend([stale, stale])
        limiter.record_call(SERVICE_EXTRACTION)
        assert len(limiter.call_history[SERVICE_EXTRACTION]) == 1
        assert limiter.call_history[SERVICE_EXTRACTION][0] > stale

    def test_reset(self):
        limiter = RateLimiter(max_total_calls=1, enabled=True)
        limiter.record_call(SERVICE_EXTRACTION)
        limiter.reset()
        assert limiter.can_make_call(SERVICE_EXTRACTION)[0]


class FakeResponse:
    def __init__(self, data, status_code=200):
        self.data = data
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        return self.data


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return self.response


class TestChatCompletionClient:
    def make(self, response):
        session = FakeSession(response)
        client = ChatCompletionClient(
            api_key="sk-test", api_base="https://llm.example/v1/", model_name="test-model", timeout=5, session=session
        )
        return client, session

    def test_complete(self):
        client, session = self.make(FakeResponse({
            "choices": [{"message": {"content": "  hello  "}}],
            "usage": {"total_tokens": 17},
        }))
        content, tokens = client.complete([{"role": "user", "content": "hi"}], response_format={"type": "json_object"})
        assert (content, tokens) == ("hello", 17)
        sent = session.requests[0]
        assert sent["url"] == "https://llm.example/v1/chat/completions"
        assert sent["headers"]["Authorization"] == "Bearer sk-test"
        assert sent["json"]["model"] == "test-model"
        assert sent["json"]["response_format"] == {"type": "json_object"}
        assert sent["timeout"] == 5

    def test_http_error(self):
        client, _ = self.make(FakeResponse({}, status_code=429))
        with pytest.raises(requests.HTTPError):
            client.complete([])

    def test_malformed_response(self):
        client, _ = self.make(FakeResponse({"choices": []}))
        with pytest.raises(ValueError, match="Malformed chat completion response"):
            client.complete([])

    def test_availability(self):
        assert ChatCompletionClient(api_key="sk-test").is_available
        assert not ChatCompletionClient(api_key="").is_available

    def test_image_part(self):
        assert ChatCompletionClient.image_part("QUJD") == {
            "type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}
        }
