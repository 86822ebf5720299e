"""
Test: Transcription services (Textract block rendering, fallbacks, vision backend).
"""
import pytest
from botocore.exceptions import ClientError
from PIL import Image

from scorecard.config import Config
from scorecard.services.transcription_service import (
    TextractTranscriptionService, VisionTranscriptionService, create_transcriber,
)
from scorecard.utils.pdf_handler import PDFHandler
from scorecard.utils.rate_limiter import RateLimiter

PDF_BYTES = b"%PDF-1.4 yearly report"


def client_error(code, message="failed"):
    return ClientError({"Error": {"Code": code, "Message": message}}, "AnalyzeDocument")


def word(block_id, text):
    return {"Id": block_id, "BlockType": "WORD", "Text": text}


def cell(block_id, row, column, *word_ids):
    return {
        "Id": block_id, "BlockType": "CELL", "RowIndex": row, "ColumnIndex": column,
        "Relationships": [{"Type": "CHILD", "Ids": list(word_ids)}],
    }


def line(block_id, text, top, left=0.1, width=0.3, height=0.02):
    return {
        "Id": block_id, "BlockType": "LINE", "Text": text, "Confidence": 99.0,
        "Geometry": {"BoundingBox": {"Left": left, "Top": top, "Width": width, "Height": height}},
    }


TABLE_BLOCKS = [
    line("l1", "学習力育成テスト", top=0.05),
    line("l2", "第1回", top=0.25, left=0.15, width=0.1),
    line("l3", "備考: 欠席なし", top=0.8),
    {
        "Id": "t1", "BlockType": "TABLE",
        "Geometry": {"BoundingBox": {"Left": 0.1, "Top": 0.2, "Width": 0.8, "Height": 0.3}},
        "Relationships": [{"Type": "CHILD", "Ids": ["c1", "c2", "c3", "c4"]}],
    },
    cell("c1", 1, 1, "w1"),
    cell("c2", 1, 2, "w2"),
    cell("c3", 2, 1, "w3"),
    cell("c4", 2, 2, "w4", "w5"),
    word("w1", "回"),
    word("w2", "4科"),
    word("w3", "第1回"),
    word("w4", "320"),
    word("w5", "点"),
]


class FakeTextract:
    """Returns queued responses or raises queued errors, in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.documents = []

    def analyze_document(self, Document, FeatureTypes):
        self.documents.append(Document["Bytes"])
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def page_image(monkeypatch):
    monkeypatch.setattr(
        PDFHandler, "pdf_to_images",
        staticmethod(lambda pdf_bytes, first_page_only=True, dpi=200: [Image.new("RGB", (8, 8), "white")]),
    )


class TestRenderBlocks:
    def test_tables_rendered_in_reading_order(self):
        text = TextractTranscriptionService.render_blocks(TABLE_BLOCKS)
        assert text.split("\n") == [
            "学習力育成テスト",
            "| 回 | 4科 |",
            "|---|---|",
            "| 第1回 | 320 点 |",
            "備考: 欠席なし",
        ]

    def test_lines_only(self):
        blocks = [line("a", "second", top=0.5), line("b", "first", top=0.1)]
        assert TextractTranscriptionService.render_blocks(blocks) == "first\nsecond"

    def test_pages_kept_apart(self):
        first = dict(line("a", "page two", top=0.1), Page=2)
        second = dict(line("b", "page one", top=0.9), Page=1)
        assert TextractTranscriptionService.render_blocks([first, second]) == "page one\npage two"

    def test_missing_cells_blank(self):
        blocks = [
            {"Id": "t", "BlockType": "TABLE", "Relationships": [{"Type": "CHILD", "Ids": ["c1", "c2"]}]},
            cell("c1", 1, 1, "w1"),
            cell("c2", 2, 2, "w2"),
            word("w1", "a"),
            word("w2", "b"),
        ]
        assert TextractTranscriptionService.render_blocks(blocks) == "| a |  |\n|---|---|\n|  | b |"

    def test_empty(self):
        assert TextractTranscriptionService.render_blocks([]) == ""


class TestTextractTranscription:
    def test_direct_pdf(self):
        textract = FakeTextract({"Blocks": TABLE_BLOCKS, "DocumentMetadata": {"Pages": 1}})
        limiter = RateLimiter(max_total_calls=5, enabled=True)
        service = TextractTranscriptionService(rate_limiter=limiter, client=textract)

        result = service.transcribe(PDF_BYTES)

        assert result.success
        assert result.backend == "textract"
        assert "| 第1回 | 320 点 |" in result.text
        assert result.confidence == 99.0
        assert textract.documents == [PDF_BYTES]
        assert limiter.get_stats()["total_calls"] == 1

    def test_region_hint_ignored(self):
        textract = FakeTextract({"Blocks": TABLE_BLOCKS})
        service = TextractTranscriptionService(client=textract)
        assert service.transcribe(PDF_BYTES, region_hint="bottom table").text == service.transcribe(PDF_BYTES).text

    def test_not_a_pdf(self):
        textract = FakeTextract({"Blocks": []})
        result = TextractTranscriptionService(client=textract).transcribe(b"GIF89a")
        assert not result.success
        assert result.error == "Invalid PDF format: missing PDF magic bytes"
        assert textract.documents == []

    def test_falls_back_to_page_image(self, page_image):
        textract = FakeTextract(client_error("UnsupportedDocumentException"), {"Blocks": [line("a", "ok", top=0.1)]})
        result = TextractTranscriptionService(client=textract).transcribe(PDF_BYTES)
        assert result.success
        assert result.text == "ok"
        assert textract.documents[1].startswith(b"\x89PNG")

    def test_image_conversion_failure(self, monkeypatch):
        monkeypatch.setattr(PDFHandler, "pdf_to_images", staticmethod(lambda pdf_bytes, first_page_only=True, dpi=200: []))
        textract = FakeTextract(client_error("UnsupportedDocumentException"))
        result = TextractTranscriptionService(client=textract).transcribe(PDF_BYTES)
        assert not result.success
        assert "Poppler" in result.error

    def test_expired_credentials(self, page_image):
        textract = FakeTextract(client_error("ExpiredTokenException", "The security token included in the request is expired"))
        result = TextractTranscriptionService(client=textract).transcribe(PDF_BYTES)
        assert not result.success
        assert result.error.startswith("AWS credentials have expired.")

    def test_rate_limited(self):
        textract = FakeTextract({"Blocks": []})
        service = TextractTranscriptionService(rate_limiter=RateLimiter(max_total_calls=0, enabled=True), client=textract)
        result = service.transcribe(PDF_BYTES)
        assert not result.success
        assert result.error.startswith("Rate limit exceeded")
        assert textract.documents == []


@pytest.fixture
def two_pages(monkeypatch):
    monkeypatch.setattr(PDFHandler, "pdf_to_base64_pngs", staticmethod(lambda pdf_bytes, max_pages=4, dpi=150: ["P1", "P2"]))


class TestVisionTranscription:
    def test_transcribe(self, fakes, two_pages):
        client = fakes.ChatClient(content="| 第1回 | 2024/4/14 | 320 | 6 | 210 | 6 |")
        result = VisionTranscriptionService(client=client).transcribe(PDF_BYTES)
        assert result.success
        assert result.pages == 2
        assert result.backend == "vision"
        user_content = client.messages[0][1]["content"]
        assert user_content[0]["text"] == "Transcribe all score tables on these pages."
        assert len(user_content) == 3

    def test_region_hint_honoured(self, fakes, two_pages):
        client = fakes.ChatClient(content="text")
        VisionTranscriptionService(client=client).transcribe(PDF_BYTES, region_hint="the open mock table")
        assert "the open mock table" in client.messages[0][1]["content"][0]["text"]

    def test_no_key(self, fakes):
        result = VisionTranscriptionService(client=fakes.ChatClient(available=False)).transcribe(PDF_BYTES)
        assert not result.success
        assert result.error == "LLM API key not configured"

    def test_call_failure(self, fakes, two_pages):
        limiter = RateLimiter(max_total_calls=5, enabled=True)
        service = VisionTranscriptionService(rate_limiter=limiter, client=fakes.ChatClient(error=RuntimeError("502 Bad Gateway")))
        result = service.transcribe(PDF_BYTES)
        assert not result.success
        assert result.error == "502 Bad Gateway"
        assert limiter.get_stats()["calls_by_service"] == {"transcription": 1}


class TestCreateTranscriber:
    def test_vision_backend(self, monkeypatch):
        monkeypatch.setattr(Config, "TRANSCRIPTION_BACKEND", "vision")
        assert isinstance(create_transcriber(), VisionTranscriptionService)

    def test_textract_backend_uses_boto3(self, monkeypatch):
        monkeypatch.setattr(Config, "TRANSCRIPTION_BACKEND", "textract")
        monkeypatch.setattr(Config, "AWS_PROFILE", None)
        monkeypatch.setattr(Config, "AWS_ACCESS_KEY_ID", "AKIATEST")
        monkeypatch.setattr(Config, "AWS_SECRET_ACCESS_KEY", "secret")
        service = create_transcriber()
        assert isinstance(service, TextractTranscriptionService)
        assert service.client.meta.service_model.service_name == "textract"
