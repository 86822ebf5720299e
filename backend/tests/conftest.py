"""
Shared test fixtures for the score report pipeline.
Sample transcriptions plus in-memory stand-ins for the storage,
transcription, extraction and chat-completion services.
Zero network calls.
"""
import threading
from types import SimpleNamespace

import pytest

from scorecard.services.score_pipeline.errors import DocumentStorageError


FOUR_FIRST_TEXT = """\
2024年度 成績推移表
学習力育成テスト
回 日付 4科 評価 2科 評価
第1回 2024/4/14 320 6 210 6
第2回 2024/5/12 - - 230 6
第3回 2024/6/9 330 7 215 7
公開模試
回 日付 4科 偏差値 2科 偏差値
第1回 2024/7/7 300 54 200 53
第2回 2024/9/1 310 55 205 54
第3回 2024/11/3 320 56 210 55
備考: 欠席なし
"""

TWO_FIRST_TEXT = """\
学習力育成テスト
回 日付 2科 評価 4科 評価
第1回 2024/4/14 210 6 320 6
第2回 2024/5/12 230 6 - -
"""

NO_HEADER_TEXT = """\
育成テスト
第1回 2024/4/14 320 6 210 6
第2回 2024/5/12 300 5 200 5
"""

PIPE_TEXT = """\
学習力育成テスト
| 回 | 日付 | 4科 | 評価 | 2科 | 評価 |
|---|---|---|---|---|---|
| 第1回 | 2024/4/14 | 320 | 6 | 210 | 6 |
| 第2回 | 2024/5/12 |  |  | 230 | 6 |
公開模試
| 回 | 日付 | 4科 | 偏差値 | 2科 | 偏差値 |
|---|---|---|---|---|---|
| 第1回 | 2024/7/7 | 300 | 54 | 200 | 53 |
"""

PIPE_TWO_FIRST_TEXT = """\
公開模試
| 回 | 実施日 | 2科得点 | 2科偏差 | 4科得点 | 4科偏差 |
|---|---|---|---|---|---|
| 第1回 | 2024/4/7 | 250 | 61 | 410 | 58 |
| 第2回 | 2024/6/2 | 240 | 59 | 395 | 57 |
"""

NOISY_TEXT = """\
育成テスト
回 日付 4科 評価 2科 評価
第1回 2024/4/14 612 2 180 11
第2回 日付不明 300 6 200 6
第3回 2024/6/9 - - 450 7
第4回 2024年7月 150 5 300 7
公開模試
回 日付 4科 偏差値 2科 偏差値
第1回 2024/7/7 15 55 200 95
第2回 2024/9/1 310 55 205 54
学力判定テスト
第1回 2024/10/6 280 60 190 58
"""


@pytest.fixture
def four_first_text():
    return FOUR_FIRST_TEXT


@pytest.fixture
def two_first_text():
    return TWO_FIRST_TEXT


@pytest.fixture
def no_header_text():
    return NO_HEADER_TEXT


@pytest.fixture
def pipe_text():
    return PIPE_TEXT


@pytest.fixture
def pipe_two_first_text():
    return PIPE_TWO_FIRST_TEXT


@pytest.fixture
def noisy_text():
    return NOISY_TEXT


class FakeStorage:
    """In-memory document storage."""

    def __init__(self, documents=None, fail_store=False):
        self.documents = dict(documents or {})
        self.fail_store = fail_store
        self.lock = threading.Lock()

    def store(self, data, path, content_type='application/pdf'):
        if self.fail_store:
            raise DocumentStorageError(f"Failed to store document '{path}': bucket unavailable", path)
        with self.lock:
            self.documents[path] = data
        return path

    def fetch(self, handle):
        with self.lock:
            if handle not in self.documents:
                raise DocumentStorageError(f"Failed to fetch document '{handle}': not found", handle)
            return self.documents[handle]


class FakeTranscriber:
    """Returns canned text per document bytes (or a default) and records calls."""

    def __init__(self, default_text="", texts=None, by_hint=None, error=None):
        self.default_text = default_text
        self.texts = dict(texts or {})
        self.by_hint = dict(by_hint or {})
        self.error = error
        self.calls = []
        self.lock = threading.Lock()

    def transcribe(self, data, region_hint=None):
        with self.lock:
            self.calls.append(region_hint)
        if self.error:
            return SimpleNamespace(text="", error=self.error)
        if region_hint in self.by_hint:
            return SimpleNamespace(text=self.by_hint[region_hint], error=None)
        return SimpleNamespace(text=self.texts.get(data, self.default_text), error=None)


class FakeExtractor:
    """Returns a fixed ExtractionResult-like object."""

    def __init__(self, result):
        self.result = result
        self.calls = 0

    def extract(self, data, filename=None):
        self.calls += 1
        return self.result


class FakeChatClient:
    """Chat-completion stand-in: returns canned content or raises."""

    def __init__(self, content="", tokens=42, error=None, available=True):
        self.content = content
        self.tokens = tokens
        self.error = error
        self.available = available
        self.messages = []
        self.kwargs = []

    @property
    def is_available(self):
        return self.available

    def complete(self, messages, **kwargs):
        self.messages.append(messages)
        self.kwargs.append(kwargs)
        if self.error:
            raise self.error
        return self.content, self.tokens


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def yearly_storage():
    """Storage holding one yearly report and one single-test report."""
    return FakeStorage({
        "analyze/yearly.pdf": b"%PDF-1.4 yearly",
        "analyze/single.pdf": b"%PDF-1.4 single",
    })


@pytest.fixture
def fakes():
    """The fake service classes, for tests that need custom instances."""
    return SimpleNamespace(
        Storage=FakeStorage,
        Transcriber=FakeTranscriber,
        Extractor=FakeExtractor,
        ChatClient=FakeChatClient,
    )
