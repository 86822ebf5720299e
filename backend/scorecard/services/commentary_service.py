"""
Commentary generation from canonical records and trends.

Options:
- tone:   gentle | balanced | strict
- target: student | parent | teacher
- focus:  mistake | process | knowledge | attitude

Uses the chat completion model when an API key is configured. Without a
key, when the rate limit refuses the call, or when the call fails, a
deterministic template built from the trend verdicts is returned instead.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from scorecard.config import Config
from scorecard.utils.rate_limiter import RateLimiter, SERVICE_COMMENTARY
from scorecard.services.llm_client import ChatCompletionClient
from scorecard.services.score_pipeline.records import TestCategory, TestRecord
from scorecard.services.score_pipeline.trends import (
    FALLING, FLAT, INDETERMINATE, METRIC_DEVIATION, METRIC_GRADE_LEVEL, RISING, TrendSummary
)

logger = logging.getLogger(__name__)

# No averages are printed on the reports; these stand in for them
ASSUMED_AVERAGE: Dict[str, float] = {
    'open_mock_deviation': 50,
    'periodic_growth_grade_level': 6,
}


class Tone(str, Enum):
    GENTLE = "gentle"
    BALANCED = "balanced"
    STRICT = "strict"


class Audience(str, Enum):
    STUDENT = "student"
    PARENT = "parent"
    TEACHER = "teacher"


class Focus(str, Enum):
    MISTAKE = "mistake"
    PROCESS = "process"
    KNOWLEDGE = "knowledge"
    ATTITUDE = "attitude"


VERDICT_PHRASES = {
    RISING: "上昇傾向",
    FALLING: "下降傾向、ここから伸ばそう",
    FLAT: "安定",
    INDETERMINATE: "データ不足",
}

TITLES = {
    Audience.STUDENT: "きみへのメッセージ",
    Audience.PARENT: "成績状況のご報告（要点）",
    Audience.TEACHER: "面談用コメント（1分版）",
}

FOCUS_SENTENCES = {
    Focus.MISTAKE: "取りこぼした問題の見直しを最優先にしましょう。",
    Focus.PROCESS: "途中式と解き方の手順を丁寧に書く習慣をつけましょう。",
    Focus.KNOWLEDGE: "基本事項の確認と暗記事項の定着を進めましょう。",
    Focus.ATTITUDE: "毎回のテストに向けた準備と振り返りを続けましょう。",
}

TONE_CLOSINGS = {
    Tone.GENTLE: "焦らず、できたことを一つずつ積み重ねていきましょう。",
    Tone.BALANCED: "良い点は伸ばし、課題は次回までに一つ改善しましょう。",
    Tone.STRICT: "課題ははっきりしています。次回までに必ず改善しましょう。",
}

SECTION_NAMES = {
    TestCategory.PERIODIC_GROWTH: "育成テスト",
    TestCategory.OPEN_MOCK: "公開模試",
}


@dataclass
class CommentaryResult:
    text: str
    source: str  # "llm" | "template"
    error: Optional[str] = None
    tokens_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'text': self.text, 'source': self.source, 'error': self.error}


class CommentaryService:
    """Writes short commentary for students, parents or teachers."""

    SYSTEM_PROMPT = """あなたは塾講師です。以下の成績推移データから、短く・前向きに講評を書いてください。
- 育成テスト：評価（3〜10段階）を中心に、平均=6と比較して上/下を表現
- 公開模試：偏差値（平均=50）を中心に、上昇/下降を表現
- 傾向が rising なら「上昇傾向」、falling なら「下降傾向、ここから伸ばそう」、flat なら「安定」、indeterminate なら「データ不足」
- データに無い数値を作らないこと"""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, client: Optional[ChatCompletionClient] = None):
        self.rate_limiter = rate_limiter
        self.service_name = SERVICE_COMMENTARY
        self.client = client or ChatCompletionClient(**Config.get_llm_config())

        if not self.client.is_available:
            logger.warning("LLM API key not configured. Commentary will use templates.")

    def generate(
        self,
        records: List[TestRecord],
        trends: Dict[TestCategory, TrendSummary],
        tone: Tone = Tone.BALANCED,
        target: Audience = Audience.PARENT,
        focus: Focus = Focus.PROCESS,
        profile: Optional[Dict[str, Any]] = None
    ) -> CommentaryResult:
        """
        Generate commentary.

        Args:
            records: Canonical records
            trends: Per-category trend summaries
            tone: Tone of voice
            target: Intended reader
            focus: What the advice should concentrate on
            profile: Optional student profile dict

        Returns:
            CommentaryResult (template text when the model is unavailable)
        """
        tone, target, focus = Tone(tone), Audience(target), Focus(focus)

        if not self.client.is_available:
            return CommentaryResult(self.render_template(trends, tone, target, focus), source="template")

        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(self.service_name)
            if not can_call:
                logger.warning(f"Rate limit exceeded: {reason}")
                return CommentaryResult(
                    self.render_template(trends, tone, target, focus),
                    source="template",
                    error=f"Rate limit exceeded: {reason}"
                )

        data = {
            'assumed_average': ASSUMED_AVERAGE,
            'trends': {category.value: summary.to_dict() for category, summary in trends.items()},
            'records': [r.to_dict() for r in records],
            'profile': profile,
            'options': {'tone': tone.value, 'target': target.value, 'focus': focus.value},
        }
        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": (
                f"読み手: {target.value} / トーン: {tone.value} / 重点: {focus.value}\n"
                f"このデータを元に講評を書いてください。\n\n【データ(JSON)】\n"
                f"{json.dumps(data, ensure_ascii=False, indent=2)}"
            )},
        ]

        try:
            text, tokens_used = self.client.complete(messages, max_tokens=800, temperature=0.3)
        except Exception as e:
            logger.error(f"Commentary generation failed: {e}. Using template.")
            return CommentaryResult(self.render_template(trends, tone, target, focus), source="template", error=str(e))
        finally:
            if self.rate_limiter:
                self.rate_limiter.record_call(self.service_name)

        if not text:
            return CommentaryResult(
                self.render_template(trends, tone, target, focus), source="template", error="Empty model response"
            )
        return CommentaryResult(text, source="llm", tokens_used=tokens_used)

    @staticmethod
    def render_template(
        trends: Dict[TestCategory, TrendSummary],
        tone: Tone = Tone.BALANCED,
        target: Audience = Audience.PARENT,
        focus: Focus = Focus.PROCESS
    ) -> str:
        """Deterministic commentary built from the trend verdicts."""
        tone, target, focus = Tone(tone), Audience(target), Focus(focus)
        lines = [TITLES[target]]

        for category in (TestCategory.PERIODIC_GROWTH, TestCategory.OPEN_MOCK):
            summary = trends.get(category)
            name = SECTION_NAMES[category]
            if summary is None or not summary.values:
                lines.append(f"{name}：{VERDICT_PHRASES[INDETERMINATE]}")
                continue

            series = "→".join(_format_value(v) for v in summary.values)
            line = f"{name}：{_metric_name(summary.metric)} {series}（{VERDICT_PHRASES[summary.verdict]}）"

            reference = _assumed_average(summary.metric)
            if reference is not None:
                relation = "上回っています" if summary.last >= reference else "下回っています"
                line += f"。平均の目安{_format_value(reference)}を{relation}"
            lines.append(line + "。")

        lines.append(FOCUS_SENTENCES[focus])
        lines.append(TONE_CLOSINGS[tone])
        return "\n".join(lines)


def _metric_name(metric: Optional[str]) -> str:
    if metric == METRIC_GRADE_LEVEL:
        return "評価"
    if metric == METRIC_DEVIATION:
        return "偏差値"
    return "2科得点"


def _assumed_average(metric: Optional[str]) -> Optional[float]:
    if metric == METRIC_GRADE_LEVEL:
        return ASSUMED_AVERAGE['periodic_growth_grade_level']
    if metric == METRIC_DEVIATION:
        return ASSUMED_AVERAGE['open_mock_deviation']
    return None


def _format_value(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
