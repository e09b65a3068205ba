"""Readability analyzer: local text metrics plus model suggestions."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, CheckType, QualityCheck, Severity, Slide
from ...shared.text_utils import sentences, words
from ..agent_base import AgentBase, ModelBinding, decode_json

_PASSIVE = re.compile(r"\b(is|are|was|were|be|been|being)\s+\w+ed\b", re.I)
_VOWEL_GROUPS = re.compile(r"[aeiouy]+")


class ReadabilityInput(BaseModel):
    slides: List[Slide]
    audience: str = Field(..., min_length=1)
    reading_level: Literal["elementary", "middle", "high", "college", "graduate"] = "college"


class ReadabilityMetrics(BaseModel):
    average_sentence_length: float = 0.0
    average_word_length: float = 0.0
    complex_word_ratio: float = 0.0
    passive_voice_ratio: float = 0.0
    readability_index: float = 0.0


class SlideReadability(BaseModel):
    slide_id: str
    score: float
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class SlideFeedback(BaseModel):
    slide_id: str = Field(..., validation_alias=AliasChoices("slide_id", "slideId"))
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ReadabilityFeedback(BaseModel):
    slides: List[SlideFeedback] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ReadabilityReport(BaseModel):
    score: float = 1.0
    metrics: ReadabilityMetrics = Field(default_factory=ReadabilityMetrics)
    slide_scores: List[SlideReadability] = Field(default_factory=list)
    checks: List[QualityCheck] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def syllables(word: str) -> int:
    word = word.lower()
    count = len(_VOWEL_GROUPS.findall(word))
    if word.endswith("e") and count > 1 and not word.endswith("le"):
        count -= 1
    return max(count, 1)


def text_metrics(texts: List[str]) -> ReadabilityMetrics:
    all_sentences = [s for text in texts for s in sentences(text)]
    all_words = [w for text in texts for w in words(text)]
    if not all_sentences or not all_words:
        return ReadabilityMetrics(readability_index=100.0)

    sentence_length = len(all_words) / len(all_sentences)
    syllables_per_word = sum(syllables(w) for w in all_words) / len(all_words)
    flesch = 206.835 - 1.015 * sentence_length - 84.6 * syllables_per_word
    return ReadabilityMetrics(
        average_sentence_length=round(sentence_length, 2),
        average_word_length=round(sum(len(w) for w in all_words) / len(all_words), 2),
        complex_word_ratio=round(sum(1 for w in all_words if syllables(w) >= 3) / len(all_words), 3),
        passive_voice_ratio=round(sum(1 for s in all_sentences if _PASSIVE.search(s)) / len(all_sentences), 3),
        readability_index=round(max(0.0, min(100.0, flesch)), 1),
    )


def metrics_score(metrics: ReadabilityMetrics) -> float:
    """Flesch-weighted score in [0, 1], docked for complex words and passive voice."""
    score = (
        0.6 * metrics.readability_index / 100.0
        + 0.2 * (1.0 - metrics.complex_word_ratio)
        + 0.2 * (1.0 - metrics.passive_voice_ratio)
    )
    return max(0.0, min(1.0, score))


class ReadabilityAnalyzerAgent(AgentBase):
    """Scores are computed locally; the model only contributes issues and suggestions."""

    role = AgentRole.READABILITY_ANALYZER
    input_model = ReadabilityInput
    temperature = 0.3

    def build_prompt(self, inp: ReadabilityInput) -> str:
        slides = "\n".join(f"{slide.id}: {' | '.join(slide.text_items())}" for slide in inp.slides)
        return (
            f'Review the readability of these slides for a "{inp.audience}" audience at a '
            f'"{inp.reading_level}" reading level. Look at sentence length, jargon, passive voice and clarity.\n\n'
            f"{slides}\n\n"
            'Return JSON: {"slides": [{"slide_id": "...", "issues": ["..."], "suggestions": ["..."]}], '
            '"recommendations": ["..."]}'
        )

    def parse(self, data: Any, inp: ReadabilityInput) -> ReadabilityFeedback:
        if isinstance(data, list):
            data = {"slides": data}
        return self.coerce(ReadabilityFeedback, data)

    async def generate(self, inp: ReadabilityInput, binding: ModelBinding) -> ReadabilityReport:
        raw = await self.call_model(self.build_prompt(inp), binding)
        return self.analyze(inp, self.parse(decode_json(raw), inp))

    def analyze(self, inp: ReadabilityInput, feedback: ReadabilityFeedback) -> ReadabilityReport:
        by_slide: Dict[str, SlideFeedback] = {item.slide_id: item for item in feedback.slides}
        slide_scores = []
        checks = []
        for slide in inp.slides:
            score = metrics_score(text_metrics(slide.text_items()))
            notes = by_slide.get(slide.id) or SlideFeedback(slide_id=slide.id)
            slide_scores.append(
                SlideReadability(slide_id=slide.id, score=score, issues=notes.issues, suggestions=notes.suggestions)
            )
            for index, issue in enumerate(notes.issues):
                suggestion = notes.suggestions[index] if index < len(notes.suggestions) else None
                checks.append(
                    QualityCheck(
                        type=CheckType.READABILITY,
                        severity=Severity.MEDIUM if score < 0.5 else Severity.LOW,
                        message=issue,
                        target=slide.id,
                        suggestion=suggestion,
                    )
                )

        metrics = text_metrics([text for slide in inp.slides for text in slide.text_items()])
        return ReadabilityReport(
            score=metrics_score(metrics),
            metrics=metrics,
            slide_scores=slide_scores,
            checks=checks,
            recommendations=feedback.recommendations,
        )

    def quality_score(self, output: ReadabilityReport, inp: ReadabilityInput) -> float:
        return output.score

    def default_output(self, inp: ReadabilityInput) -> ReadabilityReport:
        return ReadabilityReport(score=0.5)
