"""Research agent: gathers short, citeable snippets for the topic."""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from ...shared.errors import TransientModelError
from ...shared.models import AgentRole, ResearchSnippet
from ...shared.text_utils import clean_text, normalize_text
from ..agent_base import AgentBase, ModelBinding, decode_json

MAX_QUERIES = 8


class ResearchInput(BaseModel):
    topic: str = Field(..., min_length=1)
    audience: str = Field(..., min_length=1)
    tone: str = Field(..., min_length=1)
    sources: List[str] = Field(default_factory=list)
    max_snippets: int = Field(20, ge=1, le=50)
    min_confidence: float = Field(0.6, ge=0.0, le=1.0)


class RawFinding(BaseModel):
    """One item as returned by the model, before cleanup."""
    text: str
    source: Optional[str] = None
    url: Optional[str] = None
    confidence: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    title: Optional[str] = None


class ResearchCoverage(BaseModel):
    subtopics: List[str] = Field(default_factory=list)
    source_types: List[str] = Field(default_factory=list)


class ResearchQuality(BaseModel):
    average_confidence: float = 0.0
    high_confidence_count: int = 0
    source_diversity: float = 0.0


class ResearchReport(BaseModel):
    snippets: List[ResearchSnippet] = Field(default_factory=list)
    coverage: ResearchCoverage = Field(default_factory=ResearchCoverage)
    quality: ResearchQuality = Field(default_factory=ResearchQuality)


def dedupe_snippets(snippets: Sequence[Any]) -> List[Any]:
    """Drop items whose normalized text was already seen. Keeps first occurrence."""
    seen = set()
    unique = []
    for snippet in snippets:
        key = normalize_text(snippet.text)
        if key in seen:
            continue
        seen.add(key)
        unique.append(snippet)
    return unique


def search_queries(topic: str, subtopics: List[str], audience: str) -> List[str]:
    queries = [f"{topic} overview", f"{topic} current trends", f"{topic} best practices"]
    audience = audience.lower()
    if "technical" in audience:
        queries += [f"{topic} technical implementation", f"{topic} architecture patterns"]
    elif "business" in audience:
        queries += [f"{topic} business value", f"{topic} ROI benefits"]
    queries += [f"{topic} {subtopic}" for subtopic in subtopics]
    return queries[:MAX_QUERIES]


def build_snippets(findings: List[RawFinding], min_confidence: float, max_snippets: int) -> List[ResearchSnippet]:
    """Dedupe, clean, clamp, filter by confidence, sort and cap."""
    cleaned = []
    for finding in dedupe_snippets(findings):
        text = clean_text(finding.text)
        if not text:
            continue
        confidence = 0.5 if finding.confidence is None else min(max(finding.confidence, 0.0), 1.0)
        cleaned.append(finding.model_copy(update={"text": text, "confidence": confidence}))

    kept = [f for f in cleaned if f.confidence >= min_confidence]
    kept.sort(key=lambda f: f.confidence, reverse=True)

    return [
        ResearchSnippet(
            id=f"snippet-{index + 1}",
            source=finding.source or "Research",
            url=finding.url,
            text=finding.text,
            tags=finding.tags,
            confidence=finding.confidence,
            author=finding.author,
            title=finding.title,
        )
        for index, finding in enumerate(kept[:max_snippets])
    ]


def summarize(snippets: List[ResearchSnippet]) -> ResearchReport:
    if not snippets:
        return ResearchReport()
    sources = [s.source for s in snippets]
    confidences = [s.confidence for s in snippets]
    return ResearchReport(
        snippets=snippets,
        coverage=ResearchCoverage(
            subtopics=list(dict.fromkeys(tag for s in snippets for tag in s.tags)),
            source_types=list(dict.fromkeys(sources)),
        ),
        quality=ResearchQuality(
            average_confidence=sum(confidences) / len(confidences),
            high_confidence_count=sum(1 for c in confidences if c >= 0.8),
            source_diversity=len(set(sources)) / len(sources),
        ),
    )


class ResearcherAgent(AgentBase):
    """Extracts subtopics, fans out one search prompt per query and merges the findings."""

    role = AgentRole.RESEARCHER
    input_model = ResearchInput

    def build_prompt(self, inp: ResearchInput) -> str:
        return (
            f'Extract 3-5 key subtopics for research on: "{inp.topic}"\n\n'
            "Each subtopic should be specific, researchable and relevant to the main topic.\n"
            'Return a JSON array of strings, e.g. ["market trends", "key challenges", "future outlook"]'
        )

    def search_prompt(self, query: str, inp: ResearchInput) -> str:
        hint = f"\nPrefer these sources where relevant: {', '.join(inp.sources)}" if inp.sources else ""
        return (
            f'Research information about: "{query}"\n\n'
            f'Provide 2-3 concise, factual snippets useful for a presentation on "{inp.topic}" '
            f'for a "{inp.audience}" audience.{hint}\n\n'
            "Return a JSON array:\n"
            '[{"text": "...", "source": "...", "url": "https://...", "confidence": 0.8, "tags": ["..."]}]'
        )

    def parse(self, data: Any, inp: ResearchInput) -> List[str]:
        if not isinstance(data, list):
            return [inp.topic]
        subtopics = [str(item).strip() for item in data if str(item).strip()]
        return subtopics or [inp.topic]

    async def generate(self, inp: ResearchInput, binding: ModelBinding) -> ResearchReport:
        raw = await self.call_model(self.build_prompt(inp), binding)
        subtopics = self.parse(decode_json(raw), inp)
        queries = search_queries(inp.topic, subtopics, inp.audience)
        self.logger.info(f"🔎 Running {len(queries)} research queries")

        batches = await asyncio.gather(
            *(self.search(query, inp, binding) for query in queries), return_exceptions=True
        )
        errors = [batch for batch in batches if isinstance(batch, BaseException)]
        if errors:
            # Cancellation ends the whole research pass once every search has settled
            raise errors[0]
        findings = [finding for batch in batches for finding in batch]
        snippets = build_snippets(findings, inp.min_confidence, inp.max_snippets)
        self.logger.info(f"📚 Kept {len(snippets)} of {len(findings)} findings")
        return summarize(snippets)

    async def search(self, query: str, inp: ResearchInput, binding: ModelBinding) -> List[RawFinding]:
        """One query; a failed query contributes nothing."""
        try:
            data = decode_json(await self.call_model(self.search_prompt(query, inp), binding))
        except TransientModelError as e:
            self.logger.warning(f"⚠️ Search failed for query '{query}': {e}")
            return []
        if not isinstance(data, list):
            return []
        findings = []
        for item in data:
            try:
                findings.append(RawFinding.model_validate(item))
            except ValidationError:
                continue
        return findings

    def validate_output(self, output: ResearchReport, inp: ResearchInput) -> bool:
        return len(output.snippets) > 0

    def quality_score(self, output: ResearchReport, inp: ResearchInput) -> float:
        if not output.snippets:
            return 0.0
        quality = output.quality
        high_ratio = quality.high_confidence_count / len(output.snippets)
        return quality.average_confidence * 0.4 + quality.source_diversity * 0.3 + high_ratio * 0.3

    def default_output(self, inp: ResearchInput) -> ResearchReport:
        return ResearchReport()
