"""Structure agent: turns topic + research into a sectioned deck outline."""

from __future__ import annotations

import math
from collections import Counter
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, DeckOutline, OutlineSection, ResearchSnippet
from ...shared.text_utils import truncate_words, word_count
from ..agent_base import AgentBase

MIN_SECTIONS = 3
MAX_SECTIONS = 6
MAX_TITLE_WORDS = 8
MAX_REFERENCES = 5

SUBTITLES = {
    "technical": "Technical Implementation Guide",
    "business": "Business Value & Strategy",
    "executive": "Strategic Overview",
    "general": "Comprehensive Guide",
}

DATA_KEYWORDS = ("data", "statistics", "trends", "real-time", "live", "current")

GENERIC_SECTIONS = [
    ("Introduction", "Set the context and why it matters"),
    ("Key Concepts", "Explain the core ideas"),
    ("Challenges and Opportunities", "Weigh the main obstacles against the upside"),
    ("Practical Applications", "Show how it is applied"),
    ("Future Outlook", "Describe where things are heading"),
    ("Next Steps", "Turn the message into action"),
]


class StructureInput(BaseModel):
    topic: str = Field(..., min_length=1)
    audience: str = Field(..., min_length=1)
    tone: str = Field(..., min_length=1)
    desired_slide_count: int = Field(..., ge=MIN_SECTIONS, le=50)
    research_snippets: List[ResearchSnippet] = Field(default_factory=list)
    theme: str = "professional"
    duration: Optional[int] = None


class SectionDraft(BaseModel):
    title: str = Field(..., min_length=1)
    goal: str = ""
    key_points: List[str] = Field(default_factory=list, validation_alias=AliasChoices("key_points", "keyPoints"))
    chart_suggested: bool = Field(False, validation_alias=AliasChoices("chart_suggested", "chartSuggested"))


class OutlineDraft(BaseModel):
    title: str = ""
    sections: List[SectionDraft]
    conclusion: str = ""


class Recommendations(BaseModel):
    visual_suggestions: List[str] = Field(default_factory=list)
    interactive_elements: List[str] = Field(default_factory=list)
    pacing_notes: List[str] = Field(default_factory=list)


class StructurePlan(BaseModel):
    outline: DeckOutline
    recommendations: Recommendations = Field(default_factory=Recommendations)


def distribute_slides(total: int, sections: int) -> List[int]:
    """floor(total/n) per section, remainder spread over the first sections."""
    if sections <= 0:
        return []
    base, remainder = divmod(total, sections)
    return [base + (1 if index < remainder else 0) for index in range(sections)]


def subtitle_for(audience: str) -> str:
    audience = audience.lower()
    for key, subtitle in SUBTITLES.items():
        if key in audience:
            return subtitle
    return "Comprehensive Overview"


def references_from(snippets: List[ResearchSnippet]) -> List[str]:
    return list(dict.fromkeys(s.source for s in snippets))[:MAX_REFERENCES]


def top_tags(snippets: List[ResearchSnippet], limit: int = 5) -> List[str]:
    counts = Counter(tag for s in snippets for tag in s.tags)
    return [tag for tag, _ in counts.most_common(limit)]


def _has_tag(snippets: List[ResearchSnippet], *tags: str) -> bool:
    return any(tag in s.tags for s in snippets for tag in tags)


def suggests_live_widget(title: str, goal: str, audience: str) -> bool:
    text = f"{title} {goal}".lower()
    return any(keyword in text for keyword in DATA_KEYWORDS) and "technical" in audience.lower()


class StructurerAgent(AgentBase):
    """One model call for the outline, then deterministic pacing and metadata."""

    role = AgentRole.STRUCTURER
    input_model = StructureInput
    max_tokens = 2500

    def build_prompt(self, inp: StructureInput) -> str:
        tags = ", ".join(top_tags(inp.research_snippets)) or "none"
        evidence = "\n".join(f"- {s.text}" for s in inp.research_snippets[:8]) or "- (no research available)"
        return (
            f'Plan a presentation on "{inp.topic}" for a "{inp.audience}" audience in a "{inp.tone}" tone.\n'
            f"It must fit in {inp.desired_slide_count} content slides.\n\n"
            f"Key research topics: {tags}\n"
            f"Evidence:\n{evidence}\n\n"
            "Create 4-6 sections that build understanding progressively and use the evidence.\n"
            "Section titles must be at most 8 words; give 3-6 key points each.\n\n"
            "Return JSON:\n"
            '{"title": "3-8 word deck title", "sections": [{"title": "...", "goal": "...", '
            '"key_points": ["..."], "chart_suggested": false}], "conclusion": "1-2 sentence close"}'
        )

    def parse(self, data: Any, inp: StructureInput) -> StructurePlan:
        draft = self.coerce(OutlineDraft, data)
        count = min(len(draft.sections), MAX_SECTIONS, inp.desired_slide_count)
        drafts = draft.sections[:count]
        slide_counts = distribute_slides(inp.desired_slide_count, count)

        sections = [
            OutlineSection(
                id=f"section-{index + 1}",
                title=truncate_words(section.title, MAX_TITLE_WORDS),
                goal=section.goal,
                est_slides=slides,
                key_points=[p for p in section.key_points if p.strip()],
                order=index + 1,
                chart_suggested=section.chart_suggested,
                live_widget_suggested=suggests_live_widget(section.title, section.goal, inp.audience),
            )
            for index, (section, slides) in enumerate(zip(drafts, slide_counts))
        ]
        title = draft.title.strip().strip("\"'") or inp.topic
        return self._plan(inp, title, sections, draft.conclusion.strip())

    def _plan(self, inp: StructureInput, title: str, sections: List[OutlineSection], conclusion: str) -> StructurePlan:
        total = sum(s.est_slides for s in sections)
        outline = DeckOutline(
            title=title,
            subtitle=subtitle_for(inp.audience),
            audience=inp.audience,
            tone=inp.tone,
            theme=inp.theme,
            sections=sections,
            conclusion=conclusion,
            references=references_from(inp.research_snippets),
            estimated_duration=inp.duration or math.ceil(total * 2.5),
            word_count=total * 75,
        )
        return StructurePlan(outline=outline, recommendations=self.recommendations(outline, inp.research_snippets))

    def recommendations(self, outline: DeckOutline, snippets: List[ResearchSnippet]) -> Recommendations:
        recs = Recommendations()
        if _has_tag(snippets, "data", "statistics"):
            recs.visual_suggestions.append("Include data visualizations and charts")
        if _has_tag(snippets, "trends", "forecast"):
            recs.visual_suggestions.append("Use timeline or trend visualizations")
        if _has_tag(snippets, "case-study", "example"):
            recs.visual_suggestions.append("Include case study examples and diagrams")

        audience = outline.audience.lower()
        if "technical" in audience:
            recs.interactive_elements += ["Live code demonstrations", "Interactive Q&A sections"]
        if "business" in audience:
            recs.interactive_elements += ["Polling and audience engagement", "Breakout discussion points"]

        if outline.total_slides > 15:
            recs.pacing_notes.append("Consider breaking into multiple sessions")
        if outline.estimated_duration and outline.estimated_duration > 60:
            recs.pacing_notes.append("Include breaks every 20-30 minutes")
        return recs

    def validate_output(self, output: StructurePlan, inp: StructureInput) -> bool:
        sections = output.outline.sections
        if len(sections) < MIN_SECTIONS:
            return False
        return all(word_count(s.title) <= MAX_TITLE_WORDS for s in sections)

    def quality_score(self, output: StructurePlan, inp: StructureInput) -> float:
        outline = output.outline
        score = 0.0
        if 4 <= len(outline.sections) <= 6:
            score += 0.3
        if 3 <= word_count(outline.title) <= 8:
            score += 0.2
        counts = [s.est_slides for s in outline.sections]
        if counts:
            mean = sum(counts) / len(counts)
            variance = sum((c - mean) ** 2 for c in counts) / len(counts)
            if variance < 2:
                score += 0.3
        if len(outline.conclusion) > 20:
            score += 0.2
        return min(score, 1.0)

    def default_output(self, inp: StructureInput) -> StructurePlan:
        count = 4 if inp.desired_slide_count >= 4 else MIN_SECTIONS
        tags = top_tags(inp.research_snippets, count)
        slide_counts = distribute_slides(inp.desired_slide_count, count)
        sections = []
        for index, slides in enumerate(slide_counts):
            generic_title, goal = GENERIC_SECTIONS[index]
            title = f"Understanding {tags[index].title()}" if index < len(tags) else generic_title
            sections.append(
                OutlineSection(
                    id=f"section-{index + 1}",
                    title=truncate_words(title, MAX_TITLE_WORDS),
                    goal=goal,
                    est_slides=slides,
                    key_points=[f"{generic_title} of {inp.topic}"],
                    order=index + 1,
                )
            )
        conclusion = f"{inp.topic}: key takeaways and next steps for the {inp.audience} audience."
        return self._plan(inp, inp.topic, sections, conclusion)
