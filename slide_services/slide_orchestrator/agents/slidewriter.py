"""Slide writer agent: turns one outline section plus evidence into slides."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from ...shared.errors import MalformedResponse
from ...shared.models import (
    AgentRole,
    BulletsBlock,
    HeadingBlock,
    OutlineSection,
    ResearchSnippet,
    Slide,
    SlideLayout,
    SubheadingBlock,
)
from ...shared.text_utils import keywords, word_count
from ..agent_base import AgentBase

MIN_EVIDENCE_CONFIDENCE = 0.6
MAX_EVIDENCE = 5


class WordBudgets(BaseModel):
    title_max: int = Field(8, ge=1)
    bullet_max: int = Field(12, ge=1)
    bullets_per_slide: int = Field(6, ge=1)


class SlideContext(BaseModel):
    topic: str
    audience: str
    tone: str
    theme: str = "professional"
    slide_index: int = 0
    total_slides: int = 0


class SlidewriterInput(BaseModel):
    section: OutlineSection
    research_snippets: List[ResearchSnippet] = Field(default_factory=list)
    context: SlideContext
    word_budgets: WordBudgets = Field(default_factory=WordBudgets)


class SlideDraft(BaseModel):
    title: str = ""
    subtitle: Optional[str] = None
    bullets: List[str] = Field(default_factory=list)
    notes: str = ""
    citations: List[str] = Field(default_factory=list, validation_alias=AliasChoices("citations", "cites"))
    layout: Optional[str] = None


class SlideQuality(BaseModel):
    readability: float = 0.0
    word_budget_compliance: float = 0.0
    citation_coverage: float = 0.0


class SectionSlides(BaseModel):
    section_id: str
    slides: List[Slide]
    quality: SlideQuality = Field(default_factory=SlideQuality)


def relevant_snippets(snippets: List[ResearchSnippet], section: OutlineSection) -> List[ResearchSnippet]:
    """Evidence sharing a keyword (4+ chars) with the section, confidence >= 0.6, at most 5."""
    section_words = keywords([section.title, section.goal, *section.key_points])
    relevant = []
    for snippet in snippets:
        if snippet.confidence < MIN_EVIDENCE_CONFIDENCE:
            continue
        text = snippet.text.lower()
        tags = {tag.lower() for tag in snippet.tags}
        if any(word in text or word in tags for word in section_words):
            relevant.append(snippet)
        if len(relevant) == MAX_EVIDENCE:
            break
    return relevant


def fallback_slide(section: OutlineSection, index: int) -> Slide:
    bullets = section.key_points[:3] or [section.goal or section.title]
    return Slide(
        id=f"{section.id}-slide-{index}",
        layout=SlideLayout.TITLE_BULLETS,
        blocks=[HeadingBlock(text=section.title), BulletsBlock(items=bullets)],
        notes=section.goal,
        order=index,
        section_id=section.id,
        estimated_duration=30,
    )


def fallback_slides(section: OutlineSection) -> List[Slide]:
    return [fallback_slide(section, index) for index in range(1, section.est_slides + 1)]


def _layout(draft: SlideDraft) -> SlideLayout:
    if draft.layout:
        try:
            return SlideLayout(draft.layout)
        except ValueError:
            pass
    return SlideLayout.TITLE_BULLETS if draft.bullets else SlideLayout.TITLE


def _duration(draft: SlideDraft) -> int:
    seconds = 30
    if len(draft.bullets) > 3:
        seconds += 15
    if draft.subtitle:
        seconds += 10
    return min(seconds, 90)


class SlidewriterAgent(AgentBase):
    """Writes all slides of a section in one call, then enforces budgets and citations."""

    role = AgentRole.SLIDEWRITER
    input_model = SlidewriterInput
    max_tokens = 3000

    def build_prompt(self, inp: SlidewriterInput) -> str:
        section, ctx, budgets = inp.section, inp.context, inp.word_budgets
        evidence = relevant_snippets(inp.research_snippets, section)
        evidence_text = "\n".join(f'[{s.id}] "{s.text}" (confidence: {s.confidence})' for s in evidence) or "(none)"
        return (
            f'Write {section.est_slides} slide(s) for the section "{section.title}".\n'
            f"Section goal: {section.goal}\n"
            f"Key points to cover: {', '.join(section.key_points)}\n\n"
            f"Relevant research:\n{evidence_text}\n\n"
            f"Topic: {ctx.topic}\nAudience: {ctx.audience}\nTone: {ctx.tone}\nTheme: {ctx.theme}\n\n"
            f"Budgets: title <= {budgets.title_max} words, bullets <= {budgets.bullet_max} words each, "
            f"at most {budgets.bullets_per_slide} bullets per slide.\n"
            "Cite research by id only.\n\n"
            'Return JSON: {"slides": [{"title": "...", "subtitle": "optional", "bullets": ["..."], '
            '"notes": "2-3 sentences", "citations": ["snippet-1"], "layout": "title+bullets"}]}'
        )

    def parse(self, data: Any, inp: SlidewriterInput) -> SectionSlides:
        if isinstance(data, dict):
            data = data.get("slides")
        drafts = self.coerce_list(SlideDraft, data)
        if not drafts:
            raise MalformedResponse(f"{self.name} returned no slides")

        section = inp.section
        evidence_ids = {s.id for s in relevant_snippets(inp.research_snippets, section)}
        slides = [
            self.build_slide(draft, section, index, inp.word_budgets, evidence_ids)
            for index, draft in enumerate(drafts[: section.est_slides], start=1)
        ]
        for index in range(len(slides) + 1, section.est_slides + 1):
            slides.append(fallback_slide(section, index))

        return SectionSlides(section_id=section.id, slides=slides, quality=self.measure(slides, inp))

    def build_slide(
        self,
        draft: SlideDraft,
        section: OutlineSection,
        index: int,
        budgets: WordBudgets,
        evidence_ids: set,
    ) -> Slide:
        blocks: List[Any] = []
        if draft.title.strip():
            blocks.append(HeadingBlock(text=draft.title.strip(), animation="slideInFromTop"))
        if draft.subtitle:
            blocks.append(SubheadingBlock(text=draft.subtitle, animation="fadeIn"))
        bullets = [b.strip() for b in draft.bullets if b.strip()][: budgets.bullets_per_slide]
        if bullets:
            blocks.append(BulletsBlock(items=bullets, animation="staggerIn"))
        return Slide(
            id=f"{section.id}-slide-{index}",
            layout=_layout(draft),
            blocks=blocks,
            notes=draft.notes,
            cites=[cite for cite in draft.citations if cite in evidence_ids],
            order=index,
            section_id=section.id,
            estimated_duration=_duration(draft),
        )

    # ------------------------------------------------------------------
    # Quality -----------------------------------------------------------
    # ------------------------------------------------------------------

    def measure(self, slides: List[Slide], inp: SlidewriterInput) -> SlideQuality:
        if not slides:
            return SlideQuality()
        confidence = {s.id: s.confidence for s in inp.research_snippets}
        budgets = inp.word_budgets
        readability = compliance = coverage = 0.0
        for slide in slides:
            heading = slide.heading()
            bullets = [item for block in slide.blocks_of("Bullets") for item in block.items]
            title_words = word_count(heading.text) if heading else 0

            score = 1.0 - (0.2 if title_words > 8 else 0.0) - 0.1 * sum(1 for b in bullets if word_count(b) > 12)
            readability += max(score, 0.0)

            score = 1.0
            if title_words > budgets.title_max:
                score -= 0.3
            if len(bullets) > budgets.bullets_per_slide:
                score -= 0.2
            score -= 0.1 * sum(1 for b in bullets if word_count(b) > budgets.bullet_max)
            compliance += max(score, 0.0)

            if slide.cites:
                strong = sum(1 for cite in slide.cites if confidence.get(cite, 0.0) >= 0.8)
                coverage += strong / len(slide.cites)

        count = len(slides)
        return SlideQuality(
            readability=readability / count,
            word_budget_compliance=compliance / count,
            citation_coverage=coverage / count,
        )

    def validate_output(self, output: SectionSlides, inp: SlidewriterInput) -> bool:
        return all(slide.heading() is not None for slide in output.slides)

    def quality_score(self, output: SectionSlides, inp: SlidewriterInput) -> float:
        q = output.quality
        return q.readability * 0.4 + q.word_budget_compliance * 0.3 + q.citation_coverage * 0.3

    def default_output(self, inp: SlidewriterInput) -> SectionSlides:
        slides = fallback_slides(inp.section)
        return SectionSlides(section_id=inp.section.id, slides=slides, quality=self.measure(slides, inp))
