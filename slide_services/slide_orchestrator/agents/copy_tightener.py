"""Copy tightener: one consistency pass over tone and length, meaning unchanged."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...shared.models import AgentRole, CheckType, QualityCheck, Severity, Slide
from ...shared.text_utils import word_count
from ..agent_base import AgentBase

HEADING_MAX = 8
SUBHEADING_MAX = 15
BULLET_MAX = 12


class TightenInput(BaseModel):
    slides: List[Slide]
    audience: str = Field(..., min_length=1)
    tone: str = Field(..., min_length=1)
    target_reading_level: Optional[int] = Field(None, ge=1, le=20)


class TightenedSlide(BaseModel):
    id: str
    heading: Optional[str] = None
    subheading: Optional[str] = None
    bullets: Optional[List[str]] = None


class TightenResult(BaseModel):
    slides: List[Slide]
    changes: List[QualityCheck] = Field(default_factory=list)
    score: float = 1.0


def heading_quality(text: str) -> float:
    score = 1.0
    words = word_count(text)
    if words > HEADING_MAX:
        score -= 0.3
    elif words <= 5:
        score += 0.1
    lowered = text.lower()
    if "overview" in lowered or "introduction" in lowered:
        score -= 0.1
    return max(0.0, min(1.0, score))


def subheading_quality(text: str) -> float:
    score = 1.0
    words = word_count(text)
    if words > SUBHEADING_MAX:
        score -= 0.3
    elif words <= 8:
        score += 0.1
    lowered = text.lower()
    if "etc" in lowered or "and so on" in lowered:
        score -= 0.2
    return max(0.0, min(1.0, score))


def bullets_quality(items: List[str]) -> float:
    if not items:
        return 1.0
    total = 0.0
    for item in items:
        score = 1.0
        words = word_count(item)
        if words > BULLET_MAX:
            score -= 0.3
        elif words <= 8:
            score += 0.1
        lowered = item.lower()
        if lowered.startswith(("to ", "for ")):
            score -= 0.1
        if "things" in lowered or "stuff" in lowered:
            score -= 0.2
        total += max(0.0, min(1.0, score))
    return total / len(items)


def deck_copy_score(slides: List[Slide]) -> float:
    """Mean per-slide block quality."""
    if not slides:
        return 1.0
    total = 0.0
    for slide in slides:
        scores = []
        for block in slide.blocks:
            if block.type == "Heading":
                scores.append(heading_quality(block.text))
            elif block.type == "Subheading":
                scores.append(subheading_quality(block.text))
            elif block.type == "Bullets":
                scores.append(bullets_quality(block.items))
            else:
                scores.append(1.0)
        total += sum(scores) / len(scores) if scores else 1.0
    return total / len(slides)


def _change(slide_id: str, message: str) -> QualityCheck:
    return QualityCheck(
        type=CheckType.CONSISTENCY,
        severity=Severity.LOW,
        message=message,
        target=slide_id,
        auto_fixable=True,
    )


class CopyTightenerAgent(AgentBase):
    role = AgentRole.COPY_TIGHTENER
    input_model = TightenInput
    max_tokens = 3000
    temperature = 0.3

    def build_prompt(self, inp: TightenInput) -> str:
        lines = []
        for slide in inp.slides:
            heading = slide.heading()
            lines.append(f"Slide {slide.id}:")
            if heading:
                lines.append(f"  heading: {heading.text}")
            for block in slide.blocks_of("Subheading"):
                lines.append(f"  subheading: {block.text}")
            for block in slide.blocks_of("Bullets"):
                lines.extend(f"  - {item}" for item in block.items)
        level = f" at reading grade {inp.target_reading_level}" if inp.target_reading_level else ""
        return (
            f'Tighten the copy of these slides for a "{inp.audience}" audience with a "{inp.tone}" tone{level}.\n'
            f"Headings under {HEADING_MAX} words, subheadings under {SUBHEADING_MAX} words, bullets under "
            f"{BULLET_MAX} words. Use active voice, remove redundancy, keep the meaning.\n\n"
            + "\n".join(lines)
            + '\n\nReturn JSON: {"slides": [{"id": "...", "heading": "...", "subheading": "...", "bullets": ["..."]}]}\n'
            "Only include slides you changed."
        )

    def parse(self, data: Any, inp: TightenInput) -> TightenResult:
        if isinstance(data, dict):
            data = data.get("slides", [])
        edits: Dict[str, TightenedSlide] = {edit.id: edit for edit in self.coerce_list(TightenedSlide, data)}

        slides: List[Slide] = []
        changes: List[QualityCheck] = []
        for original in inp.slides:
            slide = original.model_copy(deep=True)
            edit = edits.get(slide.id)
            if edit is not None:
                changes.extend(self.apply(slide, edit))
            slides.append(slide)
        return TightenResult(slides=slides, changes=changes, score=deck_copy_score(slides))

    def apply(self, slide: Slide, edit: TightenedSlide) -> List[QualityCheck]:
        """Apply an edit in place, only where the new text respects its word limit."""
        changes = []
        for block in slide.blocks:
            if block.type == "Heading" and edit.heading:
                new = edit.heading.strip()
                if new and new != block.text and word_count(new) <= HEADING_MAX:
                    changes.append(_change(slide.id, f'Tightened heading: "{block.text}" -> "{new}"'))
                    block.text = new
            elif block.type == "Subheading" and edit.subheading:
                new = edit.subheading.strip()
                if new and new != block.text and word_count(new) <= SUBHEADING_MAX:
                    changes.append(_change(slide.id, f'Tightened subheading: "{block.text}" -> "{new}"'))
                    block.text = new
            elif block.type == "Bullets" and edit.bullets:
                valid = [b.strip() for b in edit.bullets if b.strip() and word_count(b) <= BULLET_MAX]
                if valid and valid != block.items:
                    changes.append(_change(slide.id, f"Tightened {len(valid)} bullet points"))
                    block.items = valid
        return changes

    def validate_output(self, output: TightenResult, inp: TightenInput) -> bool:
        return [s.id for s in output.slides] == [s.id for s in inp.slides]

    def quality_score(self, output: TightenResult, inp: TightenInput) -> float:
        return output.score

    def default_output(self, inp: TightenInput) -> TightenResult:
        slides = [slide.model_copy(deep=True) for slide in inp.slides]
        return TightenResult(slides=slides, score=deck_copy_score(slides))
