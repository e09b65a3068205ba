"""Executive summary agent: one summary slide plus an email-style recap."""

from __future__ import annotations

import math
from typing import Any, List

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, BulletsBlock, Deck, ExecutiveSummary, HeadingBlock, Slide, SlideLayout
from ...shared.text_utils import word_count
from ..agent_base import AgentBase

WORDS_PER_MINUTE = 200


class SummaryInput(BaseModel):
    deck: Deck
    audience: str = Field(..., min_length=1)
    tone: str = Field(..., min_length=1)


class SummaryDraft(BaseModel):
    key_points: List[str] = Field(..., validation_alias=AliasChoices("key_points", "keyPoints"))
    next_steps: List[str] = Field(default_factory=list, validation_alias=AliasChoices("next_steps", "nextSteps"))
    email_subject: str = Field("", validation_alias=AliasChoices("email_subject", "subject"))
    email_body: str = Field("", validation_alias=AliasChoices("email_body", "body"))


def deck_key_points(deck: Deck, limit: int = 5) -> List[str]:
    """Headings and the first two bullets of each content slide, in order."""
    points: List[str] = []
    for slide in deck.slides:
        if slide.id in ("title-slide", "agenda-slide", "references-slide"):
            continue
        for block in slide.blocks:
            if block.type == "Heading":
                points.append(block.text)
            elif block.type == "Bullets":
                points.extend(block.items[:2])
    return list(dict.fromkeys(points))[:limit]


def summary_slide(points: List[str], notes: str = "") -> Slide:
    return Slide(
        id="executive-summary",
        layout=SlideLayout.TITLE_BULLETS,
        blocks=[HeadingBlock(text="Executive Summary"), BulletsBlock(items=points)],
        notes=notes or "Summary of key points and outcomes",
    )


def read_time(text: str) -> int:
    return max(1, math.ceil(word_count(text) / WORDS_PER_MINUTE))


class ExecutiveSummaryAgent(AgentBase):
    role = AgentRole.EXECUTIVE_SUMMARY
    input_model = SummaryInput
    max_tokens = 1200

    def build_prompt(self, inp: SummaryInput) -> str:
        outline = "\n".join(f"- {point}" for point in deck_key_points(inp.deck, limit=12))
        return (
            f'Summarize the presentation "{inp.deck.meta.title}" for a "{inp.audience}" audience '
            f'in a "{inp.tone}" tone.\n\nContent:\n{outline}\n\n'
            "Use no new facts. Give 3-5 action-oriented key takeaways, the next steps, and a 100-120 word "
            "email with a subject line.\n\n"
            'Return JSON: {"key_points": ["..."], "next_steps": ["..."], "email_subject": "...", "email_body": "..."}'
        )

    def parse(self, data: Any, inp: SummaryInput) -> ExecutiveSummary:
        draft = self.coerce(SummaryDraft, data)
        points = [p.strip() for p in draft.key_points if p.strip()][:5]
        body = draft.email_body.strip()
        return ExecutiveSummary(
            slide=summary_slide(points),
            email_subject=draft.email_subject.strip() or f"Summary: {inp.deck.meta.title}",
            email_body=body,
            key_points=points,
            next_steps=draft.next_steps,
            estimated_read_time=read_time(body),
        )

    def validate_output(self, output: ExecutiveSummary, inp: SummaryInput) -> bool:
        return 3 <= len(output.key_points) <= 5 and bool(output.email_body)

    def quality_score(self, output: ExecutiveSummary, inp: SummaryInput) -> float:
        score = 1.0
        if not 80 <= word_count(output.email_body) <= 150:
            score -= 0.2
        score -= 0.1 * sum(1 for point in output.key_points if word_count(point) > 12)
        if not output.next_steps:
            score -= 0.1
        return score

    def default_output(self, inp: SummaryInput) -> ExecutiveSummary:
        points = deck_key_points(inp.deck) or [inp.deck.meta.title]
        body = (
            f"Here is a short recap of \"{inp.deck.meta.title}\".\n\n"
            + "\n".join(f"- {point}" for point in points)
            + "\n\nPlease review the full deck for details."
        )
        return ExecutiveSummary(
            slide=summary_slide(points),
            email_subject=f"Summary: {inp.deck.meta.title}",
            email_body=body,
            key_points=points,
            estimated_read_time=read_time(body),
        )
