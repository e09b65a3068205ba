"""Audience adapter: re-targets a finished deck to another audience and time budget."""

from __future__ import annotations

import math
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

from ...shared.models import AdaptationChange, AgentRole, AudienceAdaptation, BulletsBlock, Deck, Slide
from ..agent_base import AgentBase

MINUTES_PER_SLIDE = 2.5
PROTECTED_SLIDES = ("title-slide",)


class AdaptInput(BaseModel):
    deck: Deck
    target_audience: str = Field(..., min_length=1)
    target_tone: Optional[str] = None
    target_duration: Optional[int] = Field(None, ge=1)


class SlideDecision(BaseModel):
    id: str
    action: Literal["keep", "remove", "merge", "simplify", "retone"] = "keep"
    heading: Optional[str] = None
    bullets: Optional[List[str]] = None
    reason: str = ""


class AdaptationPlan(BaseModel):
    slides: List[SlideDecision] = Field(default_factory=list)


def _edit(slide: Slide, decision: SlideDecision) -> None:
    for block in slide.blocks:
        if block.type == "Heading" and decision.heading:
            block.text = decision.heading
        elif block.type == "Bullets" and decision.bullets:
            block.items = decision.bullets


class AudienceAdapterAgent(AgentBase):
    """Keeps, drops, merges or edits slides and records every change."""

    role = AgentRole.AUDIENCE_ADAPTER
    input_model = AdaptInput
    max_tokens = 3000

    def build_prompt(self, inp: AdaptInput) -> str:
        meta = inp.deck.meta
        slides = "\n".join(f"{s.id}: {' | '.join(s.text_items())[:150]}" for s in inp.deck.slides)
        duration = f"{inp.target_duration} minutes" if inp.target_duration else "unchanged"
        return (
            f'Adapt the presentation "{meta.title}" from a "{meta.audience}" audience ({meta.tone} tone, '
            f"{meta.duration or 'unknown'} minutes) to a \"{inp.target_audience}\" audience "
            f"({inp.target_tone or meta.tone} tone, {duration}).\n\n"
            f"Slides:\n{slides}\n\n"
            "Preserve core claims, citations and caveats. Trim or merge slides to fit the time.\n"
            "For each slide choose keep, remove, merge (into the previous slide), simplify or retone; give new "
            "heading/bullets for simplify and retone.\n\n"
            'Return JSON: {"slides": [{"id": "...", "action": "keep", "heading": null, "bullets": null, "reason": "..."}]}'
        )

    def parse(self, data: Any, inp: AdaptInput) -> AudienceAdaptation:
        if isinstance(data, list):
            data = {"slides": data}
        plan = self.coerce(AdaptationPlan, data)
        decisions = {d.id: d for d in plan.slides}
        deck = inp.deck.model_copy(deep=True)

        kept: List[Slide] = []
        changes: List[AdaptationChange] = []
        for slide in deck.slides:
            decision = decisions.get(slide.id)
            if decision is None or decision.action == "keep" or slide.id in PROTECTED_SLIDES:
                kept.append(slide)
                continue
            if decision.action == "remove":
                changes.append(AdaptationChange(type="slide-removed", slide_id=slide.id, description=decision.reason or "Removed"))
            elif decision.action == "merge" and kept:
                self.merge(kept[-1], slide)
                changes.append(
                    AdaptationChange(type="slide-merged", slide_id=slide.id, description=f"Merged into {kept[-1].id}")
                )
            else:
                _edit(slide, decision)
                change_type = "tone-adjusted" if decision.action == "retone" else "content-simplified"
                changes.append(AdaptationChange(type=change_type, slide_id=slide.id, description=decision.reason or change_type))
                kept.append(slide)

        for order, slide in enumerate(kept):
            slide.order = order
        return self._adaptation(inp, deck.model_copy(update={"slides": kept}), changes)

    @staticmethod
    def merge(target: Slide, source: Slide) -> None:
        extra = [item for block in source.blocks_of("Bullets") for item in block.items]
        if not extra:
            return
        bullets = target.blocks_of("Bullets")
        if bullets:
            bullets[0].items = (bullets[0].items + extra)[:6]
        else:
            target.blocks.append(BulletsBlock(items=extra[:6]))
        target.cites = list(dict.fromkeys(target.cites + source.cites))

    def _adaptation(self, inp: AdaptInput, deck: Deck, changes: List[AdaptationChange]) -> AudienceAdaptation:
        original = inp.deck.meta
        deck.meta = deck.meta.model_copy(
            update={
                "audience": inp.target_audience,
                "tone": inp.target_tone or original.tone,
                "duration": inp.target_duration or original.duration,
            }
        )
        return AudienceAdaptation(
            original_audience=original.audience,
            target_audience=inp.target_audience,
            original_duration=original.duration,
            target_duration=inp.target_duration,
            changes=changes,
            adapted_deck=deck,
        )

    def validate_output(self, output: AudienceAdaptation, inp: AdaptInput) -> bool:
        return len(output.adapted_deck.slides) > 0

    def quality_score(self, output: AudienceAdaptation, inp: AdaptInput) -> float:
        if not inp.target_duration:
            return 1.0
        needed = math.ceil(len(output.adapted_deck.slides) * MINUTES_PER_SLIDE)
        if needed <= inp.target_duration * 1.1:
            return 1.0
        # Partial credit for moving toward the time budget
        return max(0.3, inp.target_duration / needed)

    def default_output(self, inp: AdaptInput) -> AudienceAdaptation:
        return self._adaptation(inp, inp.deck.model_copy(deep=True), [])
