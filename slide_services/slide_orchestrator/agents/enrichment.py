"""Shared pieces of the optional enrichment agents (notes, charts, media, live widgets).

Every enrichment agent reads the written slides and returns a copy with extra
blocks or notes. Failing ones fall back to the slides unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...shared.models import OutlineSection, Slide
from ..agent_base import AgentBase


class EnrichmentInput(BaseModel):
    slides: List[Slide]
    topic: str = Field(..., min_length=1)
    audience: str = "general"
    tone: str = "professional"
    theme: str = "professional"
    duration: Optional[int] = None
    sections: List[OutlineSection] = Field(default_factory=list)


class EnrichmentResult(BaseModel):
    slides: List[Slide]
    added: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)


def describe_slides(slides: List[Slide]) -> str:
    return "\n".join(f"{slide.id}: {' | '.join(slide.text_items())}" for slide in slides)


class EnrichmentAgent(AgentBase):
    """Base for agents that decorate existing slides."""

    list_key: str = "items"

    def items(self, data: Any) -> Any:
        if isinstance(data, dict):
            return data.get(self.list_key, [])
        return data

    def copy_slides(self, inp: EnrichmentInput) -> Dict[str, Slide]:
        return {slide.id: slide.model_copy(deep=True) for slide in inp.slides}

    def validate_output(self, output: EnrichmentResult, inp: EnrichmentInput) -> bool:
        return [s.id for s in output.slides] == [s.id for s in inp.slides]

    def default_output(self, inp: EnrichmentInput) -> EnrichmentResult:
        return EnrichmentResult(slides=[slide.model_copy(deep=True) for slide in inp.slides])
