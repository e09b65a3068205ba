"""Media finder: suggests images or diagrams, always with alt text."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, AliasChoices

from ...shared.models import AgentRole, ImageBlock
from .enrichment import EnrichmentAgent, EnrichmentInput, EnrichmentResult, describe_slides


class MediaSuggestion(BaseModel):
    slide_id: str = Field(..., validation_alias=AliasChoices("slide_id", "slideId"))
    type: str = "image"
    url: Optional[str] = None
    prompt: Optional[str] = None
    alt: str = Field("", validation_alias=AliasChoices("alt", "altText"))
    credit: Optional[str] = None
    description: str = ""


class MediaFinderAgent(EnrichmentAgent):
    role = AgentRole.MEDIA_FINDER
    input_model = EnrichmentInput
    list_key = "media"

    def build_prompt(self, inp: EnrichmentInput) -> str:
        return (
            f'Suggest at most one image, diagram or illustration per slide for a "{inp.theme}" themed '
            f'presentation on "{inp.topic}". Skip slides that do not need media.\n'
            "Give a URL when you know a freely licensed one, otherwise a generation prompt. "
            "Alt text is required.\n\n"
            f"{describe_slides(inp.slides)}\n\n"
            'Return JSON: {"media": [{"slide_id": "...", "type": "image", "url": null, "prompt": "...", '
            '"alt": "...", "credit": null, "description": "..."}]}'
        )

    def parse(self, data: Any, inp: EnrichmentInput) -> EnrichmentResult:
        slides = self.copy_slides(inp)
        added = 0
        for suggestion in self.coerce_list(MediaSuggestion, self.items(data)):
            slide = slides.get(suggestion.slide_id)
            source = suggestion.url or (f"prompt:{suggestion.prompt}" if suggestion.prompt else None)
            if slide is None or source is None or slide.blocks_of("Image"):
                continue
            alt = suggestion.alt.strip() or suggestion.description.strip()
            slide.blocks.append(ImageBlock(src=source, alt=alt, caption=suggestion.credit))
            added += 1
        return EnrichmentResult(slides=list(slides.values()), added=added)

    def quality_score(self, output: EnrichmentResult, inp: EnrichmentInput) -> float:
        images = [image for slide in output.slides for image in slide.blocks_of("Image")]
        if not images:
            return 1.0
        return sum(1 for image in images if image.alt.strip()) / len(images)
