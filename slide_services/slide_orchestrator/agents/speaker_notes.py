"""Speaker notes generator."""

from __future__ import annotations

from typing import Any, List

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole
from .enrichment import EnrichmentAgent, EnrichmentInput, EnrichmentResult, describe_slides


class SpeakerNote(BaseModel):
    slide_id: str = Field(..., validation_alias=AliasChoices("slide_id", "slideId"))
    notes: str
    duration_seconds: int = Field(45, ge=5, le=600, validation_alias=AliasChoices("duration_seconds", "duration"))
    transitions: List[str] = Field(default_factory=list)


class SpeakerNotesAgent(EnrichmentAgent):
    role = AgentRole.SPEAKER_NOTES
    input_model = EnrichmentInput
    list_key = "notes"
    max_tokens = 3000

    def build_prompt(self, inp: EnrichmentInput) -> str:
        duration = f"{inp.duration} minutes" if inp.duration else "about 2 minutes per slide"
        return (
            f'Write speaker notes for a talk on "{inp.topic}" to a "{inp.audience}" audience '
            f'({inp.tone} tone, {duration}).\n'
            "For each slide give 2-4 conversational sentences, a duration and a transition to the next slide.\n\n"
            f"{describe_slides(inp.slides)}\n\n"
            'Return JSON: {"notes": [{"slide_id": "...", "notes": "...", "duration_seconds": 45, "transitions": ["..."]}]}'
        )

    def parse(self, data: Any, inp: EnrichmentInput) -> EnrichmentResult:
        slides = self.copy_slides(inp)
        added = 0
        total_seconds = 0
        for note in self.coerce_list(SpeakerNote, self.items(data)):
            slide = slides.get(note.slide_id)
            if slide is None or not note.notes.strip():
                continue
            slide.notes = note.notes.strip()
            slide.estimated_duration = note.duration_seconds
            total_seconds += note.duration_seconds
            added += 1
        return EnrichmentResult(
            slides=list(slides.values()),
            added=added,
            details={"total_duration_seconds": total_seconds},
        )

    def quality_score(self, output: EnrichmentResult, inp: EnrichmentInput) -> float:
        if not output.slides:
            return 1.0
        return sum(1 for slide in output.slides if slide.notes.strip()) / len(output.slides)
