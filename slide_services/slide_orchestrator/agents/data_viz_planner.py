"""Data visualization planner: adds chart specs to slides of chart-worthy sections."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, ChartBlock, ChartSpec
from .enrichment import EnrichmentAgent, EnrichmentInput, EnrichmentResult, describe_slides


class ChartPlan(BaseModel):
    slide_id: str = Field(..., validation_alias=AliasChoices("slide_id", "slideId"))
    kind: Literal["line", "bar", "area", "pie", "scatter", "histogram", "table"] = "bar"
    x: str = "category"
    y: str = "value"
    title: Optional[str] = None
    rationale: str = ""
    data_example: Optional[Any] = Field(None, validation_alias=AliasChoices("data_example", "dataExample"))


class DataVizPlannerAgent(EnrichmentAgent):
    role = AgentRole.DATA_VIZ_PLANNER
    input_model = EnrichmentInput
    list_key = "charts"

    def _targets(self, inp: EnrichmentInput):
        wanted = {s.id for s in inp.sections if s.chart_suggested}
        return [slide for slide in inp.slides if slide.section_id in wanted] or inp.slides

    def build_prompt(self, inp: EnrichmentInput) -> str:
        return (
            f'Suggest charts for a presentation on "{inp.topic}" ({inp.audience} audience).\n'
            "Only chart what the slide text supports; prefer simple chart kinds and clear axes.\n\n"
            f"{describe_slides(self._targets(inp))}\n\n"
            'Return JSON: {"charts": [{"slide_id": "...", "kind": "bar", "x": "...", "y": "...", '
            '"title": "...", "rationale": "one sentence", "data_example": null}]}'
        )

    def parse(self, data: Any, inp: EnrichmentInput) -> EnrichmentResult:
        slides = self.copy_slides(inp)
        allowed = {slide.id for slide in self._targets(inp)}
        added = 0
        for plan in self.coerce_list(ChartPlan, self.items(data)):
            slide = slides.get(plan.slide_id)
            if slide is None or plan.slide_id not in allowed or slide.blocks_of("Chart"):
                continue
            spec = ChartSpec(**plan.model_dump(exclude={"slide_id"}))
            slide.blocks.append(ChartBlock(chart_spec=spec, animation="fadeIn"))
            added += 1
        return EnrichmentResult(slides=list(slides.values()), added=added)

    def quality_score(self, output: EnrichmentResult, inp: EnrichmentInput) -> float:
        wanted = {s.id for s in inp.sections if s.chart_suggested}
        if not wanted:
            return 1.0
        charted = {slide.section_id for slide in output.slides if slide.blocks_of("Chart")}
        return len(wanted & charted) / len(wanted)
