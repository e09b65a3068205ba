"""Live widget planner: proposes live charts, tickers, maps and countdowns."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, LiveBlock, WidgetSpec
from .enrichment import EnrichmentAgent, EnrichmentInput, EnrichmentResult, describe_slides

WIDGET_TYPES = {
    "chart": "LiveChart",
    "livechart": "LiveChart",
    "ticker": "Ticker",
    "map": "Map",
    "countdown": "Countdown",
    "iframe": "Iframe",
}


class WidgetPlan(BaseModel):
    slide_id: str = Field(..., validation_alias=AliasChoices("slide_id", "slideId"))
    type: str = "chart"
    config: Dict[str, Any] = Field(default_factory=dict)
    refresh_rate: Optional[int] = Field(5, ge=1, validation_alias=AliasChoices("refresh_rate", "refreshRate"))
    data_source: Optional[str] = Field(None, validation_alias=AliasChoices("data_source", "dataSource"))
    explanation: str = ""


class LiveWidgetPlannerAgent(EnrichmentAgent):
    role = AgentRole.LIVE_WIDGET_PLANNER
    input_model = EnrichmentInput
    list_key = "widgets"

    def _targets(self, inp: EnrichmentInput):
        wanted = {s.id for s in inp.sections if s.live_widget_suggested}
        return [slide for slide in inp.slides if slide.section_id in wanted] or inp.slides

    def build_prompt(self, inp: EnrichmentInput) -> str:
        return (
            f'Plan live widgets for a presentation on "{inp.topic}" ({inp.audience} audience).\n'
            "Widget types: chart, ticker, map, countdown, iframe. Use them only where live data helps "
            "the audience, at most one per slide.\n\n"
            f"{describe_slides(self._targets(inp))}\n\n"
            'Return JSON: {"widgets": [{"slide_id": "...", "type": "chart", "config": {}, '
            '"refresh_rate": 5, "data_source": null, "explanation": "..."}]}'
        )

    def parse(self, data: Any, inp: EnrichmentInput) -> EnrichmentResult:
        slides = self.copy_slides(inp)
        allowed = {slide.id for slide in self._targets(inp)}
        added = 0
        for plan in self.coerce_list(WidgetPlan, self.items(data)):
            slide = slides.get(plan.slide_id)
            widget_type = WIDGET_TYPES.get(plan.type.lower())
            if slide is None or widget_type is None or plan.slide_id not in allowed or slide.blocks_of("Live"):
                continue
            spec = WidgetSpec(
                type=widget_type,
                config=plan.config,
                refresh_rate=plan.refresh_rate,
                data_source=plan.data_source,
            )
            slide.blocks.append(LiveBlock(widget_spec=spec))
            added += 1
        return EnrichmentResult(slides=list(slides.values()), added=added)
