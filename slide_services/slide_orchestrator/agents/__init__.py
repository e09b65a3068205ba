"""Concrete agents and the role -> agent registration table."""

from typing import Dict, Optional

from ...shared.config import Settings, get_settings
from ...shared.models import AgentRole
from ..agent_base import AgentBase, AgentConfig
from .accessibility_linter import AccessibilityLinterAgent
from .audience_adapter import AudienceAdapterAgent
from .copy_tightener import CopyTightenerAgent
from .data_viz_planner import DataVizPlannerAgent
from .executive_summary import ExecutiveSummaryAgent
from .fact_checker import FactCheckerAgent
from .live_widget_planner import LiveWidgetPlannerAgent
from .media_finder import MediaFinderAgent
from .readability_analyzer import ReadabilityAnalyzerAgent
from .researcher import ResearcherAgent
from .slidewriter import SlidewriterAgent
from .speaker_notes import SpeakerNotesAgent
from .structurer import StructurerAgent

AGENT_TABLE = {
    AgentRole.RESEARCHER: (ResearcherAgent, "Gathers concise, citeable snippets that answer the topic",
                           ["web-search", "content-analysis", "source-verification"]),
    AgentRole.STRUCTURER: (StructurerAgent, "Converts topic and research into a deck plan",
                           ["outline-generation", "audience-analysis", "narrative-structure"]),
    AgentRole.SLIDEWRITER: (SlidewriterAgent, "Turns outline sections and research into slides",
                            ["content-generation", "slide-formatting", "citation-integration"]),
    AgentRole.COPY_TIGHTENER: (CopyTightenerAgent, "Normalizes tone and length without changing meaning",
                               ["text-editing", "tone-consistency"]),
    AgentRole.FACT_CHECKER: (FactCheckerAgent, "Checks slide claims against the research",
                             ["claim-extraction", "evidence-rating"]),
    AgentRole.ACCESSIBILITY_LINTER: (AccessibilityLinterAgent, "Audits slides for accessibility problems",
                                     ["accessibility-audit"]),
    AgentRole.READABILITY_ANALYZER: (ReadabilityAnalyzerAgent, "Measures readability and suggests fixes",
                                     ["text-analysis", "readability-metrics"]),
    AgentRole.EXECUTIVE_SUMMARY: (ExecutiveSummaryAgent, "Writes a summary slide and recap email",
                                  ["summarization"]),
    AgentRole.AUDIENCE_ADAPTER: (AudienceAdapterAgent, "Re-targets a deck to another audience and duration",
                                 ["audience-adaptation"]),
    AgentRole.SPEAKER_NOTES: (SpeakerNotesAgent, "Writes speaker notes and timing",
                              ["speaker-notes"]),
    AgentRole.DATA_VIZ_PLANNER: (DataVizPlannerAgent, "Plans charts for data-heavy slides",
                                 ["chart-planning"]),
    AgentRole.MEDIA_FINDER: (MediaFinderAgent, "Suggests images and diagrams with alt text",
                             ["media-search"]),
    AgentRole.LIVE_WIDGET_PLANNER: (LiveWidgetPlannerAgent, "Plans live data widgets",
                                    ["widget-planning"]),
}


def build_agent_registry(settings: Optional[Settings] = None) -> Dict[AgentRole, AgentBase]:
    """One agent instance per role, configured from settings."""
    settings = settings or get_settings()
    agents: Dict[AgentRole, AgentBase] = {}
    for role, (agent_cls, description, capabilities) in AGENT_TABLE.items():
        config = AgentConfig(
            name=role.value,
            description=description,
            capabilities=capabilities,
            max_retries=settings.agent_max_retries,
            timeout=settings.agent_timeout_seconds,
            retry_base_delay=settings.retry_base_delay,
        )
        agents[role] = agent_cls(config)
    return agents


__all__ = [
    "AGENT_TABLE",
    "build_agent_registry",
    "AccessibilityLinterAgent",
    "AudienceAdapterAgent",
    "CopyTightenerAgent",
    "DataVizPlannerAgent",
    "ExecutiveSummaryAgent",
    "FactCheckerAgent",
    "LiveWidgetPlannerAgent",
    "MediaFinderAgent",
    "ReadabilityAnalyzerAgent",
    "ResearcherAgent",
    "SlidewriterAgent",
    "SpeakerNotesAgent",
    "StructurerAgent",
]
