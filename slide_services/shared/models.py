"""
Shared Pydantic models for the slide orchestration core.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class BackendKind(str, Enum):
    """Where a model runs."""
    CLOUD = "cloud"
    LOCAL = "local"
    SIMULATED = "simulated"


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    SIMULATED = "simulated"


class SpeedTier(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class QualityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    """How the router ranks candidate models."""
    QUALITY = "quality"
    SPEED = "speed"
    COST = "cost"
    BALANCED = "balanced"


class PolicyName(str, Enum):
    """Named routing policies exposed to callers."""
    QUALITY = "quality"
    SPEED = "speed"
    COST = "cost"
    BALANCED = "balanced"
    LOCAL_ONLY = "local-only"


class AgentRole(str, Enum):
    """Agent roles known to the orchestrator."""
    RESEARCHER = "researcher"
    STRUCTURER = "structurer"
    SLIDEWRITER = "slidewriter"
    COPY_TIGHTENER = "copy-tightener"
    FACT_CHECKER = "fact-checker"
    ACCESSIBILITY_LINTER = "accessibility-linter"
    READABILITY_ANALYZER = "readability-analyzer"
    EXECUTIVE_SUMMARY = "executive-summary"
    AUDIENCE_ADAPTER = "audience-adapter"
    SPEAKER_NOTES = "speaker-notes-generator"
    DATA_VIZ_PLANNER = "data-viz-planner"
    MEDIA_FINDER = "media-finder"
    LIVE_WIDGET_PLANNER = "live-widget-planner"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckType(str, Enum):
    """Quality check families, in report order."""
    FACT = "fact"
    ACCESSIBILITY = "accessibility"
    READABILITY = "readability"
    CONSISTENCY = "consistency"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SlideLayout(str, Enum):
    """Layouts understood by the renderer"""
    TITLE = "title"
    TITLE_BULLETS = "title+bullets"
    TWO_COLUMN = "two-column"
    COMPARISON = "comparison"
    KPI = "kpi"
    TIMELINE = "timeline"
    QUOTE = "quote"
    DIAGRAM = "diagram"


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class ModelDescriptor(BaseModel):
    """A model backend the router can hand to an agent. Immutable once registered."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Registry key")
    backend: BackendKind
    provider: LLMProvider
    model_id: str = Field(..., description="Provider-side model identifier")
    base_url: Optional[str] = None
    api_key: Optional[str] = Field(None, repr=False, exclude=True)
    max_tokens: int = Field(4000, gt=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    capabilities: Tuple[str, ...] = Field(default_factory=tuple, description="Agent roles or 'general'")
    cost_per_token: Optional[float] = Field(None, ge=0.0)
    speed: SpeedTier
    quality: QualityTier

    @property
    def is_local(self) -> bool:
        """Runs on the local machine or in-process."""
        return self.backend in (BackendKind.LOCAL, BackendKind.SIMULATED)

    def supports(self, role: str) -> bool:
        return role in self.capabilities or "general" in self.capabilities


class RoutingRule(BaseModel):
    agent_role: str
    model_name: str
    conditions: Optional[Dict[str, Any]] = None


class RoutingPolicy(BaseModel):
    """Ordered role -> model preferences. Read-only after startup."""
    name: str
    description: str = ""
    rules: List[RoutingRule] = Field(default_factory=list)


class TaskContext(BaseModel):
    """Per-request routing context, passed by value through the pipeline."""
    model_config = ConfigDict(frozen=True)

    priority: Priority = Priority.BALANCED
    budget: Optional[float] = Field(None, description="Cost ceiling for the request")
    deadline: Optional[float] = Field(None, description="Seconds allowed for the request")
    local_only: bool = False

    def with_priority(self, priority: Priority) -> "TaskContext":
        return self.model_copy(update={"priority": priority})

    @classmethod
    def for_policy(cls, policy: str, local_only: bool = False, **extra: Any) -> "TaskContext":
        policy = PolicyName(policy).value
        if policy == PolicyName.LOCAL_ONLY.value:
            return cls(priority=Priority.BALANCED, local_only=True, **extra)
        return cls(priority=Priority(policy), local_only=local_only, **extra)


# ---------------------------------------------------------------------------
# Agent bookkeeping
# ---------------------------------------------------------------------------

class AgentTask(BaseModel):
    """One dispatched agent invocation. Retries add attempts, never new ids."""
    id: str = Field(default_factory=lambda: _short_id("task"))
    role: str
    input_payload: Dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    model_name: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class AgentOutput(BaseModel):
    """Typed payload plus the agent's own quality score."""
    role: str
    payload: Any
    quality_score: float = Field(..., ge=0.0, le=1.0)
    degraded: bool = False
    model_name: Optional[str] = None
    task_id: Optional[str] = None
    error: Optional[str] = None


class QualityCheck(BaseModel):
    """A single finding produced by a QA agent."""
    id: str = Field(default_factory=lambda: _short_id("check"))
    type: CheckType
    severity: Severity
    message: str
    target: Optional[str] = Field(None, description="Slide or section id")
    suggestion: Optional[str] = None
    auto_fixable: bool = False


# ---------------------------------------------------------------------------
# Research and outline
# ---------------------------------------------------------------------------

class ResearchSnippet(BaseModel):
    """Short, citeable evidence for the topic"""
    id: str
    source: str = "Research"
    url: Optional[str] = None
    text: str = Field(..., min_length=1, max_length=500)
    tags: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp: Optional[str] = None
    author: Optional[str] = None
    title: Optional[str] = None


class OutlineSection(BaseModel):
    id: str
    title: str
    goal: str = ""
    est_slides: int = Field(..., ge=1)
    key_points: List[str] = Field(default_factory=list)
    order: int
    chart_suggested: bool = False
    live_widget_suggested: bool = False


class DeckOutline(BaseModel):
    id: str = Field(default_factory=lambda: _short_id("outline"))
    title: str
    subtitle: Optional[str] = None
    audience: str
    tone: str
    theme: str = "professional"
    sections: List[OutlineSection]
    conclusion: str = ""
    references: List[str] = Field(default_factory=list)
    estimated_duration: Optional[int] = Field(None, description="Minutes")
    word_count: Optional[int] = None

    @property
    def total_slides(self) -> int:
        return sum(section.est_slides for section in self.sections)


# ---------------------------------------------------------------------------
# Slides and blocks
# ---------------------------------------------------------------------------

class HeadingBlock(BaseModel):
    type: Literal["Heading"] = "Heading"
    text: str
    level: int = Field(1, ge=1, le=3)
    animation: Optional[str] = None


class SubheadingBlock(BaseModel):
    type: Literal["Subheading"] = "Subheading"
    text: str
    animation: Optional[str] = None


class BulletsBlock(BaseModel):
    type: Literal["Bullets"] = "Bullets"
    items: List[str] = Field(default_factory=list)
    animation: Optional[str] = None


class MarkdownBlock(BaseModel):
    type: Literal["Markdown"] = "Markdown"
    md: str
    animation: Optional[str] = None


class ImageBlock(BaseModel):
    type: Literal["Image"] = "Image"
    src: str
    alt: str = ""
    caption: Optional[str] = None
    animation: Optional[str] = None


class ChartSpec(BaseModel):
    kind: Literal["line", "bar", "area", "pie", "scatter", "histogram", "table"] = "bar"
    x: str = "category"
    y: str = "value"
    title: Optional[str] = None
    rationale: str = ""
    data_example: Optional[Any] = None


class ChartBlock(BaseModel):
    type: Literal["Chart"] = "Chart"
    chart_spec: ChartSpec
    animation: Optional[str] = None


class WidgetSpec(BaseModel):
    type: Literal["LiveChart", "Ticker", "Map", "Countdown", "Iframe"] = "LiveChart"
    config: Dict[str, Any] = Field(default_factory=dict)
    refresh_rate: Optional[int] = Field(None, description="Seconds")
    data_source: Optional[str] = None


class LiveBlock(BaseModel):
    type: Literal["Live"] = "Live"
    widget_spec: WidgetSpec
    animation: Optional[str] = None


class QuoteBlock(BaseModel):
    type: Literal["Quote"] = "Quote"
    text: str
    author: Optional[str] = None
    source: Optional[str] = None
    animation: Optional[str] = None


class CodeBlock(BaseModel):
    type: Literal["Code"] = "Code"
    code: str
    language: Optional[str] = None
    animation: Optional[str] = None


SlideBlock = Annotated[
    Union[
        HeadingBlock,
        SubheadingBlock,
        BulletsBlock,
        MarkdownBlock,
        ImageBlock,
        ChartBlock,
        LiveBlock,
        QuoteBlock,
        CodeBlock,
    ],
    Field(discriminator="type"),
]


class Slide(BaseModel):
    """A slide is an ordered list of typed blocks"""
    id: str
    layout: SlideLayout = SlideLayout.TITLE_BULLETS
    blocks: List[SlideBlock] = Field(default_factory=list)
    notes: str = ""
    cites: List[str] = Field(default_factory=list, description="ResearchSnippet ids")
    order: int = 0
    section_id: Optional[str] = None
    estimated_duration: Optional[int] = Field(None, description="Seconds")

    def blocks_of(self, block_type: str) -> List[Any]:
        return [block for block in self.blocks if block.type == block_type]

    def heading(self) -> Optional[HeadingBlock]:
        headings = self.blocks_of("Heading")
        return headings[0] if headings else None

    def text_items(self) -> List[str]:
        """Every human-readable string on the slide, in block order."""
        items: List[str] = []
        for block in self.blocks:
            if block.type in ("Heading", "Subheading", "Quote"):
                items.append(block.text)
            elif block.type == "Bullets":
                items.extend(block.items)
            elif block.type == "Markdown":
                items.append(block.md)
        return items


class DeckMeta(BaseModel):
    title: str
    subtitle: Optional[str] = None
    author: str = "AI Slide Maker"
    date: str = Field(default_factory=lambda: datetime.utcnow().date().isoformat())
    audience: str
    tone: str
    theme: str = "professional"
    duration: Optional[int] = None
    word_count: Optional[int] = None


class DeckQuality(BaseModel):
    fact_check_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    accessibility_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    readability_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    consistency_score: Optional[float] = Field(None, ge=0.0, le=1.0)


class Deck(BaseModel):
    """Complete slide deck"""
    id: str = Field(default_factory=lambda: _short_id("deck"))
    meta: DeckMeta
    slides: List[Slide]
    research_snippets: List[ResearchSnippet] = Field(default_factory=list)
    quality: Optional[DeckQuality] = None


class ExecutiveSummary(BaseModel):
    slide: Slide
    email_subject: str
    email_body: str
    key_points: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    estimated_read_time: int = Field(1, description="Minutes")


class AdaptationChange(BaseModel):
    type: Literal["slide-removed", "slide-merged", "content-simplified", "tone-adjusted"]
    slide_id: Optional[str] = None
    description: str


class AudienceAdaptation(BaseModel):
    original_audience: str
    target_audience: str
    original_duration: Optional[int] = None
    target_duration: Optional[int] = None
    changes: List[AdaptationChange] = Field(default_factory=list)
    adapted_deck: Deck


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

class AudienceTarget(BaseModel):
    target_audience: str = Field(..., min_length=1, max_length=100)
    target_duration: Optional[int] = Field(None, ge=5, le=180, description="Minutes")


class GenerationRequest(BaseModel):
    """Request to generate a slide deck"""
    topic: str = Field(..., min_length=1, max_length=500)
    audience: str = Field("general", min_length=1, max_length=100)
    tone: str = Field("professional", min_length=1, max_length=50)
    desired_slide_count: int = Field(10, ge=3, le=50)
    theme: str = Field("professional", description="Theme identifier passed to the renderer")
    duration: Optional[int] = Field(None, ge=5, le=180, description="Target duration in minutes")
    policy: Optional[PolicyName] = Field(None, description="Routing policy; the service default when omitted")
    local_only: bool = Field(False, description="Restrict routing to local models")
    sources: List[str] = Field(default_factory=list, description="Source hints for research")
    generate_executive_summary: bool = False
    speaker_notes: bool = False
    enable_visuals: bool = Field(False, description="Plan charts and media for sections")
    enable_live: bool = Field(False, description="Plan live widgets for sections")
    adapt_for_audience: Optional[AudienceTarget] = None

    def resolved_policy(self, default: str = PolicyName.BALANCED.value) -> str:
        return PolicyName(self.policy or default).value

    def task_context(self, default_policy: str = PolicyName.BALANCED.value) -> TaskContext:
        return TaskContext.for_policy(self.resolved_policy(default_policy), local_only=self.local_only)

    @property
    def wants_executive_summary(self) -> bool:
        return self.generate_executive_summary or "executive" in self.audience.lower()


class QualityScores(BaseModel):
    """Per-check scores, in fixed report order."""
    fact_check: float = 0.5
    accessibility: float = 0.5
    readability: float = 0.5
    consistency: float = 0.5


class GenerationMetadata(BaseModel):
    processing_time_ms: int
    policy: str
    quality_scores: QualityScores
    stage_scores: Dict[str, float] = Field(default_factory=dict)
    degraded_stages: List[str] = Field(default_factory=list)
    models_used: Dict[str, str] = Field(default_factory=dict)
    task_queue: Dict[str, int] = Field(default_factory=dict)
    cancelled: bool = False


class GenerationResult(BaseModel):
    deck: Deck
    metadata: GenerationMetadata
    quality_checks: List[QualityCheck] = Field(default_factory=list)
    executive_summary: Optional[ExecutiveSummary] = None
    audience_adaptation: Optional[AudienceAdaptation] = None


class HealthCheck(BaseModel):
    """Health check response model."""
    service: str
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = "0.1.0"
