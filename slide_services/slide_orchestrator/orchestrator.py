"""Multi-model orchestrator: routes each agent role to a model and runs the deck pipeline.

The pipeline is a fixed LangGraph ``StateGraph`` over ``DeckState``:

    research -> structure -> content -> enrichment -> quality -> assembly -> [executive_summary]

Every stage degrades to its agent's default payload on failure. Only a routing
failure in the structure stage aborts the request.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Dict, List, Optional, Tuple

from langgraph.graph import END, START, StateGraph

from ..shared.config import Settings, get_settings
from ..shared.errors import ModelUnavailable, RoutingUnavailable
from ..shared.llm_client import ClientFactory
from ..shared.models import (
    AgentOutput,
    AgentRole,
    AgentTask,
    AudienceAdaptation,
    BulletsBlock,
    Deck,
    DeckMeta,
    DeckOutline,
    DeckQuality,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    HeadingBlock,
    MarkdownBlock,
    OutlineSection,
    Priority,
    QualityCheck,
    QualityScores,
    Slide,
    SlideLayout,
    SubheadingBlock,
    TaskContext,
)
from .agent_base import AgentBase, CancellationToken, ModelBinding
from .agents import build_agent_registry
from .agents.accessibility_linter import AccessibilityInput
from .agents.audience_adapter import AdaptInput
from .agents.copy_tightener import TightenInput
from .agents.enrichment import EnrichmentInput
from .agents.executive_summary import SummaryInput
from .agents.fact_checker import FactCheckInput
from .agents.readability_analyzer import ReadabilityInput
from .agents.researcher import ResearchInput
from .agents.slidewriter import SlideContext, SlidewriterInput, WordBudgets, fallback_slides
from .agents.structurer import StructureInput
from .registry import ModelRegistry, PolicyTable, default_policies, default_registry
from .router import ModelRouter
from .state import DeckState, apply_update, initial_state
from .tasks import TaskTracker

logger = logging.getLogger(__name__)

STAGES = ("research", "structure", "content", "enrichment", "quality", "assembly", "executive_summary")

ENRICHMENT_ROLES = (
    AgentRole.SPEAKER_NOTES,
    AgentRole.DATA_VIZ_PLANNER,
    AgentRole.MEDIA_FINDER,
    AgentRole.LIVE_WIDGET_PLANNER,
)


def _bookkeeping(stage: str, output: AgentOutput) -> Dict[str, Any]:
    update: Dict[str, Any] = {"stage_scores": {stage: output.quality_score}}
    if output.model_name:
        update["models_used"] = {output.role: output.model_name}
    if output.degraded:
        update["degraded_stages"] = [stage]
    return update


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.5


class MultiModelOrchestrator:
    """Coordinates the agents and the router.

    Every request runs against its own task ledger, carried in the pipeline state.
    Finished ledgers are folded into ``history``, which keeps at most
    ``task_history_limit`` tasks for status queries.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
        policies: Optional[PolicyTable] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else default_registry(self.settings)
        self.policies = policies if policies is not None else default_policies()
        self.router = ModelRouter(self.registry, self.policies, self.settings)
        self.clients = client_factory or ClientFactory(self.settings)
        self.history = TaskTracker(max_tasks=self.settings.task_history_limit)
        self._active: "weakref.WeakSet[TaskTracker]" = weakref.WeakSet()
        self.agents: Dict[AgentRole, AgentBase] = build_agent_registry(self.settings)
        self.graph = self._build_graph()
        logger.info(
            f"🚀 Orchestrator ready with {len(self.agents)} agents and {len(self.registry)} models"
        )

    # ------------------------------------------------------------------
    # Agent dispatch ----------------------------------------------------
    # ------------------------------------------------------------------

    async def run_agent(
        self,
        role: AgentRole,
        payload: Any,
        context: TaskContext,
        policy: str,
        cancel_token: Optional[CancellationToken] = None,
        tracker: Optional[TaskTracker] = None,
    ) -> AgentOutput:
        """Route ``role`` to a model and execute its agent.

        Raises RoutingUnavailable when no model can serve the role. A client that
        cannot be built degrades the agent like any other unavailable model.
        """
        agent = self.agents[role]
        descriptor = self.router.select_model(role, context, policy)
        try:
            client = self.clients.for_model(descriptor)
        except ModelUnavailable as e:
            logger.error(f"❌ No client for {descriptor.name}: {e}")
            return agent.fallback(payload, e, model_name=descriptor.name)
        binding = ModelBinding(descriptor=descriptor, client=client, cancel_token=cancel_token, tracker=tracker)
        return await agent.execute(payload, binding)

    async def _run_or_degrade(
        self,
        role: AgentRole,
        payload: Any,
        context: TaskContext,
        policy: str,
        cancel_token: Any,
        tracker: Optional[TaskTracker] = None,
    ) -> AgentOutput:
        try:
            return await self.run_agent(role, payload, context, policy, cancel_token, tracker)
        except RoutingUnavailable as e:
            logger.warning(f"⚠️ {e}; {role.value} falls back to its default output")
            return self.agents[role].fallback(payload, e)

    # ------------------------------------------------------------------
    # Pipeline stages ---------------------------------------------------
    # ------------------------------------------------------------------

    async def research(self, state: DeckState) -> Dict[str, Any]:
        logger.info("🔬 Executing RESEARCH stage...")
        request = state["request"]
        payload = ResearchInput(
            topic=request.topic,
            audience=request.audience,
            tone=request.tone,
            sources=request.sources,
            max_snippets=self.settings.research_max_snippets,
            min_confidence=self.settings.research_min_confidence,
        )
        try:
            output = await self.run_agent(
                AgentRole.RESEARCHER,
                payload,
                state["context"],
                state["policy"],
                state.get("cancel_token"),
                state.get("tracker"),
            )
        except RoutingUnavailable as e:
            logger.warning(f"⚠️ {e}; continuing without research")
            return {"snippets": [], "stage_scores": {"research": 0.0}, "degraded_stages": ["research"]}
        snippets = output.payload.snippets
        logger.info(f"✅ Research stage complete. Collected {len(snippets)} snippets.")
        return {"snippets": snippets, **_bookkeeping("research", output)}

    async def structure(self, state: DeckState) -> Dict[str, Any]:
        logger.info("🧭 Executing STRUCTURE stage...")
        request = state["request"]
        payload = StructureInput(
            topic=request.topic,
            audience=request.audience,
            tone=request.tone,
            desired_slide_count=request.desired_slide_count,
            research_snippets=state.get("snippets", []),
            theme=request.theme,
            duration=request.duration,
        )
        # RoutingUnavailable propagates: there is no deck without an outline
        output = await self.run_agent(
            AgentRole.STRUCTURER,
            payload,
            state["context"],
            state["policy"],
            state.get("cancel_token"),
            state.get("tracker"),
        )
        outline: DeckOutline = output.payload.outline
        logger.info(f"✅ Structure stage complete. {len(outline.sections)} sections, {outline.total_slides} slides.")
        return {"outline": outline, **_bookkeeping("structure", output)}

    async def content(self, state: DeckState) -> Dict[str, Any]:
        logger.info("📝 Executing CONTENT stage...")
        request = state["request"]
        outline = state["outline"]
        tasks = []
        offset = 0
        for section in outline.sections:
            payload = SlidewriterInput(
                section=section,
                research_snippets=state.get("snippets", []),
                context=SlideContext(
                    topic=request.topic,
                    audience=request.audience,
                    tone=request.tone,
                    theme=request.theme,
                    slide_index=offset,
                    total_slides=outline.total_slides,
                ),
                word_budgets=WordBudgets(title_max=8, bullet_max=12, bullets_per_slide=6),
            )
            offset += section.est_slides
            tasks.append(
                self._run_or_degrade(
                    AgentRole.SLIDEWRITER,
                    payload,
                    state["context"],
                    state["policy"],
                    state.get("cancel_token"),
                    state.get("tracker"),
                )
            )

        # Fan-in barrier: every section resolves before assembly continues
        results = await asyncio.gather(*tasks, return_exceptions=True)

        slides: List[Slide] = []
        scores: List[float] = []
        degraded = False
        models: Dict[str, str] = {}
        for section, result in zip(outline.sections, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ Section {section.id} failed: {result}")
                slides.extend(fallback_slides(section))
                scores.append(0.5)
                degraded = True
                continue
            slides.extend(result.payload.slides)
            scores.append(result.quality_score)
            degraded = degraded or result.degraded
            if result.model_name:
                models[result.role] = result.model_name

        logger.info(f"✅ Content stage complete. {len(slides)} slides drafted.")
        update: Dict[str, Any] = {"slides": slides, "stage_scores": {"content": _mean(scores)}, "models_used": models}
        if degraded:
            update["degraded_stages"] = ["content"]
        return update

    def _enrichment_roles(self, request: GenerationRequest) -> List[AgentRole]:
        wanted = {
            AgentRole.SPEAKER_NOTES: request.speaker_notes,
            AgentRole.DATA_VIZ_PLANNER: request.enable_visuals,
            AgentRole.MEDIA_FINDER: request.enable_visuals,
            AgentRole.LIVE_WIDGET_PLANNER: request.enable_live,
        }
        return [role for role in ENRICHMENT_ROLES if wanted[role]]

    async def enrichment(self, state: DeckState) -> Dict[str, Any]:
        request = state["request"]
        roles = self._enrichment_roles(request)
        if not roles:
            return {"stage_scores": {}}
        logger.info(f"🎨 Executing ENRICHMENT stage ({', '.join(r.value for r in roles)})...")
        base = state["slides"]
        payload = EnrichmentInput(
            slides=base,
            topic=request.topic,
            audience=request.audience,
            tone=request.tone,
            theme=request.theme,
            duration=request.duration,
            sections=state["outline"].sections,
        )
        context, policy = state["context"], state["policy"]
        token, tracker = state.get("cancel_token"), state.get("tracker")
        results = await asyncio.gather(
            *[self._run_or_degrade(role, payload, context, policy, token, tracker) for role in roles],
            return_exceptions=True,
        )

        merged = {slide.id: slide.model_copy(deep=True) for slide in base}
        originals = {slide.id: len(slide.blocks) for slide in base}
        scores: List[float] = []
        degraded = False
        models: Dict[str, str] = {}
        for role, result in zip(roles, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ {role.value} failed: {result}")
                scores.append(0.5)
                degraded = True
                continue
            scores.append(result.quality_score)
            degraded = degraded or result.degraded
            if result.model_name:
                models[result.role] = result.model_name
            for enriched in result.payload.slides:
                target = merged.get(enriched.id)
                if target is None:
                    continue
                if role == AgentRole.SPEAKER_NOTES:
                    target.notes = enriched.notes
                    target.estimated_duration = enriched.estimated_duration
                else:
                    target.blocks.extend(enriched.blocks[originals[enriched.id]:])

        update: Dict[str, Any] = {
            "slides": [merged[slide.id] for slide in base],
            "stage_scores": {"enrichment": _mean(scores)},
            "models_used": models,
        }
        if degraded:
            update["degraded_stages"] = ["enrichment"]
        return update

    async def quality(self, state: DeckState) -> Dict[str, Any]:
        logger.info("🔍 Executing QUALITY stage...")
        request = state["request"]
        context, policy = state["context"], state["policy"]
        token, tracker = state.get("cancel_token"), state.get("tracker")
        degraded = False
        models: Dict[str, str] = {}

        tightened = await self._run_or_degrade(
            AgentRole.COPY_TIGHTENER,
            TightenInput(slides=state["slides"], audience=request.audience, tone=request.tone),
            context,
            policy,
            token,
            tracker,
        )
        if tightened.degraded:
            slides = state["slides"]
            consistency_checks: List[QualityCheck] = []
            degraded = True
        else:
            slides = tightened.payload.slides
            consistency_checks = list(tightened.payload.changes)
        if tightened.model_name:
            models[tightened.role] = tightened.model_name

        checkers: List[Tuple[AgentRole, Any]] = [
            (AgentRole.FACT_CHECKER, FactCheckInput(slides=slides, research_snippets=state.get("snippets", []))),
            (AgentRole.ACCESSIBILITY_LINTER, AccessibilityInput(slides=slides, theme=request.theme)),
            (AgentRole.READABILITY_ANALYZER, ReadabilityInput(slides=slides, audience=request.audience)),
        ]
        results = await asyncio.gather(
            *[self._run_or_degrade(role, payload, context, policy, token, tracker) for role, payload in checkers],
            return_exceptions=True,
        )

        scores: List[float] = []
        checks: List[QualityCheck] = []
        for (role, _), result in zip(checkers, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ {role.value} failed: {result}")
                scores.append(0.5)
                degraded = True
                continue
            if result.degraded:
                # A degraded checker reports nothing
                scores.append(0.5)
                degraded = True
            else:
                scores.append(result.quality_score)
                checks.extend(result.payload.checks)
            if result.model_name:
                models[result.role] = result.model_name

        quality_scores = QualityScores(
            fact_check=scores[0],
            accessibility=scores[1],
            readability=scores[2],
            consistency=tightened.quality_score,
        )
        logger.info(f"✅ Quality stage complete. {len(checks) + len(consistency_checks)} findings.")
        update: Dict[str, Any] = {
            "slides": slides,
            "quality_checks": checks + consistency_checks,
            "quality_scores": quality_scores,
            "stage_scores": {"quality": _mean(list(quality_scores.model_dump().values()))},
            "models_used": models,
        }
        if degraded:
            update["degraded_stages"] = ["quality"]
        return update

    async def assembly(self, state: DeckState) -> Dict[str, Any]:
        logger.info("🧩 Executing ASSEMBLY stage...")
        request = state["request"]
        outline = state["outline"]
        scores: QualityScores = state.get("quality_scores") or QualityScores()

        slides = [self._title_slide(outline), self._agenda_slide(outline.sections)]
        slides.extend(state.get("slides", []))
        slides.append(self._conclusion_slide(outline))
        if outline.references:
            slides.append(self._references_slide(outline.references))
        for order, slide in enumerate(slides):
            slide.order = order

        deck = Deck(
            meta=DeckMeta(
                title=outline.title,
                subtitle=outline.subtitle,
                audience=request.audience,
                tone=request.tone,
                theme=request.theme,
                duration=outline.estimated_duration,
                word_count=outline.word_count,
            ),
            slides=slides,
            research_snippets=state.get("snippets", []),
            quality=DeckQuality(
                fact_check_score=scores.fact_check,
                accessibility_score=scores.accessibility,
                readability_score=scores.readability,
                consistency_score=scores.consistency,
            ),
        )
        logger.info(f"✅ Assembled deck {deck.id} with {len(slides)} slides.")
        return {"deck": deck}

    async def executive_summary(self, state: DeckState) -> Dict[str, Any]:
        logger.info("📨 Executing EXECUTIVE SUMMARY stage...")
        request = state["request"]
        payload = SummaryInput(deck=state["deck"], audience=request.audience, tone=request.tone)
        context = state["context"].with_priority(Priority.QUALITY)
        output = await self._run_or_degrade(
            AgentRole.EXECUTIVE_SUMMARY,
            payload,
            context,
            state["policy"],
            state.get("cancel_token"),
            state.get("tracker"),
        )
        return {"executive_summary": output.payload, **_bookkeeping("executive_summary", output)}

    @staticmethod
    def _title_slide(outline: DeckOutline) -> Slide:
        blocks: List[Any] = [HeadingBlock(text=outline.title, level=1)]
        if outline.subtitle:
            blocks.append(SubheadingBlock(text=outline.subtitle))
        return Slide(id="title-slide", layout=SlideLayout.TITLE, blocks=blocks)

    @staticmethod
    def _agenda_slide(sections: List[OutlineSection]) -> Slide:
        return Slide(
            id="agenda-slide",
            layout=SlideLayout.TITLE_BULLETS,
            blocks=[HeadingBlock(text="Agenda", level=1), BulletsBlock(items=[s.title for s in sections])],
        )

    @staticmethod
    def _conclusion_slide(outline: DeckOutline) -> Slide:
        blocks: List[Any] = [HeadingBlock(text="Conclusion", level=1)]
        if outline.conclusion:
            blocks.append(MarkdownBlock(md=outline.conclusion))
        else:
            blocks.append(BulletsBlock(items=[s.title for s in outline.sections]))
        return Slide(id="conclusion-slide", layout=SlideLayout.TITLE_BULLETS, blocks=blocks)

    @staticmethod
    def _references_slide(references: List[str]) -> Slide:
        return Slide(
            id="references-slide",
            layout=SlideLayout.TITLE_BULLETS,
            blocks=[HeadingBlock(text="References", level=1), BulletsBlock(items=references[:6])],
        )

    # ------------------------------------------------------------------
    # Graph ---------------------------------------------------------------
    # ------------------------------------------------------------------

    def _build_graph(self):
        graph = StateGraph(DeckState)
        graph.add_node("research", self.research)
        graph.add_node("structure", self.structure)
        graph.add_node("content", self.content)
        graph.add_node("enrichment", self.enrichment)
        graph.add_node("quality", self.quality)
        graph.add_node("assembly", self.assembly)
        graph.add_node("executive_summary", self.executive_summary)

        graph.add_edge(START, "research")
        graph.add_edge("research", "structure")
        graph.add_edge("structure", "content")
        graph.add_edge("content", "enrichment")
        graph.add_edge("enrichment", "quality")
        graph.add_edge("quality", "assembly")
        graph.add_conditional_edges(
            "assembly",
            lambda state: "executive_summary" if state["request"].wants_executive_summary else END,
            {"executive_summary": "executive_summary", END: END},
        )
        graph.add_edge("executive_summary", END)
        return graph.compile()

    async def run_stage(self, name: str, state: DeckState) -> DeckState:
        """Run one stage outside the graph and fold its update into ``state``."""
        if name not in STAGES:
            raise ValueError(f"Unknown stage: {name}")
        update = await getattr(self, name)(state)
        return apply_update(state, update)


    # ------------------------------------------------------------------
    # Public API ----------------------------------------------------------
    # ------------------------------------------------------------------

    def new_state(self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None) -> DeckState:
        """Initial pipeline state with its own task ledger and the resolved policy."""
        state = initial_state(request, cancel_token, default_policy=self.settings.default_policy)
        self._active.add(state["tracker"])
        return state

    def retire(self, tracker: Optional[TaskTracker]) -> None:
        """Fold a finished request's ledger into the bounded history."""
        if tracker is None:
            return
        self._active.discard(tracker)
        self.history.absorb(tracker)

    async def generate_presentation(
        self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None
    ) -> GenerationResult:
        """Run the full pipeline. Raises RoutingUnavailable only from the structure stage."""
        state = self.new_state(request, cancel_token)
        logger.info(f"🎬 Generating presentation on '{request.topic}' ({state['policy']} policy)")
        try:
            final = await self.graph.ainvoke(state)
        except RoutingUnavailable:
            self.retire(state["tracker"])
            raise
        return await self.build_result(final)

    async def build_result(self, state: DeckState) -> GenerationResult:
        """Turn a finished pipeline state into the result, adapting it when asked.

        The request's task ledger is retired afterwards.
        """
        request = state["request"]
        token = state.get("cancel_token")
        tracker = state.get("tracker")
        adaptation: Optional[AudienceAdaptation] = state.get("audience_adaptation")
        if adaptation is None and request.adapt_for_audience is not None:
            target = request.adapt_for_audience
            adaptation = await self.adapt_for_audience(
                state["deck"],
                target.target_audience,
                target.target_duration,
                policy=state["policy"],
                local_only=request.local_only,
                cancel_token=token,
                tracker=tracker,
            )

        elapsed_ms = int((time.perf_counter() - state["started_at"]) * 1000)
        metadata = GenerationMetadata(
            processing_time_ms=elapsed_ms,
            policy=state["policy"],
            quality_scores=state.get("quality_scores") or QualityScores(),
            stage_scores=state.get("stage_scores", {}),
            degraded_stages=list(dict.fromkeys(state.get("degraded_stages", []))),
            models_used=state.get("models_used", {}),
            task_queue=tracker.queue_status() if tracker is not None else {},
            cancelled=bool(token is not None and token.cancelled),
        )
        self.retire(tracker)
        logger.info(f"🏁 Presentation ready in {elapsed_ms}ms")
        return GenerationResult(
            deck=state["deck"],
            metadata=metadata,
            quality_checks=state.get("quality_checks", []),
            executive_summary=state.get("executive_summary"),
            audience_adaptation=adaptation,
        )

    async def adapt_for_audience(
        self,
        deck: Deck,
        target_audience: str,
        target_duration: Optional[int] = None,
        target_tone: Optional[str] = None,
        policy: Optional[str] = None,
        local_only: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        tracker: Optional[TaskTracker] = None,
    ) -> AudienceAdaptation:
        policy = policy or self.settings.default_policy
        payload = AdaptInput(
            deck=deck, target_audience=target_audience, target_tone=target_tone, target_duration=target_duration
        )
        context = TaskContext.for_policy(policy, local_only=local_only)
        # A standalone adaptation is its own request
        own = tracker if tracker is not None else TaskTracker()
        output = await self._run_or_degrade(AgentRole.AUDIENCE_ADAPTER, payload, context, policy, cancel_token, own)
        if tracker is None:
            self.retire(own)
        return output.payload

    def agent_status(self) -> Dict[str, Any]:
        return {
            role.value: {
                "name": agent.name,
                "description": agent.config.description,
                "capabilities": agent.config.capabilities,
                "max_retries": agent.config.max_retries,
                "timeout": agent.config.timeout,
            }
            for role, agent in self.agents.items()
        }

    def queue_status(self) -> Dict[str, int]:
        """Task counts over the retained history plus requests still in flight."""
        totals = self.history.queue_status()
        for tracker in list(self._active):
            for status, count in tracker.queue_status().items():
                totals[status] += count
        return totals

    def router_status(self) -> Dict[str, Any]:
        status = self.router.status()
        status["model_usage"] = self.history.model_usage()
        status["task_queue"] = self.queue_status()
        return status

    def task_status(self, task_id: str) -> Optional[AgentTask]:
        task = self.history.get(task_id)
        if task is not None:
            return task
        for tracker in list(self._active):
            task = tracker.get(task_id)
            if task is not None:
                return task
        return None

    async def aclose(self) -> None:
        await self.clients.aclose()
