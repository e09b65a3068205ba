"""Dependency-gated step executor with progress snapshots for incremental UIs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from ..shared.models import GenerationRequest
from .state import DeckState

logger = logging.getLogger(__name__)

StepRunner = Callable[[], Awaitable[None]]
Listener = Callable[["ExecutionState"], None]


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStep(BaseModel):
    id: str
    title: str
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    parallel: bool = False
    status: StepStatus = StepStatus.PENDING


class ExecutionLog(BaseModel):
    id: str = Field(default_factory=lambda: f"log-{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    step_id: str
    message: str
    type: Literal["info", "success", "warning", "error"] = "info"


class ExecutionProgress(BaseModel):
    completed: int = 0
    total: int = 0
    percentage: float = 0.0


class ExecutionState(BaseModel):
    steps: List[PlanStep]
    current_steps: List[str] = Field(default_factory=list)
    is_executing: bool = False
    paused: bool = False
    progress: ExecutionProgress = Field(default_factory=ExecutionProgress)
    logs: List[ExecutionLog] = Field(default_factory=list)


class StepExecutor:
    """Runs plan steps once their prerequisites complete.

    One step runs at a time, except that all eligible steps flagged ``parallel``
    are dispatched together. The listener receives a deep copy of the state after
    every transition. A failed step is never retried and its dependents stay pending.
    """

    def __init__(
        self,
        steps: List[PlanStep],
        runners: Dict[str, StepRunner],
        listener: Optional[Listener] = None,
    ) -> None:
        missing = [step.id for step in steps if step.id not in runners]
        if missing:
            raise ValueError(f"No runner for steps: {', '.join(missing)}")
        self.state = ExecutionState(steps=[step.model_copy() for step in steps])
        self.state.progress.total = len(steps)
        self._runners = runners
        self._listener = listener
        self._resume = asyncio.Event()
        self._resume.set()

    # ------------------------------------------------------------------
    # Control -----------------------------------------------------------
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop dispatching new steps; a running step finishes normally."""
        self._resume.clear()
        self.state.paused = True
        self._log("execution", "Execution paused", "warning")
        self._notify()

    def resume(self) -> None:
        self._resume.set()
        self.state.paused = False
        self._log("execution", "Execution resumed")
        self._notify()

    def snapshot(self) -> ExecutionState:
        return self.state.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Execution ---------------------------------------------------------
    # ------------------------------------------------------------------

    def eligible_steps(self) -> List[PlanStep]:
        done = {step.id for step in self.state.steps if step.status == StepStatus.COMPLETED}
        return [
            step
            for step in self.state.steps
            if step.status == StepStatus.PENDING and all(dep in done for dep in step.dependencies)
        ]

    async def run(self) -> ExecutionState:
        self.state.is_executing = True
        self._notify()
        try:
            while True:
                await self._resume.wait()
                eligible = self.eligible_steps()
                if not eligible:
                    break
                batch = [step for step in eligible if step.parallel] or eligible[:1]
                await asyncio.gather(*(self._run_step(step) for step in batch))
        finally:
            self.state.is_executing = False
            self.state.current_steps = []
            self._notify()
        return self.snapshot()

    async def _run_step(self, step: PlanStep) -> None:
        step.status = StepStatus.IN_PROGRESS
        self.state.current_steps.append(step.id)
        self._log(step.id, f"Starting: {step.title}")
        self._notify()
        try:
            await self._runners[step.id]()
        except Exception as e:
            logger.error(f"❌ Step {step.id} failed: {e}")
            step.status = StepStatus.FAILED
            self._log(step.id, f"Error in {step.title}: {e}", "error")
        else:
            step.status = StepStatus.COMPLETED
            self._log(step.id, f"Completed: {step.title}", "success")
        finally:
            self.state.current_steps.remove(step.id)
            self._update_progress()
            self._notify()

    def _update_progress(self) -> None:
        progress = self.state.progress
        progress.completed = sum(1 for step in self.state.steps if step.status == StepStatus.COMPLETED)
        progress.percentage = round(100.0 * progress.completed / progress.total, 1) if progress.total else 0.0

    def _log(self, step_id: str, message: str, kind: str = "info") -> None:
        self.state.logs.append(ExecutionLog(step_id=step_id, message=message, type=kind))

    def _notify(self) -> None:
        if self._listener is not None:
            self._listener(self.snapshot())


# ---------------------------------------------------------------------------
# Deck generation plan -------------------------------------------------------
# ---------------------------------------------------------------------------

_DECK_STEPS = [
    ("research", "Research the topic", "Gather citeable snippets"),
    ("structure", "Plan the deck", "Outline sections and distribute slides"),
    ("content", "Write slides", "Draft every section concurrently"),
    ("enrichment", "Enrich slides", "Speaker notes, charts, media and live widgets"),
    ("quality", "Review quality", "Tighten copy, then fact, accessibility and readability checks"),
    ("assembly", "Assemble the deck", "Title, agenda, content, conclusion and references"),
]


def deck_generation_steps(
    orchestrator, request: GenerationRequest, cancel_token=None
) -> Tuple[List[PlanStep], Dict[str, StepRunner], DeckState]:
    """Step plan over the orchestrator's stages, sharing one pipeline state.

    The summary and audience adaptation steps both follow assembly and run
    together when both are requested.
    """
    state = orchestrator.new_state(request, cancel_token)
    steps: List[PlanStep] = []
    runners: Dict[str, StepRunner] = {}

    def stage_runner(name: str) -> StepRunner:
        async def run() -> None:
            await orchestrator.run_stage(name, state)

        return run

    previous: Optional[str] = None
    for step_id, title, description in _DECK_STEPS:
        steps.append(
            PlanStep(id=step_id, title=title, description=description, dependencies=[previous] if previous else [])
        )
        runners[step_id] = stage_runner(step_id)
        previous = step_id

    if request.wants_executive_summary:
        steps.append(
            PlanStep(
                id="executive_summary",
                title="Write the executive summary",
                dependencies=["assembly"],
                parallel=True,
            )
        )
        runners["executive_summary"] = stage_runner("executive_summary")

    if request.adapt_for_audience is not None:
        target = request.adapt_for_audience

        async def adapt() -> None:
            state["audience_adaptation"] = await orchestrator.adapt_for_audience(
                state["deck"],
                target.target_audience,
                target.target_duration,
                policy=state["policy"],
                local_only=request.local_only,
                cancel_token=cancel_token,
                tracker=state["tracker"],
            )

        steps.append(
            PlanStep(
                id="audience_adaptation",
                title=f"Adapt for {target.target_audience}",
                dependencies=["assembly"],
                parallel=True,
            )
        )
        runners["audience_adaptation"] = adapt

    return steps, runners, state
