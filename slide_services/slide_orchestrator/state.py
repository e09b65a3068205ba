"""State definitions and reducers for the slide orchestrator LangGraph workflow."""

from __future__ import annotations

import operator
import time
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from ..shared.models import (
    AudienceAdaptation,
    Deck,
    DeckOutline,
    ExecutiveSummary,
    GenerationRequest,
    PolicyName,
    QualityCheck,
    QualityScores,
    ResearchSnippet,
    Slide,
    TaskContext,
)
from .tasks import TaskTracker


def merge_dicts(left: Optional[Dict[str, Any]], right: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reducer: later stages add keys, never drop earlier ones."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


# ---------------------------------------------------------------------------
# TypedDict representing the shared state that flows through the LangGraph.
# ---------------------------------------------------------------------------

class DeckState(TypedDict, total=False):
    """Shared state object passed between LangGraph nodes.

    Fields are grouped by pipeline phase; not all keys are present at all times.
    """

    # Request context ---------------------------------------------------------
    request: GenerationRequest
    context: TaskContext
    policy: str
    cancel_token: Any
    tracker: TaskTracker
    started_at: float

    # Research phase ----------------------------------------------------------
    snippets: List[ResearchSnippet]

    # Structure phase ---------------------------------------------------------
    outline: DeckOutline

    # Content, enrichment and quality phases ----------------------------------
    slides: List[Slide]
    quality_checks: List[QualityCheck]
    quality_scores: QualityScores

    # Assembly phase ----------------------------------------------------------
    deck: Deck
    executive_summary: Optional[ExecutiveSummary]
    audience_adaptation: Optional[AudienceAdaptation]

    # Control & meta -----------------------------------------------------------
    stage_scores: Annotated[Dict[str, float], merge_dicts]
    models_used: Annotated[Dict[str, str], merge_dicts]
    degraded_stages: Annotated[List[str], operator.add]


# Keys the graph merges with a reducer instead of overwriting.
REDUCERS = {
    "stage_scores": merge_dicts,
    "models_used": merge_dicts,
    "degraded_stages": operator.add,
}


def apply_update(state: DeckState, update: Dict[str, Any]) -> DeckState:
    """Fold a node's partial update into ``state`` the way the graph does."""
    for key, value in update.items():
        reducer = REDUCERS.get(key)
        state[key] = reducer(state.get(key), value) if reducer else value  # type: ignore[literal-required]
    return state


# ---------------------------------------------------------------------------
# Helper initialiser ---------------------------------------------------------
# ---------------------------------------------------------------------------


def initial_state(
    request: GenerationRequest,
    cancel_token: Any = None,
    default_policy: str = PolicyName.BALANCED.value,
) -> DeckState:
    """Return a minimally populated initial state dictionary with a fresh task ledger."""
    return DeckState(  # type: ignore[call-arg]
        request=request,
        context=request.task_context(default_policy),
        policy=request.resolved_policy(default_policy),
        cancel_token=cancel_token,
        tracker=TaskTracker(),
        started_at=time.perf_counter(),
        snippets=[],
        slides=[],
        quality_checks=[],
        quality_scores=QualityScores(),
        executive_summary=None,
        stage_scores={},
        models_used={},
        degraded_stages=[],
    )
