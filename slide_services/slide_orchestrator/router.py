"""Model router: assigns a model descriptor to an agent role under a policy."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from ..shared.config import Settings, get_settings
from ..shared.errors import RoutingUnavailable
from ..shared.models import BackendKind, ModelDescriptor, Priority, QualityTier, SpeedTier, TaskContext
from .registry import ModelRegistry, PolicyTable

logger = logging.getLogger(__name__)

QUALITY_SCORES = {QualityTier.LOW: 0.3, QualityTier.MEDIUM: 0.6, QualityTier.HIGH: 1.0}
SPEED_SCORES = {SpeedTier.SLOW: 0.3, SpeedTier.MEDIUM: 0.6, SpeedTier.FAST: 1.0}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class ModelRouter:
    """Picks the model for each agent role.

    Resolution order: the first matching rule of the named policy (if its model is
    available), then the best available capable model ranked by the context
    priority. The registry and policy table are never mutated here.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        policies: PolicyTable,
        settings: Optional[Settings] = None,
    ) -> None:
        self.registry = registry
        self.policies = policies
        settings = settings or get_settings()
        self.weights = (
            settings.balanced_quality_weight,
            settings.balanced_speed_weight,
            settings.balanced_cost_weight,
        )

    # ------------------------------------------------------------------
    # Selection ---------------------------------------------------------
    # ------------------------------------------------------------------

    def select_model(self, role: Any, context: TaskContext, policy_name: str = "balanced") -> ModelDescriptor:
        role = _plain(role)
        policy = self.policies.get(policy_name)
        if policy is None:
            logger.warning("⚠️ Policy %s not found, using capability selection", policy_name)
        else:
            for rule in policy.rules:
                if rule.agent_role != role or not self._matches(rule.conditions, context):
                    continue
                model = self.registry.get(rule.model_name)
                if model is not None and self.is_available(model, context):
                    logger.debug("🧭 %s -> %s (policy %s)", role, model.name, policy_name)
                    return model
                # Only the first matching rule counts
                break

        model = self._select_by_capability(role, context)
        if model is None:
            raise RoutingUnavailable(role, policy_name, "no registered model is available in this context")
        logger.debug("🧭 %s -> %s (capability fallback, %s)", role, model.name, context.priority.value)
        return model

    def _select_by_capability(self, role: str, context: TaskContext) -> Optional[ModelDescriptor]:
        available = [m for m in self.registry if self.is_available(m, context)]
        if not available:
            return None
        candidates = [m for m in available if m.supports(role)] or available
        return self.rank(candidates, context.priority)

    def rank(self, candidates: List[ModelDescriptor], priority: Priority) -> ModelDescriptor:
        """Best candidate for the priority. Ties keep registration order."""
        if priority == Priority.QUALITY:
            return max(candidates, key=lambda m: QUALITY_SCORES[m.quality])
        if priority == Priority.SPEED:
            return max(candidates, key=lambda m: SPEED_SCORES[m.speed])
        if priority == Priority.COST:
            return min(candidates, key=lambda m: m.cost_per_token or 0.0)
        return max(candidates, key=self.balanced_score)

    def balanced_score(self, model: ModelDescriptor) -> float:
        quality_weight, speed_weight, cost_weight = self.weights
        # A model without a listed cost is treated as free
        if model.cost_per_token is None:
            cost_score = 1.0
        else:
            cost_score = 1.0 - min(model.cost_per_token * 1000, 1.0)
        return (
            quality_weight * QUALITY_SCORES[model.quality]
            + speed_weight * SPEED_SCORES[model.speed]
            + cost_weight * cost_score
        )

    # ------------------------------------------------------------------
    # Availability ------------------------------------------------------
    # ------------------------------------------------------------------

    def is_available(self, model: ModelDescriptor, context: TaskContext) -> bool:
        if context.local_only and not model.is_local:
            return False
        if model.backend == BackendKind.CLOUD and not model.api_key:
            return False
        return True

    @staticmethod
    def _matches(conditions: Optional[Dict[str, Any]], context: TaskContext) -> bool:
        if not conditions:
            return True
        for key, expected in conditions.items():
            if _plain(getattr(context, key, None)) != _plain(expected):
                return False
        return True

    # ------------------------------------------------------------------
    # Monitoring --------------------------------------------------------
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "models": len(self.registry),
            "model_names": [m.name for m in self.registry],
            "policies": self.policies.names(),
            "weights": dict(zip(("quality", "speed", "cost"), self.weights)),
        }
