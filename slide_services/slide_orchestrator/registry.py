"""Model registry and routing policy tables.

Both tables are filled once at startup and treated as read-only afterwards.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from ..shared.config import Settings, get_settings
from ..shared.models import (
    AgentRole,
    BackendKind,
    LLMProvider,
    ModelDescriptor,
    PolicyName,
    QualityTier,
    RoutingPolicy,
    RoutingRule,
    SpeedTier,
)

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Name -> ModelDescriptor, in registration order."""

    def __init__(self, models: Optional[List[ModelDescriptor]] = None) -> None:
        self._models: Dict[str, ModelDescriptor] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: ModelDescriptor) -> None:
        if model.name in self._models:
            logger.warning("⚠️ Replacing registered model %s", model.name)
        self._models[model.name] = model

    def get(self, name: str) -> Optional[ModelDescriptor]:
        return self._models.get(name)

    def list(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


class PolicyTable:
    """Name -> RoutingPolicy."""

    def __init__(self, policies: Optional[List[RoutingPolicy]] = None) -> None:
        self._policies: Dict[str, RoutingPolicy] = {}
        for policy in policies or []:
            self.register(policy)

    def register(self, policy: RoutingPolicy) -> None:
        self._policies[policy.name] = policy

    def get(self, name: str) -> Optional[RoutingPolicy]:
        return self._policies.get(name)

    def names(self) -> List[str]:
        return list(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

# Ollama catalog: model id, speed, quality, max tokens, temperature
OLLAMA_CATALOG = {
    "llama3.1-70b": ("llama3.1:70b", SpeedTier.SLOW, QualityTier.HIGH, 8000, 0.7),
    "llama3.1-8b": ("llama3.1:8b", SpeedTier.MEDIUM, QualityTier.HIGH, 4000, 0.7),
    "phi3-medium": ("phi3:medium", SpeedTier.MEDIUM, QualityTier.MEDIUM, 4000, 0.7),
    "phi3-mini": ("phi3:mini", SpeedTier.FAST, QualityTier.MEDIUM, 2000, 0.5),
    "gemma2-2b": ("gemma2:2b", SpeedTier.FAST, QualityTier.LOW, 2000, 0.5),
}

OLLAMA_ASSIGNMENTS = {
    AgentRole.RESEARCHER: "llama3.1-70b",
    AgentRole.STRUCTURER: "llama3.1-70b",
    AgentRole.FACT_CHECKER: "llama3.1-70b",
    AgentRole.ACCESSIBILITY_LINTER: "llama3.1-8b",
    AgentRole.SLIDEWRITER: "llama3.1-8b",
    AgentRole.COPY_TIGHTENER: "phi3-medium",
    AgentRole.SPEAKER_NOTES: "phi3-medium",
    AgentRole.EXECUTIVE_SUMMARY: "phi3-medium",
    AgentRole.AUDIENCE_ADAPTER: "phi3-medium",
    AgentRole.READABILITY_ANALYZER: "phi3-medium",
    AgentRole.DATA_VIZ_PLANNER: "phi3-mini",
    AgentRole.MEDIA_FINDER: "phi3-mini",
    AgentRole.LIVE_WIDGET_PLANNER: "phi3-mini",
}


def _roles(*roles: AgentRole) -> tuple:
    return tuple(role.value for role in roles)


def default_models(settings: Optional[Settings] = None) -> List[ModelDescriptor]:
    """The stock cloud and local models, plus optional Ollama and simulated entries."""
    settings = settings or get_settings()
    models = [
        # High-quality model for planning and verification
        ModelDescriptor(
            name="gpt-4-turbo",
            backend=BackendKind.CLOUD,
            provider=LLMProvider.OPENAI,
            model_id="gpt-4-turbo",
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            max_tokens=8000,
            temperature=0.3,
            capabilities=_roles(
                AgentRole.RESEARCHER, AgentRole.STRUCTURER, AgentRole.FACT_CHECKER, AgentRole.COPY_TIGHTENER
            ) + ("general",),
            cost_per_token=0.00003,
            speed=SpeedTier.MEDIUM,
            quality=QualityTier.HIGH,
        ),
        # Fast model for content generation
        ModelDescriptor(
            name="gpt-3.5-turbo",
            backend=BackendKind.CLOUD,
            provider=LLMProvider.OPENAI,
            model_id="gpt-3.5-turbo",
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            max_tokens=4000,
            temperature=0.7,
            capabilities=_roles(AgentRole.SLIDEWRITER, AgentRole.MEDIA_FINDER, AgentRole.SPEAKER_NOTES),
            cost_per_token=0.000002,
            speed=SpeedTier.FAST,
            quality=QualityTier.MEDIUM,
        ),
    ]

    # Anthropic is only offered when a credential is configured
    if settings.anthropic_api_key:
        models.append(
            ModelDescriptor(
                name="claude-3-5-sonnet",
                backend=BackendKind.CLOUD,
                provider=LLMProvider.ANTHROPIC,
                model_id="claude-3-5-sonnet-latest",
                api_key=settings.anthropic_api_key,
                max_tokens=8000,
                temperature=0.4,
                capabilities=_roles(
                    AgentRole.EXECUTIVE_SUMMARY,
                    AgentRole.AUDIENCE_ADAPTER,
                    AgentRole.SPEAKER_NOTES,
                    AgentRole.READABILITY_ANALYZER,
                ),
                cost_per_token=0.000015,
                speed=SpeedTier.MEDIUM,
                quality=QualityTier.HIGH,
            )
        )

    models += [
        # Local models for privacy-sensitive work
        ModelDescriptor(
            name="llama-3.3-70b",
            backend=BackendKind.LOCAL,
            provider=LLMProvider.OLLAMA,
            model_id="llama3.3:70b",
            base_url=settings.local_inference_url,
            max_tokens=4000,
            temperature=0.5,
            capabilities=_roles(AgentRole.RESEARCHER, AgentRole.STRUCTURER, AgentRole.FACT_CHECKER) + ("general",),
            speed=SpeedTier.SLOW,
            quality=QualityTier.HIGH,
        ),
        ModelDescriptor(
            name="phi-4-14b",
            backend=BackendKind.LOCAL,
            provider=LLMProvider.OLLAMA,
            model_id="phi4:14b",
            base_url=settings.local_inference_url,
            max_tokens=2000,
            temperature=0.7,
            capabilities=_roles(AgentRole.SLIDEWRITER, AgentRole.COPY_TIGHTENER, AgentRole.MEDIA_FINDER),
            speed=SpeedTier.FAST,
            quality=QualityTier.MEDIUM,
        ),
    ]

    if settings.enable_ollama_models:
        for name, (model_id, speed, quality, max_tokens, temperature) in OLLAMA_CATALOG.items():
            roles = tuple(role.value for role, assigned in OLLAMA_ASSIGNMENTS.items() if assigned == name)
            models.append(
                ModelDescriptor(
                    name=name,
                    backend=BackendKind.LOCAL,
                    provider=LLMProvider.OLLAMA,
                    model_id=model_id,
                    base_url=settings.local_inference_url,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    capabilities=roles,
                    cost_per_token=0.0,
                    speed=speed,
                    quality=quality,
                )
            )

    if settings.enable_simulated_backend:
        models.append(
            ModelDescriptor(
                name="simulated",
                backend=BackendKind.SIMULATED,
                provider=LLMProvider.SIMULATED,
                model_id="simulated",
                capabilities=("general",),
                cost_per_token=0.0,
                speed=SpeedTier.FAST,
                quality=QualityTier.LOW,
            )
        )

    return models


def default_registry(settings: Optional[Settings] = None) -> ModelRegistry:
    registry = ModelRegistry(default_models(settings))
    logger.info("📚 Model registry ready with %d models", len(registry))
    return registry


def _policy(name: PolicyName, description: str, assignments: Dict[AgentRole, str]) -> RoutingPolicy:
    return RoutingPolicy(
        name=name.value,
        description=description,
        rules=[RoutingRule(agent_role=role.value, model_name=model) for role, model in assignments.items()],
    )


def default_policies() -> PolicyTable:
    """quality, speed, cost, balanced and local-only policies."""
    return PolicyTable(
        [
            _policy(
                PolicyName.QUALITY,
                "Prioritize accuracy and thoroughness",
                {
                    AgentRole.RESEARCHER: "gpt-4-turbo",
                    AgentRole.STRUCTURER: "gpt-4-turbo",
                    AgentRole.FACT_CHECKER: "gpt-4-turbo",
                    AgentRole.SLIDEWRITER: "gpt-3.5-turbo",
                    AgentRole.COPY_TIGHTENER: "gpt-4-turbo",
                    AgentRole.EXECUTIVE_SUMMARY: "claude-3-5-sonnet",
                    AgentRole.AUDIENCE_ADAPTER: "claude-3-5-sonnet",
                },
            ),
            _policy(
                PolicyName.SPEED,
                "Prioritize fast generation",
                {
                    AgentRole.RESEARCHER: "gpt-3.5-turbo",
                    AgentRole.STRUCTURER: "gpt-3.5-turbo",
                    AgentRole.SLIDEWRITER: "gpt-3.5-turbo",
                    AgentRole.COPY_TIGHTENER: "gpt-3.5-turbo",
                },
            ),
            _policy(
                PolicyName.COST,
                "Prefer the cheapest capable model",
                {
                    AgentRole.RESEARCHER: "gpt-3.5-turbo",
                    AgentRole.STRUCTURER: "gpt-3.5-turbo",
                    AgentRole.SLIDEWRITER: "gpt-3.5-turbo",
                    AgentRole.COPY_TIGHTENER: "gpt-3.5-turbo",
                },
            ),
            _policy(
                PolicyName.LOCAL_ONLY,
                "Use only local models for privacy",
                {
                    AgentRole.RESEARCHER: "llama-3.3-70b",
                    AgentRole.STRUCTURER: "llama-3.3-70b",
                    AgentRole.SLIDEWRITER: "phi-4-14b",
                    AgentRole.COPY_TIGHTENER: "phi-4-14b",
                },
            ),
            _policy(
                PolicyName.BALANCED,
                "Balance quality, speed, and cost",
                {
                    AgentRole.RESEARCHER: "gpt-4-turbo",
                    AgentRole.STRUCTURER: "gpt-4-turbo",
                    AgentRole.SLIDEWRITER: "gpt-3.5-turbo",
                    AgentRole.FACT_CHECKER: "gpt-4-turbo",
                    AgentRole.COPY_TIGHTENER: "gpt-3.5-turbo",
                },
            ),
        ]
    )
