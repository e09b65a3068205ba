import pytest

from slide_services.shared.config import Settings
from slide_services.shared.llm_client import ClientFactory
from slide_services.shared.models import GenerationRequest
from slide_services.slide_orchestrator.orchestrator import MultiModelOrchestrator
from slide_services.slide_orchestrator.registry import ModelRegistry, default_policies

from .fakes import FakeLLM, deck_script, sim_model


@pytest.fixture
def settings():
    return Settings(
        openai_api_key=None,
        anthropic_api_key=None,
        agent_max_retries=3,
        agent_timeout_seconds=2.0,
        retry_base_delay=0.01,
        rate_limit_per_hour=10,
    )


@pytest.fixture
def fake_llm():
    return FakeLLM(deck_script())


@pytest.fixture
def make_orchestrator(settings):
    """Orchestrator whose only model is a simulated one answered by ``llm``."""
    created = []

    def build(llm, models=None, **overrides):
        models = models if models is not None else [sim_model()]
        current = settings.model_copy(update=overrides) if overrides else settings
        factory = ClientFactory(current)
        for model in models:
            factory.register(model.name, llm)
        orchestrator = MultiModelOrchestrator(
            settings=current,
            registry=ModelRegistry(models),
            policies=default_policies(),
            client_factory=factory,
        )
        created.append(orchestrator)
        return orchestrator

    return build


@pytest.fixture
def orchestrator(make_orchestrator, fake_llm):
    return make_orchestrator(fake_llm)


@pytest.fixture
def sales_request():
    return GenerationRequest(topic="Quarterly Sales Review", desired_slide_count=10, policy="balanced")
