import json

import pytest
from httpx import ASGITransport, AsyncClient

from slide_services.shared.models import BackendKind, LLMProvider
from slide_services.slide_orchestrator import api_server
from slide_services.slide_orchestrator.api_server import RateLimiter, create_app

from .fakes import FakeLLM, deck_script, sim_model

REQUEST = {"topic": "Quarterly Sales Review", "desired_slide_count": 10, "policy": "balanced"}


@pytest.fixture
def client_for():
    def build(settings, orchestrator):
        app = create_app(settings, orchestrator)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return build


async def test_health_and_root(client_for, settings, orchestrator):
    async with client_for(settings, orchestrator) as client:
        health = await client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"

        root = (await client.get("/")).json()
        assert root["default_policy"] == "balanced"
        assert "local-only" in root["policies"]
        assert "researcher" in root["agents"]


async def test_status_reports_router_and_queue(client_for, settings, orchestrator):
    async with client_for(settings, orchestrator) as client:
        body = (await client.get("/status")).json()
    assert set(body["task_queue"]) == {"pending", "running", "completed", "failed"}
    assert "model_usage" in body["router"]
    assert "structurer" in body["agents"]


async def test_generate_returns_deck(client_for, settings, orchestrator):
    async with client_for(settings, orchestrator) as client:
        response = await client.post("/generate", json=REQUEST)
    assert response.status_code == 200
    body = response.json()
    slides = body["deck"]["slides"]
    assert len(slides) == 14
    assert slides[0]["id"] == "title-slide"
    assert body["metadata"]["policy"] == "balanced"


async def test_invalid_request_is_400(client_for, settings, orchestrator):
    async with client_for(settings, orchestrator) as client:
        response = await client.post("/generate", json={**REQUEST, "desired_slide_count": 1})
        unknown_policy = await client.post("/generate", json={**REQUEST, "policy": "fastest"})
    assert response.status_code == 400
    assert unknown_policy.status_code == 400


async def test_rate_limit_is_429(client_for, settings, orchestrator):
    limited = settings.model_copy(update={"rate_limit_per_hour": 2})
    async with client_for(limited, orchestrator) as client:
        codes = [(await client.post("/generate", json=REQUEST)).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


async def test_local_only_without_local_model_is_503(client_for, settings, make_orchestrator):
    cloud = sim_model("cloud", backend=BackendKind.CLOUD, provider=LLMProvider.OPENAI, api_key="sk-test")
    orchestrator = make_orchestrator(FakeLLM(deck_script()), models=[cloud])
    async with client_for(settings, orchestrator) as client:
        response = await client.post("/generate", json={**REQUEST, "local_only": True})
    assert response.status_code == 503
    assert response.json()["detail"].startswith("No available model")


async def test_stream_emits_progress_then_final(client_for, settings, orchestrator):
    async with client_for(settings, orchestrator) as client:
        response = await client.post("/generate/stream", json=REQUEST)
    assert response.status_code == 200
    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert events[0]["type"] == "progress"
    assert events[-1]["type"] == "final"
    assert len(events[-1]["result"]["deck"]["slides"]) == 14
    progress = [e["state"]["progress"] for e in events if e["type"] == "progress"]
    assert progress[-1]["percentage"] == 100.0


async def test_stream_reports_routing_failure(client_for, settings, make_orchestrator):
    cloud = sim_model("cloud", backend=BackendKind.CLOUD, provider=LLMProvider.OPENAI, api_key="sk-test")
    orchestrator = make_orchestrator(FakeLLM(deck_script()), models=[cloud])
    async with client_for(settings, orchestrator) as client:
        response = await client.post("/generate/stream", json={**REQUEST, "local_only": True})
    last = json.loads(response.text.splitlines()[-1])
    assert last["type"] == "error"
    assert last["status"] == 503


def test_rate_limiter_window_expires():
    limiter = RateLimiter(limit=1, window=0.0)
    assert limiter.allow("a")
    assert limiter.allow("a")
    strict = RateLimiter(limit=1)
    assert strict.allow("a")
    assert not strict.allow("a")
    assert strict.allow("b")


def test_rate_limiter_forgets_idle_clients(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(api_server.time, "monotonic", lambda: clock[0])
    limiter = RateLimiter(limit=2, window=60.0)
    assert limiter.allow("a")
    assert limiter.allow("b")
    assert len(limiter) == 2

    clock[0] += 61.0
    assert limiter.allow("c")
    assert len(limiter) == 1
    assert limiter.allow("a")
    assert len(limiter) == 2


async def test_root_reports_configured_default_policy(client_for, settings, orchestrator):
    configured = settings.model_copy(update={"default_policy": "local-only", "debug": True})
    assert create_app(configured, orchestrator).debug
    async with client_for(configured, orchestrator) as client:
        root = (await client.get("/")).json()
    assert root["default_policy"] == "local-only"
