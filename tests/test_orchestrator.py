import pytest

from slide_services.shared.errors import RoutingUnavailable
from slide_services.shared.models import (
    AgentRole,
    AudienceTarget,
    BackendKind,
    CheckType,
    GenerationRequest,
    LLMProvider,
    PolicyName,
    QualityTier,
    TaskStatus,
)
from slide_services.slide_orchestrator.agent_base import CancellationToken

from .fakes import SECTION_TITLES, FakeLLM, deck_script, sim_model

FIXED_SLIDES = ("title-slide", "agenda-slide", "conclusion-slide", "references-slide")


def content_slides(deck):
    return [s for s in deck.slides if s.id not in FIXED_SLIDES]


async def test_quarterly_sales_review_end_to_end(orchestrator, sales_request):
    result = await orchestrator.generate_presentation(sales_request)
    deck = result.deck

    assert [s.id for s in deck.slides[:2]] == ["title-slide", "agenda-slide"]
    assert deck.slides[-1].id == "references-slide"
    assert deck.slides[-2].id == "conclusion-slide"
    assert len(deck.slides) == 14
    assert [s.order for s in deck.slides] == list(range(len(deck.slides)))
    assert len(content_slides(deck)) == 10

    agenda = deck.slides[1].blocks_of("Bullets")[0].items
    assert agenda == SECTION_TITLES
    assert deck.meta.title == "Quarterly Sales Review Q3"
    assert deck.research_snippets
    assert all(s.confidence >= 0.6 for s in deck.research_snippets)

    for s in content_slides(deck):
        assert set(s.cites) <= {"snippet-1", "snippet-2", "snippet-3", "snippet-4", "snippet-5"}

    metadata = result.metadata
    assert metadata.policy == "balanced"
    assert metadata.degraded_stages == []
    assert metadata.models_used[AgentRole.STRUCTURER.value] == "sim"
    assert list(metadata.quality_scores.model_dump()) == ["fact_check", "accessibility", "readability", "consistency"]
    assert deck.quality.consistency_score == metadata.quality_scores.consistency
    assert metadata.task_queue["completed"] > 0
    assert metadata.task_queue["failed"] == 0
    assert not metadata.cancelled
    assert result.executive_summary is None


async def test_sections_sum_to_requested_total(orchestrator, sales_request):
    result = await orchestrator.generate_presentation(sales_request)
    by_section = {}
    for s in content_slides(result.deck):
        by_section.setdefault(s.section_id, []).append(s)
    assert 3 <= len(by_section) <= 6
    assert sum(len(v) for v in by_section.values()) == 10


async def test_copy_tightener_edits_reach_the_deck(orchestrator, sales_request):
    result = await orchestrator.generate_presentation(sales_request)
    first = next(s for s in result.deck.slides if s.id == "section-1-slide-1")
    assert first.heading().text == "Revenue Up 12%"
    assert any(c.type == CheckType.CONSISTENCY for c in result.quality_checks)


async def test_failed_section_uses_fallback_slides(make_orchestrator, sales_request):
    llm = FakeLLM(deck_script(), failures={'section "Regional Performance"': -1})
    result = await make_orchestrator(llm).generate_presentation(sales_request)

    slides = content_slides(result.deck)
    assert len(slides) == 10
    regional = [s for s in slides if s.section_id == "section-2"]
    assert len(regional) == 3
    assert all(s.heading().text == "Regional Performance" for s in regional)
    assert "content" in result.metadata.degraded_stages
    assert result.metadata.task_queue["failed"] >= 1


async def test_failed_quality_check_keeps_the_others(make_orchestrator, sales_request):
    llm = FakeLLM(deck_script(), failures={"Review the readability": -1})
    result = await make_orchestrator(llm).generate_presentation(sales_request)

    scores = result.metadata.quality_scores
    assert scores.readability == 0.5
    kinds = {c.type for c in result.quality_checks}
    assert CheckType.READABILITY not in kinds
    assert CheckType.CONSISTENCY in kinds
    assert scores.accessibility == 1.0
    assert scores.fact_check > 0.5
    first = next(s for s in result.deck.slides if s.id == "section-1-slide-1")
    assert first.heading().text == "Revenue Up 12%"
    assert "quality" in result.metadata.degraded_stages


async def test_quality_report_order(make_orchestrator, sales_request):
    script = deck_script()
    script.insert(0, ("Audit this slide deck", [{"slide_id": "agenda-slide", "severity": "info"}]))
    script.insert(0, ("Review the readability", {"slides": [
        {"slide_id": "section-1-slide-1", "issues": ["Dense wording"], "suggestions": ["Split it"]}
    ]}))
    result = await make_orchestrator(FakeLLM(script)).generate_presentation(sales_request)
    order = [c.type for c in result.quality_checks]
    rank = {CheckType.FACT: 0, CheckType.ACCESSIBILITY: 1, CheckType.READABILITY: 2, CheckType.CONSISTENCY: 3}
    assert [rank[t] for t in order] == sorted(rank[t] for t in order)
    assert CheckType.READABILITY in order


async def test_research_failure_continues_without_evidence(make_orchestrator, sales_request):
    llm = FakeLLM(deck_script(), failures={"Extract 3-5 key subtopics": -1})
    result = await make_orchestrator(llm).generate_presentation(sales_request)
    assert result.deck.research_snippets == []
    assert result.deck.slides[-1].id == "conclusion-slide"
    assert len(result.deck.slides) == 13
    assert "research" in result.metadata.degraded_stages


async def test_local_only_without_local_model_raises(make_orchestrator, sales_request):
    cloud = sim_model("cloud", backend=BackendKind.CLOUD, provider=LLMProvider.OPENAI, api_key="sk-test")
    orchestrator = make_orchestrator(FakeLLM(deck_script()), models=[cloud])
    request = sales_request.model_copy(update={"local_only": True})
    with pytest.raises(RoutingUnavailable):
        await orchestrator.generate_presentation(request)


async def test_local_only_policy_uses_local_models(make_orchestrator, sales_request):
    cloud = sim_model("cloud", backend=BackendKind.CLOUD, provider=LLMProvider.OPENAI, api_key="sk-test",
                      quality=QualityTier.HIGH)
    llm = FakeLLM(deck_script())
    orchestrator = make_orchestrator(llm, models=[cloud, sim_model("sim")])
    request = sales_request.model_copy(update={"policy": PolicyName.LOCAL_ONLY})
    result = await orchestrator.generate_presentation(request)
    assert set(result.metadata.models_used.values()) == {"sim"}


async def test_executive_audience_gets_summary(orchestrator, sales_request):
    request = sales_request.model_copy(update={"audience": "Executive team"})
    result = await orchestrator.generate_presentation(request)
    summary = result.executive_summary
    assert summary is not None
    assert summary.slide.id == "executive-summary"
    assert summary.key_points == ["Revenue grew 12%", "Pipeline covers quota", "Focus on renewals"]
    assert summary.email_subject == "Q3 sales recap"
    assert "executive_summary" in result.metadata.stage_scores


async def test_speaker_notes_enrichment(orchestrator, sales_request):
    request = sales_request.model_copy(update={"speaker_notes": True})
    result = await orchestrator.generate_presentation(request)
    for s in content_slides(result.deck):
        assert s.notes == "Talk through this slide."
        assert s.estimated_duration == 40
    assert "enrichment" in result.metadata.stage_scores


async def test_enrichment_failure_leaves_slides_unchanged(make_orchestrator, sales_request):
    llm = FakeLLM(deck_script(), failures={"Suggest charts": -1})
    request = sales_request.model_copy(update={"enable_visuals": True})
    result = await make_orchestrator(llm).generate_presentation(request)
    assert all(not s.blocks_of("Chart") for s in result.deck.slides)
    assert len(content_slides(result.deck)) == 10


async def test_cancelled_request_still_assembles(orchestrator, sales_request):
    token = CancellationToken()
    token.cancel()
    result = await orchestrator.generate_presentation(sales_request, cancel_token=token)
    assert result.metadata.cancelled
    assert len(content_slides(result.deck)) == 10
    assert result.deck.slides[0].id == "title-slide"


async def test_audience_adaptation(orchestrator, sales_request):
    script_reply = {"slides": [{"id": "section-4-slide-2", "action": "remove", "reason": "Too detailed"}]}
    orchestrator.clients.for_model(sim_model()).script.insert(0, ("Adapt the presentation", script_reply))
    request = sales_request.model_copy(
        update={"adapt_for_audience": AudienceTarget(target_audience="board", target_duration=20)}
    )
    result = await orchestrator.generate_presentation(request)
    adaptation = result.audience_adaptation
    assert adaptation.target_audience == "board"
    assert len(adaptation.adapted_deck.slides) == len(result.deck.slides) - 1
    assert adaptation.changes[0].type == "slide-removed"


async def test_status_reports(orchestrator, sales_request):
    result = await orchestrator.generate_presentation(sales_request)
    agents = orchestrator.agent_status()
    assert len(agents) == 13
    assert agents["speaker-notes-generator"]["max_retries"] == 3
    router = orchestrator.router_status()
    assert router["model_usage"]["sim"] > 0
    tasks = orchestrator.history.all()
    assert tasks
    task = orchestrator.task_status(tasks[0].id)
    assert task.status == TaskStatus.COMPLETED
    assert orchestrator.task_status("task-missing") is None
    assert result.metadata.processing_time_ms >= 0


async def test_invalid_request_rejected():
    with pytest.raises(ValueError):
        GenerationRequest(topic="", desired_slide_count=10)
    with pytest.raises(ValueError):
        GenerationRequest(topic="x", desired_slide_count=2)


async def test_section_timeout_uses_fallback_slides(make_orchestrator, sales_request):
    llm = FakeLLM(deck_script(), delays={'section "Regional Performance"': 0.5})
    orchestrator = make_orchestrator(llm, agent_timeout_seconds=0.05, agent_max_retries=1)
    result = await orchestrator.generate_presentation(sales_request)

    slides = content_slides(result.deck)
    assert len(slides) == 10
    regional = [s for s in slides if s.section_id == "section-2"]
    assert len(regional) == 3
    assert all(s.heading().text == "Regional Performance" for s in regional)
    assert "content" in result.metadata.degraded_stages
    failed = [t for t in orchestrator.history.all() if t.status == TaskStatus.FAILED]
    assert any("timed out" in (t.last_error or "") for t in failed)


async def test_task_queue_is_per_request(orchestrator, sales_request):
    first = await orchestrator.generate_presentation(sales_request)
    after_first = len(orchestrator.history)
    second = await orchestrator.generate_presentation(sales_request)

    assert first.metadata.task_queue == second.metadata.task_queue
    assert first.metadata.task_queue["completed"] > 0
    assert len(orchestrator.history) == 2 * after_first
    assert orchestrator.queue_status()["completed"] == 2 * first.metadata.task_queue["completed"]
    assert len(orchestrator._active) == 0


async def test_task_history_is_bounded(make_orchestrator, sales_request):
    orchestrator = make_orchestrator(FakeLLM(deck_script()), task_history_limit=5)
    for _ in range(2):
        await orchestrator.generate_presentation(sales_request)
    assert len(orchestrator.history) == 5
    assert sum(orchestrator.queue_status().values()) == 5


async def test_request_without_policy_uses_service_default(make_orchestrator):
    request = GenerationRequest(topic="Quarterly Sales Review", desired_slide_count=10)
    assert request.policy is None
    assert request.resolved_policy() == "balanced"

    cloud = sim_model("cloud", backend=BackendKind.CLOUD, provider=LLMProvider.OPENAI, api_key="sk-test",
                      quality=QualityTier.HIGH)
    orchestrator = make_orchestrator(FakeLLM(deck_script()), models=[cloud, sim_model("sim")],
                                     default_policy="local-only")
    result = await orchestrator.generate_presentation(request)
    assert result.metadata.policy == "local-only"
    assert set(result.metadata.models_used.values()) == {"sim"}
