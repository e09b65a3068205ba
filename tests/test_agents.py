import pytest

from slide_services.shared.errors import MalformedResponse
from slide_services.shared.models import (
    BulletsBlock,
    CheckType,
    Deck,
    DeckMeta,
    HeadingBlock,
    ImageBlock,
    OutlineSection,
    ResearchSnippet,
    Severity,
    Slide,
)
from slide_services.slide_orchestrator.agent_base import CancellationToken, ModelBinding
from slide_services.slide_orchestrator.agents.accessibility_linter import accessibility_score, lint_slides
from slide_services.slide_orchestrator.agents.audience_adapter import AdaptInput, AudienceAdapterAgent
from slide_services.slide_orchestrator.agents.copy_tightener import CopyTightenerAgent, TightenInput
from slide_services.slide_orchestrator.agents.data_viz_planner import DataVizPlannerAgent
from slide_services.slide_orchestrator.agents.enrichment import EnrichmentInput
from slide_services.slide_orchestrator.agents.executive_summary import ExecutiveSummaryAgent, SummaryInput
from slide_services.slide_orchestrator.agents.fact_checker import FactCheckerAgent, FactCheckInput, extract_claims
from slide_services.slide_orchestrator.agents.media_finder import MediaFinderAgent
from slide_services.slide_orchestrator.agents.readability_analyzer import syllables, text_metrics
from slide_services.slide_orchestrator.agents.researcher import (
    RawFinding,
    ResearcherAgent,
    build_snippets,
    dedupe_snippets,
    search_queries,
)
from slide_services.slide_orchestrator.agents.slidewriter import (
    SlideContext,
    SlidewriterAgent,
    SlidewriterInput,
    relevant_snippets,
)
from slide_services.slide_orchestrator.agents.structurer import StructureInput, StructurerAgent, distribute_slides

from .fakes import FakeLLM, deck_script, sim_model


def snippet(index, text, confidence=0.9, tags=()):
    return ResearchSnippet(id=f"snippet-{index}", text=text, confidence=confidence, tags=list(tags))


def slide(slide_id, heading="Revenue Highlights", bullets=("Revenue grew 12% year over year",), **extra):
    blocks = [HeadingBlock(text=heading), BulletsBlock(items=list(bullets))] if heading else [
        BulletsBlock(items=list(bullets))
    ]
    return Slide(id=slide_id, blocks=blocks, **extra)


SECTION = OutlineSection(
    id="section-1",
    title="Revenue Highlights",
    goal="Explain revenue growth",
    est_slides=3,
    key_points=["revenue growth", "top accounts"],
    order=1,
)


# ---------------------------------------------------------------------------
# Researcher -------------------------------------------------------------------
# ---------------------------------------------------------------------------

def test_dedupe_is_idempotent_and_keeps_first():
    items = [
        RawFinding(text="Revenue grew 12%", source="a"),
        RawFinding(text="  revenue   GREW 12% ", source="b"),
        RawFinding(text="Costs fell", source="c"),
    ]
    once = dedupe_snippets(items)
    assert [f.source for f in once] == ["a", "c"]
    assert dedupe_snippets(once) == once


def test_build_snippets_filters_sorts_and_caps():
    findings = [
        RawFinding(text="low", confidence=0.3),
        RawFinding(text="medium", confidence=0.7),
        RawFinding(text="high", confidence=0.95),
        RawFinding(text="unknown"),
        RawFinding(text="clamped", confidence=4.0),
    ]
    snippets = build_snippets(findings, min_confidence=0.6, max_snippets=2)
    assert [s.text for s in snippets] == ["clamped", "high"]
    assert [s.id for s in snippets] == ["snippet-1", "snippet-2"]
    assert snippets[0].confidence == 1.0


def test_search_queries_audience_extras_and_cap():
    queries = search_queries("AI", ["a", "b", "c", "d", "e"], "Technical leads")
    assert "AI technical implementation" in queries
    assert len(queries) == 8


async def test_researcher_survives_failed_searches():
    llm = FakeLLM(deck_script(), failures={"AI current trends": -1})
    agent = ResearcherAgent()
    b = ModelBinding(descriptor=sim_model(), client=llm)
    output = await agent.execute({"topic": "AI", "audience": "general", "tone": "neutral"}, b)
    assert not output.degraded
    assert output.payload.snippets
    assert all(s.confidence >= 0.6 for s in output.payload.snippets)


async def test_researcher_cancelled_between_subtopics_and_searches():
    token = CancellationToken()

    def subtopics_then_cancel(prompt):
        token.cancel()
        return ["pricing", "adoption"]

    script = [("Extract 3-5 key subtopics", subtopics_then_cancel)] + deck_script()
    llm = FakeLLM(script)
    b = ModelBinding(descriptor=sim_model(), client=llm, cancel_token=token)
    output = await ResearcherAgent().execute({"topic": "AI", "audience": "general", "tone": "neutral"}, b)
    assert output.degraded
    assert "cancelled" in output.error
    assert output.payload.snippets == []
    assert not any("Research information about" in p for p in llm.prompts)


# ---------------------------------------------------------------------------
# Structurer -------------------------------------------------------------------
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("total", [3, 4, 7, 10, 23, 50])
@pytest.mark.parametrize("sections", [3, 4, 5, 6])
def test_distribute_slides_sums_to_total(total, sections):
    counts = distribute_slides(total, sections)
    assert sum(counts) == total
    assert max(counts) - min(counts) <= 1
    assert counts == sorted(counts, reverse=True)


def test_structurer_clamps_sections_and_titles():
    agent = StructurerAgent()
    inp = StructureInput(topic="AI", audience="general", tone="neutral", desired_slide_count=12)
    data = {
        "title": "AI",
        "sections": [{"title": f"Section number {i} with a very long descriptive title"} for i in range(9)],
    }
    plan = agent.parse(data, inp)
    sections = plan.outline.sections
    assert len(sections) == 6
    assert all(len(s.title.split()) <= 8 for s in sections)
    assert sum(s.est_slides for s in sections) == 12
    assert plan.outline.estimated_duration == 30
    assert plan.outline.word_count == 900


def test_structurer_never_plans_more_sections_than_slides():
    agent = StructurerAgent()
    inp = StructureInput(topic="AI", audience="general", tone="neutral", desired_slide_count=3)
    plan = agent.parse({"sections": [{"title": t} for t in "abcdef"]}, inp)
    assert [s.est_slides for s in plan.outline.sections] == [1, 1, 1]


def test_structurer_default_uses_research_tags():
    agent = StructurerAgent()
    snippets = [snippet(1, "x", tags=["pricing"]), snippet(2, "y", tags=["pricing", "churn"])]
    inp = StructureInput(topic="AI", audience="general", tone="neutral", desired_slide_count=10,
                         research_snippets=snippets)
    outline = agent.default_output(inp).outline
    assert outline.sections[0].title == "Understanding Pricing"
    assert len(outline.sections) == 4
    assert sum(s.est_slides for s in outline.sections) == 10


# ---------------------------------------------------------------------------
# Slidewriter ------------------------------------------------------------------
# ---------------------------------------------------------------------------

def slidewriter_input(snippets=()):
    return SlidewriterInput(
        section=SECTION,
        research_snippets=list(snippets),
        context=SlideContext(topic="Sales", audience="general", tone="neutral"),
    )


def test_relevant_snippets_overlap_confidence_and_cap():
    snippets = [snippet(i, f"revenue fact {i}") for i in range(1, 8)]
    snippets.append(snippet(8, "revenue but weak", confidence=0.4))
    snippets.append(snippet(9, "unrelated", tags=["growth"]))
    found = relevant_snippets(snippets, SECTION)
    assert len(found) == 5
    assert all(s.confidence >= 0.6 for s in found)


def test_slidewriter_pads_and_filters_citations():
    agent = SlidewriterAgent()
    inp = slidewriter_input([snippet(1, "revenue grew")])
    data = {"slides": [{"title": "Growth", "bullets": ["a"] * 9, "citations": ["snippet-1", "snippet-7"]}]}
    result = agent.parse(data, inp)
    assert [s.id for s in result.slides] == ["section-1-slide-1", "section-1-slide-2", "section-1-slide-3"]
    assert result.slides[0].cites == ["snippet-1"]
    assert len(result.slides[0].blocks_of("Bullets")[0].items) == 6
    assert all(s.heading() is not None for s in result.slides)


def test_slidewriter_rejects_empty_slide_list():
    with pytest.raises(MalformedResponse):
        SlidewriterAgent().parse({"slides": []}, slidewriter_input())


# ---------------------------------------------------------------------------
# Copy tightener ---------------------------------------------------------------
# ---------------------------------------------------------------------------

def test_copy_tightener_respects_word_limits():
    agent = CopyTightenerAgent()
    original = slide("s1", heading="A rather long heading about quarterly revenue results")
    inp = TightenInput(slides=[original], audience="general", tone="neutral")
    edits = {"slides": [{"id": "s1", "heading": "Revenue Results",
                         "bullets": ["this bullet is far too long to be accepted by the tightener at all"]}]}
    result = agent.parse(edits, inp)
    tightened = result.slides[0]
    assert tightened.heading().text == "Revenue Results"
    assert tightened.blocks_of("Bullets")[0].items == ["Revenue grew 12% year over year"]
    assert len(result.changes) == 1
    assert result.changes[0].type == CheckType.CONSISTENCY
    assert result.changes[0].auto_fixable
    # Input untouched
    assert original.heading().text.startswith("A rather long")


# ---------------------------------------------------------------------------
# Quality checkers -------------------------------------------------------------
# ---------------------------------------------------------------------------

def test_lint_rules():
    slides = [
        slide("no-heading", heading=None),
        slide("long-heading", heading="one two three four five six seven eight nine"),
        slide("many-bullets", bullets=[f"point {i}" for i in range(8)]),
        Slide(id="image", blocks=[HeadingBlock(text="Chart"), ImageBlock(src="x.png")]),
    ]
    checks = lint_slides(slides)
    by_target = {(c.target, c.severity) for c in checks}
    assert ("no-heading", Severity.HIGH) in by_target
    assert ("long-heading", Severity.MEDIUM) in by_target
    assert ("many-bullets", Severity.MEDIUM) in by_target
    assert ("image", Severity.HIGH) in by_target
    assert 0.0 <= accessibility_score(checks) < 1.0
    assert accessibility_score([]) == 1.0


def test_fact_checker_flags_unsupported_claims():
    agent = FactCheckerAgent()
    slides = [slide("s1", bullets=["Churn fell 40% after launch"], cites=["snippet-404"])]
    inp = FactCheckInput(slides=slides, research_snippets=[snippet(1, "unrelated text")])
    claims = extract_claims(slides)
    assert [c.kind for c in claims] == ["statistical"]
    report = agent.report(inp, {}, {})
    messages = [c.message for c in report.checks]
    assert any(m.startswith("Unsupported claim") for m in messages)
    assert "Invalid citation: snippet-404" in messages
    assert report.summary.unsupported_claims == 1
    assert report.score == 0.0


async def test_fact_checker_skips_model_without_evidence():
    llm = FakeLLM(deck_script())
    b = ModelBinding(descriptor=sim_model(), client=llm)
    output = await FactCheckerAgent().execute({"slides": [slide("s1", bullets=["Plain text"])]}, b)
    assert output.payload.score == 1.0
    assert llm.calls == []


def test_readability_metrics():
    assert syllables("cat") == 1
    assert syllables("readability") >= 4
    metrics = text_metrics(["The cat sat.", "It was fed by the owner."])
    assert metrics.average_sentence_length > 0
    assert metrics.passive_voice_ratio > 0


# ---------------------------------------------------------------------------
# Summary, adaptation and enrichment -----------------------------------------
# ---------------------------------------------------------------------------

def small_deck():
    slides = [
        Slide(id="title-slide", blocks=[HeadingBlock(text="Sales")]),
        slide("section-1-slide-1", bullets=["Revenue grew 12%", "Pipeline is healthy"]),
        slide("section-1-slide-2", heading="Regions", bullets=["EMEA led growth"]),
        slide("section-2-slide-1", heading="Outlook", bullets=["Hire two reps"]),
    ]
    meta = DeckMeta(title="Sales", audience="general", tone="neutral", duration=20)
    return Deck(meta=meta, slides=slides)


def test_executive_summary_default_uses_deck_points():
    agent = ExecutiveSummaryAgent()
    summary = agent.default_output(SummaryInput(deck=small_deck(), audience="executives", tone="brief"))
    assert summary.slide.id == "executive-summary"
    assert "Sales" not in summary.key_points
    assert summary.email_subject == "Summary: Sales"
    assert summary.estimated_read_time >= 1


def test_audience_adapter_applies_decisions():
    agent = AudienceAdapterAgent()
    inp = AdaptInput(deck=small_deck(), target_audience="executives", target_duration=10)
    data = {"slides": [
        {"id": "title-slide", "action": "remove"},
        {"id": "section-1-slide-2", "action": "merge"},
        {"id": "section-2-slide-1", "action": "simplify", "heading": "Next Steps"},
    ]}
    adaptation = agent.parse(data, inp)
    slides = adaptation.adapted_deck.slides
    assert [s.id for s in slides] == ["title-slide", "section-1-slide-1", "section-2-slide-1"]
    assert [s.order for s in slides] == [0, 1, 2]
    assert "EMEA led growth" in slides[1].blocks_of("Bullets")[0].items
    assert slides[2].heading().text == "Next Steps"
    assert [c.type for c in adaptation.changes] == ["slide-merged", "content-simplified"]
    assert adaptation.adapted_deck.meta.audience == "executives"
    assert adaptation.original_audience == "general"


def enrichment_input(**extra):
    sections = [SECTION.model_copy(update={"chart_suggested": True})]
    slides = [slide("section-1-slide-1", section_id="section-1"), slide("section-2-slide-1", section_id="section-2")]
    return EnrichmentInput(slides=slides, topic="Sales", sections=sections, **extra)


def test_data_viz_only_targets_chart_sections():
    data = {"charts": [
        {"slide_id": "section-1-slide-1", "kind": "bar", "x": "quarter", "y": "revenue"},
        {"slide_id": "section-2-slide-1", "kind": "line"},
    ]}
    result = DataVizPlannerAgent().parse(data, enrichment_input())
    charts = {s.id: s.blocks_of("Chart") for s in result.slides}
    assert len(charts["section-1-slide-1"]) == 1
    assert charts["section-2-slide-1"] == []
    assert result.added == 1


def test_media_finder_requires_a_source_and_sets_alt():
    data = {"media": [
        {"slide_id": "section-1-slide-1", "prompt": "bar chart of revenue", "alt": "Revenue by quarter"},
        {"slide_id": "section-2-slide-1"},
    ]}
    result = MediaFinderAgent().parse(data, enrichment_input())
    image = result.slides[0].blocks_of("Image")[0]
    assert image.src == "prompt:bar chart of revenue"
    assert image.alt == "Revenue by quarter"
    assert result.slides[1].blocks_of("Image") == []
