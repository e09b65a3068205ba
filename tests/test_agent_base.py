import asyncio
import time

import pytest

from slide_services.shared.errors import InvalidAgentInput, MalformedResponse
from slide_services.shared.models import TaskStatus
from slide_services.slide_orchestrator.agent_base import (
    AgentConfig,
    CancellationToken,
    ModelBinding,
    decode_json,
    normalize_response,
)
from slide_services.slide_orchestrator.agents.structurer import StructurerAgent
from slide_services.slide_orchestrator.tasks import TaskTracker

from .fakes import FakeLLM, deck_script, sim_model

STRUCTURE_INPUT = {
    "topic": "Quarterly Sales Review",
    "audience": "general",
    "tone": "professional",
    "desired_slide_count": 10,
}

TWO_SECTIONS = {"title": "Too Short", "sections": [{"title": "One"}, {"title": "Two"}]}


def structurer(**overrides):
    config = dict(name="structurer", max_retries=3, timeout=2.0, retry_base_delay=0.01)
    config.update(overrides)
    return StructurerAgent(AgentConfig(**config))


def binding(llm, token=None):
    return ModelBinding(descriptor=sim_model(), client=llm, cancel_token=token, tracker=TaskTracker())


@pytest.mark.parametrize(
    "raw",
    [
        '```json\n{"a": 1}\n```',
        'Sure! Here is the JSON: {"a": [1, 2]} Hope this helps.',
        "```\n[1, 2, 3]",
        '  {"nested": {"b": "}"}}  ',
        "no json at all",
        "",
    ],
)
def test_normalize_response_is_idempotent(raw):
    once = normalize_response(raw)
    assert normalize_response(once) == once


def test_normalize_response_strips_fences_and_filler():
    assert normalize_response('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert normalize_response('Here you go: [1, 2] done') == "[1, 2]"


def test_decode_json_rejects_garbage():
    with pytest.raises(MalformedResponse):
        decode_json("I could not do that")


async def test_invalid_input_is_raised_not_degraded():
    with pytest.raises(InvalidAgentInput):
        await structurer().execute({"topic": "x", "desired_slide_count": 1}, binding(FakeLLM()))
    assert issubclass(InvalidAgentInput, ValueError)


async def test_success_records_completed_task():
    b = binding(FakeLLM(deck_script()))
    output = await structurer().execute(STRUCTURE_INPUT, b)
    assert not output.degraded
    assert output.model_name == "sim"
    assert 0.0 <= output.quality_score <= 1.0
    task = b.tracker.get(output.task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.attempts == 1


async def test_retry_waits_base_then_double_base():
    base = 0.05
    llm = FakeLLM(deck_script(), failures={"Plan a presentation on": 2})
    b = binding(llm)
    started = time.monotonic()
    output = await structurer(retry_base_delay=base).execute(STRUCTURE_INPUT, b)
    elapsed = time.monotonic() - started

    assert not output.degraded
    assert elapsed >= base + 2 * base - 0.005
    stamps = llm.calls_matching("Plan a presentation on")
    assert len(stamps) == 3
    assert stamps[1] - stamps[0] >= base - 0.005
    assert stamps[2] - stamps[1] >= 2 * base - 0.005
    assert b.tracker.get(output.task_id).attempts == 3


async def test_exhausted_retries_degrade_to_default():
    llm = FakeLLM(deck_script(), failures={"Plan a presentation on": -1})
    b = binding(llm)
    output = await structurer().execute(STRUCTURE_INPUT, b)

    assert output.degraded
    assert output.quality_score == 0.5
    assert len(llm.calls) == 3
    assert sum(s.est_slides for s in output.payload.outline.sections) == 10
    task = b.tracker.get(output.task_id)
    assert task.status == TaskStatus.FAILED
    assert task.last_error


async def test_malformed_reply_is_retried():
    llm = FakeLLM([("Plan a presentation on", "not json")])
    output = await structurer(max_retries=2).execute(STRUCTURE_INPUT, binding(llm))
    assert output.degraded
    assert len(llm.calls) == 2
    assert "JSON" in output.error


async def test_validation_failure_regenerates_once_then_defaults():
    llm = FakeLLM([("Plan a presentation on", TWO_SECTIONS)])
    output = await structurer().execute(STRUCTURE_INPUT, binding(llm))
    assert output.degraded
    assert len(llm.calls) == 2
    assert len(output.payload.outline.sections) == 4


async def test_timeout_degrades():
    llm = FakeLLM(deck_script(), delay=0.5)
    output = await structurer(timeout=0.05, max_retries=1).execute(STRUCTURE_INPUT, binding(llm))
    assert output.degraded
    assert "timed out" in output.error


async def test_cancellation_aborts_in_flight_call():
    token = CancellationToken()
    llm = FakeLLM(deck_script(), delay=5.0)

    async def cancel_soon():
        await asyncio.sleep(0.05)
        token.cancel()

    started = time.monotonic()
    output, _ = await asyncio.gather(
        structurer(timeout=10.0).execute(STRUCTURE_INPUT, binding(llm, token)), cancel_soon()
    )
    assert output.degraded
    assert "cancelled" in output.error
    assert time.monotonic() - started < 1.0


async def test_cancelled_token_skips_model():
    token = CancellationToken()
    token.cancel()
    llm = FakeLLM(deck_script())
    output = await structurer().execute(STRUCTURE_INPUT, binding(llm, token))
    assert output.degraded
    assert llm.calls == []


class RecordingTracker(TaskTracker):
    """Records every status a task passes through."""

    def __init__(self):
        super().__init__()
        self.transitions = []

    def _transition(self, task, status):
        super()._transition(task, status)
        self.transitions.append(status.value)


async def test_retried_attempt_ends_failed_before_requeue():
    tracker = RecordingTracker()
    llm = FakeLLM(deck_script(), failures={"Plan a presentation on": 1})
    b = ModelBinding(descriptor=sim_model(), client=llm, tracker=tracker)
    output = await structurer().execute(STRUCTURE_INPUT, b)
    assert not output.degraded
    assert tracker.transitions == ["pending", "running", "failed", "pending", "running", "completed"]
    assert "scripted failure" in tracker.get(output.task_id).last_error


async def test_regeneration_closes_the_first_attempt():
    tracker = RecordingTracker()
    llm = FakeLLM([("Plan a presentation on", TWO_SECTIONS)])
    b = ModelBinding(descriptor=sim_model(), client=llm, tracker=tracker)
    output = await structurer().execute(STRUCTURE_INPUT, b)
    assert output.degraded
    assert tracker.transitions == ["pending", "running", "failed", "pending", "running", "failed"]
    assert tracker.get(output.task_id).attempts == 2
