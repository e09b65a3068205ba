"""Base class for all agents in the slide orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

import backoff
from pydantic import BaseModel, ValidationError

from ..shared.errors import (
    TRANSIENT_ERRORS,
    GenerationCancelled,
    InvalidAgentInput,
    MalformedResponse,
    ModelTimeout,
    ModelUnavailable,
    TransientModelError,
    ValidationFailed,
)
from ..shared.llm_client import LLMClient
from ..shared.models import AgentOutput, AgentRole, ModelDescriptor
from .tasks import TaskTracker

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCE = re.compile(r"```[A-Za-z0-9_-]*\s*(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(r"^```[A-Za-z0-9_-]*\s*")


def normalize_response(raw: str) -> str:
    """Strip code fences and any filler around the JSON body.

    Idempotent: normalizing an already normalized string returns it unchanged.
    """
    text = (raw or "").strip()
    match = _FENCE.search(text)
    if match:
        text = match.group(1).strip()
    else:
        text = _OPEN_FENCE.sub("", text).strip()

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end < start:
        return text[start:]
    return text[start : end + 1]


def decode_json(raw: str) -> Any:
    """Normalize once, then strictly decode."""
    try:
        return json.loads(normalize_response(raw))
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Response is not valid JSON: {e}", raw=raw) from e


class CancellationToken:
    """Request-scoped cancel flag that in-flight model calls can await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ModelBinding:
    """Everything an agent needs for one execution: the routed model and its client."""

    descriptor: ModelDescriptor
    client: LLMClient
    cancel_token: Optional[CancellationToken] = None
    tracker: Optional[TaskTracker] = None


@dataclass
class AgentConfig:
    name: str
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    max_retries: int = 3
    timeout: float = 30.0
    retry_base_delay: float = 1.0


class AgentBase(ABC):
    """Base class for all agents with the shared execution contract.

    Subclasses declare ``role`` and ``input_model`` and implement ``build_prompt``,
    ``parse`` and ``default_output``. ``execute`` adds input validation, timeouts,
    retry with exponential backoff, one regeneration on validation failure, and
    the degraded default payload.
    """

    role: AgentRole
    input_model: Type[BaseModel]
    max_tokens: int = 2000
    temperature: Optional[float] = None

    def __init__(self, config: Optional[AgentConfig] = None) -> None:
        self.config = config or AgentConfig(name=self.role.value)
        self.name = self.config.name
        self.logger = logging.getLogger(f"{self.__class__.__name__}[{self.name}]")
        self.logger.debug(f"🤖 Agent {self.name} initialized")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"

    # ------------------------------------------------------------------
    # Subclass hooks ----------------------------------------------------
    # ------------------------------------------------------------------

    @abstractmethod
    def build_prompt(self, inp: Any) -> str:
        """Prompt for a single-call agent."""

    @abstractmethod
    def parse(self, data: Any, inp: Any) -> Any:
        """Turn decoded JSON into the typed payload. Raise MalformedResponse on bad shape."""

    @abstractmethod
    def default_output(self, inp: Any) -> Any:
        """Typed fallback payload used when the agent cannot produce a valid one."""

    def validate_output(self, output: Any, inp: Any) -> bool:
        return True

    def quality_score(self, output: Any, inp: Any) -> float:
        return 1.0

    async def generate(self, inp: Any, binding: ModelBinding) -> Any:
        """One full attempt. Multi-call agents override this."""
        raw = await self.call_model(self.build_prompt(inp), binding)
        return self.parse(decode_json(raw), inp)

    # ------------------------------------------------------------------
    # Execution ---------------------------------------------------------
    # ------------------------------------------------------------------

    def validate_input(self, payload: Any) -> Any:
        if isinstance(payload, self.input_model):
            return payload
        try:
            return self.input_model.model_validate(payload)
        except ValidationError as e:
            raise InvalidAgentInput(f"Invalid input for {self.name}: {e}") from e

    async def execute(self, payload: Any, binding: ModelBinding) -> AgentOutput:
        inp = self.validate_input(payload)
        tracker = binding.tracker
        task_id = None
        if tracker is not None:
            task = tracker.create(self.role.value, inp.model_dump(mode="json"), self.config.max_retries)
            task_id = task.id

        run = self._retrying(task_id, tracker)(self._attempt)
        try:
            output = await run(inp, binding, task_id)
            if not self.validate_output(output, inp):
                self.logger.info("♻️ Output failed validation, regenerating once")
                if tracker is not None:
                    tracker.requeue(task_id, "output failed validation")
                output = await run(inp, binding, task_id)
                if not self.validate_output(output, inp):
                    raise ValidationFailed(f"{self.name} output failed validation after regeneration")
        except ValidationFailed as e:
            self.logger.warning(f"⚠️ {e}")
            return self._degraded(inp, binding, task_id, e)
        except GenerationCancelled as e:
            self.logger.info(f"🛑 {self.name} cancelled: {e}")
            return self._degraded(inp, binding, task_id, e)
        except TRANSIENT_ERRORS as e:
            self.logger.error(f"❌ {self.name} gave up after {self.config.max_retries} attempts: {e}")
            return self._degraded(inp, binding, task_id, e)

        if tracker is not None:
            tracker.complete(task_id)
        score = min(max(float(self.quality_score(output, inp)), 0.0), 1.0)
        self.logger.info(f"✅ {self.name} finished on {binding.descriptor.name} (score {score:.2f})")
        return AgentOutput(
            role=self.role.value,
            payload=output,
            quality_score=score,
            model_name=binding.descriptor.name,
            task_id=task_id,
        )

    async def _attempt(self, inp: Any, binding: ModelBinding, task_id: Optional[str]) -> Any:
        if binding.tracker is not None and task_id is not None:
            binding.tracker.start_attempt(task_id, binding.descriptor.name)
        return await self.generate(inp, binding)

    def _retrying(self, task_id: Optional[str], tracker: Optional[TaskTracker]):
        """Backoff decorator built from this agent's config: waits base, 2*base, ..."""

        def on_backoff(details: Dict[str, Any]) -> None:
            exc = details.get("exception")
            self.logger.warning(
                f"🔁 Attempt {details['tries']} failed ({exc}); retrying in {details['wait']:.2f}s"
            )
            if tracker is not None and task_id is not None:
                tracker.requeue(task_id, str(exc))

        return backoff.on_exception(
            backoff.expo,
            TRANSIENT_ERRORS,
            max_tries=max(self.config.max_retries, 1),
            factor=self.config.retry_base_delay,
            base=2,
            jitter=None,
            on_backoff=on_backoff,
        )

    def _degraded(self, inp: Any, binding: ModelBinding, task_id: Optional[str], error: Exception) -> AgentOutput:
        if binding.tracker is not None and task_id is not None:
            binding.tracker.fail(task_id, str(error))
        return self.fallback(inp, error, model_name=binding.descriptor.name, task_id=task_id)

    def fallback(
        self,
        payload: Any,
        error: Exception,
        model_name: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> AgentOutput:
        """Degraded output without touching a model."""
        inp = self.validate_input(payload)
        return AgentOutput(
            role=self.role.value,
            payload=self.default_output(inp),
            quality_score=0.5,
            degraded=True,
            model_name=model_name,
            task_id=task_id,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Model access ------------------------------------------------------
    # ------------------------------------------------------------------

    async def call_model(
        self,
        prompt: str,
        binding: ModelBinding,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Call the bound model, bounded by the agent timeout and the cancel token."""
        token = binding.cancel_token
        if token is not None and token.cancelled:
            raise GenerationCancelled(f"{self.name} skipped: request cancelled")

        descriptor = binding.descriptor
        if temperature is None:
            temperature = self.temperature if self.temperature is not None else descriptor.temperature
        max_tokens = min(max_tokens or self.max_tokens, descriptor.max_tokens)

        call = asyncio.ensure_future(binding.client.call(prompt, max_tokens, temperature))
        waiters = {call}
        cancel_waiter = None
        if token is not None:
            cancel_waiter = asyncio.ensure_future(token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=self.config.timeout, return_when=asyncio.FIRST_COMPLETED)
            if call in done:
                try:
                    return call.result()
                except (TransientModelError, GenerationCancelled):
                    raise
                except Exception as e:
                    raise ModelUnavailable(f"{descriptor.name} call failed: {e}") from e
            if cancel_waiter is not None and cancel_waiter in done:
                raise GenerationCancelled(f"{self.name} aborted: request cancelled")
            raise ModelTimeout(descriptor.name, self.config.timeout)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

    # ------------------------------------------------------------------
    # Parsing helpers ---------------------------------------------------
    # ------------------------------------------------------------------

    def coerce(self, model: Type[M], data: Any) -> M:
        """Validate ``data`` against ``model``; shape errors become MalformedResponse."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(f"{self.name} response has unexpected shape: {e}") from e

    def coerce_list(self, model: Type[M], items: Any) -> List[M]:
        if not isinstance(items, list):
            raise MalformedResponse(f"{self.name} expected a JSON array, got {type(items).__name__}")
        return [self.coerce(model, item) for item in items]
