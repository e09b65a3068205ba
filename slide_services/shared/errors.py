"""
Error taxonomy for the orchestration core.

Only ``RoutingUnavailable`` is allowed to reach the caller of a generation
request. Everything else is recovered inside the agent or the orchestrator and
shows up as a lowered quality score.
"""

from typing import Optional


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestration core."""


class RoutingUnavailable(OrchestrationError):
    """No registered model satisfies a role under the active policy and context."""

    def __init__(self, role: str, policy: Optional[str] = None, reason: Optional[str] = None):
        self.role = role
        self.policy = policy
        detail = f"No available model for agent role '{role}'"
        if policy:
            detail += f" under policy '{policy}'"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)


class TransientModelError(OrchestrationError):
    """Failures worth retrying with backoff."""


class ModelTimeout(TransientModelError):
    """A model call exceeded the agent's timeout."""

    def __init__(self, model_name: str, timeout: float):
        self.model_name = model_name
        self.timeout = timeout
        super().__init__(f"Model '{model_name}' timed out after {timeout:.1f}s")


class ModelUnavailable(TransientModelError):
    """Missing credential, refused connection or provider-side error."""


class MalformedResponse(TransientModelError):
    """The model answered, but not with the expected shape."""

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message)


class ValidationFailed(OrchestrationError):
    """An agent's output validator rejected the payload after regeneration."""


class GenerationCancelled(OrchestrationError):
    """The top-level request was cancelled while a model call was in flight."""


class InvalidAgentInput(OrchestrationError, ValueError):
    """The payload handed to an agent does not match its input model."""


TRANSIENT_ERRORS = (ModelTimeout, ModelUnavailable, MalformedResponse)
