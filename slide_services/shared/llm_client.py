"""
LLM clients for the providers a model descriptor can point at.

Every client exposes the same single call, ``call(prompt, max_tokens, temperature)``,
and translates provider exceptions into ``ModelTimeout`` / ``ModelUnavailable``
so agents only ever deal with the orchestration error taxonomy.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple, Union

import anthropic
import httpx
import openai

from .config import Settings, get_settings
from .errors import ModelTimeout, ModelUnavailable
from .models import LLMProvider, ModelDescriptor

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    model_name: str = "unknown"

    @abstractmethod
    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        """Send one prompt and return the raw text reply."""
        pass

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        return None


class OpenAIClient(LLMClient):
    """OpenAI chat completions client."""

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None, timeout: float = 60.0):
        client_kwargs = {"api_key": api_key, "timeout": timeout, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url
        self.client = openai.AsyncOpenAI(**client_kwargs)
        self.model_name = model
        logger.info("🔌 OpenAI client initialized (model: %s)", model)

    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        # APITimeoutError subclasses APIConnectionError, so it goes first
        except openai.APITimeoutError as e:
            raise ModelTimeout(self.model_name, getattr(self.client, "timeout", 0.0) or 0.0) from e
        except (openai.APIConnectionError, openai.APIStatusError) as e:
            raise ModelUnavailable(f"OpenAI error for {self.model_name}: {e}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self.client.close()


class AnthropicClient(LLMClient):
    """Anthropic messages client."""

    def __init__(self, api_key: str, model: str, timeout: float = 60.0):
        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self.model_name = model
        self.timeout = timeout
        logger.info("🔌 Anthropic client initialized (model: %s)", model)

    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model_name,
                max_tokens=max_tokens,
                temperature=min(temperature, 1.0),
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ModelTimeout(self.model_name, self.timeout) from e
        except (anthropic.APIConnectionError, anthropic.APIStatusError) as e:
            raise ModelUnavailable(f"Anthropic error for {self.model_name}: {e}") from e

        # Only text blocks carry the answer
        parts = [getattr(block, "text", "") for block in response.content if getattr(block, "type", "") == "text"]
        return "".join(parts)

    async def aclose(self) -> None:
        await self.client.close()


class LocalInferenceClient(LLMClient):
    """Client for an Ollama-compatible local inference server."""

    def __init__(self, base_url: str, model: str, timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        self.timeout = timeout
        self.http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        logger.info("🔌 Local inference client initialized (%s @ %s)", model, self.base_url)

    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        payload = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        try:
            response = await self.http.post("/api/chat", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ModelTimeout(self.model_name, self.timeout) from e
        except httpx.HTTPError as e:
            raise ModelUnavailable(f"Local inference error for {self.model_name}: {e}") from e

        data = response.json()
        return (data.get("message") or {}).get("content", "")

    async def aclose(self) -> None:
        await self.http.aclose()


Responder = Callable[[str], str]


class SimulatedClient(LLMClient):
    """In-process client with scripted replies, for offline runs.

    ``replies`` is either a callable mapping the prompt to a reply, or a list of
    ``(substring, reply)`` pairs where the first substring found in the prompt wins.
    """

    def __init__(
        self,
        model: str = "simulated",
        replies: Union[Responder, List[Tuple[str, str]], None] = None,
        default_reply: str = "{}",
    ):
        self.model_name = model
        self.replies = replies
        self.default_reply = default_reply
        self.prompts: List[str] = []

    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        self.prompts.append(prompt)
        if callable(self.replies):
            return self.replies(prompt)
        for needle, reply in self.replies or []:
            if needle in prompt:
                return reply
        return self.default_reply


class ClientFactory:
    """Maps model descriptors to cached clients. Owned by one orchestrator."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._clients: Dict[str, LLMClient] = {}

    def for_model(self, descriptor: ModelDescriptor) -> LLMClient:
        client = self._clients.get(descriptor.name)
        if client is None:
            client = self._build(descriptor)
            self._clients[descriptor.name] = client
        return client

    def _build(self, descriptor: ModelDescriptor) -> LLMClient:
        timeout = self.settings.agent_timeout_seconds
        if descriptor.provider == LLMProvider.OPENAI:
            api_key = descriptor.api_key or self.settings.openai_api_key
            if not api_key:
                raise ModelUnavailable(f"No OpenAI credential configured for {descriptor.name}")
            return OpenAIClient(
                api_key=api_key,
                model=descriptor.model_id,
                base_url=descriptor.base_url or self.settings.openai_base_url,
                timeout=timeout,
            )
        if descriptor.provider == LLMProvider.ANTHROPIC:
            api_key = descriptor.api_key or self.settings.anthropic_api_key
            if not api_key:
                raise ModelUnavailable(f"No Anthropic credential configured for {descriptor.name}")
            return AnthropicClient(api_key=api_key, model=descriptor.model_id, timeout=timeout)
        if descriptor.provider == LLMProvider.OLLAMA:
            return LocalInferenceClient(
                base_url=descriptor.base_url or self.settings.local_inference_url,
                model=descriptor.model_id,
                timeout=timeout,
            )
        return SimulatedClient(model=descriptor.model_id)

    def register(self, name: str, client: LLMClient) -> None:
        """Pin a client for a model name (used for scripted runs)."""
        self._clients[name] = client

    async def aclose(self) -> None:
        for name, client in list(self._clients.items()):
            try:
                await client.aclose()
            except Exception as e:
                logger.warning("⚠️ Failed to close client %s: %s", name, e)
        self._clients.clear()
