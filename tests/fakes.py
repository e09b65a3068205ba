"""Scripted stand-ins for model backends."""

import asyncio
import json
import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from slide_services.shared.errors import ModelUnavailable
from slide_services.shared.llm_client import LLMClient
from slide_services.shared.models import BackendKind, LLMProvider, ModelDescriptor, QualityTier, SpeedTier


def sim_model(name: str = "sim", **overrides: Any) -> ModelDescriptor:
    fields = dict(
        name=name,
        backend=BackendKind.SIMULATED,
        provider=LLMProvider.SIMULATED,
        model_id=name,
        capabilities=("general",),
        cost_per_token=0.0,
        speed=SpeedTier.FAST,
        quality=QualityTier.MEDIUM,
    )
    fields.update(overrides)
    return ModelDescriptor(**fields)


class FakeLLM(LLMClient):
    """Answers by the first script needle found in the prompt.

    A reply may be a string, a JSON-able object, an exception to raise or a
    callable taking the prompt. ``failures`` makes prompts containing a needle
    raise ModelUnavailable that many times before the script applies. ``delays``
    holds matching prompts for the given number of seconds.
    """

    def __init__(
        self,
        script: Optional[List[Tuple[str, Any]]] = None,
        default: Any = "{}",
        failures: Optional[Dict[str, int]] = None,
        delay: float = 0.0,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.script = list(script or [])
        self.default = default
        self.failures = dict(failures or {})
        self.delay = delay
        self.delays = dict(delays or {})
        self.calls: List[Tuple[float, str]] = []

    @property
    def prompts(self) -> List[str]:
        return [prompt for _, prompt in self.calls]

    def calls_matching(self, needle: str) -> List[float]:
        return [stamp for stamp, prompt in self.calls if needle in prompt]

    async def call(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        self.calls.append((time.monotonic(), prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        for needle, seconds in self.delays.items():
            if needle in prompt:
                await asyncio.sleep(seconds)
        for needle, remaining in self.failures.items():
            if needle in prompt and remaining != 0:
                self.failures[needle] = remaining - 1
                raise ModelUnavailable(f"scripted failure for '{needle}'")
        for needle, reply in self.script:
            if needle in prompt:
                return self._render(reply, prompt)
        return self._render(self.default, prompt)

    @staticmethod
    def _render(reply: Any, prompt: str) -> str:
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(prompt)
        if isinstance(reply, str):
            return reply
        return json.dumps(reply)


# ---------------------------------------------------------------------------
# A well-behaved deck script --------------------------------------------------
# ---------------------------------------------------------------------------

SECTION_TITLES = ["Revenue Highlights", "Regional Performance", "Pipeline Health", "Outlook and Priorities"]


def _search(prompt: str) -> List[Dict[str, Any]]:
    query = re.search(r'Research information about: "([^"]+)"', prompt).group(1)
    return [
        {
            "text": f"Quarterly revenue grew 12% year over year ({query})",
            "source": "Finance Report",
            "url": "https://example.com/finance",
            "confidence": 0.9,
            "tags": ["revenue", "sales"],
        },
        {
            "text": f"Regional pipeline coverage reached 3 times quota ({query})",
            "source": "CRM Export",
            "confidence": 0.8,
            "tags": ["pipeline"],
        },
        {"text": f"Unverified rumor about {query}", "source": "Forum", "confidence": 0.2},
    ]


def _outline(prompt: str) -> Dict[str, Any]:
    return {
        "title": "Quarterly Sales Review Q3",
        "sections": [
            {"title": title, "goal": f"Explain {title.lower()}", "key_points": [f"{title} revenue", "sales trend"]}
            for title in SECTION_TITLES
        ],
        "conclusion": "Sales momentum is strong and the pipeline supports next quarter targets.",
    }


def _slides(prompt: str) -> Dict[str, Any]:
    count = int(re.search(r"Write (\d+) slide\(s\)", prompt).group(1))
    title = re.search(r'for the section "([^"]+)"', prompt).group(1)
    return {
        "slides": [
            {
                "title": f"{title} part {index + 1}",
                "bullets": ["Revenue grew 12% year over year", "Pipeline coverage is healthy"],
                "notes": "Walk through the numbers.",
                "citations": ["snippet-1", "snippet-999"],
            }
            for index in range(count)
        ]
    }


def deck_script() -> List[Tuple[str, Any]]:
    return [
        ("Extract 3-5 key subtopics", ["regional performance", "pipeline health"]),
        ("Research information about", _search),
        ("Plan a presentation on", _outline),
        ("slide(s) for the section", _slides),
        ("Tighten the copy", {"slides": [{"id": "section-1-slide-1", "heading": "Revenue Up 12%"}]}),
        ("Rate how well the research", {"ratings": [{"claim": "claim-1", "support": 0.9}]}),
        ("Audit this slide deck", []),
        ("Review the readability", {"slides": [], "recommendations": ["Prefer short sentences"]}),
        (
            "Summarize the presentation",
            {
                "key_points": ["Revenue grew 12%", "Pipeline covers quota", "Focus on renewals"],
                "next_steps": ["Approve the Q4 plan"],
                "email_subject": "Q3 sales recap",
                "email_body": "Revenue grew 12% this quarter and the pipeline covers next quarter quota. " * 6,
            },
        ),
        ("Write speaker notes", lambda prompt: {"notes": [
            {"slide_id": slide_id, "notes": "Talk through this slide.", "duration_seconds": 40}
            for slide_id in re.findall(r"^(section-\d+-slide-\d+):", prompt, re.M)
        ]}),
    ]
