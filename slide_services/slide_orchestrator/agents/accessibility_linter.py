"""Accessibility linter: deterministic slide rules plus a model audit."""

from __future__ import annotations

from typing import Any, List

from pydantic import AliasChoices, BaseModel, Field

from ...shared.models import AgentRole, CheckType, QualityCheck, Severity, Slide
from ...shared.text_utils import word_count
from ..agent_base import AgentBase, ModelBinding, decode_json

MAX_BULLETS = 6
MAX_HEADING_WORDS = 8
MAX_BULLET_WORDS = 12

SEVERITY_ALIASES = {
    "critical": Severity.HIGH,
    "high": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "info": Severity.LOW,
    "low": Severity.LOW,
}

PENALTIES = {Severity.HIGH: 0.15, Severity.MEDIUM: 0.07, Severity.LOW: 0.02}


class AccessibilityInput(BaseModel):
    slides: List[Slide]
    theme: str = "professional"


class AuditIssue(BaseModel):
    slide_id: str = Field("unknown", validation_alias=AliasChoices("slide_id", "slideId"))
    severity: str = "warning"
    description: str = "Accessibility issue"
    suggestion: str = ""


class AccessibilitySummary(BaseModel):
    total_issues: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    auto_fixable: int = 0


class AccessibilityReport(BaseModel):
    checks: List[QualityCheck] = Field(default_factory=list)
    score: float = 1.0
    summary: AccessibilitySummary = Field(default_factory=AccessibilitySummary)


def _issue(severity: Severity, message: str, slide_id: str, suggestion: str, auto_fixable: bool = False) -> QualityCheck:
    return QualityCheck(
        type=CheckType.ACCESSIBILITY,
        severity=severity,
        message=message,
        target=slide_id,
        suggestion=suggestion,
        auto_fixable=auto_fixable,
    )


def lint_slides(slides: List[Slide]) -> List[QualityCheck]:
    """Rule checks that need no model."""
    checks = []
    for slide in slides:
        headings = slide.blocks_of("Heading")
        if not headings:
            checks.append(_issue(Severity.HIGH, "Slide has no heading", slide.id, "Add a descriptive heading"))
        previous_level = 0
        for heading in headings:
            if word_count(heading.text) > MAX_HEADING_WORDS:
                checks.append(
                    _issue(Severity.MEDIUM, f"Heading exceeds {MAX_HEADING_WORDS} words", slide.id,
                           "Shorten the heading", auto_fixable=True)
                )
            if previous_level and heading.level > previous_level + 1:
                checks.append(
                    _issue(Severity.LOW, f"Heading level skips from {previous_level} to {heading.level}",
                           slide.id, "Use sequential heading levels", auto_fixable=True)
                )
            previous_level = heading.level

        for block in slide.blocks_of("Bullets"):
            if len(block.items) > MAX_BULLETS:
                checks.append(
                    _issue(Severity.MEDIUM, f"Slide has {len(block.items)} bullets (max {MAX_BULLETS})",
                           slide.id, "Split the content across slides")
                )
            long_items = sum(1 for item in block.items if word_count(item) > MAX_BULLET_WORDS)
            if long_items:
                checks.append(
                    _issue(Severity.LOW, f"{long_items} bullet(s) exceed {MAX_BULLET_WORDS} words",
                           slide.id, "Tighten long bullets", auto_fixable=True)
                )

        for image in slide.blocks_of("Image"):
            if not image.alt.strip():
                checks.append(
                    _issue(Severity.HIGH, f"Image {image.src} has no alt text", slide.id,
                           "Describe the image in alt text")
                )
    return checks


def accessibility_score(checks: List[QualityCheck]) -> float:
    penalty = sum(PENALTIES[check.severity] for check in checks)
    return max(0.0, 1.0 - penalty)


class AccessibilityLinterAgent(AgentBase):
    role = AgentRole.ACCESSIBILITY_LINTER
    input_model = AccessibilityInput
    temperature = 0.2

    def build_prompt(self, inp: AccessibilityInput) -> str:
        slides = "\n".join(f"{slide.id}: {' | '.join(slide.text_items())}" for slide in inp.slides)
        return (
            f'Audit this slide deck (theme "{inp.theme}") for accessibility problems that simple rules miss:\n'
            "unclear wording, jargon without definition, colour-only meaning, low reading level fit, "
            "navigation or structure problems.\n\n"
            f"{slides}\n\n"
            'Return a JSON array: [{"slide_id": "...", "severity": "critical|warning|info", '
            '"description": "...", "suggestion": "..."}]'
        )

    def parse(self, data: Any, inp: AccessibilityInput) -> List[QualityCheck]:
        if isinstance(data, dict):
            data = data.get("issues", [])
        issues = self.coerce_list(AuditIssue, data)
        known = {slide.id for slide in inp.slides}
        return [
            _issue(
                SEVERITY_ALIASES.get(issue.severity.lower(), Severity.MEDIUM),
                issue.description,
                issue.slide_id if issue.slide_id in known else None,
                issue.suggestion or None,
            )
            for issue in issues
        ]

    async def generate(self, inp: AccessibilityInput, binding: ModelBinding) -> AccessibilityReport:
        checks = lint_slides(inp.slides)
        raw = await self.call_model(self.build_prompt(inp), binding)
        checks.extend(self.parse(decode_json(raw), inp))
        return self.summarize(checks)

    @staticmethod
    def summarize(checks: List[QualityCheck]) -> AccessibilityReport:
        return AccessibilityReport(
            checks=checks,
            score=accessibility_score(checks),
            summary=AccessibilitySummary(
                total_issues=len(checks),
                high=sum(1 for c in checks if c.severity == Severity.HIGH),
                medium=sum(1 for c in checks if c.severity == Severity.MEDIUM),
                low=sum(1 for c in checks if c.severity == Severity.LOW),
                auto_fixable=sum(1 for c in checks if c.auto_fixable),
            ),
        )

    def quality_score(self, output: AccessibilityReport, inp: AccessibilityInput) -> float:
        return output.score

    def default_output(self, inp: AccessibilityInput) -> AccessibilityReport:
        return AccessibilityReport(score=0.5)
