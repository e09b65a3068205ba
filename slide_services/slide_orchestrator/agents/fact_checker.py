"""Fact checker: finds claims on slides and rates how well the research supports them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...shared.models import AgentRole, CheckType, QualityCheck, ResearchSnippet, Severity, Slide
from ..agent_base import AgentBase, ModelBinding, decode_json

# Checked in order; the first pattern that matches decides the claim kind
CLAIM_PATTERNS = [
    ("statistical", re.compile(r"\b\d+(\.\d+)?%|\b\d+\s*(million|billion|thousand)\b|\b\d+\s*(times|fold)\b", re.I)),
    ("factual", re.compile(r"\b(is|are|was|were|will be|has been|have been)\b.*\b(always|never|all|every|none|no)\b", re.I)),
    ("claim", re.compile(r"\b(leads to|causes|results in|increases|decreases|improves|reduces)\b", re.I)),
    ("opinion", re.compile(r"\b(believe|think|feel|suggest|recommend|should|must)\b", re.I)),
]

MIN_SUPPORT_CONFIDENCE = 0.7
MAX_SUPPORT_SNIPPETS = 3


@dataclass
class Claim:
    id: str
    text: str
    kind: str
    slide_id: str


class FactCheckInput(BaseModel):
    slides: List[Slide]
    research_snippets: List[ResearchSnippet] = Field(default_factory=list)
    strict_mode: bool = False


class FactSummary(BaseModel):
    total_claims: int = 0
    supported_claims: int = 0
    unsupported_claims: int = 0
    high_severity_issues: int = 0


class FactCheckReport(BaseModel):
    checks: List[QualityCheck] = Field(default_factory=list)
    score: float = 1.0
    summary: FactSummary = Field(default_factory=FactSummary)


def classify_claim(text: str) -> Optional[str]:
    for kind, pattern in CLAIM_PATTERNS:
        if pattern.search(text):
            return kind
    return None


def extract_claims(slides: List[Slide]) -> List[Claim]:
    claims = []
    for slide in slides:
        for text in slide.text_items():
            kind = classify_claim(text)
            if kind:
                claims.append(Claim(id=f"claim-{len(claims) + 1}", text=text, kind=kind, slide_id=slide.id))
    return claims


def supporting_snippets(claim_text: str, snippets: List[ResearchSnippet]) -> List[ResearchSnippet]:
    words = [w for w in claim_text.lower().split() if len(w) > 3]
    found = []
    for snippet in snippets:
        if snippet.confidence < MIN_SUPPORT_CONFIDENCE:
            continue
        text = snippet.text.lower()
        tags = {tag.lower() for tag in snippet.tags}
        if any(w in text or w in tags for w in words):
            found.append(snippet)
        if len(found) == MAX_SUPPORT_SNIPPETS:
            break
    return found


class FactCheckerAgent(AgentBase):
    """Deterministic claim extraction plus a single support-rating call."""

    role = AgentRole.FACT_CHECKER
    input_model = FactCheckInput
    temperature = 0.2

    def _rateable(self, inp: FactCheckInput) -> Dict[str, List[ResearchSnippet]]:
        evidence = {}
        for claim in extract_claims(inp.slides):
            snippets = supporting_snippets(claim.text, inp.research_snippets)
            if snippets:
                evidence[claim.id] = snippets
        return evidence

    def build_prompt(self, inp: FactCheckInput) -> str:
        evidence = self._rateable(inp)
        blocks = []
        for claim in extract_claims(inp.slides):
            if claim.id not in evidence:
                continue
            lines = "\n".join(f'  - "{s.text}" (confidence: {s.confidence})' for s in evidence[claim.id])
            blocks.append(f'{claim.id}: "{claim.text}"\n{lines}')
        return (
            "Rate how well the research supports each claim, from 0 (no support) to 1 (fully supported).\n"
            "Consider relevance, source quality, strength of evidence and contradictions.\n\n"
            + "\n\n".join(blocks)
            + '\n\nReturn JSON: {"ratings": [{"claim": "claim-1", "support": 0.8, "reasoning": "..."}]}'
        )

    def parse(self, data: Any, inp: FactCheckInput) -> Dict[str, float]:
        if isinstance(data, dict):
            data = data.get("ratings", [])
        ratings = {}
        if isinstance(data, list):
            for item in data:
                if not isinstance(item, dict) or "claim" not in item:
                    continue
                try:
                    support = float(item.get("support", item.get("supportScore", 0.0)))
                except (TypeError, ValueError):
                    continue
                ratings[str(item["claim"])] = min(max(support, 0.0), 1.0)
        return ratings

    async def generate(self, inp: FactCheckInput, binding: ModelBinding) -> FactCheckReport:
        evidence = self._rateable(inp)
        ratings: Dict[str, float] = {}
        if evidence:
            raw = await self.call_model(self.build_prompt(inp), binding)
            ratings = self.parse(decode_json(raw), inp)
        return self.report(inp, evidence, ratings)

    def report(
        self,
        inp: FactCheckInput,
        evidence: Dict[str, List[ResearchSnippet]],
        ratings: Dict[str, float],
    ) -> FactCheckReport:
        checks: List[QualityCheck] = []
        claims = extract_claims(inp.slides)
        unsupported = 0
        for claim in claims:
            snippets = evidence.get(claim.id)
            if not snippets:
                unsupported += 1
                checks.append(
                    QualityCheck(
                        type=CheckType.FACT,
                        severity=Severity.HIGH if inp.strict_mode else Severity.MEDIUM,
                        message=f'Unsupported claim: "{claim.text}"',
                        target=claim.slide_id,
                        suggestion="Add supporting evidence or remove the claim",
                    )
                )
                continue
            # Unrated claims fall back to the mean evidence confidence
            support = ratings.get(claim.id, sum(s.confidence for s in snippets) / len(snippets))
            if support < 0.6:
                unsupported += 1
                checks.append(
                    QualityCheck(
                        type=CheckType.FACT,
                        severity=Severity.HIGH if support < 0.3 else Severity.MEDIUM,
                        message=f'Weakly supported claim: "{claim.text}"',
                        target=claim.slide_id,
                        suggestion="Strengthen evidence or qualify the statement",
                    )
                )

        checks.extend(self.citation_checks(inp.slides, inp.research_snippets, claims))

        high = sum(1 for check in checks if check.severity == Severity.HIGH)
        total = len(claims)
        if total == 0:
            score = 1.0
        else:
            score = min(max((total - unsupported) / total - 0.2 * high, 0.0), 1.0)
        return FactCheckReport(
            checks=checks,
            score=score,
            summary=FactSummary(
                total_claims=total,
                supported_claims=total - unsupported,
                unsupported_claims=unsupported,
                high_severity_issues=high,
            ),
        )

    def citation_checks(self, slides: List[Slide], snippets: List[ResearchSnippet], claims: List[Claim]) -> List[QualityCheck]:
        known = {s.id for s in snippets}
        checks = []
        for slide in slides:
            if not slide.cites:
                needs_cite = any(c.slide_id == slide.id and c.kind in ("statistical", "factual") for c in claims)
                if needs_cite:
                    checks.append(
                        QualityCheck(
                            type=CheckType.FACT,
                            severity=Severity.MEDIUM,
                            message="Slide contains claims but no citations",
                            target=slide.id,
                            suggestion="Add citations to support the claims",
                        )
                    )
                continue
            for cite in slide.cites:
                if cite not in known:
                    checks.append(
                        QualityCheck(
                            type=CheckType.FACT,
                            severity=Severity.LOW,
                            message=f"Invalid citation: {cite}",
                            target=slide.id,
                            suggestion="Remove invalid citation or update with correct ID",
                            auto_fixable=True,
                        )
                    )
        return checks

    def quality_score(self, output: FactCheckReport, inp: FactCheckInput) -> float:
        return output.score

    def default_output(self, inp: FactCheckInput) -> FactCheckReport:
        return FactCheckReport(score=0.5)
