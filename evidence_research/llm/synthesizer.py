"""
Report Synthesizer

Produces the Report through an ordered chain of strategies sharing one
SynthesisContext. Each strategy either returns a Report or raises
SynthesisError, in which case the next one is tried:

1. structured  - narrative answer call, then a language-model restructuring pass
2. narrative   - mechanical segmentation of the narrative text
3. template    - cluster and theme metadata only, no provider calls

Every result is sanitized so the report invariants hold regardless of tier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError, field_validator

from ..context import RunContext
from ..exceptions import ParseFailure, ProviderError, SynthesisError
from ..models import (
    ContradictionStatement, Evidence, EvidenceCluster, KeyFinding, Report, ReportSection, Theme,
)
from ..monitoring_metrics import SYNTHESIS_TIER
from ..providers import AnswerRequest, AnswerResponse, ChatMessage, CompletionRequest
from ..text.json_payload import extract_json
from ..tools.url_canon import canonical_url, domain_of
from . import prompts

logger = logging.getLogger(__name__)

TIER_STRUCTURED = "structured"
TIER_NARRATIVE = "narrative"
TIER_TEMPLATE = "template"

MAX_SEGMENT_FINDINGS = 10
TEMPLATE_CITATIONS = 3
NARRATIVE_DEGRADED = "Structured synthesis was unavailable; findings and sections were segmented from the narrative text."
TEMPLATE_DEGRADED = (
    "Synthesis degraded to a template summary built from cluster and theme metadata; "
    "no model-generated analysis is included."
)

_MARKER = re.compile(r"\[(\d{1,3})\]")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$")
_BLOCKS = re.compile(r"\n\s*\n")
_CONFIDENCE = {"high", "medium", "low"}


# ---------------------------------------------------------------- payloads

def _normalize_citations(v: Any) -> List[Dict[str, Any]]:
    out = []
    for c in v or []:
        if isinstance(c, str):
            out.append({"url": c})
        elif isinstance(c, dict) and c.get("url"):
            out.append(c)
    return out


class _CitationIn(BaseModel):
    url: str


class _FindingIn(BaseModel):
    claim: str
    citations: List[_CitationIn] = []
    confidence: str = "medium"

    @field_validator("citations", mode="before")
    @classmethod
    def _citations(cls, v):
        return _normalize_citations(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        v = str(v or "").strip().lower()
        return v if v in _CONFIDENCE else "medium"


class _SectionIn(BaseModel):
    heading: str
    content: str
    citations: List[_CitationIn] = []

    @field_validator("citations", mode="before")
    @classmethod
    def _citations(cls, v):
        return _normalize_citations(v)


class _ReportIn(BaseModel):
    executive_summary: str = ""
    key_findings: List[_FindingIn] = []
    sections: List[_SectionIn] = []
    limitations: List[str] = []


class _DeepDiveIn(BaseModel):
    theme: str = ""
    content: str
    findings: List[_FindingIn] = []
    metrics_table: Optional[str] = None


# ---------------------------------------------------------------- context

@dataclass
class SynthesisContext:
    """State shared by every strategy in one synthesis pass"""
    run: RunContext
    themes: List[Theme]
    clusters: List[EvidenceCluster]
    contradictions: List[ContradictionStatement]
    supplementary: List[Evidence] = field(default_factory=list)
    narrative: Optional[AnswerResponse] = None
    narrative_attempted: bool = False
    _index: Dict[str, Evidence] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        for ev in self.evidence():
            self._index.setdefault(canonical_url(ev.url), ev)

    @property
    def query(self) -> str:
        return self.run.query.text

    def evidence(self) -> List[Evidence]:
        """Cluster evidence (strongest cluster first) followed by supplementary evidence."""
        out: List[Evidence] = []
        for c in self.clusters:
            out.extend(c.evidence)
        out.extend(self.supplementary)
        return out

    def remember(self, urls: Sequence[str]) -> None:
        for url in urls:
            key = canonical_url(url)
            if key and key not in self._index:
                self._index[key] = Evidence(url=key, source="answer")

    def resolve(self, urls: Sequence[str]) -> List[Evidence]:
        """Known evidence for the given URLs, in order, without repeats; unknown URLs are dropped."""
        out, seen = [], set()
        for url in urls:
            key = canonical_url(url)
            ev = self._index.get(key)
            if ev is not None and key not in seen:
                seen.add(key)
                out.append(ev)
        return out

    async def ensure_narrative(self) -> AnswerResponse:
        """One broad narrative answer call per synthesis pass, shared by the first two tiers."""
        if self.narrative is not None:
            return self.narrative
        if self.narrative_attempted:
            raise SynthesisError("narrative unavailable")
        self.narrative_attempted = True

        window = ""
        q = self.run.query
        if q.has_window:
            window = f"{q.date_from or '...'} to {q.date_to or '...'}"
        request = AnswerRequest(
            prompt=prompts.narrative_prompt(self.query, self._cluster_briefs(), window),
            mode=self.run.profile.narrative_tier,
        )
        try:
            answer = await self.run.ask(request, use_reserve=True)
        except ProviderError as e:
            raise SynthesisError(f"narrative call failed: {e}") from e
        if answer is None:
            raise SynthesisError("answer budget exhausted before narrative")
        if not answer.text.strip():
            raise SynthesisError("narrative call returned no text")
        self.narrative = answer
        self.remember(answer.citations)
        return answer

    def _cluster_briefs(self) -> List[Dict[str, Any]]:
        budget = self.run.settings.SYNTH_MAX_EVIDENCE
        briefs = []
        for c in self.clusters:
            take = c.evidence[: max(0, budget)]
            budget -= len(take)
            briefs.append({
                "theme": c.theme,
                "strength": c.strength,
                "sources": [{"url": e.url, "title": e.title or "", "snippet": (e.snippet or "")[:200]} for e in take],
            })
        return briefs


# ---------------------------------------------------------------- strategies

class SynthesisStrategy:
    name = "base"

    async def produce(self, sctx: SynthesisContext) -> Report:
        raise NotImplementedError


def _structured_payload(response) -> Any:
    if isinstance(response.object, dict):
        return response.object
    try:
        return extract_json(response.text, expect=dict).unwrap(response.text)
    except ParseFailure as e:
        raise SynthesisError(f"structured output unparseable: {e}") from e


class StructuredStrategy(SynthesisStrategy):
    """Narrative pass plus a schema-constrained restructuring call"""

    name = TIER_STRUCTURED

    async def produce(self, sctx: SynthesisContext) -> Report:
        narrative = await sctx.ensure_narrative()
        evidence = [
            {"url": e.url, "title": e.title or "", "snippet": (e.snippet or "")[:200], "published_at": e.published_at or ""}
            for e in sctx.evidence()[: sctx.run.settings.SYNTH_MAX_EVIDENCE]
        ]
        evidence.extend({"url": u} for u in narrative.citations if u)
        request = CompletionRequest(
            messages=[
                ChatMessage(role="system", content=prompts.JSON_ONLY_OBJECT),
                ChatMessage(role="user", content=prompts.structure_prompt(sctx.query, narrative.text, evidence)),
            ],
            json_schema=prompts.REPORT_SCHEMA,
            temperature=0.2,
        )
        try:
            response = await sctx.run.complete(request)
        except ProviderError as e:
            raise SynthesisError(f"restructuring call failed: {e}") from e
        if response is None:
            raise SynthesisError("llm budget exhausted before restructuring")

        try:
            payload = _ReportIn.model_validate(_structured_payload(response))
        except ValidationError as e:
            raise SynthesisError(f"structured output invalid: {e.error_count()} error(s)") from e
        if not (payload.executive_summary.strip() or payload.key_findings or payload.sections):
            raise SynthesisError("structured output empty")

        report = Report(
            query=sctx.query,
            executive_summary=payload.executive_summary.strip(),
            key_findings=[self._finding(sctx, f) for f in payload.key_findings if f.claim.strip()],
            sections=[
                ReportSection(
                    heading=s.heading.strip() or "Analysis",
                    content=s.content.strip(),
                    citations=sctx.resolve([c.url for c in s.citations]),
                )
                for s in payload.sections
                if s.content.strip()
            ],
            limitations=[l.strip() for l in payload.limitations if l and l.strip()],
        )
        if sctx.run.profile.name == "deep" and sctx.run.settings.ENABLE_DEEP_DIVE:
            await self._deep_dive(sctx, report)
        return report

    @staticmethod
    def _finding(sctx: SynthesisContext, f: _FindingIn) -> KeyFinding:
        return KeyFinding(
            claim=f.claim.strip(),
            citations=sctx.resolve([c.url for c in f.citations]),
            confidence=f.confidence,
        )

    async def _deep_dive(self, sctx: SynthesisContext, report: Report) -> None:
        strongest = next((c for c in sctx.clusters if c.evidence), None)
        if strongest is None:
            return
        brief = {
            "theme": strongest.theme,
            "strength": strongest.strength,
            "evidence": [
                {"url": e.url, "title": e.title or "", "snippet": (e.snippet or "")[:300]}
                for e in strongest.evidence[: sctx.run.settings.SYNTH_MAX_EVIDENCE]
            ],
        }
        request = CompletionRequest(
            messages=[
                ChatMessage(role="system", content=prompts.JSON_ONLY_OBJECT),
                ChatMessage(role="user", content=prompts.deep_dive_prompt(sctx.query, brief)),
            ],
            json_schema=prompts.DEEP_DIVE_SCHEMA,
            temperature=0.2,
        )
        try:
            response = await sctx.run.complete(request)
            if response is None:
                return
            dive = _DeepDiveIn.model_validate(_structured_payload(response))
        except (ProviderError, SynthesisError, ValidationError) as e:
            logger.info("Deep-dive section skipped: %s", e)
            return

        content = dive.content.strip()
        if dive.metrics_table and dive.metrics_table.strip():
            content = f"{content}\n\n{dive.metrics_table.strip()}"
        if content:
            report.sections.append(ReportSection(
                heading=f"Deep dive: {dive.theme.strip() or strongest.theme}",
                content=content,
                citations=list(strongest.evidence[:5]),
            ))
        report.key_findings.extend(self._finding(sctx, f) for f in dive.findings if f.claim.strip())


def _split_blocks(text: str) -> List[Tuple[Optional[str], str]]:
    """Paragraphs of a narrative, each paired with the heading preceding it (if any)."""
    blocks: List[Tuple[Optional[str], str]] = []
    heading: Optional[str] = None
    for raw in _BLOCKS.split(text or ""):
        lines = [ln for ln in raw.strip().splitlines() if ln.strip()]
        body = []
        for ln in lines:
            m = _HEADING.match(ln)
            if m:
                if body:
                    blocks.append((heading, "\n".join(body)))
                    body = []
                heading = m.group(1).strip()
            else:
                body.append(ln.strip())
        if body:
            blocks.append((heading, "\n".join(body)))
            heading = None
    return blocks


def _strip_markers(text: str) -> str:
    return re.sub(r"\s{2,}", " ", _MARKER.sub("", text)).strip()


class NarrativeStrategy(SynthesisStrategy):
    """Segment the narrative into summary, findings and sections by position"""

    name = TIER_NARRATIVE

    async def produce(self, sctx: SynthesisContext) -> Report:
        narrative = await sctx.ensure_narrative()
        blocks = _split_blocks(narrative.text)
        if not blocks:
            raise SynthesisError("narrative has no paragraphs")

        cited = sctx.resolve(narrative.citations)
        pool = cited or sctx.evidence()
        summary = _strip_markers(blocks[0][1])

        findings: List[KeyFinding] = []
        for i, (_, para) in enumerate(blocks[1: 1 + MAX_SEGMENT_FINDINGS]):
            marked = self._marked(sctx, narrative, para)
            if marked:
                citations, confidence = marked, "medium"
            elif pool:
                citations, confidence = [pool[i % len(pool)]], "low"
            else:
                citations, confidence = [], "low"
            findings.append(KeyFinding(claim=_strip_markers(para), citations=citations, confidence=confidence))

        sections = [
            ReportSection(
                heading=heading or f"Analysis {n}",
                content=_strip_markers(para),
                citations=self._marked(sctx, narrative, para),
            )
            for n, (heading, para) in enumerate(blocks[1 + MAX_SEGMENT_FINDINGS:], start=1)
        ]
        if not sections:
            sections = [ReportSection(heading="Narrative", content=_strip_markers(narrative.text), citations=cited)]

        return Report(
            query=sctx.query,
            executive_summary=summary,
            key_findings=findings,
            sections=sections,
            limitations=[NARRATIVE_DEGRADED],
        )

    @staticmethod
    def _marked(sctx: SynthesisContext, narrative: AnswerResponse, para: str) -> List[Evidence]:
        urls = []
        for m in _MARKER.finditer(para):
            idx = int(m.group(1)) - 1
            if 0 <= idx < len(narrative.citations):
                urls.append(narrative.citations[idx])
        return sctx.resolve(urls)


def _confidence_for(strength: float) -> str:
    if strength >= 7:
        return "high"
    if strength >= 4:
        return "medium"
    return "low"


def template_report(sctx: SynthesisContext) -> Report:
    """Minimal report from cluster and theme metadata. Makes no provider calls."""
    populated = [c for c in sctx.clusters if c.evidence]
    total = sum(c.size for c in sctx.clusters)

    if populated:
        top = populated[0]
        summary = (
            f"This report on \"{sctx.query}\" was assembled from {total} evidence item(s) "
            f"grouped into {len(sctx.clusters)} thematic cluster(s). The strongest cluster is "
            f"'{top.theme}' with strength {top.strength:.1f}/10."
        )
    else:
        summary = (
            f"No external evidence could be gathered for \"{sctx.query}\" within the run's budgets. "
            f"The outline below reflects the {len(sctx.themes)} planned research theme(s)."
        )

    findings = []
    for c in populated:
        domains = {domain_of(e.url) for e in c.evidence}
        findings.append(KeyFinding(
            claim=(
                f"{c.theme}: {c.size} source(s) across {len(domains)} domain(s), "
                f"evidence strength {c.strength:.1f}/10."
            ),
            citations=list(c.evidence[:TEMPLATE_CITATIONS]),
            confidence=_confidence_for(c.strength),
        ))

    sections = []
    for c in sctx.clusters:
        lines = [f"Evidence items: {c.size}. Strength: {c.strength:.1f}/10."]
        titles = [e.title for e in c.evidence if e.title][:5]
        if titles:
            lines.append("Representative sources: " + "; ".join(titles) + ".")
        if c.contradictions:
            lines.append("Noted disagreements: " + " ".join(c.contradictions))
        sections.append(ReportSection(heading=c.theme, content="\n\n".join(lines), citations=list(c.evidence[:5])))
    if sctx.themes:
        sections.append(ReportSection(
            heading="Research themes",
            content="\n".join(f"- {t.question} ({t.strategy.value})" for t in sctx.themes),
        ))

    return Report(
        query=sctx.query,
        executive_summary=summary,
        key_findings=findings,
        sections=sections,
        limitations=[TEMPLATE_DEGRADED],
    )


class TemplateStrategy(SynthesisStrategy):
    """Metadata-only report; cannot fail for a valid query"""

    name = TIER_TEMPLATE

    async def produce(self, sctx: SynthesisContext) -> Report:
        return template_report(sctx)


DEFAULT_CHAIN: Tuple[SynthesisStrategy, ...] = (StructuredStrategy(), NarrativeStrategy(), TemplateStrategy())


# ---------------------------------------------------------------- sanitize

def sanitize_report(report: Report, sctx: SynthesisContext) -> Report:
    """Enforce report invariants.

    Drops findings without citations (counted in limitations), guarantees a
    non-empty executive summary and at least one section, and appends the
    contradiction statements to the limitations.
    """
    kept = [f for f in report.key_findings if f.citations]
    missing = len(report.key_findings) - len(kept)
    limitations = list(report.limitations)
    if missing:
        logger.info("Dropping %d uncited finding(s)", missing)
        limitations.append(f"{missing} key finding(s) removed due to missing citations.")

    summary = report.executive_summary.strip()
    if not summary:
        summary = template_report(sctx).executive_summary

    sections = [s for s in report.sections if s.content.strip()]
    if not sections:
        sections = template_report(sctx).sections or [
            ReportSection(heading="Overview", content=summary)
        ]

    for statement in sctx.contradictions:
        if statement.text not in limitations:
            limitations.append(statement.text)

    return report.model_copy(update={
        "executive_summary": summary,
        "key_findings": kept,
        "sections": sections,
        "limitations": limitations,
    })


async def synthesize(
    sctx: SynthesisContext,
    chain: Sequence[SynthesisStrategy] = DEFAULT_CHAIN,
) -> Tuple[Report, str]:
    """Run the strategy chain until one produces a report.

    Returns:
        The sanitized report and the name of the tier that produced it
    """
    for strategy in chain:
        try:
            report = await strategy.produce(sctx)
        except SynthesisError as e:
            logger.warning("Synthesis tier '%s' failed: %s", strategy.name, e)
            continue
        SYNTHESIS_TIER.labels(tier=strategy.name).inc()
        return sanitize_report(report, sctx), strategy.name
    raise SynthesisError("no synthesis strategy produced a report")
