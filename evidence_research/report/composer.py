"""
Markdown rendering of a synthesized report.

Citations are renumbered sequentially across the whole document in order of
first appearance (findings first, then sections) and listed once in a
Sources appendix. Pure transformation, no provider calls.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import Evidence, Report
from ..tools.url_canon import canonical_url, domain_of

HTML_TAG = re.compile(r"<[^>]+>")


def _clean(s: str) -> str:
    """Remove HTML tags and normalize whitespace."""
    s = HTML_TAG.sub("", s or "")
    return " ".join(s.split())


def _short(s: str, n: int = 240) -> str:
    s = _clean(s or "")
    return s if len(s) <= n else s[:n].rsplit(" ", 1)[0] + "…"


def _block(s: str) -> str:
    """Strip HTML but keep paragraph breaks and markdown tables."""
    return HTML_TAG.sub("", s or "").strip()


class CitationIndex:
    """Sequential citation numbers keyed by canonical URL"""

    def __init__(self, enrich: Iterable[Evidence] = ()):
        self._numbers: Dict[str, int] = {}
        self._sources: List[Evidence] = []
        self._metadata: Dict[str, Evidence] = {}
        for ev in enrich:
            self._metadata.setdefault(canonical_url(ev.url), ev)

    def number(self, ev: Evidence) -> int:
        key = canonical_url(ev.url) or ev.url
        if key not in self._numbers:
            self._numbers[key] = len(self._sources) + 1
            self._sources.append(self._richest(key, ev))
        return self._numbers[key]

    def markers(self, citations: Iterable[Evidence]) -> str:
        nums = []
        for ev in citations:
            n = self.number(ev)
            if n not in nums:
                nums.append(n)
        return "".join(f"[{n}]" for n in nums)

    def _richest(self, key: str, ev: Evidence) -> Evidence:
        known = self._metadata.get(key)
        if known is None or known.richness() <= ev.richness():
            return ev
        return known

    @property
    def sources(self) -> List[Evidence]:
        return list(self._sources)


def _source_line(n: int, ev: Evidence) -> str:
    title = _short(ev.title or "", 160) or domain_of(ev.url)
    line = f"{n}. {title} — <{ev.url}>"
    if ev.published_at:
        line += f" ({ev.published_at})"
    return line


def render_markdown(report: Report, evidence: Optional[Iterable[Evidence]] = None) -> Tuple[str, List[Evidence]]:
    """Render a report as citation-annotated Markdown.

    Args:
        report: Sanitized report
        evidence: Full evidence set, used to enrich source titles and dates

    Returns:
        The Markdown document and the ordered list of cited sources
    """
    idx = CitationIndex(evidence or ())
    out: List[str] = [
        "# Research Brief",
        "",
        f"**Query:** {_clean(report.query)}",
        "",
        "## Executive Summary",
        "",
        _block(report.executive_summary),
        "",
        "## Key Findings",
        "",
    ]

    if report.key_findings:
        for f in report.key_findings:
            marks = idx.markers(f.citations)
            out.append(f"- **{_clean(f.claim)}** — _{f.confidence}_ {marks}".rstrip())
    else:
        out.append("_No findings could be supported with citations._")
    out.append("")

    out += ["## Detailed Analysis", ""]
    for s in report.sections:
        out += [f"### {_clean(s.heading)}", "", _block(s.content)]
        marks = idx.markers(s.citations)
        if marks:
            out += ["", f"Sources: {marks}"]
        out.append("")

    out += ["## Sources", ""]
    sources = idx.sources
    if sources:
        out += [_source_line(n, ev) for n, ev in enumerate(sources, start=1)]
    else:
        out.append("_No sources cited._")
    out.append("")

    out += ["## Limitations", ""]
    out += [f"- {_clean(l)}" for l in report.limitations] or ["- None noted."]
    out.append("")
    return "\n".join(out), sources
