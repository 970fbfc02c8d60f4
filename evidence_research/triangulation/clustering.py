"""
Thematic clustering of deduplicated evidence.

Small evidence sets become a single "General" cluster. Larger sets get one
language-model call proposing named clusters with exemplar statements;
evidence is assigned to them by token overlap. Any failure falls back to
even chunking.
"""

from __future__ import annotations
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..context import RunContext
from ..exceptions import ProviderError
from ..llm import prompts
from ..models import Evidence, EvidenceCluster, Theme
from ..providers import ChatMessage, CompletionRequest
from ..text.json_payload import coerce_list, extract_json
from ..tools.url_canon import domain_of

logger = logging.getLogger(__name__)

GENERAL_THEME = "General"
FALLBACK_CLUSTERS = 4
MAX_CLUSTERS = 6
MIN_MODEL_CLUSTERS = 2
PROMPT_ITEMS = 100
SNIPPET_CHARS = 300

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "from", "are", "was", "were", "has", "have",
    "its", "their", "into", "about", "over", "more", "than", "not", "but", "can", "will",
    "how", "what", "which", "who", "why", "when", "where", "also", "been", "being", "such",
    "https", "http", "www", "com", "org", "html",
}


@dataclass
class ClusterSpec:
    """A model-proposed cluster before evidence assignment"""
    theme: str
    statements: List[str]
    contradictions: List[str]

    def tokens(self) -> set:
        return tokens(" ".join([self.theme, *self.statements]))


def tokens(text: str) -> set:
    return {w for w in _WORD.findall((text or "").lower()) if len(w) > 2 and w not in _STOPWORDS}


def cluster_strength(evidence: Sequence[Evidence]) -> float:
    """Strength on a 0-10 scale from evidence count and registered-domain diversity."""
    domains = {domain_of(e.url) for e in evidence}
    domains.discard("unknown")
    return round(min(10.0, 0.5 * len(evidence) + 1.0 * len(domains)), 1)


def make_cluster(theme: str, evidence: Sequence[Evidence], contradictions: Sequence[str] = ()) -> EvidenceCluster:
    return EvidenceCluster(
        theme=theme,
        evidence=list(evidence),
        strength=cluster_strength(evidence),
        contradictions=[c for c in contradictions if c],
    )


def rank_clusters(clusters: List[EvidenceCluster]) -> List[EvidenceCluster]:
    """Strongest first; ties keep their original order."""
    return sorted(clusters, key=lambda c: -c.strength)


def _chunk_label(chunk: Sequence[Evidence], themes_by_id: Dict[str, Theme], index: int) -> str:
    ids = Counter(e.theme_id for e in chunk if e.theme_id in themes_by_id)
    if ids:
        return themes_by_id[ids.most_common(1)[0][0]].question
    return f"Evidence group {index + 1}"


def chunk_clusters(evidence: List[Evidence], themes: Sequence[Theme] = ()) -> List[EvidenceCluster]:
    """Split evidence evenly (sizes differ by at most one) into labeled clusters."""
    if not evidence:
        return [make_cluster(GENERAL_THEME, [])]
    n = min(FALLBACK_CLUSTERS, len(evidence))
    size, extra = divmod(len(evidence), n)
    themes_by_id = {t.id: t for t in themes}
    clusters = []
    used = set()
    start = 0
    for i in range(n):
        end = start + size + (1 if i < extra else 0)
        chunk = evidence[start:end]
        start = end
        label = _chunk_label(chunk, themes_by_id, i)
        if label in used:
            label = f"{label} ({i + 1})"
        used.add(label)
        clusters.append(make_cluster(label, chunk))
    return rank_clusters(clusters)


def specs_from_payload(payload: Any) -> List[ClusterSpec]:
    specs = []
    for item in coerce_list(payload, "clusters", "items") or []:
        if not isinstance(item, dict):
            continue
        theme = str(item.get("theme") or "").strip()
        if not theme:
            continue
        statements = [str(s) for s in item.get("evidence_statements") or [] if s]
        contradictions = [str(c) for c in item.get("contradictions") or [] if c]
        specs.append(ClusterSpec(theme, statements, contradictions))
        if len(specs) >= MAX_CLUSTERS:
            break
    return specs


def assign_by_overlap(specs: List[ClusterSpec], evidence: List[Evidence]) -> List[EvidenceCluster]:
    """Assign each item to the proposed cluster with the largest token overlap.

    Items with no overlap go to the currently smallest cluster.
    """
    spec_tokens = [s.tokens() for s in specs]
    buckets: List[List[Evidence]] = [[] for _ in specs]
    for ev in evidence:
        ev_tokens = tokens(" ".join(filter(None, [ev.title, ev.snippet])))
        scores = [len(ev_tokens & st) for st in spec_tokens]
        best = max(scores) if scores else 0
        if best > 0:
            idx = scores.index(best)
        else:
            idx = min(range(len(buckets)), key=lambda i: len(buckets[i]))
        buckets[idx].append(ev)

    clusters = [make_cluster(s.theme, b, s.contradictions) for s, b in zip(specs, buckets) if b]
    return rank_clusters(clusters)


def _prompt_items(evidence: List[Evidence]) -> List[Dict[str, Any]]:
    return [
        {
            "url": e.url,
            "title": e.title or "",
            "snippet": (e.snippet or "")[:SNIPPET_CHARS],
        }
        for e in evidence[:PROMPT_ITEMS]
    ]


async def cluster_evidence(
    ctx: RunContext,
    evidence: List[Evidence],
    themes: Sequence[Theme] = (),
) -> List[EvidenceCluster]:
    """Group deduplicated evidence into named clusters, strongest first.

    Args:
        ctx: Run context
        evidence: Deduplicated evidence
        themes: Decomposed themes, used to label fallback clusters

    Returns:
        At least one cluster (a single, possibly empty, General cluster for small sets)
    """
    if len(evidence) < ctx.settings.CLUSTER_MIN_EVIDENCE:
        return [make_cluster(GENERAL_THEME, evidence)]

    request = CompletionRequest(
        messages=[
            ChatMessage(role="system", content=prompts.JSON_ONLY_ARRAY),
            ChatMessage(role="user", content=prompts.cluster_prompt(_prompt_items(evidence))),
        ],
        json_schema=prompts.CLUSTER_SCHEMA,
        temperature=0.2,
    )
    try:
        response = await ctx.complete(request)
    except ProviderError as e:
        logger.warning("Clustering call failed, chunking evidence: %s", e)
        return chunk_clusters(evidence, themes)
    if response is None:
        logger.info("LLM budget exhausted before clustering, chunking evidence")
        return chunk_clusters(evidence, themes)

    payload: Optional[Any] = response.object if isinstance(response.object, (list, dict)) else None
    if payload is None:
        parsed = extract_json(response.text)
        if not parsed.ok:
            logger.warning("Clustering output unparseable (%s), chunking evidence", parsed.error)
            return chunk_clusters(evidence, themes)
        payload = parsed.value

    specs = specs_from_payload(payload)
    if len(specs) < MIN_MODEL_CLUSTERS:
        logger.warning("Clustering produced %d usable clusters, chunking evidence", len(specs))
        return chunk_clusters(evidence, themes)
    return assign_by_overlap(specs, evidence)
