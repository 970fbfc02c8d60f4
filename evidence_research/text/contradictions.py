"""Best-effort detection of disagreement between evidence clusters.

A keyword scan over a contrast analysis, with a canned statement whenever the
analysis is unavailable or finds nothing.
"""

import logging
import re
from typing import Any, Dict, List

from ..context import RunContext
from ..exceptions import ProviderError
from ..llm import prompts
from ..models import ContradictionStatement, EvidenceCluster
from ..providers import AnswerRequest
from ..scheduling import ANSWER

logger = logging.getLogger(__name__)

MAX_STATEMENTS = 3
MAX_STATEMENT_CHARS = 300
CONTRAST_EVIDENCE = 10

CONFLICT = re.compile(
    r"\b(contradict\w*|conflict\w*|differ\w*|disagree\w*|inconsisten\w*|versus|vs\.?|diverg\w*|disput\w*)(?!\w)",
    re.IGNORECASE,
)
_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_MARKUP = re.compile(r"^[\s>*#\-\d.)]+|\*\*|__|`")


def canned_statement(clusters: List[EvidenceCluster]) -> ContradictionStatement:
    """Non-specific statement naming the top one or two clusters."""
    names = [c.theme for c in clusters[:2]]
    if len(names) >= 2:
        text = (
            f"Sources on '{names[0]}' and '{names[1]}' may report differing figures or emphasis; "
            "specific claims should be checked against the cited originals."
        )
    else:
        text = (
            f"Sources on '{names[0]}' may not agree on every detail; "
            "specific claims should be checked against the cited originals."
        )
    return ContradictionStatement(text=text, derived=False)


def extract_statements(text: str, limit: int = MAX_STATEMENTS) -> List[str]:
    """Sentences or lines mentioning a conflict keyword, in order, deduplicated."""
    found: List[str] = []
    seen = set()
    for piece in _SPLIT.split(text or ""):
        sentence = _MARKUP.sub("", piece).strip()
        if not sentence or not CONFLICT.search(sentence):
            continue
        key = sentence.lower()
        if key in seen:
            continue
        seen.add(key)
        if len(sentence) > MAX_STATEMENT_CHARS:
            sentence = sentence[: MAX_STATEMENT_CHARS - 3].rstrip() + "..."
        found.append(sentence)
        if len(found) >= limit:
            break
    return found


def _cluster_brief(cluster: EvidenceCluster) -> Dict[str, Any]:
    return {
        "theme": cluster.theme,
        "strength": cluster.strength,
        "evidence": [
            {"url": e.url, "title": e.title or "", "snippet": (e.snippet or "")[:200]}
            for e in cluster.evidence[:CONTRAST_EVIDENCE]
        ],
    }


async def analyze_contradictions(ctx: RunContext, clusters: List[EvidenceCluster]) -> List[ContradictionStatement]:
    """Find likely points of disagreement between the two strongest clusters.

    Args:
        ctx: Run context
        clusters: Clusters ordered strongest first

    Returns:
        Up to three statements; empty only when there is no evidence at all
    """
    populated = [c for c in clusters if c.evidence]
    if not populated:
        return []
    if len(populated) < 2 or ctx.budget.available(ANSWER) <= 0:
        return [canned_statement(populated)]

    first, second = populated[0], populated[1]
    try:
        answer = await ctx.ask(AnswerRequest(
            prompt=prompts.contrast_prompt(_cluster_brief(first), _cluster_brief(second)),
            mode="pro",
        ))
    except ProviderError as e:
        logger.warning("Contrast analysis failed, using canned statement: %s", e)
        return [canned_statement(populated)]
    if answer is None:
        return [canned_statement(populated)]

    statements = extract_statements(answer.text)
    if not statements:
        return [canned_statement(populated)]
    return [ContradictionStatement(text=s, derived=True) for s in statements]
