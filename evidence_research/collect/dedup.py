"""
URL-identity deduplication of evidence
"""

import logging
from typing import Dict, Iterable, List

from ..models import Evidence
from ..tools.url_canon import canonical_url

logger = logging.getLogger(__name__)

_MERGE_FIELDS = ("title", "snippet", "published_at", "theme_id")


def merge_evidence(kept: Evidence, other: Evidence) -> Evidence:
    """Fill empty fields of the first-seen item from a later duplicate."""
    update = {}
    for field in _MERGE_FIELDS:
        if not getattr(kept, field) and getattr(other, field):
            update[field] = getattr(other, field)
    # A search hit carries richer provenance than a bare citation
    if kept.source == "answer" and other.source == "search" and other.richness() > kept.richness():
        update["source"] = "search"
    return kept.model_copy(update=update) if update else kept


def dedupe_evidence(items: Iterable[Evidence]) -> List[Evidence]:
    """
    Collapse evidence sharing a canonical URL.

    First-seen order and metadata win; empty fields are filled from later
    duplicates. Items without a usable URL are dropped. Idempotent.
    """
    by_url: Dict[str, Evidence] = {}
    dropped = 0
    for ev in items:
        url = canonical_url(ev.url)
        if not url:
            dropped += 1
            continue
        if url != ev.url:
            ev = ev.model_copy(update={"url": url})
        existing = by_url.get(url)
        if existing is None:
            by_url[url] = ev
        else:
            by_url[url] = merge_evidence(existing, ev)
            dropped += 1
    if dropped:
        logger.debug("Deduplicated evidence: %d kept, %d collapsed", len(by_url), dropped)
    return list(by_url.values())
