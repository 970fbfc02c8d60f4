"""Budgeted, concurrent evidence gathering across themes."""

import asyncio
import logging
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional

from .context import RunContext
from .exceptions import ProviderError
from .llm import prompts
from .models import Evidence, ResearchQuery, Strategy, Theme
from .providers import AnswerRequest, SearchHit, SearchRequest
from .text.json_payload import extract_json
from .tools.url_canon import canonical_url, host_key

logger = logging.getLogger(__name__)

GAP_FILL_MAX_URLS = 5
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y", "%Y-%m", "%Y")


def parse_published(value: Optional[str]) -> Optional[date]:
    """Best-effort parse of a provider publication date; None when unknown."""
    if not value:
        return None
    s = value.strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return parsedate_to_datetime(s).date()
    except (TypeError, ValueError, IndexError):
        return None


def within_window(published_at: Optional[str], date_from: Optional[date], date_to: Optional[date]) -> bool:
    """True unless a parseable date falls outside the inclusive window."""
    if not published_at or (date_from is None and date_to is None):
        return True
    published = parse_published(published_at)
    if published is None:
        return True
    if date_from and published < date_from:
        return False
    if date_to and published > date_to:
        return False
    return True


def _window_text(query: ResearchQuery) -> str:
    if not query.has_window:
        return ""
    start = query.date_from.isoformat() if query.date_from else "the earliest available date"
    end = query.date_to.isoformat() if query.date_to else "today"
    return f"{start} to {end}"


def _hit_to_evidence(hit: SearchHit, theme_id: Optional[str]) -> Evidence:
    return Evidence(
        url=hit.url,
        title=hit.title,
        snippet=hit.snippet,
        published_at=hit.published_at,
        source="search",
        theme_id=theme_id,
    )


def _in_window(ctx: RunContext, hits: Iterable[SearchHit]) -> List[SearchHit]:
    return [h for h in hits if within_window(h.published_at, ctx.query.date_from, ctx.query.date_to)]


def build_search_request(
    ctx: RunContext,
    query: str,
    depth: Optional[str] = None,
    include_domains: Optional[List[str]] = None,
) -> SearchRequest:
    return SearchRequest(
        query=query,
        max_results=ctx.settings.SEARCH_MAX_RESULTS,
        time_range="year" if ctx.query.has_window else None,
        search_depth=depth or ctx.profile.search_depth,
        include_domains=include_domains if include_domains is not None else ctx.settings.include_domains(),
        exclude_domains=ctx.settings.exclude_domains(),
    )


async def _gather_fact(ctx: RunContext, theme: Theme) -> List[Evidence]:
    response = await ctx.search(build_search_request(ctx, theme.question))
    if response is None:
        logger.info("Search budget exhausted; theme %s contributes no evidence", theme.id)
        return []
    return [_hit_to_evidence(h, theme.id) for h in _in_window(ctx, response.items)]


def _attach_metadata(citations: List[str], hits: List[SearchHit], theme_id: str) -> List[Evidence]:
    """Replace bare citations with search hits from the same URL or host."""
    by_url: Dict[str, SearchHit] = {}
    by_host: Dict[str, SearchHit] = {}
    for hit in hits:
        by_url.setdefault(canonical_url(hit.url), hit)
        host = host_key(hit.url)
        if host:
            by_host.setdefault(host, hit)

    used_hosts = set()
    out = []
    for url in citations:
        exact = by_url.get(canonical_url(url))
        if exact is not None:
            out.append(_hit_to_evidence(exact, theme_id).model_copy(update={"url": url}))
            continue
        host = host_key(url)
        hit = by_host.get(host)
        # One hit stands in for at most one citation per host
        if hit is not None and host not in used_hosts:
            used_hosts.add(host)
            out.append(_hit_to_evidence(hit, theme_id))
        else:
            out.append(Evidence(url=url, source="answer", theme_id=theme_id))
    return out


async def _gather_answer(ctx: RunContext, theme: Theme) -> List[Evidence]:
    mode = "reasoning" if theme.strategy is Strategy.REASONING else "pro"
    prompt = theme.question
    window = _window_text(ctx.query)
    if window:
        prompt = f"{prompt}\nFocus on sources published from {window}."

    answer = await ctx.ask(AnswerRequest(prompt=prompt, mode=mode))
    if answer is None:
        logger.info("Answer budget exhausted; theme %s contributes no evidence", theme.id)
        return []

    citations = [c for c in answer.citations if c][: ctx.settings.ANSWER_MAX_CITATIONS]
    if not citations:
        return []
    if ctx.budget.deadline_exceeded():
        return [Evidence(url=u, source="answer", theme_id=theme.id) for u in citations]

    hosts = sorted({host_key(u) for u in citations if host_key(u)})
    try:
        follow_up = await ctx.search(build_search_request(ctx, theme.question, include_domains=hosts))
    except ProviderError as e:
        logger.warning("Metadata follow-up for theme %s failed: %s", theme.id, e)
        follow_up = None

    hits = _in_window(ctx, follow_up.items) if follow_up is not None else []
    return _attach_metadata(citations, hits, theme.id)


async def _gather_theme(ctx: RunContext, theme: Theme) -> List[Evidence]:
    if ctx.budget.deadline_exceeded():
        return []
    try:
        if theme.strategy is Strategy.FACT:
            return await _gather_fact(ctx, theme)
        return await _gather_answer(ctx, theme)
    except ProviderError as e:
        logger.warning("Theme %s (%s) failed: %s", theme.id, theme.strategy.value, e)
        return []


async def gather_evidence(ctx: RunContext, themes: List[Theme]) -> List[Evidence]:
    """Gather evidence for every theme concurrently.

    Failures are isolated per theme; the stage waits for every task.

    Args:
        ctx: Run context
        themes: Decomposed themes

    Returns:
        Flat list of evidence in theme order (not yet deduplicated)
    """
    results = await asyncio.gather(*(_gather_theme(ctx, t) for t in themes), return_exceptions=True)
    evidence: List[Evidence] = []
    for theme, result in zip(themes, results):
        if isinstance(result, BaseException):
            logger.error("Unexpected failure gathering theme %s: %r", theme.id, result)
            continue
        evidence.extend(result)
    logger.info("Gathered %d evidence items across %d themes", len(evidence), len(themes))
    return evidence


def _trailing_urls(text: str) -> List[str]:
    lines = [ln for ln in (text or "").strip().splitlines() if ln.strip()]
    if not lines:
        return []
    parsed = extract_json(lines[-1], expect=list)
    if not parsed.ok:
        return []
    return [u for u in parsed.value if isinstance(u, str) and u.startswith(("http://", "https://"))]


async def gap_fill(ctx: RunContext, conflict: str) -> List[Evidence]:
    """One extra pass aimed at resolving a detected contradiction.

    Returns:
        Additional evidence (not deduplicated against existing items)
    """
    extra: List[Evidence] = []
    if ctx.budget.deadline_exceeded():
        return extra

    try:
        answer = await ctx.ask(AnswerRequest(prompt=prompts.gap_fill_prompt(ctx.query.text, conflict), mode="reasoning"))
    except ProviderError as e:
        logger.warning("Gap-fill answer call failed: %s", e)
        answer = None
    if answer is not None:
        urls = _trailing_urls(answer.text) or answer.citations
        extra.extend(Evidence(url=u, source="answer") for u in urls[:GAP_FILL_MAX_URLS])

    if ctx.budget.deadline_exceeded():
        return extra
    try:
        response = await ctx.search(build_search_request(ctx, conflict, depth="advanced"))
    except ProviderError as e:
        logger.warning("Gap-fill search call failed: %s", e)
        response = None
    if response is not None:
        extra.extend(_hit_to_evidence(h, None) for h in _in_window(ctx, response.items))
    return extra
