"""Test budgeted evidence gathering."""

from datetime import date

import pytest

from evidence_research.collection import (
    gap_fill, gather_evidence, parse_published, within_window,
)
from evidence_research.exceptions import ProviderError
from evidence_research.models import Strategy, Theme
from evidence_research.providers import SearchHit
from evidence_research.scheduling import ANSWER, SEARCH

from conftest import FakeAnswer, FakeSearch, make_context, make_providers, make_settings

FACT = Theme(id="t1", question="Latest solid-state battery milestones", strategy=Strategy.FACT)
KNOWLEDGE = Theme(id="t2", question="Challenges for solid-state batteries", strategy=Strategy.KNOWLEDGE)
REASONING = Theme(id="t3", question="Five-year outlook", strategy=Strategy.REASONING)


def _hits(n, host="news.example.com"):
    return [SearchHit(url=f"https://{host}/{i}", title=f"Story {i}", snippet="text") for i in range(n)]


def test_parse_published_formats():
    assert parse_published("2024-03-05T10:00:00Z") == date(2024, 3, 5)
    assert parse_published("March 5, 2024") == date(2024, 3, 5)
    assert parse_published("Tue, 05 Mar 2024 10:00:00 GMT") == date(2024, 3, 5)
    assert parse_published("sometime last year") is None


def test_window_keeps_undated_and_unparseable():
    start, end = date(2024, 1, 1), date(2024, 12, 31)
    assert within_window(None, start, end)
    assert within_window("recently", start, end)
    assert within_window("2024-06-01", start, end)
    assert not within_window("2023-06-01", start, end)
    assert within_window("2025-01-01", start, None)


@pytest.mark.asyncio
async def test_search_ceiling_zero_yields_empty_evidence():
    search = FakeSearch(hits=_hits(3))
    ctx = make_context(settings=make_settings(SEARCH_CALL_CAP=0), providers=make_providers(search=search))
    evidence = await gather_evidence(ctx, [FACT, Theme(id="t4", question="Other", strategy=Strategy.FACT)])
    assert evidence == []
    assert search.requests == []


@pytest.mark.asyncio
async def test_fact_theme_uses_search():
    search = FakeSearch(hits=_hits(3))
    ctx = make_context(providers=make_providers(search=search))
    evidence = await gather_evidence(ctx, [FACT])
    assert len(evidence) == 3
    assert all(e.source == "search" and e.theme_id == "t1" for e in evidence)
    assert search.requests[0].search_depth == "basic"


@pytest.mark.asyncio
async def test_answer_citations_get_search_metadata():
    answer = FakeAnswer(text="answer", citations=[
        "https://www.nature.com/articles/abc",
        "https://www.nature.com/articles/def",
        "https://arxiv.org/abs/1",
    ])

    def handler(request):
        assert request.include_domains == ["arxiv.org", "nature.com"]
        return [
            SearchHit(url="https://arxiv.org/abs/1", title="Preprint", snippet="s", published_at="2024-01-01"),
            SearchHit(url="https://nature.com/articles/xyz", title="Nature piece", snippet="s"),
        ]

    ctx = make_context(providers=make_providers(search=FakeSearch(handler=handler), answer=answer))
    evidence = await gather_evidence(ctx, [KNOWLEDGE])

    by_title = {e.title: e for e in evidence}
    assert by_title["Preprint"].url == "https://arxiv.org/abs/1"
    assert by_title["Nature piece"].source == "search"
    # The second nature.com citation cannot reuse the same host hit
    bare = [e for e in evidence if e.title is None]
    assert [e.url for e in bare] == ["https://www.nature.com/articles/def"]
    assert bare[0].source == "answer"
    assert answer.requests[0].mode == "pro"


@pytest.mark.asyncio
async def test_reasoning_theme_uses_reasoning_tier():
    answer = FakeAnswer(text="t", citations=[])
    ctx = make_context(providers=make_providers(answer=answer))
    assert await gather_evidence(ctx, [REASONING]) == []
    assert answer.requests[0].mode == "reasoning"


@pytest.mark.asyncio
async def test_failed_follow_up_keeps_bare_citations():
    answer = FakeAnswer(citations=["https://example.org/a", "https://example.org/b"])
    search = FakeSearch(error=ProviderError("HTTP 500", "search", 500))
    ctx = make_context(providers=make_providers(search=search, answer=answer))
    evidence = await gather_evidence(ctx, [KNOWLEDGE])
    assert [e.url for e in evidence] == ["https://example.org/a", "https://example.org/b"]
    assert all(e.source == "answer" for e in evidence)


@pytest.mark.asyncio
async def test_theme_failures_are_isolated():
    search = FakeSearch(hits=_hits(2))
    answer = FakeAnswer(error=RuntimeError("connection reset"))
    ctx = make_context(providers=make_providers(search=search, answer=answer))
    evidence = await gather_evidence(ctx, [KNOWLEDGE, FACT, REASONING])
    assert len(evidence) == 2
    assert {e.theme_id for e in evidence} == {"t1"}


@pytest.mark.asyncio
async def test_citations_capped():
    answer = FakeAnswer(citations=[f"https://site{i}.org/x" for i in range(10)])
    ctx = make_context(
        settings=make_settings(ANSWER_MAX_CITATIONS=3),
        providers=make_providers(search=FakeSearch(), answer=answer),
    )
    evidence = await gather_evidence(ctx, [KNOWLEDGE])
    assert len(evidence) == 3


@pytest.mark.asyncio
async def test_date_window_filters_dated_hits():
    hits = [
        SearchHit(url="https://a.com/old", published_at="2019-02-01"),
        SearchHit(url="https://a.com/new", published_at="2024-02-01"),
        SearchHit(url="https://a.com/undated"),
    ]
    search = FakeSearch(hits=hits)
    ctx = make_context(
        providers=make_providers(search=search),
        date_from=date(2024, 1, 1),
        date_to=date(2024, 12, 31),
    )
    evidence = await gather_evidence(ctx, [FACT])
    assert [e.url for e in evidence] == ["https://a.com/new", "https://a.com/undated"]
    assert search.requests[0].time_range == "year"


@pytest.mark.asyncio
async def test_budget_shared_across_themes():
    search = FakeSearch(hits=_hits(1))
    ctx = make_context(settings=make_settings(SEARCH_CALL_CAP=2), providers=make_providers(search=search))
    themes = [Theme(id=f"t{i}", question=f"q{i}", strategy=Strategy.FACT) for i in range(5)]
    await gather_evidence(ctx, themes)
    assert len(search.requests) == 2
    assert ctx.budget.used(SEARCH) == 2


@pytest.mark.asyncio
async def test_gap_fill_collects_trailing_urls_and_search_hits():
    answer = FakeAnswer(text='The figures differ by test protocol.\n["https://lab.org/r1", "https://lab.org/r2"]')
    search = FakeSearch(hits=_hits(2, host="review.example.net"))
    ctx = make_context(providers=make_providers(search=search, answer=answer))
    extra = await gap_fill(ctx, "Energy density figures conflict")
    urls = [e.url for e in extra]
    assert urls[:2] == ["https://lab.org/r1", "https://lab.org/r2"]
    assert len(urls) == 4
    assert answer.requests[0].mode == "reasoning"
    assert search.requests[0].search_depth == "advanced"
    assert ctx.budget.used(ANSWER) == 1
