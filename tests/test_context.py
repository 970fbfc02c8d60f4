"""Test the per-run call surface: budget, cache and timeouts."""

import asyncio

import pytest

from evidence_research.exceptions import ProviderError, ProviderTimeout
from evidence_research.providers import AnswerRequest, SearchRequest, SearchResponse
from evidence_research.scheduling import ANSWER, SEARCH

from conftest import FakeAnswer, FakeSearch, make_context, make_providers, make_settings


@pytest.mark.asyncio
async def test_exhausted_budget_returns_none_without_calling():
    search = FakeSearch()
    ctx = make_context(settings=make_settings(SEARCH_CALL_CAP=1), providers=make_providers(search=search))
    assert await ctx.search(SearchRequest(query="a")) is not None
    assert await ctx.search(SearchRequest(query="b")) is None
    assert len(search.requests) == 1


@pytest.mark.asyncio
async def test_cache_hit_skips_provider_but_consumes_budget():
    search = FakeSearch()
    ctx = make_context(providers=make_providers(search=search))
    await ctx.search(SearchRequest(query="solid state"))
    await ctx.search(SearchRequest(query="solid   state "))
    assert len(search.requests) == 1
    assert ctx.budget.used(SEARCH) == 2


@pytest.mark.asyncio
async def test_query_truncated_before_call():
    search = FakeSearch()
    ctx = make_context(settings=make_settings(SEARCH_QUERY_MAX_CHARS=10), providers=make_providers(search=search))
    await ctx.search(SearchRequest(query="x" * 50))
    assert search.requests[0].query == "x" * 10


@pytest.mark.asyncio
async def test_errors_are_not_cached():
    answer = FakeAnswer(error=RuntimeError("boom"))
    ctx = make_context(providers=make_providers(answer=answer))
    with pytest.raises(ProviderError):
        await ctx.ask(AnswerRequest(prompt="p"))
    answer.error = None
    answer.text = "ok"
    response = await ctx.ask(AnswerRequest(prompt="p"))
    assert response.text == "ok"
    assert ctx.budget.used(ANSWER) == 2


@pytest.mark.asyncio
async def test_slow_provider_times_out():
    class Slow:
        async def search(self, request):
            await asyncio.sleep(5)
            return SearchResponse()

    ctx = make_context(settings=make_settings(SEARCH_TIMEOUT_SEC=0.05), providers=make_providers(search=Slow()))
    with pytest.raises(ProviderTimeout):
        await ctx.search(SearchRequest(query="q"))


def test_events_recorded_and_forwarded():
    received = []
    ctx = make_context(on_event=received.append)
    ctx.emit("gather", "Gathering evidence", themes=3)
    assert ctx.events[0].meta == {"themes": 3}
    assert received[0].title == "Gathering evidence"
