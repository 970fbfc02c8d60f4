"""Shared fixtures: in-process fake providers, a memory cache and a settable clock."""

from typing import Callable, List, Optional

import pytest

from evidence_research.cache import CacheGateway
from evidence_research.cache.backends import MemoryBackend
from evidence_research.config import Settings
from evidence_research.context import RunContext
from evidence_research.models import ResearchQuery
from evidence_research.providers import (
    AnswerResponse, CompletionResponse, ProviderSet, SearchHit, SearchResponse,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSearch:
    def __init__(self, hits: Optional[List[SearchHit]] = None, error: Exception = None, handler: Callable = None):
        self.hits = hits or []
        self.error = error
        self.handler = handler
        self.requests = []

    async def search(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.handler is not None:
            return SearchResponse(items=self.handler(request))
        return SearchResponse(items=list(self.hits))


class FakeAnswer:
    def __init__(self, text: str = "", citations=None, error: Exception = None, handler: Callable = None):
        self.text = text
        self.citations = citations or []
        self.error = error
        self.handler = handler
        self.requests = []

    async def ask(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.handler is not None:
            return self.handler(request)
        return AnswerResponse(text=self.text, citations=list(self.citations))


class FakeLLM:
    def __init__(self, obj=None, text: Optional[str] = None, error: Exception = None, handler: Callable = None):
        self.obj = obj
        self.text = text
        self.error = error
        self.handler = handler
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.handler is not None:
            return self.handler(request)
        return CompletionResponse(text=self.text, object=self.obj)


def make_settings(**overrides) -> Settings:
    values = dict(
        CACHE_BACKEND="memory",
        TAVILY_API_KEY="test-tavily",
        PERPLEXITY_API_KEY="test-pplx",
        OPENROUTER_API_KEY="test-or",
        RETRY_MAX_TRIES=1,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_providers(search=None, answer=None, llm=None) -> ProviderSet:
    return ProviderSet(
        search=search or FakeSearch(),
        answer=answer or FakeAnswer(),
        llm=llm or FakeLLM(error=RuntimeError("no model configured")),
    )


def make_cache(settings: Settings) -> CacheGateway:
    return CacheGateway(MemoryBackend(), settings.cache_ttls())


def make_context(query="current state of solid-state batteries", settings=None, providers=None,
                 clock=None, on_event=None, **query_fields) -> RunContext:
    settings = settings or make_settings()
    if isinstance(query, str):
        query = ResearchQuery(text=query, **query_fields)
    return RunContext.create(
        query,
        settings,
        providers or make_providers(),
        make_cache(settings),
        on_event=on_event,
        clock=clock or FakeClock(),
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()
