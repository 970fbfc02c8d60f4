"""Per-run context: budget, cache and providers behind one call surface."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .cache import CacheGateway
from .config import BudgetProfile, Settings
from .exceptions import ProviderError, ProviderTimeout
from .models import ResearchQuery, StageEvent
from .monitoring_metrics import PROVIDER_CALLS, PROVIDER_LATENCY
from .providers import (
    AnswerRequest, AnswerResponse, CompletionRequest, CompletionResponse,
    ProviderSet, SearchRequest, SearchResponse,
)
from .scheduling import ANSWER, LLM, SEARCH, RunBudget

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)
EventSink = Callable[[StageEvent], Any]


@dataclass
class RunContext:
    """Everything one research run owns. Never shared between runs."""
    query: ResearchQuery
    settings: Settings
    profile: BudgetProfile
    budget: RunBudget
    cache: CacheGateway
    providers: ProviderSet
    on_event: Optional[EventSink] = None
    events: List[StageEvent] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        query: ResearchQuery,
        settings: Settings,
        providers: ProviderSet,
        cache: CacheGateway,
        on_event: Optional[EventSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "RunContext":
        profile = settings.profile_for(query.mode.value)
        return cls(
            query=query,
            settings=settings,
            profile=profile,
            budget=RunBudget.from_profile(profile, clock=clock),
            cache=cache,
            providers=providers,
            on_event=on_event,
        )

    def emit(self, stage: str, title: str, description: str = "", **meta: Any) -> None:
        """Record a progress event and hand it to the sink, if any."""
        event = StageEvent(stage=stage, title=title, description=description, meta=meta)
        self.events.append(event)
        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception as e:
                logger.warning("Progress sink failed on %s: %s", stage, e)

    # ------------------------------------------------------------------ calls

    async def search(self, request: SearchRequest) -> Optional[SearchResponse]:
        """Budgeted, cached web search. None means the call was not made."""
        request = request.model_copy(update={"query": request.query[: self.settings.SEARCH_QUERY_MAX_CHARS]})
        return await self._call(
            SEARCH,
            request.model_dump(),
            lambda: self.providers.search.search(request),
            SearchResponse,
            self.settings.SEARCH_TIMEOUT_SEC,
        )

    async def ask(self, request: AnswerRequest, use_reserve: bool = False) -> Optional[AnswerResponse]:
        """Budgeted, cached answer-provider call. None means the call was not made.

        Only the synthesis narrative passes use_reserve; every other caller
        leaves the held-back answer units untouched.
        """
        cap = (
            self.settings.DEEP_ANSWER_TIMEOUT_SEC
            if request.mode == "deep-research"
            else self.settings.ANSWER_TIMEOUT_SEC
        )
        return await self._call(
            ANSWER,
            request.model_dump(),
            lambda: self.providers.answer.ask(request),
            AnswerResponse,
            cap,
            use_reserve=use_reserve,
        )

    async def complete(self, request: CompletionRequest) -> Optional[CompletionResponse]:
        """Budgeted, cached language-model call. None means the call was not made."""
        if request.model is None:
            request = request.model_copy(update={"model": self.settings.LLM_MODEL})
        return await self._call(
            LLM,
            request.model_dump(),
            lambda: self.providers.llm.complete(request),
            CompletionResponse,
            self.settings.LLM_TIMEOUT_SEC,
        )

    async def _call(
        self,
        provider_class: str,
        params: Dict[str, Any],
        live: Callable[[], Awaitable[R]],
        response_type: Type[R],
        timeout_cap: float,
        use_reserve: bool = False,
    ) -> Optional[R]:
        # Deadline and budget come before the cache so routing never depends on cache warmth
        if self.budget.deadline_exceeded() or not self.budget.try_consume(provider_class, use_reserve):
            PROVIDER_CALLS.labels(provider_class=provider_class, outcome="skipped").inc()
            return None

        lookup = await self.cache.get(provider_class, params)
        if lookup.found:
            try:
                return response_type.model_validate(lookup.payload)
            except ValidationError:
                logger.debug("Discarding stale %s cache payload", provider_class)

        timeout = self.budget.timeout_for(timeout_cap)
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(live(), timeout=timeout)
        except asyncio.TimeoutError as e:
            PROVIDER_CALLS.labels(provider_class=provider_class, outcome="timeout").inc()
            raise ProviderTimeout(provider_class, timeout) from e
        except ProviderError:
            PROVIDER_CALLS.labels(provider_class=provider_class, outcome="error").inc()
            raise
        except Exception as e:
            PROVIDER_CALLS.labels(provider_class=provider_class, outcome="error").inc()
            raise ProviderError(f"{provider_class} provider failed: {e}", provider_class) from e
        finally:
            PROVIDER_LATENCY.labels(provider_class=provider_class).observe(time.perf_counter() - start)

        PROVIDER_CALLS.labels(provider_class=provider_class, outcome="ok").inc()
        await self.cache.put(provider_class, params, response.model_dump())
        return response
