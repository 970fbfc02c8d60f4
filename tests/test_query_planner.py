"""Test query decomposition and its heuristic fallback."""

import pytest

from evidence_research.exceptions import ProviderError
from evidence_research.models import Strategy
from evidence_research.providers import CompletionResponse
from evidence_research.query_planner import (
    classify_query, decompose, fallback_themes, normalize_strategy, themes_from_payload,
)
from evidence_research.scheduling import LLM

from conftest import FakeLLM, make_context, make_providers, make_settings


@pytest.mark.parametrize("query,kind", [
    ("Best itinerary for a two week trip to Japan", "travel"),
    ("EV charging market size in Europe", "market"),
    ("current state of solid-state batteries", "technology"),
    ("Why did the Roman republic fall?", "generic"),
])
def test_classify_query(query, kind):
    assert classify_query(query) == kind


def test_fallback_always_has_at_least_two_themes():
    for q in ["x", "solid-state batteries", "tourism in Portugal", "semiconductor market"]:
        themes = fallback_themes(q)
        assert len(themes) >= 2
        assert len({t.id for t in themes}) == len(themes)


def test_fallback_strips_leading_filler():
    themes = fallback_themes("current state of solid-state batteries")
    assert "solid-state batteries" in themes[0].question
    assert "current state of" not in themes[0].question


def test_strategy_labels_normalized():
    assert normalize_strategy("factual") is Strategy.FACT
    assert normalize_strategy("Reasoning") is Strategy.REASONING
    assert normalize_strategy("vibes") is Strategy.KNOWLEDGE
    assert normalize_strategy(None) is Strategy.KNOWLEDGE


def test_themes_from_payload_dedupes_and_caps():
    payload = {"themes": [
        {"question": "A?", "type": "factual"},
        {"question": "a?", "type": "knowledge"},
        "B?",
        {"question": ""},
        {"question": "C?", "type": "reasoning"},
    ]}
    themes = themes_from_payload(payload, max_themes=2)
    assert [t.question for t in themes] == ["A?", "B?"]
    assert [t.id for t in themes] == ["t1", "t2"]


@pytest.mark.asyncio
async def test_model_themes_used_when_valid():
    llm = FakeLLM(obj=[
        {"question": "What are recent advances?", "type": "factual"},
        {"question": "What limits adoption?", "type": "reasoning"},
    ])
    ctx = make_context(providers=make_providers(llm=llm))
    themes = await decompose(ctx)
    assert [t.strategy for t in themes] == [Strategy.FACT, Strategy.REASONING]
    assert ctx.budget.used(LLM) == 1


@pytest.mark.asyncio
async def test_prose_output_is_recovered():
    text = 'Here are the themes:\n```json\n[{"question": "Q1", "type": "knowledge"}, {"question": "Q2", "type": "factual"}]\n```'
    ctx = make_context(providers=make_providers(llm=FakeLLM(text=text)))
    themes = await decompose(ctx)
    assert [t.question for t in themes] == ["Q1", "Q2"]


@pytest.mark.asyncio
@pytest.mark.parametrize("llm", [
    FakeLLM(error=ProviderError("boom", "llm")),
    FakeLLM(error=RuntimeError("socket closed")),
    FakeLLM(text="I cannot help with that."),
    FakeLLM(obj=[{"question": "Only one", "type": "factual"}]),
])
async def test_fallback_on_failure_or_thin_output(llm):
    ctx = make_context(providers=make_providers(llm=llm))
    themes = await decompose(ctx)
    assert len(themes) >= 2
    assert all("heuristic" in (t.rationale or "") for t in themes)


@pytest.mark.asyncio
async def test_no_llm_budget_skips_call():
    llm = FakeLLM(obj=[{"question": "a"}, {"question": "b"}])
    ctx = make_context(settings=make_settings(LLM_CALL_CAP=0), providers=make_providers(llm=llm))
    themes = await decompose(ctx)
    assert llm.requests == []
    assert len(themes) >= 2
