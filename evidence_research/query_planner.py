"""
Query Decomposition

Turns a research query into independently researchable themes, each tagged
with a retrieval strategy. One language-model call when budget allows; a
keyword-classified template otherwise.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .context import RunContext
from .exceptions import ProviderError
from .llm import prompts
from .models import Strategy, Theme
from .providers import ChatMessage, CompletionRequest
from .text.json_payload import coerce_list, extract_json

logger = logging.getLogger(__name__)

MIN_MODEL_THEMES = 2

# Query classification patterns (checked in order)
TRAVEL = re.compile(
    r"\b(travel|tourism|tourist|trip|itinerary|vacation|holiday|destination|visa|hotels?|flights?|backpacking)\b",
    re.IGNORECASE,
)
MARKET = re.compile(
    r"\b(markets?|industry|industries|sector|revenue|sales|competitors?|competition|pricing|demand|"
    r"market\s+share|investment|investors?|startups?|companies|economy|economic|business)\b",
    re.IGNORECASE,
)
TECHNOLOGY = re.compile(
    r"\b(technolog(y|ies)|tech|software|hardware|ai|artificial\s+intelligence|machine\s+learning|"
    r"batter(y|ies)|semiconductors?|chips?|cloud|quantum|robotics|5g|blockchain|solid[-\s]state|"
    r"algorithms?|computing|devices?|energy\s+storage)\b",
    re.IGNORECASE,
)
LEADING_FILLER = re.compile(
    r"^(please\s+)?(research|explain|describe|analy[sz]e|summari[sz]e|tell\s+me\s+about|"
    r"what\s+(is|are)|how\s+(is|are|do|does)|the\s+current\s+state\s+of|current\s+state\s+of|state\s+of)\s+",
    re.IGNORECASE,
)

STRATEGY_ALIASES = {
    "fact": Strategy.FACT,
    "factual": Strategy.FACT,
    "fact-lookup": Strategy.FACT,
    "knowledge": Strategy.KNOWLEDGE,
    "synthesis": Strategy.KNOWLEDGE,
    "reasoning": Strategy.REASONING,
}


@dataclass(frozen=True)
class ThemeTemplate:
    """One templated theme for the heuristic fallback"""
    question: str   # formatted with {topic}
    strategy: Strategy
    rationale: str


TEMPLATES = {
    "travel": (
        ThemeTemplate("What are the current entry requirements and travel advisories for {topic}?",
                      Strategy.FACT, "Regulations change often"),
        ThemeTemplate("What are typical costs, seasons and logistics for {topic}?",
                      Strategy.FACT, "Practical planning data"),
        ThemeTemplate("What do recent guides and visitor experiences highlight about {topic}?",
                      Strategy.KNOWLEDGE, "Qualitative synthesis"),
    ),
    "market": (
        ThemeTemplate("What is the current market size and growth rate of {topic}?",
                      Strategy.FACT, "Needs recent figures"),
        ThemeTemplate("Who are the leading players in {topic} and how is competition evolving?",
                      Strategy.KNOWLEDGE, "Competitive landscape"),
        ThemeTemplate("Which drivers, risks and regulations will shape {topic} over the next few years?",
                      Strategy.REASONING, "Forward-looking inference"),
    ),
    "technology": (
        ThemeTemplate("What are the latest technical advances and milestones in {topic}?",
                      Strategy.FACT, "Recent developments"),
        ThemeTemplate("What technical challenges and limitations remain for {topic}?",
                      Strategy.KNOWLEDGE, "State of the art"),
        ThemeTemplate("How far has commercialization and adoption of {topic} progressed?",
                      Strategy.KNOWLEDGE, "Industry uptake"),
        ThemeTemplate("What is the likely trajectory of {topic} over the next five years?",
                      Strategy.REASONING, "Forward-looking inference"),
    ),
    "generic": (
        ThemeTemplate("{query}", Strategy.KNOWLEDGE, "Original question"),
        ThemeTemplate("What are the most recent facts and figures about {topic}?",
                      Strategy.FACT, "Up-to-date data"),
        ThemeTemplate("What are the main perspectives and open debates about {topic}?",
                      Strategy.REASONING, "Competing viewpoints"),
    ),
}


def classify_query(query: str) -> str:
    """Classify a query as travel, market, technology or generic."""
    if TRAVEL.search(query):
        return "travel"
    if MARKET.search(query):
        return "market"
    if TECHNOLOGY.search(query):
        return "technology"
    return "generic"


def _topic(query: str) -> str:
    topic = query.strip().rstrip("?.! ")
    topic = LEADING_FILLER.sub("", topic).strip()
    return topic or query.strip()


def fallback_themes(query: str) -> List[Theme]:
    """Templated themes for the query's classification. Never empty."""
    kind = classify_query(query)
    topic = _topic(query)
    themes = [
        Theme(
            id=f"t{i}",
            question=t.question.format(topic=topic, query=query.strip()),
            strategy=t.strategy,
            rationale=f"{t.rationale} (heuristic: {kind})",
        )
        for i, t in enumerate(TEMPLATES[kind], start=1)
    ]
    logger.info("Using %s fallback decomposition with %d themes", kind, len(themes))
    return themes


def normalize_strategy(label: Any) -> Strategy:
    """Map a provider strategy label onto fact/knowledge/reasoning; unknown means knowledge."""
    return STRATEGY_ALIASES.get(str(label or "").strip().lower(), Strategy.KNOWLEDGE)


def themes_from_payload(payload: Any, max_themes: int) -> List[Theme]:
    """Build themes from a decoded model payload, skipping malformed or duplicate entries."""
    items = coerce_list(payload, "themes", "questions", "sub_questions", "items") or []
    themes: List[Theme] = []
    seen = set()
    for item in items:
        if isinstance(item, str):
            question, label, rationale = item, None, None
        elif isinstance(item, dict):
            question = item.get("question") or item.get("theme") or ""
            label = item.get("type") or item.get("strategy")
            rationale = item.get("rationale")
        else:
            continue
        question = str(question).strip()
        if not question or question.lower() in seen:
            continue
        seen.add(question.lower())
        themes.append(Theme(
            id=f"t{len(themes) + 1}",
            question=question,
            strategy=normalize_strategy(label),
            rationale=str(rationale).strip() if rationale else None,
        ))
        if len(themes) >= max_themes:
            break
    return themes


def _payload(response) -> Tuple[Optional[Any], Optional[str]]:
    if isinstance(response.object, (list, dict)):
        return response.object, None
    parsed = extract_json(response.text)
    if parsed.ok:
        return parsed.value, None
    return None, parsed.error


async def decompose(ctx: RunContext) -> List[Theme]:
    """Decompose the run's query into themes.

    Args:
        ctx: Run context supplying the query, budget and language-model provider

    Returns:
        At least two themes, capped by the mode profile's max_themes
    """
    query = ctx.query.text
    max_themes = ctx.profile.max_themes
    request = CompletionRequest(
        messages=[
            ChatMessage(role="system", content=prompts.JSON_ONLY_ARRAY),
            ChatMessage(role="user", content=prompts.decompose_prompt(query, 3, max_themes)),
        ],
        json_schema=prompts.DECOMPOSE_SCHEMA,
        temperature=0.1,
    )
    try:
        response = await ctx.complete(request)
    except ProviderError as e:
        logger.warning("Decomposition call failed, using heuristic themes: %s", e)
        return fallback_themes(query)

    if response is None:
        logger.info("LLM budget exhausted before decomposition")
        return fallback_themes(query)

    payload, error = _payload(response)
    if payload is None:
        logger.warning("Decomposition output unparseable (%s), using heuristic themes", error)
        return fallback_themes(query)

    themes = themes_from_payload(payload, max_themes)
    if len(themes) < MIN_MODEL_THEMES:
        logger.warning("Decomposition produced %d usable themes, using heuristic themes", len(themes))
        return fallback_themes(query)
    return themes
