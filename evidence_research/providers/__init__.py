from ..config import Settings
from .contracts import (
    AnswerProvider,
    AnswerRequest,
    AnswerResponse,
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    LanguageModel,
    ProviderSet,
    SearchHit,
    SearchProvider,
    SearchRequest,
    SearchResponse,
)
from .openrouter import OpenRouterLLM
from .perplexity import PerplexityAnswer
from .tavily import TavilySearch


def default_providers(settings: Settings) -> ProviderSet:
    """Build the HTTP-backed provider clients from settings."""
    return ProviderSet(
        search=TavilySearch(settings),
        answer=PerplexityAnswer(settings),
        llm=OpenRouterLLM(settings),
    )


__all__ = [
    "AnswerProvider",
    "AnswerRequest",
    "AnswerResponse",
    "ChatMessage",
    "CompletionRequest",
    "CompletionResponse",
    "LanguageModel",
    "ProviderSet",
    "SearchHit",
    "SearchProvider",
    "SearchRequest",
    "SearchResponse",
    "OpenRouterLLM",
    "PerplexityAnswer",
    "TavilySearch",
    "default_providers",
]
