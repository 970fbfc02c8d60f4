"""Request/response shapes for the three knowledge-provider classes."""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

TimeRange = Literal["day", "week", "month", "year"]
SearchDepth = Literal["basic", "advanced"]
AnswerMode = Literal["default", "pro", "reasoning", "deep-research"]
Role = Literal["system", "user", "assistant"]


class SearchRequest(BaseModel):
    query: str
    max_results: int = Field(8, gt=0, le=50)
    time_range: Optional[TimeRange] = None
    search_depth: SearchDepth = "basic"
    include_domains: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    url: str
    title: Optional[str] = None
    snippet: Optional[str] = None
    published_at: Optional[str] = None


class SearchResponse(BaseModel):
    items: List[SearchHit] = Field(default_factory=list)


class AnswerRequest(BaseModel):
    prompt: str
    mode: AnswerMode = "pro"
    temperature: float = 0.2


class AnswerResponse(BaseModel):
    text: str = ""
    citations: List[str] = Field(default_factory=list)


class ChatMessage(BaseModel):
    role: Role
    content: str


class CompletionRequest(BaseModel):
    messages: List[ChatMessage]
    json_schema: Optional[Dict[str, Any]] = None
    temperature: float = 0.2
    model: Optional[str] = None


class CompletionResponse(BaseModel):
    text: Optional[str] = None
    object: Optional[Any] = None


@runtime_checkable
class SearchProvider(Protocol):
    async def search(self, request: SearchRequest) -> SearchResponse: ...


@runtime_checkable
class AnswerProvider(Protocol):
    async def ask(self, request: AnswerRequest) -> AnswerResponse: ...


@runtime_checkable
class LanguageModel(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...


@dataclass
class ProviderSet:
    """The three provider clients one run talks to"""
    search: SearchProvider
    answer: AnswerProvider
    llm: LanguageModel

    async def aclose(self) -> None:
        for client in (self.search, self.answer, self.llm):
            closer = getattr(client, "aclose", None)
            if closer is not None:
                await closer()
