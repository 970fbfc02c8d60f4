"""Unified configuration and settings module.

Single source of truth for provider credentials, cache configuration, timeouts and
the per-mode budget profiles used by every research run.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Dict, List, Literal, Optional
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from evidence_research.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetProfile:
    """Call ceilings and quality knobs for one research mode."""
    name: str
    search_calls: int       # Web-search provider ceiling
    answer_calls: int       # Answer/reasoning provider ceiling
    llm_calls: int          # Generic language-model ceiling
    deadline_seconds: int   # Wall-clock cap for the whole run
    narrative_tier: str     # Answer tier used for the synthesis narrative
    search_depth: str       # basic | advanced
    max_themes: int         # Upper bound on decomposed themes

    def to_dict(self) -> Dict[str, object]:
        """Convert profile to dictionary for logging/run metadata."""
        return {
            "name": self.name,
            "search_calls": self.search_calls,
            "answer_calls": self.answer_calls,
            "llm_calls": self.llm_calls,
            "deadline_seconds": self.deadline_seconds,
            "narrative_tier": self.narrative_tier,
            "search_depth": self.search_depth,
            "max_themes": self.max_themes,
        }

    def ceilings(self) -> Dict[str, int]:
        return {"search": self.search_calls, "answer": self.answer_calls, "llm": self.llm_calls}


# Deep mode roughly doubles the provider ceilings and unlocks the costlier tier
MODE_PROFILES: Dict[str, BudgetProfile] = {
    "standard": BudgetProfile(
        name="standard", search_calls=16, answer_calls=6, llm_calls=4,
        deadline_seconds=360, narrative_tier="pro", search_depth="basic", max_themes=6,
    ),
    "deep": BudgetProfile(
        name="deep", search_calls=32, answer_calls=12, llm_calls=8,
        deadline_seconds=720, narrative_tier="deep-research", search_depth="advanced", max_themes=8,
    ),
}


class Settings(BaseSettings):
    # ==== Knowledge providers ====
    TAVILY_API_KEY: Optional[str] = None
    TAVILY_BASE_URL: str = "https://api.tavily.com"
    PERPLEXITY_API_KEY: Optional[str] = None
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_REFERER: Optional[str] = None
    OPENROUTER_APP_TITLE: Optional[str] = None
    LLM_MODEL: str = Field("google/gemini-2.5-flash", description="OpenRouter model for structured calls")

    # ==== Cache ====
    CACHE_BACKEND: Literal["file", "memory", "redis", "disabled"] = "file"
    CACHE_DIR: str = Field(".cache", description="Root directory for the file cache backend")
    REDIS_URL: Optional[str] = None
    CACHE_KEY_PREFIX: str = "evidence"
    SEARCH_CACHE_TTL_SEC: int = Field(7 * 24 * 3600, ge=0, description="TTL for search results")
    ANSWER_CACHE_TTL_SEC: int = Field(24 * 3600, ge=0, description="TTL for answer provider responses")
    LLM_CACHE_TTL_SEC: int = Field(2 * 3600, ge=0, description="TTL for language-model responses")

    # ==== HTTP & retries ====
    SEARCH_TIMEOUT_SEC: float = Field(30, gt=0, description="Timeout for search provider calls")
    ANSWER_TIMEOUT_SEC: float = Field(60, gt=0, description="Timeout for answer provider calls")
    DEEP_ANSWER_TIMEOUT_SEC: float = Field(600, gt=0, description="Timeout for deep-research answer calls")
    LLM_TIMEOUT_SEC: float = Field(90, gt=0, description="Timeout for language-model calls")
    RETRY_MAX_TRIES: int = Field(3, ge=1)
    RETRY_BACKOFF_BASE_SECONDS: float = 0.5

    # ==== Runtime / budgets (None keeps the mode profile value) ====
    SEARCH_CALL_CAP: Optional[int] = Field(None, ge=0)
    ANSWER_CALL_CAP: Optional[int] = Field(None, ge=0)
    LLM_CALL_CAP: Optional[int] = Field(None, ge=0)
    RUN_DEADLINE_SEC: Optional[int] = Field(None, gt=0)
    OUTPUT_DIR: str = "outputs"

    # ==== Pipeline policy ====
    SEARCH_QUERY_MAX_CHARS: int = Field(400, gt=0, description="Length cap for search queries")
    SEARCH_MAX_RESULTS: int = Field(8, gt=0)
    ANSWER_MAX_CITATIONS: int = Field(6, gt=0, description="Citations kept per answer call")
    CLUSTER_MIN_EVIDENCE: int = Field(15, ge=0, description="Below this, skip model clustering")
    SYNTH_MAX_EVIDENCE: int = Field(30, gt=0, description="Evidence items shown to the synthesizer")
    SEARCH_INCLUDE_DOMAINS: str = ""  # comma-separated
    SEARCH_EXCLUDE_DOMAINS: str = ""  # comma-separated
    ENABLE_GAP_FILL: bool = Field(True, description="Resolve the first contradiction with extra calls")
    ENABLE_DEEP_DIVE: bool = Field(True, description="Add a focused section on the strongest cluster in deep mode")

    # ==== Observability toggles ====
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def model_post_init(self, __context):
        """Validate backend configuration after all fields are set"""
        if self.CACHE_BACKEND == "redis" and not self.REDIS_URL:
            raise ConfigurationError("REDIS_URL required for CACHE_BACKEND=redis")

    def include_domains(self) -> List[str]:
        return [d.strip() for d in self.SEARCH_INCLUDE_DOMAINS.split(",") if d.strip()]

    def exclude_domains(self) -> List[str]:
        return [d.strip() for d in self.SEARCH_EXCLUDE_DOMAINS.split(",") if d.strip()]

    def cache_ttls(self) -> Dict[str, int]:
        return {
            "search": self.SEARCH_CACHE_TTL_SEC,
            "answer": self.ANSWER_CACHE_TTL_SEC,
            "llm": self.LLM_CACHE_TTL_SEC,
        }

    def profile_for(self, mode: str) -> BudgetProfile:
        """Return the budget profile for a mode with any configured overrides applied.

        Args:
            mode: "standard" or "deep"

        Returns:
            Frozen BudgetProfile for the run
        """
        try:
            base = MODE_PROFILES[mode]
        except KeyError:
            raise ConfigurationError(f"Unknown research mode: {mode}")
        overrides = {}
        if self.SEARCH_CALL_CAP is not None:
            overrides["search_calls"] = self.SEARCH_CALL_CAP
        if self.ANSWER_CALL_CAP is not None:
            overrides["answer_calls"] = self.ANSWER_CALL_CAP
        if self.LLM_CALL_CAP is not None:
            overrides["llm_calls"] = self.LLM_CALL_CAP
        if self.RUN_DEADLINE_SEC is not None:
            overrides["deadline_seconds"] = self.RUN_DEADLINE_SEC
        if overrides:
            logger.debug("Applying budget overrides for %s mode: %s", mode, overrides)
            return replace(base, **overrides)
        return base


@lru_cache()
def get_settings() -> Settings:
    return Settings()
