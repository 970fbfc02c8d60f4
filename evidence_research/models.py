from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import date, datetime, timezone
from enum import Enum


class ResearchMode(str, Enum):
    """Budget/quality profile selector for a run"""
    STANDARD = "standard"
    DEEP = "deep"


class Strategy(str, Enum):
    """Retrieval strategy attached to a decomposed theme"""
    FACT = "fact"
    KNOWLEDGE = "knowledge"
    REASONING = "reasoning"


EvidenceSource = Literal["search", "answer", "llm"]
Confidence = Literal["high", "medium", "low"]


class ResearchQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    date_from: Optional[date] = None  # inclusive
    date_to: Optional[date] = None    # inclusive
    mode: ResearchMode = ResearchMode.STANDARD

    @field_validator("text")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query text must not be empty")
        return v

    @model_validator(mode="after")
    def _window_order(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def has_window(self) -> bool:
        return bool(self.date_from or self.date_to)


class Theme(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    question: str
    strategy: Strategy = Strategy.KNOWLEDGE
    rationale: Optional[str] = None


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str  # Canonical after dedup; unique key
    title: Optional[str] = None
    snippet: Optional[str] = None
    published_at: Optional[str] = None
    source: EvidenceSource = "search"
    theme_id: Optional[str] = None

    def richness(self) -> int:
        """Number of populated metadata fields."""
        return sum(1 for v in (self.title, self.snippet, self.published_at) if v)


class EvidenceCluster(BaseModel):
    model_config = ConfigDict(frozen=True)

    theme: str
    evidence: List[Evidence] = Field(default_factory=list)
    strength: float = Field(default=0.0, ge=0, le=10)
    contradictions: List[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.evidence)


class ContradictionStatement(BaseModel):
    text: str
    derived: bool = False  # True when extracted from an analysis call, False when canned


class KeyFinding(BaseModel):
    claim: str
    citations: List[Evidence] = Field(default_factory=list)
    confidence: Confidence = "medium"


class ReportSection(BaseModel):
    heading: str
    content: str
    citations: List[Evidence] = Field(default_factory=list)


class Report(BaseModel):
    query: str
    executive_summary: str = ""
    key_findings: List[KeyFinding] = Field(default_factory=list)
    sections: List[ReportSection] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)


class StageEvent(BaseModel):
    """Progress notification emitted at stage boundaries"""
    stage: str
    title: str
    description: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class RunMeta(BaseModel):
    query: str
    mode: ResearchMode
    calls: Dict[str, int] = Field(default_factory=dict)
    ceilings: Dict[str, int] = Field(default_factory=dict)
    themes: int = 0
    evidence: int = 0
    clusters: int = 0
    contradictions: int = 0
    synthesis_tier: Optional[str] = None
    terminated_early: bool = False
    elapsed_seconds: float = 0.0


class RunResult(BaseModel):
    report: Report
    markdown: str
    meta: RunMeta
