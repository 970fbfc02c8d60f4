"""Run-level state machine for the evidence research pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple, Union

import structlog

from .cache import CacheGateway, build_cache
from .collect.dedup import dedupe_evidence
from .collection import gap_fill, gather_evidence
from .config import Settings, get_settings
from .context import EventSink, RunContext
from .llm.synthesizer import TIER_TEMPLATE, SynthesisContext, synthesize, template_report
from .models import (
    ContradictionStatement, Evidence, EvidenceCluster, Report, ResearchQuery, RunMeta, RunResult, Theme,
)
from .monitoring_metrics import RUNS_COMPLETED
from .providers import ProviderSet, default_providers
from .query_planner import decompose
from .report.composer import render_markdown
from .text.contradictions import analyze_contradictions
from .triangulation.clustering import GENERAL_THEME, cluster_evidence, make_cluster

logger = structlog.get_logger()

EARLY_TERMINATION = "Research terminated early due to runtime cap."


class Stage(str, Enum):
    DECOMPOSE = "decompose"
    GATHER = "gather"
    DEDUP = "dedup"
    CLUSTER = "cluster"
    CONTRADICT = "contradict"
    GAP_FILL = "gap_fill"
    SYNTHESIZE = "synthesize"
    RENDER = "render"
    DONE = "done"


@dataclass
class PipelineState:
    themes: List[Theme] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    clusters: List[EvidenceCluster] = field(default_factory=list)
    contradictions: List[ContradictionStatement] = field(default_factory=list)
    supplementary: List[Evidence] = field(default_factory=list)
    report: Optional[Report] = None
    tier: Optional[str] = None
    stage: Stage = Stage.DECOMPOSE
    terminated_early: bool = False


class Orchestrator:
    """Drives one run through Decompose -> Gather -> Dedup -> Cluster -> Contradict
    -> GapFill -> Synthesize -> Render, jumping straight to Render when the
    run deadline passes between stages."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.state = PipelineState()

    def _stages(self) -> List[Tuple[Stage, str, Callable[[], Awaitable[None]]]]:
        return [
            (Stage.DECOMPOSE, "Decomposing query", self._decompose),
            (Stage.GATHER, "Gathering evidence", self._gather),
            (Stage.DEDUP, "Deduplicating evidence", self._dedup),
            (Stage.CLUSTER, "Clustering evidence", self._cluster),
            (Stage.CONTRADICT, "Checking for contradictions", self._contradict),
            (Stage.GAP_FILL, "Filling evidence gaps", self._gap_fill),
            (Stage.SYNTHESIZE, "Synthesizing report", self._synthesize),
        ]

    async def run(self) -> RunResult:
        ctx = self.ctx
        log = logger.bind(query=ctx.query.text[:80], mode=ctx.query.mode.value)
        log.info("run_started", profile=ctx.profile.to_dict())

        for stage, title, step in self._stages():
            if ctx.budget.deadline_exceeded():
                self.state.terminated_early = True
                log.warning("deadline_exceeded", stage=stage.value, elapsed_s=round(ctx.budget.elapsed(), 1))
                ctx.emit(stage.value, "Runtime cap reached", "Skipping to report rendering")
                break
            self.state.stage = stage
            ctx.emit(stage.value, title)
            await step()
            log.info("stage_completed", stage=stage.value, calls=ctx.budget.snapshot())

        if self.state.terminated_early or self.state.report is None:
            self._stub_report()
        elif ctx.budget.deadline_exceeded():
            # The cap passed inside the last stage; later calls in it were skipped
            self.state.terminated_early = True
            log.warning("deadline_exceeded", stage=self.state.stage.value, elapsed_s=round(ctx.budget.elapsed(), 1))
            report = self.state.report
            self.state.report = report.model_copy(update={"limitations": report.limitations + [EARLY_TERMINATION]})

        self.state.stage = Stage.RENDER
        ctx.emit(Stage.RENDER.value, "Rendering report")
        markdown, _ = render_markdown(self.state.report, self.state.evidence + self.state.supplementary)

        self.state.stage = Stage.DONE
        meta = self._meta()
        RUNS_COMPLETED.labels(mode=meta.mode.value, terminated_early=str(meta.terminated_early).lower()).inc()
        ctx.emit(Stage.DONE.value, "Research complete", **meta.model_dump(mode="json"))
        log.info("run_completed", tier=meta.synthesis_tier, evidence=meta.evidence, elapsed_s=meta.elapsed_seconds)
        return RunResult(report=self.state.report, markdown=markdown, meta=meta)

    # ------------------------------------------------------------ stages

    async def _decompose(self) -> None:
        self.state.themes = await decompose(self.ctx)
        self.ctx.emit(Stage.DECOMPOSE.value, "Themes planned", themes=[t.question for t in self.state.themes])

    async def _gather(self) -> None:
        self.state.evidence = await gather_evidence(self.ctx, self.state.themes)

    async def _dedup(self) -> None:
        self.state.evidence = dedupe_evidence(self.state.evidence)

    async def _cluster(self) -> None:
        self.state.clusters = await cluster_evidence(self.ctx, self.state.evidence, self.state.themes)

    async def _contradict(self) -> None:
        self.state.contradictions = await analyze_contradictions(self.ctx, self.state.clusters)

    async def _gap_fill(self) -> None:
        derived = [c for c in self.state.contradictions if c.derived]
        if not derived or not self.ctx.settings.ENABLE_GAP_FILL:
            return
        extra = await gap_fill(self.ctx, derived[0].text)
        known = {e.url for e in self.state.evidence}
        self.state.supplementary = [e for e in dedupe_evidence(self.state.evidence + extra) if e.url not in known]

    async def _synthesize(self) -> None:
        sctx = self._synthesis_context()
        self.state.report, self.state.tier = await synthesize(sctx)

    # ------------------------------------------------------------ helpers

    def _synthesis_context(self) -> SynthesisContext:
        clusters = self.state.clusters or [make_cluster(GENERAL_THEME, dedupe_evidence(self.state.evidence))]
        return SynthesisContext(
            run=self.ctx,
            themes=self.state.themes,
            clusters=clusters,
            contradictions=self.state.contradictions,
            supplementary=self.state.supplementary,
        )

    def _stub_report(self) -> None:
        report = template_report(self._synthesis_context())
        self.state.report = report.model_copy(update={"limitations": [EARLY_TERMINATION]})
        self.state.tier = TIER_TEMPLATE

    def _meta(self) -> RunMeta:
        s = self.state
        return RunMeta(
            query=self.ctx.query.text,
            mode=self.ctx.query.mode,
            calls=self.ctx.budget.snapshot(),
            ceilings=self.ctx.budget.ceilings(),
            themes=len(s.themes),
            evidence=len(s.evidence) + len(s.supplementary),
            clusters=len(s.clusters),
            contradictions=len(s.contradictions),
            synthesis_tier=s.tier,
            terminated_early=s.terminated_early,
            elapsed_seconds=round(self.ctx.budget.elapsed(), 3),
        )


async def run_pipeline(
    query: Union[ResearchQuery, str],
    settings: Optional[Settings] = None,
    providers: Optional[ProviderSet] = None,
    cache: Optional[CacheGateway] = None,
    on_event: Optional[EventSink] = None,
    clock: Callable[[], float] = time.monotonic,
) -> RunResult:
    """Research a query end to end.

    Args:
        query: ResearchQuery or plain query text (standard mode, no date window)
        settings: Settings; defaults to the environment
        providers: Provider clients; defaults to the HTTP clients from settings
        cache: Cache gateway; defaults to the configured backend
        on_event: Optional progress callback receiving StageEvent objects
        clock: Monotonic time source for the run deadline

    Returns:
        RunResult with the sanitized report, rendered Markdown and run metadata

    Raises:
        pydantic.ValidationError: the query text is empty
    """
    if isinstance(query, str):
        query = ResearchQuery(text=query)
    settings = settings or get_settings()

    owned_providers = providers is None
    owned_cache = cache is None
    providers = providers or default_providers(settings)
    cache = cache or build_cache(settings)
    ctx = RunContext.create(query, settings, providers, cache, on_event=on_event, clock=clock)
    try:
        return await Orchestrator(ctx).run()
    finally:
        if owned_providers:
            await providers.aclose()
        if owned_cache:
            await cache.close()
