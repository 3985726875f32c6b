# services/web2md/pipeline.py
"""
Fallback orchestrator.

Stages run one after another, cheapest first.  Each stage is bounded by its
own budget, isolated from the others' failures and recorded as a
``StageAttempt``; the first candidate that passes the quality gate wins.
When nothing passes, the best non-empty candidate is returned with a
``_low_quality`` engine tag, preferring the later (heavier) stage classes.
"""

import asyncio
import time
from typing import List, Optional

from loguru import logger
from prometheus_client import Counter, Histogram

from core.config import Settings
from core.exceptions import AllStagesFailed, EngineUnavailable, Web2MdException
from models.content import Candidate, PipelineResult, StageAttempt
from .browser import BrowserRenderer
from .engines import (
    BrowserEngine,
    Engine,
    EngineKind,
    LocalHeuristicEngine,
    NativeMarkdownEngine,
    PipelineContext,
    parse_engine_kind,
)
from .markdown_utils import estimate_tokens
from .readers import FirecrawlEngine, JinaReaderEngine, LlmDistillEngine
from .request_headers import build_source_headers
from .safe_fetch import SafeFetcher

STAGE_ATTEMPTS = Counter(
    "web2md_stage_attempts_total", "Pipeline stage attempts", ["engine", "outcome"]
)
STAGE_DURATION = Histogram(
    "web2md_stage_duration_seconds", "Time spent inside one pipeline stage", ["engine"]
)
PIPELINE_DURATION = Histogram("web2md_pipeline_duration_seconds", "End-to-end pipeline time")

DISABLED_REASON = "disabled_by_config"


class Web2MdPipeline:
    def __init__(self, engines: List[Engine], settings: Settings, fetcher: Optional[SafeFetcher] = None):
        self.engines = engines
        self.settings = settings
        self.fetcher = fetcher

    @classmethod
    def build(
        cls,
        settings: Settings,
        fetcher: SafeFetcher,
        renderer: Optional[BrowserRenderer] = None,
    ) -> "Web2MdPipeline":
        """Assemble the standard engine order from settings."""
        engines: List[Engine] = [
            NativeMarkdownEngine(settings, fetcher),
            LocalHeuristicEngine(settings, fetcher),
            BrowserEngine(settings, fetcher, renderer),
        ]

        readers = {
            EngineKind.JINA: JinaReaderEngine,
            EngineKind.FIRECRAWL: FirecrawlEngine,
        }
        for name in settings.READER_ORDER:
            kind = parse_engine_kind(name)
            if kind in readers:
                engines.append(readers.pop(kind)(settings, fetcher))
            else:
                logger.warning(f"Ignoring unknown or duplicate reader '{name}' in READER_ORDER")

        engines.append(LlmDistillEngine(settings, fetcher))
        return cls(engines, settings, fetcher)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self, target_url: str, model_override: Optional[str] = None) -> PipelineResult:
        start = time.perf_counter()
        try:
            # address errors are the caller's problem, not a stage failure
            if self.fetcher is not None:
                await self.fetcher.assert_public_target(target_url)

            ctx = PipelineContext(
                target_url=target_url,
                source_headers=build_source_headers(target_url, self.settings),
                model_override=model_override,
            )
            forced = parse_engine_kind(self.settings.FORCE_ENGINE)
            if forced is not None:
                return await self._run_forced(ctx, forced)
            return await self._run_chain(ctx)
        finally:
            PIPELINE_DURATION.observe(time.perf_counter() - start)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _run_chain(self, ctx: PipelineContext) -> PipelineResult:
        attempts: List[StageAttempt] = []
        for engine in self.engines:
            if not engine.enabled:
                STAGE_ATTEMPTS.labels(engine=engine.kind.value, outcome="disabled").inc()
                attempts.append(StageAttempt(engine=engine.kind.value, reason=DISABLED_REASON))
                continue

            candidate = await self._run_stage(engine, ctx, attempts)
            if candidate is not None and candidate.quality.passed:
                logger.info(
                    f"{engine.kind.value} produced passing markdown for {ctx.target_url} "
                    f"(score {candidate.quality.score})"
                )
                return self._result(candidate, attempts)

        fallback = self._pick_fallback(ctx.candidates)
        if fallback is None:
            summary = "; ".join(attempt.summary() for attempt in attempts)
            logger.warning(f"All stages failed for {ctx.target_url}: {summary}")
            raise AllStagesFailed(
                f"Unable to produce markdown ({summary})",
                attempts=[attempt.to_wire() for attempt in attempts],
            )

        logger.warning(
            f"No stage passed the quality gate for {ctx.target_url}; "
            f"falling back to {fallback.engine} (score {fallback.quality.score})"
        )
        return self._result(fallback, attempts, engine=f"{fallback.engine}_low_quality")

    async def _run_forced(self, ctx: PipelineContext, forced: EngineKind) -> PipelineResult:
        attempts: List[StageAttempt] = []
        by_kind = {engine.kind: engine for engine in self.engines}
        engine = by_kind.get(forced)
        if engine is None:
            raise AllStagesFailed(f"Forced engine {forced.value} is not configured.")

        logger.info(f"FORCE_ENGINE={forced.value}; running a single stage for {ctx.target_url}")
        # the LLM needs source material, so the local stage runs first
        if forced is EngineKind.LLM and EngineKind.LOCAL in by_kind:
            await self._run_stage(by_kind[EngineKind.LOCAL], ctx, attempts)

        candidate = await self._run_stage(engine, ctx, attempts)
        if candidate is None:
            summary = "; ".join(attempt.summary() for attempt in attempts)
            raise AllStagesFailed(
                f"Forced engine {forced.value} failed ({summary})",
                attempts=[attempt.to_wire() for attempt in attempts],
            )
        return self._result(candidate, attempts)

    async def _run_stage(
        self,
        engine: Engine,
        ctx: PipelineContext,
        attempts: List[StageAttempt],
    ) -> Optional[Candidate]:
        """Run one engine; record the attempt and return a gated candidate or None."""
        name = engine.kind.value
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        def failed(outcome: str, reason: Optional[str] = None, error: Optional[str] = None) -> None:
            STAGE_ATTEMPTS.labels(engine=name, outcome=outcome).inc()
            attempts.append(
                StageAttempt(engine=name, reason=reason, error=error, duration_ms=elapsed_ms())
            )

        try:
            candidate = await asyncio.wait_for(engine.try_extract(ctx), timeout=engine.budget)
        except asyncio.TimeoutError:
            logger.warning(f"{name} exceeded its {engine.budget:g}s budget for {ctx.target_url}")
            failed("timeout", error=f"stage_timeout_after_{engine.budget:g}s")
            return None
        except EngineUnavailable as exc:
            logger.info(f"{name} unavailable for {ctx.target_url}: {exc.message}")
            failed("unavailable", reason=exc.message)
            return None
        except Web2MdException as exc:
            logger.info(f"{name} failed for {ctx.target_url}: [{exc.code}] {exc.message}")
            failed("error", error=exc.message)
            return None
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception(f"Unexpected error in {name} for {ctx.target_url}")
            failed("error", error=str(exc) or type(exc).__name__)
            return None
        finally:
            STAGE_DURATION.labels(engine=name).observe(time.perf_counter() - start)

        if candidate.is_empty:
            failed("empty", reason="empty_markdown")
            return None

        updates = {}
        if candidate.quality is None:
            updates["quality"] = ctx.evaluate(candidate.markdown)
        if candidate.token_estimate is None:
            updates["token_estimate"] = estimate_tokens(candidate.markdown)
        if updates:
            candidate = candidate.model_copy(update=updates)

        ctx.candidates.append(candidate)
        attempts.append(StageAttempt.from_candidate(candidate, elapsed_ms()))
        STAGE_ATTEMPTS.labels(
            engine=name, outcome="passed" if candidate.quality.passed else "low_quality"
        ).inc()
        if not candidate.quality.passed:
            logger.info(
                f"{name} output for {ctx.target_url} below quality bar "
                f"(score {candidate.quality.score}, reasons {candidate.quality.reasons})"
            )
        return candidate

    @staticmethod
    def _pick_fallback(candidates: List[Candidate]) -> Optional[Candidate]:
        usable = []
        for candidate in candidates:
            kind = parse_engine_kind(candidate.engine)
            if candidate.is_empty or kind is None or kind is EngineKind.LLM:
                continue
            usable.append((kind.stage_class, candidate.quality.score, candidate))
        if not usable:
            return None
        return max(usable, key=lambda item: (item[0], item[1]))[2]

    @staticmethod
    def _result(
        candidate: Candidate,
        attempts: List[StageAttempt],
        engine: Optional[str] = None,
    ) -> PipelineResult:
        return PipelineResult(
            title=candidate.title,
            markdown=candidate.markdown,
            engine=engine or candidate.engine,
            source_detail=candidate.source_detail,
            http_status=candidate.http_status,
            content_type=candidate.content_type,
            token_estimate=candidate.token_estimate,
            quality=candidate.quality,
            attempts=attempts,
        )
