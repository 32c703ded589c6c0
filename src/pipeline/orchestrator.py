"""Orchestrator: drives a sourcing job through the stage state machine.

State machine (persisted in sourcing_jobs.pipeline_stage):
  FORMATTING -> QUERY_GEN -> SEARCH -> ENRICH
  ENRICH -> SCRAPE | SEARCH (next variant) | NO_CANDIDATES
  SCRAPE -> PARSE -> SAVE -> SCORE -> COMPLETED

Every transition is written to the Job Store before the next stage runs,
so a restarted process resumes at the stage it stopped in. Failures:
  - ConfigurationError: job FAILED at once, non-retryable
  - anything else: logged as retryable, stage re-run up to
    pipeline.stage_retries times, then job FAILED with the stage kept
"""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from src.core.config import Settings
from src.core.db import append_job_error, create_job, find_stuck_jobs, get_job, update_job
from src.core.errors import ConfigurationError, JobNotFoundError, RetryNotAllowedError
from src.core.schemas import (
    NO_CANDIDATES_LABEL,
    JobStatus,
    JobSubmission,
    PipelineError,
    SourcingJob,
    Stage,
)
from src.pipeline.enrich import run_enrichment
from src.pipeline.formatter import run_formatting
from src.pipeline.parse import run_parse
from src.pipeline.queries import run_query_generation
from src.pipeline.save import run_save
from src.pipeline.scorer import run_scoring
from src.pipeline.scrape import run_scrape
from src.pipeline.search import run_search
from src.pipeline.state import (
    STAGE_STATUS,
    TERMINAL_STAGES,
    PipelineState,
    check_progress,
    next_stage,
)
from src.profile.llm import get_provider
from src.profile.llm.base import LLMProvider
from src.providers.apify import ApifyClient, ApifyScrapeProvider, ApifySearchProvider
from src.providers.base import EnrichmentProvider, ScrapeProvider, SearchProvider
from src.providers.salesql import SalesQLEnrichmentProvider

logger = logging.getLogger(__name__)


class PipelineContext:
    """Connection, settings and providers for pipeline runs.

    Providers not passed in are built from settings on first use, so a
    missing credential surfaces as a ConfigurationError inside the stage
    that needs it.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: Settings,
        *,
        search: SearchProvider | None = None,
        enrichment: EnrichmentProvider | None = None,
        scrape: ScrapeProvider | None = None,
        llm: dict[str, LLMProvider] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.conn = conn
        self.settings = settings
        self.sleep = sleep
        self._search = search
        self._enrichment = enrichment
        self._scrape = scrape
        self._llm: dict[str, LLMProvider] = dict(llm or {})
        self._apify: ApifyClient | None = None

    def _apify_client(self) -> ApifyClient:
        if self._apify is None:
            self._apify = ApifyClient(self.settings.search)
        return self._apify

    @property
    def search(self) -> SearchProvider:
        if self._search is None:
            self._search = ApifySearchProvider(self.settings.search, self._apify_client())
        return self._search

    @property
    def scrape(self) -> ScrapeProvider:
        if self._scrape is None:
            self._scrape = ApifyScrapeProvider(self.settings.search, self._apify_client())
        return self._scrape

    @property
    def enrichment(self) -> EnrichmentProvider:
        if self._enrichment is None:
            self._enrichment = SalesQLEnrichmentProvider(self.settings.enrichment)
        return self._enrichment

    def llm(self, task: str) -> tuple[LLMProvider, str | None]:
        """(provider, model override) for formatting, extraction or scoring."""
        task_config = getattr(self.settings.llm, task)
        if task not in self._llm:
            self._llm[task] = get_provider(task_config.provider)
        return self._llm[task], task_config.model


def submit_job(conn: sqlite3.Connection, submission: JobSubmission, settings: Settings) -> SourcingJob:
    """Create a job in CREATED status. The pipeline is started separately."""
    job = create_job(conn, submission, max_retries=settings.recovery.max_retries)
    logger.info("Created sourcing job %s for owner %s: %s", job.id, job.owner_id, job.title)
    return job


async def _execute(ctx: PipelineContext, stage: Stage, state: PipelineState) -> None:
    conn, job, pipeline = ctx.conn, state.job, ctx.settings.pipeline
    if stage == Stage.FORMATTING:
        provider, model = ctx.llm("formatting")
        await run_formatting(conn, job, provider, model)
    elif stage == Stage.QUERY_GEN:
        run_query_generation(conn, job)
    elif stage == Stage.SEARCH:
        await run_search(
            conn, job, ctx.search, pipeline, candidates_with_contact=state.candidates_with_contact,
        )
    elif stage == Stage.ENRICH:
        await run_enrichment(conn, job, ctx.enrichment, ctx.settings.enrichment, sleep=ctx.sleep)
    elif stage == Stage.SCRAPE:
        await run_scrape(conn, job, ctx.scrape, pipeline)
    elif stage == Stage.PARSE:
        provider, model = ctx.llm("extraction")
        await run_parse(conn, job, provider, pipeline, model)
    elif stage == Stage.SAVE:
        await run_save(conn, job, pipeline)
    elif stage == Stage.SCORE:
        provider, model = ctx.llm("scoring")
        await run_scoring(conn, job, provider, pipeline, model)
    else:
        msg = f"Stage {stage.value} has no stage function"
        raise ValueError(msg)


def _fail(
    conn: sqlite3.Connection, job_id: str, stage: Stage, message: str, *, retryable: bool,
) -> None:
    append_job_error(conn, job_id, PipelineError(stage=stage.value, message=message, retryable=retryable))
    update_job(
        conn,
        job_id,
        status=JobStatus.FAILED,
        current_stage=f"{stage.value}_FAILED",
        error_message=message,
        failed_at=datetime.now(),
    )


def _finish(conn: sqlite3.Connection, state: PipelineState, stage: Stage) -> None:
    job = state.job
    if stage == Stage.COMPLETED:
        update_job(
            conn,
            job.id,
            status=JobStatus.COMPLETED,
            current_stage="COMPLETED",
            completed_at=datetime.now(),
        )
        logger.info(
            "Job %s completed: %d saved, %d scored", job.id, state.candidates_saved, state.candidates_scored,
        )
        return

    message = (
        f"No candidates with contact information found after {job.search_attempts} "
        f"search attempt(s) ({state.candidates_with_contact}/{job.max_candidates}). "
        "Try broader requirements."
    )
    update_job(
        conn,
        job.id,
        status=JobStatus.FAILED,
        current_stage=NO_CANDIDATES_LABEL,
        error_message=message,
        failed_at=datetime.now(),
    )
    logger.info("Job %s: %s", job.id, message)


async def run_job(ctx: PipelineContext, job_id: str) -> SourcingJob:
    """Run (or resume) a job from its persisted stage until it finishes or fails."""
    conn = ctx.conn
    state = PipelineState.load(conn, job_id)
    if state.job.is_terminal:
        logger.info("Job %s is already %s, nothing to run", job_id, state.job.status.value)
        return state.job

    stage = state.job.pipeline_stage
    logger.info("Running job %s from stage %s", job_id, stage.value)
    failures = 0

    while stage not in TERMINAL_STAGES:
        status, label = STAGE_STATUS[stage]
        update_job(conn, job_id, pipeline_stage=stage, status=status, current_stage=label)
        state = PipelineState.load(conn, job_id)

        try:
            await _execute(ctx, stage, state)
        except ConfigurationError as e:
            logger.error("Job %s: configuration error in %s: %s", job_id, stage.value, e)
            _fail(conn, job_id, stage, str(e), retryable=False)
            return _reload(conn, job_id)
        except Exception as e:
            failures += 1
            message = f"{stage.value} failed: {e}"
            if failures > ctx.settings.pipeline.stage_retries:
                logger.error("Job %s: %s (giving up after %d attempts)", job_id, message, failures)
                _fail(conn, job_id, stage, message, retryable=True)
                return _reload(conn, job_id)
            logger.warning("Job %s: %s, retrying stage", job_id, message, exc_info=True)
            append_job_error(conn, job_id, PipelineError(stage=stage.value, message=message))
            update_job(conn, job_id, error_message=message)
            continue

        failures = 0
        state = PipelineState.load(conn, job_id)
        check_progress(state.job)
        following = next_stage(stage, state, ctx.settings.pipeline)

        if stage == Stage.ENRICH and following == Stage.SEARCH:
            index = state.job.current_query_index + 1
            logger.info(
                "Job %s: %d/%d with contact, moving to %s variant",
                job_id, state.candidates_with_contact, state.job.max_candidates,
                state.job.search_queries[index].variant.value,
            )
            update_job(conn, job_id, pipeline_stage=following, current_query_index=index)
        else:
            update_job(conn, job_id, pipeline_stage=following)
        stage = following

    _finish(conn, PipelineState.load(conn, job_id), stage)
    return _reload(conn, job_id)


def _reload(conn: sqlite3.Connection, job_id: str) -> SourcingJob:
    job = get_job(conn, job_id)
    if job is None:
        msg = f"Sourcing job not found: {job_id}"
        raise JobNotFoundError(msg)
    return job


async def resume(ctx: PipelineContext, job_id: str) -> SourcingJob:
    """Continue a job from its last checkpoint. Terminal jobs are returned as is."""
    return await run_job(ctx, job_id)


def prepare_retry(conn: sqlite3.Connection, job_id: str) -> SourcingJob:
    """Reset a FAILED job so it can resume from its persisted stage.

    Raises RetryNotAllowedError for jobs that are not failed, that ended
    with no candidates, or that have used up their retries.
    """
    job = _reload(conn, job_id)
    if job.status != JobStatus.FAILED:
        msg = f"Job {job_id} is {job.status.value}; only failed jobs can be retried"
        raise RetryNotAllowedError(msg)
    if job.is_no_candidates:
        msg = f"Job {job_id} found no candidates; submit a job with broader requirements instead"
        raise RetryNotAllowedError(msg)
    if job.retry_count >= job.max_retries:
        msg = f"Job {job_id} has used all {job.max_retries} retries"
        raise RetryNotAllowedError(msg)

    status, label = STAGE_STATUS[job.pipeline_stage]
    update_job(
        conn,
        job_id,
        status=status,
        current_stage=label,
        error_message=None,
        failed_at=None,
        retry_count=job.retry_count + 1,
    )
    logger.info(
        "Job %s retry %d/%d from stage %s",
        job_id, job.retry_count + 1, job.max_retries, job.pipeline_stage.value,
    )
    return _reload(conn, job_id)


async def retry_job(ctx: PipelineContext, job_id: str) -> SourcingJob:
    prepare_retry(ctx.conn, job_id)
    return await run_job(ctx, job_id)


async def recover_stuck_jobs(
    ctx: PipelineContext, *, now: datetime | None = None,
) -> list[tuple[str, str]]:
    """Resume or fail jobs that stopped making progress.

    Returns (job_id, action) pairs where action is "resumed" or "failed".
    """
    now = now or datetime.now()
    cutoff = now - timedelta(minutes=ctx.settings.recovery.stuck_after_minutes)
    actions: list[tuple[str, str]] = []

    for job in find_stuck_jobs(ctx.conn, cutoff):
        if job.retry_count >= job.max_retries:
            logger.warning("Job %s stuck in %s with no retries left", job.id, job.pipeline_stage.value)
            _fail(
                ctx.conn,
                job.id,
                job.pipeline_stage,
                f"Job stalled in {job.pipeline_stage.value} and exhausted {job.max_retries} retries",
                retryable=False,
            )
            actions.append((job.id, "failed"))
            continue

        logger.info(
            "Recovering job %s stuck in %s since %s",
            job.id, job.pipeline_stage.value, job.last_activity_at.isoformat(timespec="seconds"),
        )
        update_job(ctx.conn, job.id, retry_count=job.retry_count + 1)
        await run_job(ctx, job.id)
        actions.append((job.id, "resumed"))

    return actions
