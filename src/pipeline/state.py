"""Pipeline state and the pure stage-transition function.

PipelineState is rebuilt from the Job Store on every invocation; it is
never the durability boundary. next_stage only looks at persisted data
(counts, query index, attempt counter) so a restarted run lands on the
same decision as the run that crashed.
"""

import logging
import sqlite3

from pydantic import BaseModel, Field

from src.core.config import PipelineConfig
from src.core.db import count_candidates, get_job, list_job_errors
from src.core.errors import JobNotFoundError
from src.core.schemas import JobStatus, PipelineError, ProfileHit, SourcingJob, Stage

logger = logging.getLogger(__name__)

# Status and human label written when a stage starts.
STAGE_STATUS: dict[Stage, tuple[JobStatus, str]] = {
    Stage.FORMATTING: (JobStatus.FORMATTING_JD, "FORMATTING_JD"),
    Stage.QUERY_GEN: (JobStatus.JD_FORMATTED, "GENERATING_QUERIES"),
    Stage.SEARCH: (JobStatus.SEARCHING_PROFILES, "SEARCHING"),
    Stage.ENRICH: (JobStatus.SEARCHING_PROFILES, "ENRICHING"),
    Stage.SCRAPE: (JobStatus.SCRAPING_PROFILES, "SCRAPING"),
    Stage.PARSE: (JobStatus.PARSING_PROFILES, "PARSING"),
    Stage.SAVE: (JobStatus.SAVING_PROFILES, "SAVING"),
    Stage.SCORE: (JobStatus.SCORING_PROFILES, "SCORING"),
}

_LINEAR: dict[Stage, Stage] = {
    Stage.FORMATTING: Stage.QUERY_GEN,
    Stage.QUERY_GEN: Stage.SEARCH,
    Stage.SEARCH: Stage.ENRICH,
    Stage.SCRAPE: Stage.PARSE,
    Stage.PARSE: Stage.SAVE,
    Stage.SAVE: Stage.SCORE,
    Stage.SCORE: Stage.COMPLETED,
}

TERMINAL_STAGES = {Stage.COMPLETED, Stage.NO_CANDIDATES}


class PipelineState(BaseModel):
    """Job snapshot plus derived counts and transient stage data."""

    job: SourcingJob
    candidates_with_contact: int = 0
    candidates_saved: int = 0
    candidates_scored: int = 0
    errors: list[PipelineError] = Field(default_factory=list)

    # transient, never persisted
    search_results: list[ProfileHit] = Field(default_factory=list)

    @classmethod
    def load(cls, conn: sqlite3.Connection, job_id: str) -> "PipelineState":
        job = get_job(conn, job_id)
        if job is None:
            msg = f"Sourcing job not found: {job_id}"
            raise JobNotFoundError(msg)
        return cls(
            job=job,
            candidates_with_contact=count_candidates(conn, job_id, contactable=True),
            candidates_saved=count_candidates(conn, job_id, saved=True),
            candidates_scored=count_candidates(conn, job_id, scored=True),
            errors=list_job_errors(conn, job_id),
        )

    @property
    def remaining(self) -> int:
        return max(0, self.job.max_candidates - self.candidates_with_contact)

    @property
    def has_next_variant(self) -> bool:
        return self.job.current_query_index + 1 < len(self.job.search_queries)


def after_enrich(state: PipelineState, config: PipelineConfig) -> Stage:
    """Branch after ENRICH: SCRAPE, another SEARCH, or NO_CANDIDATES."""
    if state.candidates_with_contact >= state.job.max_candidates:
        return Stage.SCRAPE
    if state.job.search_attempts < config.max_search_iterations and state.has_next_variant:
        return Stage.SEARCH
    if config.allow_partial_results and state.candidates_with_contact > 0:
        return Stage.SCRAPE
    return Stage.NO_CANDIDATES


def next_stage(stage: Stage, state: PipelineState, config: PipelineConfig) -> Stage:
    """Stage that follows ``stage`` once it has finished."""
    if stage in TERMINAL_STAGES:
        return stage
    if stage == Stage.ENRICH:
        return after_enrich(state, config)
    return _LINEAR[stage]


def progress_violations(job: SourcingJob) -> list[str]:
    """Monotonic-progress checks. Empty when the counters are consistent."""
    chain = [
        ("profiles_scored", job.profiles_scored),
        ("profiles_saved", job.profiles_saved),
        ("profiles_parsed", job.profiles_parsed),
        ("profiles_scraped", job.profiles_scraped),
        ("total_profiles_found", job.total_profiles_found),
    ]
    problems: list[str] = []
    for (low_name, low), (high_name, high) in zip(chain, chain[1:]):
        if low > high:
            problems.append(f"{low_name}={low} > {high_name}={high}")
    return problems


def check_progress(job: SourcingJob) -> bool:
    """Log progress-invariant violations. Monitored, not enforced."""
    problems = progress_violations(job)
    for problem in problems:
        logger.warning("Job %s progress out of order: %s", job.id, problem)
    return not problems
