"""SEARCH stage: run the current query variant and merge its hits."""

import logging
import math
import sqlite3

from src.core.config import PipelineConfig
from src.core.db import append_job_error, update_job
from src.core.errors import ConfigurationError, StageError
from src.core.schemas import JobStatus, PipelineError, ProfileHit, SourcingJob
from src.providers.base import SearchProvider

logger = logging.getLogger(__name__)


def merge_hits(existing: list[ProfileHit], new: list[ProfileHit]) -> list[ProfileHit]:
    """Set union keyed by profile URL. Existing entries and their order win."""
    merged = {hit.profile_url: hit for hit in existing if hit.profile_url}
    for hit in new:
        if hit.profile_url and hit.profile_url not in merged:
            merged[hit.profile_url] = hit
    return list(merged.values())


def search_target(max_candidates: int, with_contact: int, buffer: float) -> int:
    """How many profiles to ask for: what is still missing, plus a buffer."""
    remaining = max(1, max_candidates - with_contact)
    return math.ceil(remaining * buffer)


async def run_search(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: SearchProvider,
    config: PipelineConfig,
    *,
    candidates_with_contact: int = 0,
) -> list[ProfileHit]:
    """Execute one variant. Returns the hits that were new to this job.

    A failed provider call is logged and counted as an attempt; the
    discovered set is left exactly as it was.
    """
    if not job.search_queries:
        raise StageError("SEARCH", "no search queries, query generation has not run")

    index = min(job.current_query_index, len(job.search_queries) - 1)
    target = search_target(job.max_candidates, candidates_with_contact, config.search_buffer)
    query = job.search_queries[index].with_max_items(target)
    attempt = job.search_attempts + 1

    logger.info(
        "Job %s search iteration %d: %s variant, %d/%d with contact, asking for %d",
        job.id, attempt, query.variant.value, candidates_with_contact, job.max_candidates, target,
    )

    try:
        hits = await provider.search(query)
    except ConfigurationError:
        raise
    except Exception as e:
        message = f"Search {query.variant.value} failed: {e}"
        logger.error("Job %s: %s", job.id, message)
        append_job_error(conn, job.id, PipelineError(stage="SEARCH", message=message))
        update_job(
            conn,
            job.id,
            search_attempts=attempt,
            error_message=message,
            current_stage=f"SEARCH_ITERATION_{attempt}_FAILED",
        )
        return []

    merged = merge_hits(job.discovered_profiles, hits)
    new_hits = merged[len(job.discovered_profiles):]
    update_job(
        conn,
        job.id,
        discovered_profiles=merged,
        total_profiles_found=len(merged),
        search_attempts=attempt,
        status=JobStatus.SEARCHING_PROFILES,
        current_stage=f"SEARCH_ITERATION_{attempt}_COMPLETE",
    )
    logger.info(
        "Job %s: %d hits, %d new, %d discovered in total",
        job.id, len(hits), len(new_hits), len(merged),
    )
    return new_hits
