"""SAVE stage: apply parsed profiles to their candidate rows.

Rows were created at enrichment time, so saving is an update of rows not
yet saved. A parsed profile with no row (no contact found) is never
inserted. Cross-job duplicates of the same owner are flagged, not removed.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from src.core.config import PipelineConfig
from src.core.db import (
    append_job_error,
    candidate_urls,
    count_candidates,
    find_first_seen_job,
    get_candidate,
    update_candidate,
    update_job,
)
from src.core.schemas import Candidate, JobStatus, ParsedProfile, PipelineError, SourcingJob
from src.pipeline.batch import run_in_batches

logger = logging.getLogger(__name__)


def saved_fields(candidate: Candidate, parsed: ParsedProfile) -> dict[str, Any]:
    """Column updates for a candidate from its parsed profile.

    Contact details found by enrichment are kept; parsed ones only fill gaps.
    """
    raw = dict(candidate.raw_data)
    raw["parse_method"] = parsed.parse_method
    return {
        "full_name": parsed.full_name or candidate.full_name,
        "headline": parsed.headline or candidate.headline,
        "location": parsed.location or candidate.location,
        "current_position": parsed.current_position or candidate.current_position,
        "current_company": parsed.current_company or candidate.current_company,
        "photo_url": parsed.photo_url or candidate.photo_url,
        "email": candidate.email or parsed.email,
        "phone": candidate.phone or parsed.phone,
        "experience_years": parsed.experience_years,
        "skills": parsed.skills,
        "experience": [e.model_dump() for e in parsed.experience],
        "education": [e.model_dump() for e in parsed.education],
        "parse_status": "PARSED",
        "raw_data": raw,
    }


def save_profile(conn: sqlite3.Connection, job: SourcingJob, parsed: ParsedProfile) -> bool:
    """Save one parsed profile. Returns False when there is nothing to do."""
    candidate = get_candidate(conn, job.id, parsed.profile_url)
    if candidate is None or candidate.id is None:
        logger.warning("Job %s: no candidate row for %s, not saving", job.id, parsed.profile_url)
        return False
    if candidate.saved_at is not None:
        return False

    first_seen = find_first_seen_job(conn, job.owner_id, parsed.profile_url, job.id)
    update_candidate(
        conn,
        candidate.id,
        **saved_fields(candidate, parsed),
        is_duplicate=first_seen is not None,
        first_seen_job_id=first_seen,
        saved_at=datetime.now(),
    )
    if first_seen:
        logger.debug("%s previously sourced in job %s", parsed.profile_url, first_seen)
    return True


async def run_save(conn: sqlite3.Connection, job: SourcingJob, config: PipelineConfig) -> int:
    """Save all parsed profiles whose rows are not saved yet.

    Returns the number of saved candidates for the job.
    """
    unsaved = set(candidate_urls(conn, job.id, saved=False))
    pending = [p for p in job.parsed_profiles_data if p.profile_url in unsaved]

    if not pending:
        saved = count_candidates(conn, job.id, saved=True)
        logger.info("Job %s: nothing left to save (%d saved)", job.id, saved)
        update_job(conn, job.id, profiles_saved=saved)
        return saved

    logger.info("Job %s: saving %d profiles", job.id, len(pending))

    async def process(batch: list[ParsedProfile], number: int, total: int) -> None:
        written = 0
        for parsed in batch:
            try:
                if save_profile(conn, job, parsed):
                    written += 1
            except Exception:
                logger.warning("Job %s: failed to save %s", job.id, parsed.profile_url, exc_info=True)
        update_job(
            conn,
            job.id,
            profiles_saved=count_candidates(conn, job.id, saved=True),
            status=JobStatus.SAVING_PROFILES,
            current_stage=f"SAVING_BATCH_{number}_OF_{total}",
        )
        logger.info("Job %s save batch %d/%d: %d/%d saved", job.id, number, total, written, len(batch))

    report = await run_in_batches(pending, process, batch_size=config.save_batch_size, label="Save")

    for _, message in report.failed:
        append_job_error(conn, job.id, PipelineError(stage="SAVE", message=message))
    saved = count_candidates(conn, job.id, saved=True)
    fields: dict[str, Any] = {"profiles_saved": saved, "current_stage": "SAVING_COMPLETE"}
    if report.last_error:
        fields["error_message"] = report.last_error
    update_job(conn, job.id, **fields)
    return saved
