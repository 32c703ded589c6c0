"""PARSE stage: scraped profiles -> ParsedProfile via AI, with fallbacks.

Per profile: AI extraction (with array recovery), then the manual
extractor, then drop. Batches run with bounded concurrency and the
cumulative parsed list is checkpointed after each batch.
"""

import asyncio
import logging
import sqlite3
from typing import Any

from src.core.config import PipelineConfig
from src.core.db import append_job_error, set_parse_status, update_job
from src.core.schemas import JobStatus, ParsedProfile, PipelineError, SourcingJob
from src.pipeline.batch import raise_configuration_errors, run_in_batches, settle_all
from src.profile.cleaner import clean_profile, is_valid_profile
from src.profile.extractor import manual_extract
from src.profile.llm.base import LLMProvider
from src.profile.llm_parser import extract_with_ai

logger = logging.getLogger(__name__)


async def parse_profile(
    profile: dict[str, Any],
    provider: LLMProvider,
    *,
    model: str | None = None,
    max_skills: int = 10,
) -> ParsedProfile | None:
    """Run the three-tier cascade for one cleaned profile."""
    url = profile["profileUrl"]
    result = await asyncio.to_thread(extract_with_ai, profile, provider, model)
    parsed = result.profile if result.ok else manual_extract(profile, max_skills=max_skills)
    if parsed is None:
        logger.warning("Dropping %s: no name/URL from AI or manual extraction", url)
        return None
    if not result.ok:
        logger.info("Manual extraction used for %s (%s)", url, result.error)

    # the scraped URL is the key back to the candidate row
    return parsed.model_copy(update={"profile_url": url, "skills": parsed.skills[:max_skills]})


async def run_parse(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: LLMProvider,
    config: PipelineConfig,
    model: str | None = None,
) -> list[ParsedProfile]:
    """Parse every successfully scraped profile not already parsed."""
    parsed: list[ParsedProfile] = list(job.parsed_profiles_data)
    done = {p.profile_url for p in parsed}

    pending: list[dict[str, Any]] = []
    invalid: list[str] = []
    for scraped in job.scraped_profiles_data:
        if not scraped.succeeded or scraped.url in done:
            continue
        cleaned = clean_profile(scraped.data, url=scraped.url)
        if is_valid_profile(cleaned):
            pending.append(cleaned)
        else:
            invalid.append(scraped.url)

    if invalid:
        logger.warning("Job %s: %d scraped profiles lack name/URL/role, skipped", job.id, len(invalid))
        set_parse_status(conn, job.id, invalid, "INVALID")
    if not pending:
        logger.info("Job %s: all %d profiles already parsed", job.id, len(parsed))
        return parsed

    logger.info("Job %s: parsing %d profiles (%d already parsed)", job.id, len(pending), len(parsed))

    async def process(batch: list[dict[str, Any]], number: int, total: int) -> None:
        outcomes = await settle_all(
            batch,
            lambda p: parse_profile(p, provider, model=model, max_skills=config.max_skills),
            concurrency=config.concurrency,
        )
        raise_configuration_errors(outcomes)

        ok_urls: list[str] = []
        failed_urls: list[str] = []
        for outcome in outcomes:
            if outcome.ok and outcome.value is not None:
                parsed.append(outcome.value)
                done.add(outcome.value.profile_url)
                ok_urls.append(outcome.value.profile_url)
            else:
                failed_urls.append(outcome.item["profileUrl"])

        set_parse_status(conn, job.id, ok_urls, "PARSED")
        set_parse_status(conn, job.id, failed_urls, "FAILED")
        update_job(
            conn,
            job.id,
            parsed_profiles_data=parsed,
            profiles_parsed=len(parsed),
            status=JobStatus.PARSING_PROFILES,
            current_stage=f"PARSING_BATCH_{number}_OF_{total}",
        )
        logger.info("Job %s parse batch %d/%d: %d/%d parsed", job.id, number, total, len(ok_urls), len(batch))

    report = await run_in_batches(pending, process, batch_size=config.parse_batch_size, label="Parse")

    for _, message in report.failed:
        append_job_error(conn, job.id, PipelineError(stage="PARSE", message=message))
    fields: dict[str, Any] = {"current_stage": "PARSING_COMPLETE"}
    if report.last_error:
        fields["error_message"] = report.last_error
    update_job(conn, job.id, **fields)

    logger.info("Job %s parse complete: %d profiles parsed", job.id, len(parsed))
    return parsed
