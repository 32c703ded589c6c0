"""ENRICH stage: contact lookup and candidate creation (the contact gate).

Only profiles for which the enrichment provider finds an email become
Candidate rows. Each row is written as soon as its contact is found; URLs
that came back without contact are remembered on the job so a resumed
run never pays for them twice.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from src.core.config import EnrichmentConfig
from src.core.db import candidate_urls, count_candidates, insert_candidate, update_job
from src.core.schemas import Candidate, ContactResult, JobStatus, ProfileHit, SourcingJob
from src.pipeline.batch import throttled
from src.providers.base import EnrichmentProvider

logger = logging.getLogger(__name__)


def build_candidate(
    job_id: str, hit: ProfileHit, contact: ContactResult, source: str,
) -> Candidate:
    """Candidate row for a search hit with a found contact.

    Enrichment data wins over the search snippet where both exist.
    """
    return Candidate(
        job_id=job_id,
        profile_url=hit.profile_url,
        full_name=contact.full_name or hit.full_name or "Unknown",
        headline=contact.headline or hit.headline or None,
        location=contact.location or hit.location or None,
        current_position=hit.current_position or None,
        current_company=hit.current_company or None,
        photo_url=contact.photo_url or hit.photo_url or None,
        email=contact.email,
        phone=contact.phone,
        has_contact_info=True,
        email_source=source,
        enrichment_status="ENRICHED",
        raw_data={"search": hit.model_dump(), "enrichment": contact.raw},
        enriched_at=datetime.now(),
    )


async def run_enrichment(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: EnrichmentProvider,
    config: EnrichmentConfig,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """Enrich discovered profiles until the job target is met.

    Returns the number of contactable candidates the job now has.
    """
    existing = set(candidate_urls(conn, job.id))
    checked = list(job.enrichment_checked)
    already_checked = set(checked)
    with_contact = count_candidates(conn, job.id, contactable=True)

    pending = [
        hit
        for hit in job.discovered_profiles
        if hit.profile_url not in existing and hit.profile_url not in already_checked
    ]
    logger.info(
        "Job %s enrichment: target %d, have %d, %d profiles to check (%d skipped)",
        job.id, job.max_candidates, with_contact, len(pending),
        len(job.discovered_profiles) - len(pending),
    )

    created = 0
    discarded = 0

    async def enrich_one(hit: ProfileHit) -> ContactResult:
        nonlocal with_contact, created, discarded
        contact = await provider.enrich(hit.profile_url)
        if contact.has_email:
            candidate = build_candidate(job.id, hit, contact, provider.provider_id)
            if insert_candidate(conn, candidate):
                created += 1
                with_contact += 1
        else:
            discarded += 1
            checked.append(hit.profile_url)
            update_job(conn, job.id, enrichment_checked=checked)
        return contact

    outcomes = await throttled(
        pending,
        enrich_one,
        delay=config.delay_seconds,
        stop_when=lambda: with_contact >= job.max_candidates,
        sleep=sleep,
    )
    errors = sum(1 for o in outcomes if not o.ok)

    update_job(
        conn,
        job.id,
        status=JobStatus.PROFILES_FOUND,
        current_stage=f"ENRICHED_{with_contact}_OF_{job.max_candidates}",
    )
    logger.info(
        "Job %s enrichment done: created %d, discarded %d, errors %d, total %d/%d",
        job.id, created, discarded, errors, with_contact, job.max_candidates,
    )
    return with_contact
