"""SCRAPE stage: fetch full profiles for contactable candidates in batches."""

import logging
import sqlite3

from src.core.config import PipelineConfig
from src.core.db import append_job_error, candidate_urls, set_scrape_status, update_job
from src.core.errors import ConfigurationError
from src.core.schemas import JobStatus, PipelineError, ScrapedProfile, SourcingJob
from src.pipeline.batch import run_in_batches
from src.providers.base import ScrapeProvider

logger = logging.getLogger(__name__)


def succeeded_count(profiles: list[ScrapedProfile]) -> int:
    return sum(1 for p in profiles if p.succeeded)


async def run_scrape(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: ScrapeProvider,
    config: PipelineConfig,
) -> list[ScrapedProfile]:
    """Scrape every contactable candidate not yet scraped successfully.

    After each batch the whole accumulated list (successes and failures)
    is checkpointed, so a resume only retries URLs not marked succeeded.
    """
    by_url: dict[str, ScrapedProfile] = {p.url: p for p in job.scraped_profiles_data}
    urls = candidate_urls(conn, job.id, contactable_only=True)
    pending = [u for u in urls if not (u in by_url and by_url[u].succeeded)]

    if not pending:
        logger.info("Job %s: all %d profiles already scraped", job.id, len(urls))
        return list(by_url.values())

    logger.info(
        "Job %s: scraping %d profiles (%d already done)",
        job.id, len(pending), len(urls) - len(pending),
    )

    def checkpoint(stage_label: str) -> None:
        profiles = list(by_url.values())
        update_job(
            conn,
            job.id,
            scraped_profiles_data=profiles,
            profiles_scraped=succeeded_count(profiles),
            status=JobStatus.SCRAPING_PROFILES,
            current_stage=stage_label,
        )

    async def process(batch: list[str], number: int, total: int) -> None:
        requested = set(batch)
        try:
            results = await provider.scrape_batch(batch)
        except ConfigurationError:
            raise
        except Exception:
            for url in batch:
                if url not in by_url:
                    by_url[url] = ScrapedProfile(url=url, succeeded=False)
            set_scrape_status(conn, job.id, batch, "FAILED")
            checkpoint(f"SCRAPING_BATCH_{number}_OF_{total}_FAILED")
            raise

        returned = {r.url for r in results}
        for result in results:
            if result.url not in requested:
                logger.debug("Ignoring unrequested scrape result %s", result.url)
                continue
            # a later failure never overwrites an earlier success
            if result.succeeded or not by_url.get(result.url, result).succeeded:
                by_url[result.url] = result
        for url in requested - returned:
            by_url.setdefault(url, ScrapedProfile(url=url, succeeded=False))

        ok = [u for u in batch if by_url[u].succeeded]
        set_scrape_status(conn, job.id, ok, "SCRAPED")
        set_scrape_status(conn, job.id, [u for u in batch if u not in ok], "FAILED")
        checkpoint(f"SCRAPING_BATCH_{number}_OF_{total}")
        logger.info("Job %s scrape batch %d/%d: %d/%d succeeded", job.id, number, total, len(ok), len(batch))

    report = await run_in_batches(
        pending, process, batch_size=config.scrape_batch_size, label="Scrape",
    )

    for _, message in report.failed:
        append_job_error(conn, job.id, PipelineError(stage="SCRAPE", message=message))
    fields = {"current_stage": "SCRAPING_COMPLETE"}
    if report.last_error:
        fields["error_message"] = report.last_error
    update_job(conn, job.id, **fields)

    profiles = list(by_url.values())
    logger.info("Job %s scrape complete: %d/%d succeeded", job.id, succeeded_count(profiles), len(urls))
    return profiles
