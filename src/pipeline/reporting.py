"""Read-side views of a job: progress resource and candidate exports."""

import csv
import io
import json
from typing import Any

from src.core.schemas import NO_CANDIDATES_LABEL, Candidate, JobStatus, SourcingJob

# status -> (start %, end %); in-stage progress interpolates between them
_PERCENT_RANGES: dict[JobStatus, tuple[int, int]] = {
    JobStatus.CREATED: (5, 5),
    JobStatus.FORMATTING_JD: (10, 10),
    JobStatus.JD_FORMATTED: (15, 15),
    JobStatus.SEARCHING_PROFILES: (20, 20),
    JobStatus.PROFILES_FOUND: (25, 25),
    JobStatus.SCRAPING_PROFILES: (25, 40),
    JobStatus.PARSING_PROFILES: (40, 55),
    JobStatus.SAVING_PROFILES: (55, 70),
    JobStatus.SCORING_PROFILES: (70, 95),
    JobStatus.COMPLETED: (100, 100),
    JobStatus.FAILED: (0, 0),
}

EXPORT_COLUMNS = [
    "full_name",
    "profile_url",
    "email",
    "phone",
    "headline",
    "current_position",
    "current_company",
    "location",
    "experience_years",
    "match_score",
    "skills_score",
    "experience_score",
    "industry_score",
    "title_score",
    "nice_to_have_score",
    "seniority_level",
    "relevant_years",
    "industry_match",
    "matched_skills",
    "missing_skills",
    "bonus_skills",
    "is_duplicate",
    "first_seen_job_id",
    "match_reason",
]


def _fraction(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(1.0, done / total)


def percentage(job: SourcingJob, contactable: int | None = None) -> int:
    """Stage-based completion percentage.

    ``contactable`` is the number of candidates with contact info; it is
    the base for scrape progress and defaults to the job's target.
    """
    start, end = _PERCENT_RANGES[job.status]
    if start == end:
        return start

    if job.status == JobStatus.SCRAPING_PROFILES:
        done = _fraction(job.profiles_scraped, contactable if contactable is not None else job.max_candidates)
    elif job.status == JobStatus.PARSING_PROFILES:
        done = _fraction(job.profiles_parsed, job.profiles_scraped)
    elif job.status == JobStatus.SAVING_PROFILES:
        done = _fraction(job.profiles_saved, job.profiles_parsed)
    else:
        done = _fraction(job.profiles_scored, job.profiles_saved)
    return int(start + (end - start) * done)


def job_progress(job: SourcingJob, contactable: int | None = None) -> dict[str, Any]:
    """The job resource exposed to consumers."""
    return {
        "id": job.id,
        "title": job.title,
        "status": job.status.value,
        "currentStage": job.current_stage,
        "pipelineStage": job.pipeline_stage.value,
        "noCandidatesFound": job.current_stage == NO_CANDIDATES_LABEL,
        "progress": {
            "found": job.total_profiles_found,
            "scraped": job.profiles_scraped,
            "parsed": job.profiles_parsed,
            "saved": job.profiles_saved,
            "scored": job.profiles_scored,
        },
        "percentage": percentage(job, contactable),
        "errorMessage": job.error_message,
        "retryCount": job.retry_count,
        "createdAt": job.created_at.isoformat(timespec="seconds"),
        "lastActivityAt": job.last_activity_at.isoformat(timespec="seconds"),
        "completedAt": job.completed_at.isoformat(timespec="seconds") if job.completed_at else None,
    }


def export_candidates_json(candidates: list[Candidate]) -> str:
    """Export candidates as a JSON array (raw payloads left out)."""
    data = [c.model_dump(mode="json", exclude={"raw_data"}) for c in candidates]
    return json.dumps(data, indent=2)


def export_candidates_csv(candidates: list[Candidate]) -> str:
    """Export candidates as CSV; list columns are joined with "; "."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for candidate in candidates:
        row = candidate.model_dump(include=set(EXPORT_COLUMNS))
        for key, value in row.items():
            if isinstance(value, list):
                row[key] = "; ".join(str(v) for v in value)
            elif value is None:
                row[key] = ""
        writer.writerow(row)
    return buffer.getvalue()
