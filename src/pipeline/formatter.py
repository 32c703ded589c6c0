"""FORMATTING stage: job description -> structured search filters.

An LLM proposes the search query, titles, locations and industries. The
experience levels always come from a fixed mapping, and if the model call
or its reply is unusable a deterministic fallback builds filters from the
required skills alone.
"""

import asyncio
import logging
import math
import re
import sqlite3
from typing import Any

from src.core.db import update_job
from src.core.errors import ConfigurationError
from src.core.schemas import JobRequirements, JobStatus, SearchFilters, SourcingJob
from src.profile.llm.base import LLMProvider, parse_response

logger = logging.getLogger(__name__)

RESULTS_PER_PAGE = 25

INDUSTRY_IDS: dict[str, list[int]] = {
    "software development": [4],
    "saas": [4, 6],
    "fintech": [43, 4],
    "e-commerce": [6],
    "healthcare": [14],
    "education": [69],
    "finance": [43],
    "consulting": [11],
    "cloud": [96, 4],
    "ai/ml": [4, 6],
    "cybersecurity": [96, 122],
    "gaming": [4, 6],
    "marketing": [80],
}

EXPERIENCE_LEVELS: dict[str, list[str]] = {
    "internship": ["internship"],
    "entry": ["entry"],
    "associate": ["associate"],
    "mid-senior": ["mid-senior"],
    "director": ["director"],
    "executive": ["executive"],
    "0-2": ["internship", "entry"],
    "2-4": ["entry", "associate"],
    "3-5": ["associate"],
    "5-8": ["mid-senior"],
    "8-12": ["mid-senior", "director"],
    "12+": ["director", "executive"],
}

# (upper bound exclusive, bucket)
_YEAR_BUCKETS = [(2, "0-2"), (4, "2-4"), (5, "3-5"), (8, "5-8"), (12, "8-12")]

LOCATION_ALIASES: dict[str, str] = {
    "san francisco": "San Francisco Bay Area",
    "sf": "San Francisco Bay Area",
    "bay area": "San Francisco Bay Area",
    "nyc": "New York City Metropolitan Area",
    "new york": "New York City Metropolitan Area",
    "los angeles": "Greater Los Angeles Area",
    "la": "Greater Los Angeles Area",
    "seattle": "Greater Seattle Area",
    "boston": "Greater Boston",
}

FORMATTING_SYSTEM_PROMPT = (
    "You turn job requirements into LinkedIn profile-search filters.\n\n"
    "Return ONLY a JSON object with:\n"
    '  "searchQuery": the top 2-3 critical skills joined with " AND " '
    '(e.g. "React AND Node.js"); the job category if there are no technical skills,\n'
    '  "currentJobTitles": 3-5 exact titles as they appear on LinkedIn, '
    "avoiding bare generic titles, including close variations,\n"
    '  "locations": LinkedIn-style area names (e.g. "San Francisco Bay Area", '
    '"New York City Metropolitan Area"),\n'
    '  "industryIds": LinkedIn industry ids: Software=4, Internet=6, IT Services=96, '
    "Financial Services=43, Healthcare=14, Consulting=11; use [4, 6] for unclear tech roles.\n\n"
    "Do not over-filter. Candidates are scored later, so cast a wide net."
)


def experience_levels_for(years: str) -> list[str]:
    """Map a years-of-experience requirement to search experience levels."""
    key = (years or "").strip().lower()
    if not key:
        return []
    if key in EXPERIENCE_LEVELS:
        return list(EXPERIENCE_LEVELS[key])
    match = re.search(r"\d+", key)
    if not match:
        return []
    n = int(match.group())
    for upper, bucket in _YEAR_BUCKETS:
        if n < upper:
            return list(EXPERIENCE_LEVELS[bucket])
    return list(EXPERIENCE_LEVELS["12+"])


def industry_ids_for(industry: str) -> list[int]:
    """Fixed industry -> LinkedIn id mapping. Unknown or "Any" maps to no filter."""
    return list(INDUSTRY_IDS.get((industry or "").strip().lower(), []))


def normalize_locations(location: str) -> list[str]:
    locations: list[str] = []
    for part in re.split(r"[;|/]", location or ""):
        part = part.strip()
        if not part:
            continue
        city = part.split(",")[0].strip().lower()
        normalized = LOCATION_ALIASES.get(city, part)
        if normalized not in locations:
            locations.append(normalized)
    return locations


def build_formatting_prompt(job_description: str, requirements: JobRequirements) -> str:
    def show(value: str) -> str:
        return value or "Not specified"

    return (
        f"Job Description:\n{job_description}\n\n"
        "Job Requirements:\n"
        f"- Required Skills: {show(requirements.required_skills)}\n"
        f"- Nice to Have: {show(requirements.nice_to_have)}\n"
        f"- Location: {show(requirements.location)}\n"
        f"- Industry: {show(requirements.industry)}\n"
        f"- Years of Experience: {show(requirements.years_of_experience)}\n"
        f"- Education: {show(requirements.education_level)}\n\n"
        "Generate LinkedIn search filters that will find relevant candidates."
    )


def _base_filters(requirements: JobRequirements, max_candidates: int) -> dict[str, Any]:
    return {
        "experience_levels": experience_levels_for(requirements.years_of_experience),
        "max_items": max_candidates,
        "take_pages": max(1, math.ceil(max_candidates / RESULTS_PER_PAGE)),
        "required_skills": requirements.required_skill_list(),
        "nice_to_have_skills": requirements.nice_to_have_list(),
        "years_of_experience": requirements.years_of_experience,
    }


def fallback_filters(requirements: JobRequirements, max_candidates: int) -> SearchFilters:
    """Filters built without the model: top three required skills ANDed."""
    skills = requirements.required_skill_list()
    return SearchFilters(
        search_query=" AND ".join(skills[:3]) or None,
        locations=normalize_locations(requirements.location),
        industry_ids=industry_ids_for(requirements.industry),
        **_base_filters(requirements, max_candidates),
    )


def filters_from_reply(
    data: Any, requirements: JobRequirements, max_candidates: int,
) -> SearchFilters:
    """Validate the model's JSON reply into SearchFilters. Raises ValueError."""
    if not isinstance(data, dict):
        msg = f"expected a JSON object, got {type(data).__name__}"
        raise ValueError(msg)

    titles = [str(t).strip() for t in data.get("currentJobTitles") or [] if str(t).strip()]
    locations = [str(loc).strip() for loc in data.get("locations") or [] if str(loc).strip()]
    industry_ids = [int(i) for i in data.get("industryIds") or []]
    query = str(data.get("searchQuery") or "").strip() or None
    if not query and not titles:
        msg = "reply has neither searchQuery nor currentJobTitles"
        raise ValueError(msg)

    return SearchFilters(
        search_query=query,
        current_job_titles=titles[:5],
        locations=locations or normalize_locations(requirements.location),
        industry_ids=industry_ids or industry_ids_for(requirements.industry),
        **_base_filters(requirements, max_candidates),
    )


async def derive_filters(
    job: SourcingJob,
    provider: LLMProvider,
    model: str | None = None,
) -> SearchFilters:
    """Ask the model for filters, falling back to the deterministic builder."""
    prompt = build_formatting_prompt(job.raw_job_description, job.requirements)
    try:
        raw = await asyncio.to_thread(
            provider.complete, prompt, model, system=FORMATTING_SYSTEM_PROMPT,
        )
        filters = filters_from_reply(parse_response(raw), job.requirements, job.max_candidates)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning("Filter generation failed for job %s, using fallback: %s", job.id, e)
        return fallback_filters(job.requirements, job.max_candidates)

    logger.info(
        "Job %s filters: query=%r titles=%s locations=%s",
        job.id, filters.search_query, filters.current_job_titles, filters.locations,
    )
    return filters


async def run_formatting(
    conn: sqlite3.Connection,
    job: SourcingJob,
    provider: LLMProvider,
    model: str | None = None,
) -> SearchFilters:
    """FORMATTING stage. Persists the filters and marks the job JD_FORMATTED."""
    filters = await derive_filters(job, provider, model)
    update_job(
        conn,
        job.id,
        search_filters=filters,
        status=JobStatus.JD_FORMATTED,
        current_stage="JD_FORMATTED",
    )
    return filters
