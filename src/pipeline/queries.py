"""QUERY_GEN stage: ordered search-query variants, each a fallback of the last.

precise -> broad -> alternative -> loose trades precision for recall; the
orchestrator consumes them strictly in that order.
"""

import logging
import re
import sqlite3

from src.core.db import update_job
from src.core.errors import StageError
from src.core.schemas import QueryVariant, SearchFilters, SearchQuery, SourcingJob

logger = logging.getLogger(__name__)

BROAD_TITLE_LIMIT = 3
ALTERNATIVE_SKILL_LIMIT = 3

_SENIORITY_RANKS: list[tuple[int, re.Pattern[str]]] = [
    (6, re.compile(r"\b(chief|cto|ceo|cio|vp|vice president|head)\b", re.IGNORECASE)),
    (5, re.compile(r"\bdirector\b", re.IGNORECASE)),
    (4, re.compile(r"\b(principal|architect)\b", re.IGNORECASE)),
    (3, re.compile(r"\b(staff|lead|manager)\b", re.IGNORECASE)),
    (2, re.compile(r"\b(senior|sr)\b", re.IGNORECASE)),
    (0, re.compile(r"\b(junior|jr|intern|graduate|trainee)\b", re.IGNORECASE)),
]


def seniority_rank(title: str) -> int:
    for rank, pattern in _SENIORITY_RANKS:
        if pattern.search(title):
            return rank
    return 1


def most_senior_title(titles: list[str]) -> str | None:
    """Highest-ranked title; the earliest one wins a tie."""
    if not titles:
        return None
    return max(titles, key=lambda t: (seniority_rank(t), -titles.index(t)))


def generate_queries(filters: SearchFilters, max_items: int) -> list[SearchQuery]:
    """Build the variant list for a set of filters.

    alternative is only produced when there are nice-to-have skills, loose
    only when there is at least one title to anchor it.
    """
    queries = [
        SearchQuery(
            variant=QueryVariant.PRECISE,
            search_query=filters.search_query,
            current_job_titles=filters.current_job_titles,
            locations=filters.locations,
            industry_ids=filters.industry_ids,
            experience_levels=filters.experience_levels,
        ),
        SearchQuery(
            variant=QueryVariant.BROAD,
            search_query=filters.search_query,
            current_job_titles=filters.current_job_titles[:BROAD_TITLE_LIMIT],
            locations=filters.locations,
            experience_levels=filters.experience_levels,
        ),
    ]

    if filters.nice_to_have_skills:
        queries.append(
            SearchQuery(
                variant=QueryVariant.ALTERNATIVE,
                search_query=" AND ".join(filters.nice_to_have_skills[:ALTERNATIVE_SKILL_LIMIT]),
                current_job_titles=filters.current_job_titles,
                locations=filters.locations,
                experience_levels=filters.experience_levels,
            )
        )

    senior = most_senior_title(filters.current_job_titles)
    if senior:
        queries.append(
            SearchQuery(
                variant=QueryVariant.LOOSE,
                current_job_titles=[senior],
                locations=filters.locations,
            )
        )

    return [q.with_max_items(max_items) for q in queries]


def run_query_generation(conn: sqlite3.Connection, job: SourcingJob) -> list[SearchQuery]:
    """QUERY_GEN stage. Persists the variants and resets the search cursor."""
    if job.search_filters is None:
        raise StageError("QUERY_GEN", "search filters missing, formatting has not run")

    queries = generate_queries(job.search_filters, job.max_candidates)
    update_job(
        conn,
        job.id,
        search_queries=queries,
        current_query_index=0,
        search_attempts=0,
        current_stage="QUERY_GENERATED",
    )
    logger.info(
        "Job %s: %d search variants (%s)",
        job.id, len(queries), ", ".join(q.variant.value for q in queries),
    )
    return queries
