"""SQLite Job Store: sourcing jobs, candidates, and the job error log."""

import json
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from src.core.schemas import (
    ACTIVE_STATUSES,
    Candidate,
    CandidateScore,
    JobStatus,
    JobSubmission,
    PipelineError,
    SourcingJob,
)

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS sourcing_jobs (
    id                       TEXT PRIMARY KEY,
    owner_id                 TEXT    NOT NULL,
    title                    TEXT    NOT NULL DEFAULT '',
    raw_job_description      TEXT    NOT NULL,
    requirements_json        TEXT    NOT NULL,
    max_candidates           INTEGER NOT NULL DEFAULT 50,
    search_filters_json      TEXT,
    search_queries_json      TEXT    NOT NULL DEFAULT '[]',
    current_query_index      INTEGER NOT NULL DEFAULT 0,
    search_attempts          INTEGER NOT NULL DEFAULT 0,
    discovered_profiles_json TEXT    NOT NULL DEFAULT '[]',
    enrichment_checked_json  TEXT    NOT NULL DEFAULT '[]',
    pipeline_stage           TEXT    NOT NULL DEFAULT 'FORMATTING',
    status                   TEXT    NOT NULL DEFAULT 'CREATED',
    current_stage            TEXT    NOT NULL DEFAULT 'CREATED',
    total_profiles_found     INTEGER NOT NULL DEFAULT 0,
    profiles_scraped         INTEGER NOT NULL DEFAULT 0,
    profiles_parsed          INTEGER NOT NULL DEFAULT 0,
    profiles_saved           INTEGER NOT NULL DEFAULT 0,
    profiles_scored          INTEGER NOT NULL DEFAULT 0,
    scraped_profiles_data    TEXT    NOT NULL DEFAULT '[]',
    parsed_profiles_data     TEXT    NOT NULL DEFAULT '[]',
    error_message            TEXT,
    retry_count              INTEGER NOT NULL DEFAULT 0,
    max_retries              INTEGER NOT NULL DEFAULT 3,
    created_at               TEXT    NOT NULL,
    last_activity_at         TEXT    NOT NULL,
    completed_at             TEXT,
    failed_at                TEXT
);
"""

_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS candidates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id              TEXT    NOT NULL REFERENCES sourcing_jobs(id),
    profile_url         TEXT    NOT NULL,
    full_name           TEXT    NOT NULL DEFAULT 'Unknown',
    headline            TEXT,
    location            TEXT,
    current_position    TEXT,
    current_company     TEXT,
    photo_url           TEXT,
    email               TEXT,
    phone               TEXT,
    has_contact_info    INTEGER NOT NULL DEFAULT 0,
    email_source        TEXT,
    enrichment_status   TEXT    NOT NULL DEFAULT 'PENDING',
    scrape_status       TEXT    NOT NULL DEFAULT 'PENDING',
    parse_status        TEXT    NOT NULL DEFAULT 'PENDING',
    experience_years    INTEGER,
    skills              TEXT    NOT NULL DEFAULT '[]',
    experience          TEXT    NOT NULL DEFAULT '[]',
    education           TEXT    NOT NULL DEFAULT '[]',
    raw_data            TEXT    NOT NULL DEFAULT '{}',
    is_duplicate        INTEGER NOT NULL DEFAULT 0,
    first_seen_job_id   TEXT,
    match_score         REAL,
    skills_score        REAL,
    experience_score    REAL,
    industry_score      REAL,
    title_score         REAL,
    nice_to_have_score  REAL,
    matched_skills      TEXT    NOT NULL DEFAULT '[]',
    missing_skills      TEXT    NOT NULL DEFAULT '[]',
    bonus_skills        TEXT    NOT NULL DEFAULT '[]',
    relevant_years      REAL,
    seniority_level     TEXT,
    industry_match      TEXT,
    match_reason        TEXT,
    is_scored           INTEGER NOT NULL DEFAULT 0,
    scoring_version     TEXT,
    created_at          TEXT    NOT NULL,
    enriched_at         TEXT,
    saved_at            TEXT,
    scored_at           TEXT,
    UNIQUE(job_id, profile_url)
);
"""

_JOB_ERRORS_TABLE = """
CREATE TABLE IF NOT EXISTS job_errors (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id      TEXT    NOT NULL REFERENCES sourcing_jobs(id),
    stage       TEXT    NOT NULL,
    message     TEXT    NOT NULL,
    retryable   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT    NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_candidates_url ON candidates(profile_url)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_owner ON sourcing_jobs(owner_id, created_at)",
)

# SourcingJob field -> column, for fields stored as JSON text.
_JOB_JSON_COLUMNS = {
    "requirements": "requirements_json",
    "search_filters": "search_filters_json",
    "search_queries": "search_queries_json",
    "discovered_profiles": "discovered_profiles_json",
    "enrichment_checked": "enrichment_checked_json",
    "scraped_profiles_data": "scraped_profiles_data",
    "parsed_profiles_data": "parsed_profiles_data",
}

_JOB_COLUMNS = {
    "owner_id", "title", "raw_job_description", "max_candidates",
    "current_query_index", "search_attempts", "pipeline_stage", "status",
    "current_stage", "total_profiles_found", "profiles_scraped", "profiles_parsed",
    "profiles_saved", "profiles_scored", "error_message", "retry_count",
    "max_retries", "created_at", "last_activity_at", "completed_at", "failed_at",
}

_CANDIDATE_JSON_COLUMNS = {
    "skills", "experience", "education", "raw_data",
    "matched_skills", "missing_skills", "bonus_skills",
}

_CANDIDATE_BOOL_COLUMNS = {"has_contact_info", "is_duplicate", "is_scored"}

_CANDIDATE_SORTS = {
    "match_score": "match_score",
    "full_name": "full_name",
    "created_at": "created_at",
    "relevant_years": "relevant_years",
    "experience_years": "experience_years",
}


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_JOBS_TABLE)
    conn.execute(_CANDIDATES_TABLE)
    conn.execute(_JOB_ERRORS_TABLE)
    for statement in _INDEXES:
        conn.execute(statement)
    conn.commit()
    return conn


def _to_db(value: Any) -> Any:
    """Convert a Python value into something sqlite3 can bind."""
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, (list, dict)):
        return json.dumps(_jsonable(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Sourcing jobs
# ---------------------------------------------------------------------------


def create_job(
    conn: sqlite3.Connection,
    submission: JobSubmission,
    *,
    job_id: str | None = None,
    max_retries: int = 3,
    created_at: datetime | None = None,
) -> SourcingJob:
    """Insert a new job in CREATED status and return it."""
    now = created_at or datetime.now()
    job = SourcingJob(
        id=job_id or uuid.uuid4().hex,
        owner_id=submission.owner_id,
        title=submission.title,
        raw_job_description=submission.job_description,
        requirements=submission.requirements,
        max_candidates=submission.max_candidates,
        max_retries=max_retries,
        created_at=now,
        last_activity_at=now,
    )
    conn.execute(
        """
        INSERT INTO sourcing_jobs
            (id, owner_id, title, raw_job_description, requirements_json,
             max_candidates, pipeline_stage, status, current_stage,
             max_retries, created_at, last_activity_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.id,
            job.owner_id,
            job.title,
            job.raw_job_description,
            _to_db(job.requirements),
            job.max_candidates,
            job.pipeline_stage.value,
            job.status.value,
            job.current_stage,
            job.max_retries,
            now.isoformat(),
            now.isoformat(),
        ),
    )
    conn.commit()
    return job


def _row_to_job(row: sqlite3.Row) -> SourcingJob:
    data: dict[str, Any] = {col: row[col] for col in _JOB_COLUMNS}
    data["id"] = row["id"]
    for field, column in _JOB_JSON_COLUMNS.items():
        raw = row[column]
        data[field] = json.loads(raw) if raw else None
    if data["search_filters"] is None:
        del data["search_filters"]
    return SourcingJob.model_validate(data)


def get_job(conn: sqlite3.Connection, job_id: str) -> SourcingJob | None:
    """Load a job by id, or None if it does not exist."""
    row = conn.execute("SELECT * FROM sourcing_jobs WHERE id = ?", (job_id,)).fetchone()
    if row is None:
        return None
    return _row_to_job(row)


def update_job(conn: sqlite3.Connection, job_id: str, **fields: Any) -> None:
    """Targeted update of named job fields.

    Also bumps last_activity_at unless it is passed explicitly.
    """
    fields.setdefault("last_activity_at", datetime.now())
    assignments: list[str] = []
    values: list[Any] = []
    for name, value in fields.items():
        if name in _JOB_JSON_COLUMNS:
            column = _JOB_JSON_COLUMNS[name]
            value = None if value is None else json.dumps(_jsonable(value))
        elif name in _JOB_COLUMNS:
            column = name
            value = _to_db(value)
        else:
            msg = f"Unknown sourcing job field: {name}"
            raise ValueError(msg)
        assignments.append(f"{column} = ?")
        values.append(value)
    values.append(job_id)
    conn.execute(
        f"UPDATE sourcing_jobs SET {', '.join(assignments)} WHERE id = ?",  # noqa: S608
        values,
    )
    conn.commit()


def list_jobs(
    conn: sqlite3.Connection,
    owner_id: str,
    *,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SourcingJob], int]:
    """Return (jobs newest first, total count) for an owner."""
    where = "owner_id = ?"
    params: list[Any] = [owner_id]
    if status is not None:
        where += " AND status = ?"
        params.append(status.value)
    total = conn.execute(
        f"SELECT COUNT(*) FROM sourcing_jobs WHERE {where}", params,  # noqa: S608
    ).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM sourcing_jobs WHERE {where} "  # noqa: S608
        "ORDER BY created_at DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ).fetchall()
    return [_row_to_job(r) for r in rows], total


def find_stuck_jobs(conn: sqlite3.Connection, inactive_since: datetime) -> list[SourcingJob]:
    """Jobs in an active status with no activity since the given time."""
    statuses = sorted(s.value for s in ACTIVE_STATUSES)
    placeholders = ", ".join("?" for _ in statuses)
    rows = conn.execute(
        f"SELECT * FROM sourcing_jobs WHERE status IN ({placeholders}) "  # noqa: S608
        "AND last_activity_at < ? ORDER BY last_activity_at",
        [*statuses, inactive_since.isoformat()],
    ).fetchall()
    return [_row_to_job(r) for r in rows]


def append_job_error(conn: sqlite3.Connection, job_id: str, error: PipelineError) -> None:
    """Append an entry to the job's error log. Entries are never modified."""
    conn.execute(
        """
        INSERT INTO job_errors (job_id, stage, message, retryable, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (job_id, error.stage, error.message, int(error.retryable), error.timestamp.isoformat()),
    )
    conn.commit()


def list_job_errors(conn: sqlite3.Connection, job_id: str) -> list[PipelineError]:
    """Return the job's error log, oldest first."""
    rows = conn.execute(
        "SELECT stage, message, retryable, created_at FROM job_errors WHERE job_id = ? ORDER BY id",
        (job_id,),
    ).fetchall()
    return [
        PipelineError(
            stage=r["stage"],
            message=r["message"],
            retryable=bool(r["retryable"]),
            timestamp=datetime.fromisoformat(r["created_at"]),
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


def _row_to_candidate(row: sqlite3.Row) -> Candidate:
    data = dict(row)
    for column in _CANDIDATE_JSON_COLUMNS:
        data[column] = json.loads(data[column]) if data[column] else None
    for column in _CANDIDATE_BOOL_COLUMNS:
        data[column] = bool(data[column])
    for column in ("skills", "experience", "education", "matched_skills",
                   "missing_skills", "bonus_skills"):
        if data[column] is None:
            data[column] = []
    if data["raw_data"] is None:
        data["raw_data"] = {}
    return Candidate.model_validate(data)


def insert_candidate(conn: sqlite3.Connection, candidate: Candidate) -> bool:
    """Insert a candidate, ignoring it if (job_id, profile_url) already exists.

    Returns True if a new row was inserted, False if it was a duplicate.
    """
    data = candidate.model_dump(exclude={"id"})
    columns = list(data)
    try:
        conn.execute(
            f"INSERT INTO candidates ({', '.join(columns)}) "  # noqa: S608
            f"VALUES ({', '.join('?' for _ in columns)})",
            [_to_db(data[c]) for c in columns],
        )
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        return False


def get_candidate(
    conn: sqlite3.Connection, job_id: str, profile_url: str,
) -> Candidate | None:
    row = conn.execute(
        "SELECT * FROM candidates WHERE job_id = ? AND profile_url = ?",
        (job_id, profile_url),
    ).fetchone()
    return _row_to_candidate(row) if row is not None else None


def update_candidate(conn: sqlite3.Connection, candidate_id: int, **fields: Any) -> None:
    """Targeted update of named candidate fields."""
    allowed = set(Candidate.model_fields) - {"id", "job_id", "profile_url"}
    unknown = set(fields) - allowed
    if unknown:
        msg = f"Unknown candidate field(s): {sorted(unknown)}"
        raise ValueError(msg)
    assignments = [f"{name} = ?" for name in fields]
    values = [_to_db(v) for v in fields.values()]
    conn.execute(
        f"UPDATE candidates SET {', '.join(assignments)} WHERE id = ?",  # noqa: S608
        [*values, candidate_id],
    )
    conn.commit()


def _set_status(
    conn: sqlite3.Connection, column: str, job_id: str, profile_urls: Iterable[str], status: str,
) -> None:
    conn.executemany(
        f"UPDATE candidates SET {column} = ? WHERE job_id = ? AND profile_url = ?",  # noqa: S608
        [(status, job_id, url) for url in profile_urls],
    )
    conn.commit()


def set_scrape_status(
    conn: sqlite3.Connection, job_id: str, profile_urls: Iterable[str], status: str,
) -> None:
    """Set scrape_status on the job's candidates with the given URLs."""
    _set_status(conn, "scrape_status", job_id, profile_urls, status)


def set_parse_status(
    conn: sqlite3.Connection, job_id: str, profile_urls: Iterable[str], status: str,
) -> None:
    """Set parse_status on the job's candidates with the given URLs."""
    _set_status(conn, "parse_status", job_id, profile_urls, status)


def candidate_urls(
    conn: sqlite3.Connection,
    job_id: str,
    *,
    contactable_only: bool = False,
    saved: bool | None = None,
) -> list[str]:
    """Profile URLs of the job's candidates, in insertion order."""
    query = "SELECT profile_url FROM candidates WHERE job_id = ?"
    if contactable_only:
        query += " AND has_contact_info = 1"
    if saved is True:
        query += " AND saved_at IS NOT NULL"
    elif saved is False:
        query += " AND saved_at IS NULL"
    rows = conn.execute(query + " ORDER BY id", (job_id,)).fetchall()
    return [r["profile_url"] for r in rows]


def count_candidates(
    conn: sqlite3.Connection,
    job_id: str,
    *,
    contactable: bool | None = None,
    saved: bool | None = None,
    scored: bool | None = None,
) -> int:
    """Count the job's candidates, optionally filtered by state flags."""
    query = "SELECT COUNT(*) FROM candidates WHERE job_id = ?"
    params: list[Any] = [job_id]
    if contactable is not None:
        query += " AND has_contact_info = ?"
        params.append(int(contactable))
    if saved is True:
        query += " AND saved_at IS NOT NULL"
    elif saved is False:
        query += " AND saved_at IS NULL"
    if scored is not None:
        query += " AND is_scored = ?"
        params.append(int(scored))
    return int(conn.execute(query, params).fetchone()[0])


def find_first_seen_job(
    conn: sqlite3.Connection, owner_id: str, profile_url: str, job_id: str,
) -> str | None:
    """Earliest job of the same owner, created before job_id, holding this profile URL."""
    row = conn.execute(
        """
        SELECT c.job_id FROM candidates c
        JOIN sourcing_jobs j ON j.id = c.job_id
        WHERE j.owner_id = ?
          AND c.profile_url = ?
          AND c.job_id != ?
          AND j.created_at < (SELECT created_at FROM sourcing_jobs WHERE id = ?)
        ORDER BY j.created_at, c.id
        LIMIT 1
        """,
        (owner_id, profile_url, job_id, job_id),
    ).fetchone()
    return row["job_id"] if row is not None else None


def fetch_unscored(
    conn: sqlite3.Connection,
    job_id: str,
    limit: int,
    exclude_ids: Iterable[int] = (),
) -> list[Candidate]:
    """Saved, not-yet-scored candidates of a job, oldest first."""
    excluded = list(exclude_ids)
    query = (
        "SELECT * FROM candidates WHERE job_id = ? "
        "AND saved_at IS NOT NULL AND is_scored = 0"
    )
    params: list[Any] = [job_id]
    if excluded:
        query += f" AND id NOT IN ({', '.join('?' for _ in excluded)})"
        params.extend(excluded)
    query += " ORDER BY id LIMIT ?"
    params.append(limit)
    return [_row_to_candidate(r) for r in conn.execute(query, params).fetchall()]


def save_score(
    conn: sqlite3.Connection,
    candidate_id: int,
    score: CandidateScore,
    *,
    version: str,
    scored_at: datetime | None = None,
) -> None:
    """Persist a rubric result and mark the candidate scored."""
    update_candidate(
        conn,
        candidate_id,
        match_score=score.total_score,
        skills_score=score.skills_score,
        experience_score=score.experience_score,
        industry_score=score.industry_score,
        title_score=score.title_score,
        nice_to_have_score=score.nice_to_have_score,
        matched_skills=score.matched_skills,
        missing_skills=score.missing_skills,
        bonus_skills=score.bonus_skills,
        relevant_years=score.relevant_years,
        seniority_level=score.seniority_level.value if score.seniority_level else None,
        industry_match=score.industry_match,
        match_reason=score.reasoning,
        is_scored=True,
        scoring_version=version,
        scored_at=scored_at or datetime.now(),
    )


def list_candidates(
    conn: sqlite3.Connection,
    job_id: str,
    *,
    sort: str = "match_score",
    descending: bool = True,
    min_score: float | None = None,
    scored_only: bool = False,
    contactable_only: bool = False,
    duplicates: bool | None = None,
    seniority: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Candidate], int]:
    """Paginated, sortable, filterable candidate list for a job.

    Returns (page, total matching rows). Sorting by match_score puts scored
    candidates first.
    """
    if sort not in _CANDIDATE_SORTS:
        valid = ", ".join(sorted(_CANDIDATE_SORTS))
        msg = f"Unknown sort '{sort}'. Available: {valid}"
        raise ValueError(msg)

    where = ["job_id = ?"]
    params: list[Any] = [job_id]
    if min_score is not None:
        where.append("match_score >= ?")
        params.append(min_score)
    if scored_only:
        where.append("is_scored = 1")
    if contactable_only:
        where.append("has_contact_info = 1")
    if duplicates is not None:
        where.append("is_duplicate = ?")
        params.append(int(duplicates))
    if seniority:
        where.append("LOWER(seniority_level) = LOWER(?)")
        params.append(seniority)
    clause = " AND ".join(where)

    direction = "DESC" if descending else "ASC"
    order = f"{_CANDIDATE_SORTS[sort]} {direction}, id"
    if sort == "match_score":
        order = f"is_scored DESC, {order}"

    total = conn.execute(
        f"SELECT COUNT(*) FROM candidates WHERE {clause}", params,  # noqa: S608
    ).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM candidates WHERE {clause} ORDER BY {order} LIMIT ? OFFSET ?",  # noqa: S608
        [*params, limit, offset],
    ).fetchall()
    return [_row_to_candidate(r) for r in rows], int(total)
