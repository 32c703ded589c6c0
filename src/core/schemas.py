"""Core data models for the sourcing pipeline."""

import math
import re
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse, urlunparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def normalize_profile_url(url: str) -> str:
    """Canonical form of a profile URL, used as the dedup/resume key.

    https scheme, lowercase host without "www.", no query/fragment and no
    trailing slash.
    """
    raw = (url or "").strip()
    if not raw:
        return ""
    if "://" not in raw:
        raw = f"https://{raw}"
    parsed = urlparse(raw)
    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    return urlunparse(("https", host, path, "", "", ""))


def split_skills(text: str) -> list[str]:
    """Split a comma/semicolon separated skill string into clean items."""
    return [s.strip() for s in re.split(r"[,;]", text or "") if s.strip()]


def skill_names(value: Any) -> list[str]:
    """Coerce a skills payload (strings or {"name": ...} objects) to names."""
    if not value:
        return []
    if isinstance(value, str):
        return split_skills(value)
    names: list[str] = []
    for item in value:
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            name = item.get("name") or item.get("title") or item.get("skill") or ""
        else:
            continue
        name = str(name).strip()
        if name and name not in names:
            names.append(name)
    return names


class JobStatus(str, Enum):
    """Externally visible job status."""

    CREATED = "CREATED"
    FORMATTING_JD = "FORMATTING_JD"
    JD_FORMATTED = "JD_FORMATTED"
    SEARCHING_PROFILES = "SEARCHING_PROFILES"
    PROFILES_FOUND = "PROFILES_FOUND"
    SCRAPING_PROFILES = "SCRAPING_PROFILES"
    PARSING_PROFILES = "PARSING_PROFILES"
    SAVING_PROFILES = "SAVING_PROFILES"
    SCORING_PROFILES = "SCORING_PROFILES"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}
ACTIVE_STATUSES = set(JobStatus) - TERMINAL_STATUSES - {JobStatus.CREATED}


class Stage(str, Enum):
    """Position of a job in the pipeline state machine."""

    FORMATTING = "FORMATTING"
    QUERY_GEN = "QUERY_GEN"
    SEARCH = "SEARCH"
    ENRICH = "ENRICH"
    SCRAPE = "SCRAPE"
    PARSE = "PARSE"
    SAVE = "SAVE"
    SCORE = "SCORE"
    COMPLETED = "COMPLETED"
    NO_CANDIDATES = "NO_CANDIDATES"


NO_CANDIDATES_LABEL = "NO_CANDIDATES_FOUND"


class QueryVariant(str, Enum):
    """Search-query fallback variants, in the order they are attempted."""

    PRECISE = "precise"
    BROAD = "broad"
    ALTERNATIVE = "alternative"
    LOOSE = "loose"


class SeniorityLevel(str, Enum):
    ENTRY = "Entry"
    MID = "Mid"
    SENIOR = "Senior"
    LEAD = "Lead"
    EXECUTIVE = "Executive"


class JobRequirements(BaseModel):
    """Recruiter-provided requirements attached to a job description."""

    required_skills: str = Field(min_length=3, max_length=1000)
    nice_to_have: str = Field(default="", max_length=1000)
    years_of_experience: str = ""
    location: str = Field(default="", max_length=200)
    industry: str = ""
    education_level: str = ""
    company_type: str = ""

    def required_skill_list(self) -> list[str]:
        return split_skills(self.required_skills)

    def nice_to_have_list(self) -> list[str]:
        return split_skills(self.nice_to_have)


class JobSubmission(BaseModel):
    """Validated input for creating a sourcing job."""

    owner_id: str = Field(min_length=1)
    title: str = Field(min_length=3, max_length=200)
    job_description: str = Field(min_length=50, max_length=5000)
    max_candidates: int = Field(default=50, ge=10, le=100)
    requirements: JobRequirements

    @field_validator("title", "job_description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class SearchFilters(BaseModel):
    """Structured search filters derived from the job description."""

    search_query: str | None = None
    current_job_titles: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    industry_ids: list[int] = Field(default_factory=list)
    experience_levels: list[str] = Field(default_factory=list)
    max_items: int = Field(default=25, ge=1)
    take_pages: int = Field(default=1, ge=1)

    # Carried along for query generation and scoring, never sent to search.
    required_skills: list[str] = Field(default_factory=list)
    nice_to_have_skills: list[str] = Field(default_factory=list)
    years_of_experience: str = ""


class SearchQuery(BaseModel):
    """One search-query variant handed to the search provider."""

    model_config = ConfigDict(frozen=True)

    variant: QueryVariant
    search_query: str | None = None
    current_job_titles: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    industry_ids: list[int] = Field(default_factory=list)
    experience_levels: list[str] = Field(default_factory=list)
    max_items: int = Field(default=25, ge=1)
    take_pages: int = Field(default=1, ge=1)

    def with_max_items(self, max_items: int) -> "SearchQuery":
        """Copy of this query sized for max_items results (25 per page)."""
        max_items = max(1, max_items)
        return self.model_copy(
            update={"max_items": max_items, "take_pages": max(1, math.ceil(max_items / 25))},
        )


class ProfileHit(BaseModel):
    """A profile returned by the search provider."""

    profile_url: str
    full_name: str = ""
    headline: str = ""
    location: str = ""
    current_position: str = ""
    current_company: str = ""
    photo_url: str = ""

    @field_validator("profile_url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        return normalize_profile_url(v)


class ContactResult(BaseModel):
    """Outcome of one contact-enrichment lookup."""

    has_email: bool = False
    email: str | None = None
    phone: str | None = None
    email_type: str | None = None
    email_status: str | None = None
    full_name: str | None = None
    headline: str | None = None
    location: str | None = None
    photo_url: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ScrapedProfile(BaseModel):
    """One entry of the scrape checkpoint, successful or not."""

    url: str
    succeeded: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        return normalize_profile_url(v)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


class ExperienceEntry(_CamelModel):
    title: str = ""
    company: str = ""
    duration: str = ""
    description: str | None = None


class EducationEntry(_CamelModel):
    degree: str = ""
    school: str = ""
    year: str | None = None


class ParsedProfile(_CamelModel):
    """Structured profile produced by the extraction model or the manual extractor.

    Field aliases are camelCase because that is the shape the extraction
    model is asked to produce.
    """

    full_name: str = Field(min_length=1)
    profile_url: str = Field(min_length=1)
    headline: str | None = None
    location: str | None = None
    photo_url: str | None = None
    current_position: str | None = None
    current_company: str | None = None
    experience_years: int | None = None
    skills: list[str] = Field(default_factory=list)
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    email: str | None = None
    phone: str | None = None
    parse_method: str = "ai"

    @field_validator("skills", mode="before")
    @classmethod
    def coerce_skills(cls, v: Any) -> list[str]:
        return skill_names(v)

    @field_validator("experience_years", mode="before")
    @classmethod
    def coerce_years(cls, v: Any) -> int | None:
        if v is None or v == "":
            return None
        return int(round(float(v)))


RUBRIC_MAXIMA: dict[str, float] = {
    "skills_score": 25.0,
    "experience_score": 25.0,
    "industry_score": 20.0,
    "title_score": 15.0,
    "nice_to_have_score": 10.0,
}


class CandidateScore(_CamelModel):
    """Rubric result returned by the scoring model."""

    skills_score: float = Field(ge=0, le=RUBRIC_MAXIMA["skills_score"])
    experience_score: float = Field(ge=0, le=RUBRIC_MAXIMA["experience_score"])
    industry_score: float = Field(ge=0, le=RUBRIC_MAXIMA["industry_score"])
    title_score: float = Field(ge=0, le=RUBRIC_MAXIMA["title_score"])
    nice_to_have_score: float = Field(ge=0, le=RUBRIC_MAXIMA["nice_to_have_score"])
    total_score: float = Field(ge=0, le=100)
    reasoning: str = ""
    matched_skills: list[str] = Field(default_factory=list)
    missing_skills: list[str] = Field(default_factory=list)
    bonus_skills: list[str] = Field(default_factory=list)
    relevant_years: float | None = None
    seniority_level: SeniorityLevel | None = None
    industry_match: str | None = None

    @model_validator(mode="after")
    def total_is_sum(self) -> "CandidateScore":
        subtotal = sum(getattr(self, name) for name in RUBRIC_MAXIMA)
        if abs(subtotal - self.total_score) > 0.5:
            msg = f"total_score {self.total_score} does not match subscore sum {subtotal}"
            raise ValueError(msg)
        return self


class PipelineError(BaseModel):
    """One entry of a job's append-only error log."""

    stage: str
    message: str
    retryable: bool = True
    timestamp: datetime = Field(default_factory=datetime.now)


class Candidate(BaseModel):
    """A discovered, contactable profile attached to a job."""

    id: int | None = None
    job_id: str
    profile_url: str
    full_name: str = "Unknown"
    headline: str | None = None
    location: str | None = None
    current_position: str | None = None
    current_company: str | None = None
    photo_url: str | None = None

    email: str | None = None
    phone: str | None = None
    has_contact_info: bool = False
    email_source: str | None = None

    enrichment_status: str = "PENDING"
    scrape_status: str = "PENDING"
    parse_status: str = "PENDING"

    experience_years: int | None = None
    skills: list[str] = Field(default_factory=list)
    experience: list[dict[str, Any]] = Field(default_factory=list)
    education: list[dict[str, Any]] = Field(default_factory=list)
    raw_data: dict[str, Any] = Field(default_factory=dict)

    is_duplicate: bool = False
    first_seen_job_id: str | None = None

    match_score: float | None = None
    skills_score: float | None = None
    experience_score: float | None = None
    industry_score: float | None = None
    title_score: float | None = None
    nice_to_have_score: float | None = None
    matched_skills: list[str] = Field(default_factory=list)
    missing_skills: list[str] = Field(default_factory=list)
    bonus_skills: list[str] = Field(default_factory=list)
    relevant_years: float | None = None
    seniority_level: str | None = None
    industry_match: str | None = None
    match_reason: str | None = None
    is_scored: bool = False
    scoring_version: str | None = None

    created_at: datetime = Field(default_factory=datetime.now)
    enriched_at: datetime | None = None
    saved_at: datetime | None = None
    scored_at: datetime | None = None

    @field_validator("profile_url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        return normalize_profile_url(v)


class SourcingJob(BaseModel):
    """Durable record of one sourcing run."""

    id: str
    owner_id: str
    title: str = ""
    raw_job_description: str
    requirements: JobRequirements
    max_candidates: int = 50

    search_filters: SearchFilters | None = None
    search_queries: list[SearchQuery] = Field(default_factory=list)
    current_query_index: int = 0
    search_attempts: int = 0
    discovered_profiles: list[ProfileHit] = Field(default_factory=list)
    enrichment_checked: list[str] = Field(default_factory=list)

    pipeline_stage: Stage = Stage.FORMATTING
    status: JobStatus = JobStatus.CREATED
    current_stage: str = "CREATED"

    total_profiles_found: int = 0
    profiles_scraped: int = 0
    profiles_parsed: int = 0
    profiles_saved: int = 0
    profiles_scored: int = 0

    scraped_profiles_data: list[ScrapedProfile] = Field(default_factory=list)
    parsed_profiles_data: list[ParsedProfile] = Field(default_factory=list)

    error_message: str | None = None
    retry_count: int = 0
    max_retries: int = 3

    created_at: datetime = Field(default_factory=datetime.now)
    last_activity_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    failed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_no_candidates(self) -> bool:
        return self.pipeline_stage == Stage.NO_CANDIDATES
