"""In-process stand-ins for the external providers, shared by the tests."""

import json
import threading
from collections.abc import Callable
from typing import Any

from src.core.schemas import (
    ContactResult,
    JobRequirements,
    JobSubmission,
    ProfileHit,
    ScrapedProfile,
    SearchQuery,
)
from src.pipeline.formatter import FORMATTING_SYSTEM_PROMPT
from src.pipeline.scorer import SCORING_SYSTEM_PROMPT
from src.profile.llm.base import LLMProvider
from src.profile.llm_parser import EXTRACTION_SYSTEM_PROMPT
from src.providers.base import EnrichmentProvider, ScrapeProvider, SearchProvider

JOB_DESCRIPTION = (
    "We are hiring a backend engineer to build and operate Python services "
    "on AWS for our payments platform. You will own APIs end to end."
)


def profile_url(i: int) -> str:
    return f"https://linkedin.com/in/person-{i}"


def make_submission(**overrides: Any) -> JobSubmission:
    requirements = {
        "required_skills": "Python, Django, AWS, PostgreSQL",
        "nice_to_have": "Kubernetes, Terraform",
        "years_of_experience": "5-8",
        "location": "San Francisco, CA",
        "industry": "FinTech",
    }
    requirements.update(overrides.pop("requirements", {}))
    data: dict[str, Any] = {
        "owner_id": "owner-1",
        "title": "Senior Backend Engineer",
        "job_description": JOB_DESCRIPTION,
        "max_candidates": 10,
        "requirements": JobRequirements(**requirements),
    }
    data.update(overrides)
    return JobSubmission(**data)


def make_hit(i: int, **overrides: Any) -> ProfileHit:
    data: dict[str, Any] = {
        "profile_url": profile_url(i),
        "full_name": f"Person {i}",
        "headline": "Backend Engineer",
        "current_position": "Backend Engineer",
        "current_company": "Acme",
    }
    data.update(overrides)
    return ProfileHit(**data)


def raw_profile(url: str, **overrides: Any) -> dict[str, Any]:
    """A scraper payload in the shape the profile-scraper actor returns."""
    slug = url.rstrip("/").rsplit("/", 1)[-1]
    data: dict[str, Any] = {
        "linkedinUrl": url,
        "fullName": slug.replace("-", " ").title(),
        "headline": "Senior Python Engineer at Acme",
        "jobTitle": "Senior Python Engineer",
        "companyName": "Acme",
        "addressWithCountry": "San Francisco, California, United States",
        "experiences": [
            {"title": "Senior Python Engineer", "companyName": "Acme", "duration": "3 yrs 2 mos"},
            {"title": "Python Developer", "companyName": "Initech", "duration": "2 yrs"},
        ],
        "skills": [{"name": "Python"}, {"name": "Django"}, {"name": "AWS"}],
        "educations": [{"schoolName": "State University", "degreeName": "BSc Computer Science"}],
    }
    data.update(overrides)
    return data


def prompt_profile(prompt: str) -> dict[str, Any]:
    """The profile JSON embedded in an extraction prompt."""
    body = prompt.split("\n\n", 1)[1].rsplit("\n\n", 1)[0]
    return json.loads(body)


FORMATTING_REPLY = json.dumps(
    {
        "searchQuery": "Python AND Django",
        "currentJobTitles": ["Backend Engineer", "Senior Backend Engineer", "Python Engineer"],
        "locations": ["San Francisco Bay Area"],
        "industryIds": [43, 4],
    }
)

SCORE_REPLY = json.dumps(
    {
        "skillsScore": 20,
        "experienceScore": 18,
        "industryScore": 15,
        "titleScore": 12,
        "niceToHaveScore": 5,
        "totalScore": 70,
        "reasoning": "Strong Python background with relevant fintech work.",
        "matchedSkills": ["Python", "Django"],
        "missingSkills": ["PostgreSQL"],
        "bonusSkills": ["Kubernetes"],
        "relevantYears": 5,
        "seniorityLevel": "Senior",
        "industryMatch": "Financial Services",
    }
)


class ScriptedLLM(LLMProvider):
    """Answers each task by its system prompt.

    extraction: echoes the profile back as camelCase JSON; ``extraction``
    can replace that with a function of the profile dict.
    """

    def __init__(
        self,
        *,
        formatting: str | Exception = FORMATTING_REPLY,
        extraction: Callable[[dict[str, Any]], str] | Exception | None = None,
        scoring: Callable[[str], str] | str | Exception = SCORE_REPLY,
    ) -> None:
        self.formatting = formatting
        self.extraction = extraction
        self.scoring = scoring
        self.calls: list[tuple[str, str | None]] = []
        self._lock = threading.Lock()

    @property
    def provider_id(self) -> str:
        return "scripted"

    @property
    def default_model(self) -> str:
        return "scripted-1"

    @property
    def env_var(self) -> None:
        return None

    def calls_for(self, system: str) -> list[str]:
        return [prompt for prompt, s in self.calls if s == system]

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        max_tokens: int = 2048,
    ) -> str:
        with self._lock:
            self.calls.append((prompt, system))

        if system == FORMATTING_SYSTEM_PROMPT:
            return self._answer(self.formatting)
        if system == EXTRACTION_SYSTEM_PROMPT:
            profile = prompt_profile(prompt)
            if isinstance(self.extraction, Exception):
                raise self.extraction
            if self.extraction is not None:
                return self.extraction(profile)
            return json.dumps(profile)
        if system == SCORING_SYSTEM_PROMPT:
            if callable(self.scoring):
                return self.scoring(prompt)
            return self._answer(self.scoring)
        msg = f"unexpected system prompt: {system!r}"
        raise AssertionError(msg)

    @staticmethod
    def _answer(value: str | Exception) -> str:
        if isinstance(value, Exception):
            raise value
        return value


class FakeSearch(SearchProvider):
    """Returns a scripted hit list per query variant."""

    def __init__(
        self,
        results: dict[str, list[ProfileHit]] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.results = results or {}
        self.errors = errors or {}
        self.queries: list[SearchQuery] = []

    @property
    def provider_id(self) -> str:
        return "fake-search"

    async def search(self, query: SearchQuery) -> list[ProfileHit]:
        self.queries.append(query)
        variant = query.variant.value
        if variant in self.errors:
            raise self.errors[variant]
        return list(self.results.get(variant, []))[: query.max_items]


class FakeEnrichment(EnrichmentProvider):
    """Finds an email for the URLs in ``with_email``; raises for ``failing``."""

    def __init__(self, with_email: set[str] | None = None, failing: set[str] | None = None) -> None:
        self.with_email = with_email or set()
        self.failing = failing or set()
        self.calls: list[str] = []

    @property
    def provider_id(self) -> str:
        return "fake-enrich"

    async def enrich(self, profile_url: str) -> ContactResult:
        self.calls.append(profile_url)
        if profile_url in self.failing:
            msg = f"connection reset for {profile_url}"
            raise ConnectionError(msg)
        if profile_url in self.with_email:
            slug = profile_url.rsplit("/", 1)[-1]
            return ContactResult(
                has_email=True,
                email=f"{slug}@example.com",
                email_type="Direct",
                email_status="Valid",
                raw={"linkedin_url": profile_url},
            )
        return ContactResult(has_email=False)


class FakeScrape(ScrapeProvider):
    """Scrapes everything except ``unavailable`` URLs; batch ``fail_batches`` raise."""

    def __init__(
        self,
        unavailable: set[str] | None = None,
        fail_batches: set[int] | None = None,
        payload: Callable[[str], dict[str, Any]] = raw_profile,
    ) -> None:
        self.unavailable = unavailable or set()
        self.fail_batches = fail_batches or set()
        self.payload = payload
        self.batches: list[list[str]] = []

    @property
    def provider_id(self) -> str:
        return "fake-scrape"

    async def scrape_batch(self, urls: list[str]) -> list[ScrapedProfile]:
        self.batches.append(list(urls))
        if len(self.batches) in self.fail_batches:
            msg = f"actor run {len(self.batches)} timed out"
            raise TimeoutError(msg)
        return [
            ScrapedProfile(url=url, succeeded=False)
            if url in self.unavailable
            else ScrapedProfile(url=url, succeeded=True, data=self.payload(url))
            for url in urls
        ]


async def no_sleep(_seconds: float) -> None:
    return None
