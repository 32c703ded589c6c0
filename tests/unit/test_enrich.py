"""Tests for the ENRICH stage and the contact gate."""

import pytest

from src.core.config import EnrichmentConfig
from src.core.db import candidate_urls, count_candidates, get_candidate, get_job, update_job
from src.core.errors import ConfigurationError
from src.core.schemas import ContactResult, JobStatus
from src.pipeline.enrich import build_candidate, run_enrichment
from src.providers.base import EnrichmentProvider
from tests.fakes import FakeEnrichment, make_hit, no_sleep, profile_url


def _with_hits(db, job, n: int):  # type: ignore[no-untyped-def]
    update_job(db, job.id, discovered_profiles=[make_hit(i) for i in range(1, n + 1)])
    return get_job(db, job.id)


class TestBuildCandidate:
    def test_enrichment_wins_over_snippet(self) -> None:
        contact = ContactResult(
            has_email=True, email="a@b.co", full_name="Jane Q. Doe", location="Austin, TX", raw={"id": 1},
        )
        c = build_candidate("job-1", make_hit(1, location="Remote"), contact, "salesql")
        assert c.full_name == "Jane Q. Doe"
        assert c.location == "Austin, TX"
        assert c.current_company == "Acme"
        assert c.has_contact_info is True
        assert c.email_source == "salesql"
        assert c.raw_data["enrichment"] == {"id": 1}


class TestRunEnrichment:
    async def test_only_contactable_become_candidates(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        job = _with_hits(db, make_job(max_candidates=10), 6)
        provider = FakeEnrichment(with_email={profile_url(2), profile_url(4)})

        count = await run_enrichment(db, job, provider, EnrichmentConfig(delay_seconds=0))

        assert count == 2
        assert candidate_urls(db, job.id) == [profile_url(2), profile_url(4)]
        c = get_candidate(db, job.id, profile_url(2))
        assert c is not None
        assert c.email == "person-2@example.com"
        loaded = get_job(db, job.id)
        assert loaded is not None
        assert loaded.status == JobStatus.PROFILES_FOUND
        assert loaded.current_stage == "ENRICHED_2_OF_10"
        assert set(loaded.enrichment_checked) == {profile_url(i) for i in (1, 3, 5, 6)}

    async def test_stops_at_target(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        job = _with_hits(db, make_job(max_candidates=10), 15)
        provider = FakeEnrichment(with_email={profile_url(i) for i in range(1, 16)})

        count = await run_enrichment(db, job, provider, EnrichmentConfig(delay_seconds=0))

        assert count == 10
        assert len(provider.calls) == 10
        assert count_candidates(db, job.id, contactable=True) == 10

    async def test_throttles_between_calls(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        job = _with_hits(db, make_job(), 3)
        sleeps: list[float] = []

        async def record(seconds: float) -> None:
            sleeps.append(seconds)

        await run_enrichment(db, job, FakeEnrichment(), EnrichmentConfig(delay_seconds=0.334), sleep=record)
        assert sleeps == [0.334, 0.334]

    async def test_resume_skips_known_urls(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        job = _with_hits(db, make_job(), 4)
        first = FakeEnrichment(with_email={profile_url(1)})
        await run_enrichment(db, job, first, EnrichmentConfig(delay_seconds=0))

        second = FakeEnrichment(with_email={profile_url(i) for i in range(1, 6)})
        update_job(db, job.id, discovered_profiles=[make_hit(i) for i in range(1, 6)])
        job = get_job(db, job.id)
        count = await run_enrichment(db, job, second, EnrichmentConfig(delay_seconds=0))

        assert second.calls == [profile_url(5)]
        assert count == 2

    async def test_provider_exception_is_item_level(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        job = _with_hits(db, make_job(), 3)
        provider = FakeEnrichment(with_email={profile_url(3)}, failing={profile_url(2)})

        count = await run_enrichment(db, job, provider, EnrichmentConfig(delay_seconds=0), sleep=no_sleep)

        assert count == 1
        loaded = get_job(db, job.id)
        assert loaded is not None
        assert profile_url(2) not in loaded.enrichment_checked
        assert loaded.error_message is None

    async def test_configuration_error_propagates(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        class Unconfigured(EnrichmentProvider):
            @property
            def provider_id(self) -> str:
                return "none"

            async def enrich(self, profile_url: str) -> ContactResult:
                raise ConfigurationError("SALESQL_API_KEY environment variable is required")

        job = _with_hits(db, make_job(), 2)
        with pytest.raises(ConfigurationError):
            await run_enrichment(db, job, Unconfigured(), EnrichmentConfig(delay_seconds=0))
