"""Tests for the SEARCH stage."""

import pytest

from src.core.config import PipelineConfig
from src.core.db import get_job, list_job_errors, update_job
from src.core.errors import ConfigurationError, ProviderError, StageError
from src.core.schemas import QueryVariant, SearchFilters
from src.pipeline.queries import generate_queries
from src.pipeline.search import merge_hits, run_search, search_target
from tests.fakes import FakeSearch, make_hit


@pytest.fixture()
def searchable_job(make_job, db):  # type: ignore[no-untyped-def]
    job = make_job(max_candidates=10)
    filters = SearchFilters(search_query="Python", current_job_titles=["Backend Engineer"])
    update_job(db, job.id, search_queries=generate_queries(filters, 10))
    return get_job(db, job.id)


class TestMergeHits:
    def test_union_keeps_existing(self) -> None:
        existing = [make_hit(1, full_name="Original"), make_hit(2)]
        merged = merge_hits(existing, [make_hit(1, full_name="Newer"), make_hit(3)])
        assert [h.profile_url for h in merged] == [
            existing[0].profile_url,
            existing[1].profile_url,
            make_hit(3).profile_url,
        ]
        assert merged[0].full_name == "Original"


class TestSearchTarget:
    def test_remaining_with_buffer(self) -> None:
        assert search_target(50, 45, 1.5) == 8

    def test_never_below_one(self) -> None:
        assert search_target(10, 12, 1.5) == 2


class TestRunSearch:
    async def test_first_iteration(self, searchable_job, db) -> None:  # type: ignore[no-untyped-def]
        provider = FakeSearch({"precise": [make_hit(i) for i in range(1, 6)]})
        new = await run_search(db, searchable_job, provider, PipelineConfig())

        assert len(new) == 5
        assert provider.queries[0].variant == QueryVariant.PRECISE
        assert provider.queries[0].max_items == 15
        job = get_job(db, searchable_job.id)
        assert job is not None
        assert job.total_profiles_found == 5
        assert job.search_attempts == 1
        assert job.current_stage == "SEARCH_ITERATION_1_COMPLETE"

    async def test_uses_current_variant_and_merges(self, searchable_job, db) -> None:  # type: ignore[no-untyped-def]
        update_job(
            db,
            searchable_job.id,
            discovered_profiles=[make_hit(1), make_hit(2)],
            current_query_index=1,
            search_attempts=1,
        )
        job = get_job(db, searchable_job.id)
        provider = FakeSearch({"broad": [make_hit(2), make_hit(3)]})

        new = await run_search(db, job, provider, PipelineConfig(), candidates_with_contact=6)

        assert [h.profile_url for h in new] == [make_hit(3).profile_url]
        assert provider.queries[0].variant == QueryVariant.BROAD
        assert provider.queries[0].max_items == 6
        loaded = get_job(db, job.id)
        assert loaded is not None
        assert loaded.total_profiles_found == 3
        assert loaded.search_attempts == 2

    async def test_failure_counts_attempt_and_keeps_set(self, searchable_job, db) -> None:  # type: ignore[no-untyped-def]
        update_job(db, searchable_job.id, discovered_profiles=[make_hit(1)], total_profiles_found=1)
        job = get_job(db, searchable_job.id)
        provider = FakeSearch(errors={"precise": ProviderError("apify", "HTTP 502", 502)})

        assert await run_search(db, job, provider, PipelineConfig()) == []

        loaded = get_job(db, job.id)
        assert loaded is not None
        assert loaded.search_attempts == 1
        assert loaded.total_profiles_found == 1
        assert len(loaded.discovered_profiles) == 1
        assert loaded.current_stage == "SEARCH_ITERATION_1_FAILED"
        assert "Search precise failed" in (loaded.error_message or "")
        assert list_job_errors(db, job.id)[0].stage == "SEARCH"

    async def test_configuration_error_propagates(self, searchable_job, db) -> None:  # type: ignore[no-untyped-def]
        provider = FakeSearch(errors={"precise": ConfigurationError("APIFY_API_TOKEN environment variable is required")})
        with pytest.raises(ConfigurationError):
            await run_search(db, searchable_job, provider, PipelineConfig())

    async def test_requires_queries(self, make_job, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(StageError):
            await run_search(db, make_job(), FakeSearch(), PipelineConfig())
