"""Shared fixtures: a fresh Job Store per test and fast pipeline settings."""

from collections.abc import Callable
from typing import Any

import pytest

from src.core.config import PipelineConfig, Settings
from src.core.db import create_job, get_job, init_db
from src.core.schemas import SourcingJob
from tests.fakes import make_submission


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    conn = init_db(tmp_path / "sourcing.db")
    yield conn
    conn.close()


@pytest.fixture()
def settings(tmp_path) -> Settings:  # type: ignore[no-untyped-def]
    return Settings.model_validate(
        {
            "database": {"path": str(tmp_path / "sourcing.db")},
            "enrichment": {"delay_seconds": 0},
            "pipeline": {"concurrency": 3},
        }
    )


@pytest.fixture()
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(concurrency=3)


@pytest.fixture()
def make_job(db) -> Callable[..., SourcingJob]:  # type: ignore[no-untyped-def]
    """Create a job in the test database and return it reloaded."""

    def _make(**overrides: Any) -> SourcingJob:
        job_kwargs = {k: overrides.pop(k) for k in ("job_id", "created_at") if k in overrides}
        job = create_job(db, make_submission(**overrides), **job_kwargs)
        loaded = get_job(db, job.id)
        assert loaded is not None
        return loaded

    return _make
