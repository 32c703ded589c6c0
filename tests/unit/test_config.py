"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.core.config import (
    ApifyConfig,
    EnrichmentConfig,
    LLMTaskConfig,
    PipelineConfig,
    RecoveryConfig,
    Settings,
)


class TestPipelineConfig:
    def test_defaults(self) -> None:
        p = PipelineConfig()
        assert p.scrape_batch_size == 20
        assert p.parse_batch_size == 10
        assert p.concurrency == 5
        assert p.max_search_iterations == 3
        assert p.search_buffer == 1.5
        assert p.allow_partial_results is False

    def test_batch_size_min(self) -> None:
        with pytest.raises(ValidationError):
            PipelineConfig(scrape_batch_size=0)

    def test_buffer_cannot_shrink_target(self) -> None:
        with pytest.raises(ValidationError):
            PipelineConfig(search_buffer=0.5)


class TestEnrichmentConfig:
    def test_default_delay_respects_rate_limit(self) -> None:
        e = EnrichmentConfig()
        assert 60 / e.delay_seconds <= 180

    def test_negative_delay_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EnrichmentConfig(delay_seconds=-1)


class TestApifyConfig:
    def test_defaults(self) -> None:
        a = ApifyConfig()
        assert a.token_env == "APIFY_API_TOKEN"
        assert a.max_attempts == 3

    def test_attempts_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ApifyConfig(max_attempts=0)
        with pytest.raises(ValidationError):
            ApifyConfig(max_attempts=11)


class TestLLMTaskConfig:
    def test_provider_normalized(self) -> None:
        assert LLMTaskConfig(provider="  Anthropic ").provider == "anthropic"

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValidationError, match="provider must be one of"):
            LLMTaskConfig(provider="skynet")


class TestRecoveryConfig:
    def test_defaults(self) -> None:
        r = RecoveryConfig()
        assert r.stuck_after_minutes == 5
        assert r.max_retries == 3


class TestSettingsFromYaml:
    def test_load_full(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text(
            dedent("""\
                database:
                  path: /tmp/test.db
                enrichment:
                  delay_seconds: 0.5
                llm:
                  formatting:
                    provider: anthropic
                  scoring:
                    provider: gemini
                    model: gemini-2.5-pro
                pipeline:
                  scrape_batch_size: 5
                  allow_partial_results: true
                recovery:
                  max_retries: 1
            """)
        )
        s = Settings.from_yaml(cfg)
        assert s.database.path == "/tmp/test.db"
        assert s.enrichment.delay_seconds == 0.5
        assert s.llm.formatting.provider == "anthropic"
        assert s.llm.extraction.provider == "openai"
        assert s.llm.scoring.model == "gemini-2.5-pro"
        assert s.pipeline.scrape_batch_size == 5
        assert s.pipeline.allow_partial_results is True
        assert s.recovery.max_retries == 1

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("")
        s = Settings.from_yaml(cfg)
        assert s.pipeline.concurrency == 5
        assert s.search.search_actor == "harvestapi~linkedin-profile-search"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            Settings.from_yaml(tmp_path / "nope.yaml")

    def test_invalid_value(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("pipeline:\n  concurrency: 0\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(cfg)

    def test_shipped_config_loads(self) -> None:
        shipped = Path(__file__).parent.parent.parent / "config" / "settings.yaml"
        s = Settings.from_yaml(shipped)
        assert s.llm.scoring.provider in {"anthropic", "openai", "gemini", "ollama"}
        assert s.pipeline.max_search_iterations >= 1
