"""Configuration models and YAML loader for the sourcing pipeline."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

ALLOWED_LLM_PROVIDERS = {"anthropic", "openai", "gemini", "ollama"}


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/sourcing.db"


class ApifyConfig(BaseModel):
    """Apify actor settings shared by the search and scrape providers."""

    base_url: str = "https://api.apify.com/v2"
    token_env: str = "APIFY_API_TOKEN"
    search_actor: str = "harvestapi~linkedin-profile-search"
    scrape_actor: str = "dev_fusion~linkedin-profile-scraper"
    timeout_seconds: float = Field(default=300.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10)


class EnrichmentConfig(BaseModel):
    """Contact-enrichment provider settings.

    delay_seconds is the mandatory pause between two enrichment calls.
    The default keeps us under 180 calls per minute.
    """

    base_url: str = "https://api-public.salesql.com/v1"
    api_key_env: str = "SALESQL_API_KEY"
    delay_seconds: float = Field(default=0.334, ge=0.0)
    timeout_seconds: float = Field(default=30.0, gt=0)


class LLMTaskConfig(BaseModel):
    """Provider and optional model override for one AI task."""

    provider: str = "openai"
    model: str | None = None

    @field_validator("provider")
    @classmethod
    def provider_known(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ALLOWED_LLM_PROVIDERS:
            msg = f"provider must be one of {sorted(ALLOWED_LLM_PROVIDERS)}, got '{v}'"
            raise ValueError(msg)
        return v


class LLMConfig(BaseModel):
    """AI model settings for the three AI-backed stages."""

    formatting: LLMTaskConfig = Field(default_factory=LLMTaskConfig)
    extraction: LLMTaskConfig = Field(default_factory=LLMTaskConfig)
    scoring: LLMTaskConfig = Field(default_factory=LLMTaskConfig)


class PipelineConfig(BaseModel):
    """Batch sizes, concurrency and retry knobs for the stages."""

    scrape_batch_size: int = Field(default=20, ge=1)
    parse_batch_size: int = Field(default=10, ge=1)
    save_batch_size: int = Field(default=20, ge=1)
    score_batch_size: int = Field(default=20, ge=1)
    concurrency: int = Field(default=5, ge=1)
    max_search_iterations: int = Field(default=3, ge=1)
    search_buffer: float = Field(default=1.5, ge=1.0)
    max_skills: int = Field(default=10, ge=1)
    stage_retries: int = Field(default=1, ge=0)
    max_score_attempts: int = Field(default=2, ge=1)
    allow_partial_results: bool = False


class RecoveryConfig(BaseModel):
    """Retry and stuck-job recovery limits."""

    stuck_after_minutes: int = Field(default=5, ge=1)
    max_retries: int = Field(default=3, ge=0)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    search: ApifyConfig = Field(default_factory=ApifyConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
