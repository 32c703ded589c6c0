"""SalesQL contact-enrichment provider."""

import logging
import os
from typing import Any

import httpx

from src.core.config import EnrichmentConfig
from src.core.errors import ConfigurationError
from src.core.schemas import ContactResult
from src.providers.base import EnrichmentProvider

logger = logging.getLogger(__name__)

_PERSONAL_TYPES = {"direct", "personal"}
_WORK_TYPES = {"work", "business"}
_VERIFIED_STATUSES = {"valid", "verified"}


def _kind(entry: dict[str, Any]) -> str:
    return str(entry.get("type") or "").lower()


def _verified(entry: dict[str, Any]) -> bool:
    return str(entry.get("status") or "").lower() in _VERIFIED_STATUSES


def select_email(emails: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the best email.

    Preference: verified personal, verified work, any work, first available.
    """
    usable = [e for e in emails if e.get("email")]
    if not usable:
        return None
    preferences = (
        lambda e: _verified(e) and _kind(e) in _PERSONAL_TYPES,
        lambda e: _verified(e) and _kind(e) in _WORK_TYPES,
        lambda e: _kind(e) in _WORK_TYPES,
    )
    for matches in preferences:
        for entry in usable:
            if matches(entry):
                return entry
    return usable[0]


def select_phone(phones: list[dict[str, Any]]) -> str | None:
    """Pick at most one phone number, preferring a work-typed one."""
    usable = [p for p in phones if p.get("phone")]
    if not usable:
        return None
    for entry in usable:
        if _kind(entry) in _WORK_TYPES:
            return str(entry["phone"])
    return str(usable[0]["phone"])


def _location(data: dict[str, Any]) -> str | None:
    loc = data.get("location")
    if not isinstance(loc, dict) or not loc.get("city"):
        return None
    region = loc.get("state") or loc.get("country")
    return f"{loc['city']}, {region}" if region else str(loc["city"])


def parse_enrichment(data: dict[str, Any]) -> ContactResult:
    """Turn a SalesQL person payload into a ContactResult."""
    best = select_email(data.get("emails") or [])
    if best is None:
        return ContactResult(has_email=False, raw=data)

    return ContactResult(
        has_email=True,
        email=str(best["email"]),
        email_type=best.get("type"),
        email_status=best.get("status"),
        phone=select_phone(data.get("phones") or []),
        full_name=data.get("full_name"),
        headline=data.get("headline"),
        location=_location(data),
        photo_url=data.get("image"),
        raw=data,
    )


class SalesQLEnrichmentProvider(EnrichmentProvider):
    """Looks up contact details for a LinkedIn profile URL."""

    def __init__(
        self,
        config: EnrichmentConfig,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key or os.environ.get(config.api_key_env)
        if not self._api_key:
            msg = f"{config.api_key_env} environment variable is required"
            raise ConfigurationError(msg)
        self._http_client = http_client

    @property
    def provider_id(self) -> str:
        return "salesql"

    async def enrich(self, profile_url: str) -> ContactResult:
        url = f"{self._config.base_url.rstrip('/')}/persons/enrich/"
        try:
            response = await self._get(url, {"linkedin_url": profile_url})
        except httpx.HTTPError as e:
            logger.warning("Enrichment request failed for %s: %s", profile_url, e)
            return ContactResult(has_email=False)

        if response.status_code == 429:
            logger.warning("Enrichment rate limit hit for %s", profile_url)
            return ContactResult(has_email=False)
        if response.status_code != 200:
            logger.debug("Enrichment HTTP %d for %s", response.status_code, profile_url)
            return ContactResult(has_email=False)

        try:
            data = response.json()
        except ValueError:
            logger.warning("Enrichment returned invalid JSON for %s", profile_url)
            return ContactResult(has_email=False)
        if not isinstance(data, dict):
            return ContactResult(has_email=False)
        return parse_enrichment(data)

    async def _get(self, url: str, params: dict[str, str]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._http_client is not None:
            return await self._http_client.get(url, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            return await client.get(url, params=params, headers=headers)
