"""Apify-backed profile search and profile scrape providers.

Both providers run an actor synchronously through the Apify HTTP API and
read back its dataset items.
"""

import logging
import os
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import ApifyConfig
from src.core.errors import ConfigurationError, ProviderError
from src.core.schemas import ProfileHit, ScrapedProfile, SearchQuery, normalize_profile_url
from src.providers.base import ScrapeProvider, SearchProvider

logger = logging.getLogger(__name__)


class _TransientStatusError(Exception):
    """5xx response from the actor API, worth another attempt."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class ApifyClient:
    """Minimal async client for running an actor and collecting its items."""

    def __init__(
        self,
        config: ApifyConfig,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._token = token or os.environ.get(config.token_env)
        if not self._token:
            msg = f"{config.token_env} environment variable is required"
            raise ConfigurationError(msg)
        self._http_client = http_client

    async def run_actor(self, actor_id: str, actor_input: dict[str, Any]) -> list[dict[str, Any]]:
        """Run an actor and return its dataset items.

        Transport errors and 5xx responses are retried with exponential
        backoff. Anything else non-2xx raises ProviderError.
        """
        url = f"{self._config.base_url.rstrip('/')}/acts/{actor_id}/run-sync-get-dataset-items"
        try:
            response = await self._post_with_retry(url, actor_input)
        except _TransientStatusError as e:
            raise ProviderError("apify", f"actor {actor_id} failed: {e}", e.status_code) from e
        except httpx.HTTPError as e:
            raise ProviderError("apify", f"actor {actor_id} request failed: {e}") from e

        if response.status_code == 429:
            raise ProviderError("apify", f"actor {actor_id} rate limited", 429)
        if not response.is_success:
            raise ProviderError(
                "apify",
                f"actor {actor_id} returned HTTP {response.status_code}",
                response.status_code,
            )

        items = response.json()
        if not isinstance(items, list):
            raise ProviderError("apify", f"actor {actor_id} returned a non-list payload")
        return [item for item in items if isinstance(item, dict)]

    async def _post_with_retry(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type((httpx.TransportError, _TransientStatusError)),
            reraise=True,
        ):
            with attempt:
                response = await self._post(url, payload)
                if response.status_code >= 500:
                    raise _TransientStatusError(response.status_code)
                return response
        msg = "unreachable: retry loop exited without a response"
        raise AssertionError(msg)

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        params = {"token": self._token}
        if self._http_client is not None:
            return await self._http_client.post(url, params=params, json=payload)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            return await client.post(url, params=params, json=payload)


def _first(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return str(value.get("linkedinText") or value.get("text") or value.get("name") or "")
    return str(value).strip()


def map_search_item(item: dict[str, Any]) -> ProfileHit | None:
    """Map one search-actor item to a ProfileHit, or None if it has no URL."""
    url = _first(item, "linkedinUrl", "profileUrl", "url")
    if not url and item.get("publicIdentifier"):
        url = f"https://linkedin.com/in/{item['publicIdentifier']}"
    if not url:
        return None

    name = _first(item, "fullName", "name")
    if not name:
        name = f"{item.get('firstName') or ''} {item.get('lastName') or ''}".strip()

    position = ""
    company = ""
    current = item.get("currentPosition")
    if isinstance(current, list) and current and isinstance(current[0], dict):
        position = _text(_first(current[0], "position", "title"))
        company = _text(current[0].get("companyName"))
    elif current:
        position = _text(current)

    return ProfileHit(
        profile_url=url,
        full_name=name or "",
        headline=_text(item.get("headline")),
        location=_text(item.get("location")),
        current_position=position,
        current_company=company or _text(item.get("currentCompany")),
        photo_url=_text(_first(item, "photo", "pictureUrl", "photoUrl")),
    )


class ApifySearchProvider(SearchProvider):
    """Profile search through a LinkedIn profile-search actor."""

    def __init__(self, config: ApifyConfig, client: ApifyClient | None = None) -> None:
        self._config = config
        self._client = client or ApifyClient(config)

    @property
    def provider_id(self) -> str:
        return "apify"

    async def search(self, query: SearchQuery) -> list[ProfileHit]:
        actor_input: dict[str, Any] = {
            "profileScraperMode": "Short",
            "maxItems": query.max_items,
            "takePages": query.take_pages,
        }
        if query.search_query:
            actor_input["searchQuery"] = query.search_query
        if query.current_job_titles:
            actor_input["currentJobTitles"] = query.current_job_titles
        if query.locations:
            actor_input["locations"] = query.locations
        if query.industry_ids:
            actor_input["industryIds"] = query.industry_ids
        if query.experience_levels:
            actor_input["experienceLevels"] = query.experience_levels

        logger.info("Running %s search (maxItems=%d)", query.variant.value, query.max_items)
        items = await self._client.run_actor(self._config.search_actor, actor_input)

        hits = [hit for hit in (map_search_item(i) for i in items) if hit is not None]
        logger.info("Search returned %d items, %d with a profile URL", len(items), len(hits))
        return hits[: query.max_items]


class ApifyScrapeProvider(ScrapeProvider):
    """Full-profile scraping through a LinkedIn profile-scraper actor."""

    def __init__(self, config: ApifyConfig, client: ApifyClient | None = None) -> None:
        self._config = config
        self._client = client or ApifyClient(config)

    @property
    def provider_id(self) -> str:
        return "apify"

    async def scrape_batch(self, urls: list[str]) -> list[ScrapedProfile]:
        items = await self._client.run_actor(self._config.scrape_actor, {"profileUrls": urls})

        by_url: dict[str, ScrapedProfile] = {}
        for item in items:
            url = _first(item, "linkedinUrl", "linkedinPublicUrl", "profileUrl", "url", "inputUrl")
            if not url:
                continue
            scraped = ScrapedProfile(
                url=url,
                succeeded=bool(item.get("succeeded", True)),
                data=item,
            )
            by_url[scraped.url] = scraped

        results: list[ScrapedProfile] = []
        for url in urls:
            key = normalize_profile_url(url)
            results.append(by_url.pop(key, None) or ScrapedProfile(url=url, succeeded=False))
        # Items the actor keyed under a different URL are kept as returned.
        results.extend(by_url.values())

        succeeded = sum(1 for r in results if r.succeeded)
        logger.info("Scraped %d/%d profiles", succeeded, len(urls))
        return results
