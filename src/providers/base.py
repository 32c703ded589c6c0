"""Abstract contracts for the external search, enrichment and scrape providers."""

from abc import ABC, abstractmethod

from src.core.schemas import ContactResult, ProfileHit, ScrapedProfile, SearchQuery


class SearchProvider(ABC):
    """Profile search. Results may be empty and are not stable across calls."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'apify')."""

    @abstractmethod
    async def search(self, query: SearchQuery) -> list[ProfileHit]:
        """Run one query variant and return the matching profiles."""


class EnrichmentProvider(ABC):
    """Contact lookup for a single profile URL.

    Implementations report "no contact found" for non-200 responses instead
    of raising.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'salesql')."""

    @abstractmethod
    async def enrich(self, profile_url: str) -> ContactResult:
        """Look up a contact method for the profile."""


class ScrapeProvider(ABC):
    """Full-profile scraping. Partial success within a batch is normal."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider."""

    @abstractmethod
    async def scrape_batch(self, urls: list[str]) -> list[ScrapedProfile]:
        """Scrape the given profile URLs, one entry per URL."""
