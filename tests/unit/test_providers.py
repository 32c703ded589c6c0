"""Tests for the Apify search/scrape and SalesQL enrichment providers."""

import json

import httpx
import pytest

from src.core.config import ApifyConfig, EnrichmentConfig
from src.core.errors import ConfigurationError, ProviderError
from src.core.schemas import QueryVariant, SearchQuery
from src.providers.apify import ApifyClient, ApifyScrapeProvider, ApifySearchProvider, map_search_item
from src.providers.salesql import (
    SalesQLEnrichmentProvider,
    parse_enrichment,
    select_email,
    select_phone,
)


def _http(handler) -> httpx.AsyncClient:  # type: ignore[no-untyped-def]
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Apify
# ---------------------------------------------------------------------------
class TestMapSearchItem:
    def test_full_item(self) -> None:
        hit = map_search_item(
            {
                "linkedinUrl": "https://www.linkedin.com/in/jane/",
                "firstName": "Jane",
                "lastName": "Doe",
                "headline": "Staff Engineer",
                "location": {"linkedinText": "Berlin, Germany"},
                "currentPosition": [{"position": "Staff Engineer", "companyName": "Globex"}],
                "photo": "https://img/jane.png",
            }
        )
        assert hit is not None
        assert hit.profile_url == "https://linkedin.com/in/jane"
        assert hit.full_name == "Jane Doe"
        assert hit.location == "Berlin, Germany"
        assert hit.current_position == "Staff Engineer"
        assert hit.current_company == "Globex"
        assert hit.photo_url == "https://img/jane.png"

    def test_public_identifier(self) -> None:
        hit = map_search_item({"publicIdentifier": "bob-smith", "fullName": "Bob"})
        assert hit is not None
        assert hit.profile_url == "https://linkedin.com/in/bob-smith"

    def test_no_url(self) -> None:
        assert map_search_item({"fullName": "Nobody"}) is None


class TestApifyClient:
    def test_missing_token(self, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        monkeypatch.delenv("APIFY_API_TOKEN", raising=False)
        with pytest.raises(ConfigurationError, match="APIFY_API_TOKEN"):
            ApifyClient(ApifyConfig())

    def test_token_from_env(self, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        monkeypatch.setenv("APIFY_API_TOKEN", "tok")
        ApifyClient(ApifyConfig())

    async def test_run_actor_request(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"a": 1}, "junk", {"b": 2}])

        client = ApifyClient(ApifyConfig(), token="tok", http_client=_http(handler))
        items = await client.run_actor("me~actor", {"x": 1})

        assert items == [{"a": 1}, {"b": 2}]
        assert "/acts/me~actor/run-sync-get-dataset-items" in str(seen["url"])
        assert "token=tok" in str(seen["url"])
        assert seen["body"] == {"x": 1}

    async def test_server_error_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(502)
            return httpx.Response(200, json=[])

        client = ApifyClient(ApifyConfig(max_attempts=2), token="tok", http_client=_http(handler))
        assert await client.run_actor("a", {}) == []
        assert calls == 2

    async def test_server_error_exhausted(self) -> None:
        client = ApifyClient(
            ApifyConfig(max_attempts=1), token="tok", http_client=_http(lambda r: httpx.Response(503)),
        )
        with pytest.raises(ProviderError) as exc:
            await client.run_actor("a", {})
        assert exc.value.status_code == 503

    async def test_rate_limited(self) -> None:
        client = ApifyClient(ApifyConfig(), token="tok", http_client=_http(lambda r: httpx.Response(429)))
        with pytest.raises(ProviderError, match="rate limited"):
            await client.run_actor("a", {})

    async def test_non_list_payload(self) -> None:
        client = ApifyClient(
            ApifyConfig(), token="tok", http_client=_http(lambda r: httpx.Response(200, json={"error": "x"})),
        )
        with pytest.raises(ProviderError, match="non-list"):
            await client.run_actor("a", {})


class TestApifySearchProvider:
    async def test_search_input_and_mapping(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json=[
                    {"linkedinUrl": f"https://linkedin.com/in/p{i}", "fullName": f"P{i}"} for i in range(5)
                ]
                + [{"fullName": "no url"}],
            )

        client = ApifyClient(ApifyConfig(), token="tok", http_client=_http(handler))
        provider = ApifySearchProvider(ApifyConfig(), client)
        query = SearchQuery(
            variant=QueryVariant.BROAD,
            search_query="Python",
            locations=["Berlin"],
        ).with_max_items(3)

        hits = await provider.search(query)

        assert [h.full_name for h in hits] == ["P0", "P1", "P2"]
        assert seen["body"] == {
            "profileScraperMode": "Short",
            "maxItems": 3,
            "takePages": 1,
            "searchQuery": "Python",
            "locations": ["Berlin"],
        }


class TestApifyScrapeProvider:
    async def test_results_aligned_to_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    {"linkedinUrl": "https://www.linkedin.com/in/a/", "fullName": "A"},
                    {"inputUrl": "https://linkedin.com/in/c", "succeeded": False},
                ],
            )

        client = ApifyClient(ApifyConfig(), token="tok", http_client=_http(handler))
        provider = ApifyScrapeProvider(ApifyConfig(), client)
        urls = ["https://linkedin.com/in/a", "https://linkedin.com/in/b", "https://linkedin.com/in/c"]

        results = await provider.scrape_batch(urls)

        assert [(r.url, r.succeeded) for r in results] == [
            ("https://linkedin.com/in/a", True),
            ("https://linkedin.com/in/b", False),
            ("https://linkedin.com/in/c", False),
        ]
        assert results[0].data["fullName"] == "A"


# ---------------------------------------------------------------------------
# SalesQL
# ---------------------------------------------------------------------------
class TestSelection:
    def test_verified_personal_first(self) -> None:
        emails = [
            {"email": "work@acme.io", "type": "Work", "status": "Valid"},
            {"email": "me@gmail.com", "type": "Direct", "status": "Valid"},
        ]
        assert select_email(emails)["email"] == "me@gmail.com"  # type: ignore[index]

    def test_verified_work_over_unverified_personal(self) -> None:
        emails = [
            {"email": "me@gmail.com", "type": "Direct", "status": "Unverifiable"},
            {"email": "work@acme.io", "type": "Work", "status": "Valid"},
        ]
        assert select_email(emails)["email"] == "work@acme.io"  # type: ignore[index]

    def test_any_work_then_first(self) -> None:
        assert select_email([{"email": "x@y.z", "type": "Other"}, {"email": "w@acme.io", "type": "work"}])[
            "email"
        ] == "w@acme.io"
        assert select_email([{"email": "x@y.z"}])["email"] == "x@y.z"  # type: ignore[index]

    def test_no_usable_email(self) -> None:
        assert select_email([{"type": "Work"}]) is None

    def test_phone_prefers_work(self) -> None:
        assert select_phone([{"phone": "1", "type": "Mobile"}, {"phone": "2", "type": "Work"}]) == "2"
        assert select_phone([{"phone": "1", "type": "Mobile"}]) == "1"
        assert select_phone([]) is None


class TestParseEnrichment:
    def test_full_payload(self) -> None:
        result = parse_enrichment(
            {
                "full_name": "Jane Doe",
                "headline": "Engineer",
                "image": "https://img/j.png",
                "location": {"city": "Austin", "state": "TX", "country": "US"},
                "emails": [{"email": "j@acme.io", "type": "Work", "status": "Valid"}],
                "phones": [{"phone": "+1 512", "type": "Work"}],
            }
        )
        assert result.has_email is True
        assert result.email == "j@acme.io"
        assert result.phone == "+1 512"
        assert result.location == "Austin, TX"
        assert result.photo_url == "https://img/j.png"

    def test_no_email(self) -> None:
        result = parse_enrichment({"full_name": "X", "phones": [{"phone": "1"}]})
        assert result.has_email is False
        assert result.phone is None


class TestSalesQLProvider:
    def test_missing_key(self, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        monkeypatch.delenv("SALESQL_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="SALESQL_API_KEY"):
            SalesQLEnrichmentProvider(EnrichmentConfig())

    async def test_request_shape(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"emails": [{"email": "a@b.co", "type": "Direct", "status": "Valid"}]})

        provider = SalesQLEnrichmentProvider(EnrichmentConfig(), api_key="key", http_client=_http(handler))
        result = await provider.enrich("https://linkedin.com/in/a")

        assert result.email == "a@b.co"
        assert seen["auth"] == "Bearer key"
        url = seen["url"]
        assert isinstance(url, httpx.URL)
        assert url.path.endswith("/persons/enrich/")
        assert url.params["linkedin_url"] == "https://linkedin.com/in/a"

    @pytest.mark.parametrize("status", [404, 429, 500])
    async def test_non_200_is_no_contact(self, status: int) -> None:
        provider = SalesQLEnrichmentProvider(
            EnrichmentConfig(), api_key="key", http_client=_http(lambda r: httpx.Response(status)),
        )
        result = await provider.enrich("https://linkedin.com/in/a")
        assert result.has_email is False

    async def test_transport_error_is_no_contact(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        provider = SalesQLEnrichmentProvider(EnrichmentConfig(), api_key="key", http_client=_http(handler))
        assert (await provider.enrich("https://linkedin.com/in/a")).has_email is False

    async def test_invalid_json_is_no_contact(self) -> None:
        provider = SalesQLEnrichmentProvider(
            EnrichmentConfig(), api_key="key", http_client=_http(lambda r: httpx.Response(200, text="<html>")),
        )
        assert (await provider.enrich("https://linkedin.com/in/a")).has_email is False
