from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlparse

import httpx

from market_scout.config import Settings
from market_scout.errors import ErrorCode, ScraperError
from market_scout.log import get_logger
from market_scout.records import SearchParameters
from market_scout.services.listing_parser import (
    ListingPayloadError,
    ScrapedListing,
    parse_marketplace_html,
    parse_results_payload,
)

logger = get_logger(__name__)

_QUOTA_STATUS_CODES = (402, 429)
_SUPPORTED_HOSTS = ("facebook.com",)


@dataclass(frozen=True)
class ScrapeTarget:
    query: str | None = None
    location: str | None = None
    radius: int | None = None
    min_price: float | None = None
    max_price: float | None = None
    category: str | None = None
    limit: int | None = None
    url: str | None = None

    @classmethod
    def from_parameters(cls, params: SearchParameters) -> "ScrapeTarget":
        return cls(
            query=" ".join(params.query.split()),
            location=params.location,
            radius=params.radius,
            min_price=params.min_price,
            max_price=params.max_price,
            category=params.category,
            limit=params.limit,
        )

    def describe(self) -> str:
        return self.url or f"query={self.query!r} location={self.location!r}"


@dataclass(frozen=True)
class ScrapeResult:
    listings: list[ScrapedListing] = field(default_factory=list)
    target: ScrapeTarget | None = None


@dataclass(frozen=True)
class ProxyDetails:
    host: str
    port: int
    zone_name: str
    username: str
    password: str
    proxy_url: str


def is_supported_listing_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https"):
        return False
    if not any(host == allowed or host.endswith(f".{allowed}") for allowed in _SUPPORTED_HOSTS):
        return False
    return parsed.path.lower().startswith("/marketplace")


class ScraperClient:
    """One call to the external scraping service per ``fetch``.

    Failures are raised as ``ScraperError`` carrying the failure kind; this
    client never retries, the caller decides.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    async def fetch(self, target: ScrapeTarget) -> ScrapeResult:
        if target.url is not None and not is_supported_listing_url(target.url):
            raise ScraperError(ErrorCode.VALIDATION_ERROR, "URL must be a marketplace listing URL", {"url": target.url})
        if target.url is None and not (target.query or "").strip():
            raise ScraperError(ErrorCode.VALIDATION_ERROR, "Search query is required")

        body = self._request_body(target)
        response = await self._post(self._api_url(), body)
        listings = self._parse_listings(response)
        logger.info("scrape %s returned %d listings", target.describe(), len(listings))
        return ScrapeResult(listings=listings, target=target)

    async def test_preset(self, url: str) -> dict[str, Any]:
        if not is_supported_listing_url(url):
            raise ScraperError(ErrorCode.VALIDATION_ERROR, "URL must be a marketplace listing URL", {"url": url})
        response = await self._post(self._api_url("test"), {"preset": self.settings.scraper_preset, "url": url})
        try:
            payload = response.json()
        except ValueError as exc:
            raise ScraperError(ErrorCode.PARSE_ERROR, "Preset test response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ScraperError(ErrorCode.PARSE_ERROR, "Preset test response must be a JSON object")
        return payload

    def get_proxy_details(self) -> ProxyDetails:
        zone = self.settings.proxy_zone
        username = f"brd-customer-{self.settings.proxy_customer_id}-zone-{zone}"
        password = self.settings.proxy_password
        proxy_url = (
            f"http://{quote(username, safe='')}:{quote(password, safe='')}"
            f"@{self.settings.proxy_host}:{self.settings.proxy_port}"
        )
        return ProxyDetails(
            host=self.settings.proxy_host,
            port=self.settings.proxy_port,
            zone_name=zone,
            username=username,
            password=password,
            proxy_url=proxy_url,
        )

    def _api_url(self, path: str = "") -> str:
        base = self.settings.scraper_api_url.rstrip("/")
        return f"{base}/{path}" if path else base

    def _request_body(self, target: ScrapeTarget) -> dict[str, Any]:
        if target.url is not None:
            return {"preset": self.settings.scraper_preset, "url": target.url}
        body: dict[str, Any] = {
            "preset": self.settings.scraper_preset,
            "query": target.query,
            "location": target.location or self.settings.default_location,
            "radius": target.radius or self.settings.default_radius_miles,
            "limit": target.limit or self.settings.scrape_result_limit,
        }
        if target.min_price is not None:
            body["min_price"] = target.min_price
        if target.max_price is not None:
            body["max_price"] = target.max_price
        if target.category:
            body["category"] = target.category
        return body

    async def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        if not self.settings.scraper_api_key:
            raise ScraperError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Scraper API key is not configured")

        headers = {
            "Authorization": f"Bearer {self.settings.scraper_api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.settings.scraper_timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise ScraperError(
                ErrorCode.UPSTREAM_TIMEOUT,
                f"Scraper did not answer within {self.settings.scraper_timeout_seconds:g}s",
            ) from exc
        except httpx.HTTPError as exc:
            raise ScraperError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Scraper request failed", {"reason": str(exc)}) from exc

        if response.status_code in _QUOTA_STATUS_CODES or self._reports_quota(response):
            raise ScraperError(ErrorCode.QUOTA_EXCEEDED, "Scraper quota exhausted", {"status_code": response.status_code})
        if response.status_code == 504:
            raise ScraperError(ErrorCode.UPSTREAM_TIMEOUT, "Scraper gateway timed out", {"status_code": 504})
        if response.status_code >= 400:
            raise ScraperError(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                "Scraper request failed",
                {"status_code": response.status_code, "message": self._error_message(response)},
            )
        return response

    def _parse_listings(self, response: httpx.Response) -> list[ScrapedListing]:
        content_type = response.headers.get("content-type", "")
        try:
            if "html" in content_type:
                return parse_marketplace_html(response.text)
            return parse_results_payload(response.json())
        except ListingPayloadError as exc:
            raise ScraperError(ErrorCode.PARSE_ERROR, f"Unexpected scraper payload: {exc}") from exc
        except ValueError as exc:
            raise ScraperError(ErrorCode.PARSE_ERROR, "Scraper response is not valid JSON") from exc
        except (TypeError, AttributeError, KeyError) as exc:
            raise ScraperError(ErrorCode.PARSE_ERROR, f"Could not read scraper response: {exc}") from exc

    def _reports_quota(self, response: httpx.Response) -> bool:
        if response.status_code < 400:
            return False
        try:
            payload = response.json()
        except ValueError:
            return False
        code = str(payload.get("error_code", "")) if isinstance(payload, dict) else ""
        return "QUOTA" in code.upper()

    def _error_message(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.reason_phrase
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return response.reason_phrase
