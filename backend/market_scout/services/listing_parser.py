from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

MARKETPLACE_BASE_URL = "https://www.facebook.com"

_LISTING_ID_RE = re.compile(r"/marketplace/item/(\d+)")
_CURRENCY_CODES = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₩": "KRW",
}


class ListingPayloadError(ValueError):
    """Scraped payload is not in the expected shape."""


@dataclass(frozen=True)
class ScrapedListing:
    listing_id: str
    title: str
    listing_url: str
    price: float | None = None
    currency: str | None = None
    location: str | None = None
    distance: float | None = None
    image_url: str | None = None
    description: str | None = None
    seller_info: dict[str, Any] = field(default_factory=dict)
    posted_at: str | None = None


def extract_listing_id(url: str) -> str:
    match = _LISTING_ID_RE.search(url or "")
    return match.group(1) if match else ""


def extract_price_and_currency(value: Any) -> tuple[float | None, str | None]:
    if value is None:
        return None, None
    if isinstance(value, (int, float)):
        return float(value), None
    text = str(value).strip()
    if not text:
        return None, None
    if text.lower() == "free":
        return 0.0, None
    symbol = next((char for char in text if char in _CURRENCY_CODES), None)
    code_match = re.search(r"\b([A-Z]{3})\b", text)
    currency = _CURRENCY_CODES.get(symbol) if symbol else (code_match.group(1) if code_match else None)
    numeric = re.sub(r"[^\d.]", "", text.replace(",", ""))
    try:
        return float(numeric), currency
    except ValueError:
        return None, currency


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    numeric = re.sub(r"[^\d.]", "", str(value))
    try:
        return float(numeric)
    except ValueError:
        return None


def _absolute(href: str | None) -> str:
    if not href:
        return ""
    href = href.strip()
    if href.startswith("http://") or href.startswith("https://"):
        return href
    if href.startswith("//"):
        return f"https:{href}"
    return urljoin(f"{MARKETPLACE_BASE_URL}/", href)


def _text(item: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = item.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ListingPayloadError(f"result field '{key}' must be a string, got {type(value).__name__}")
        return value
    return None


def parse_result_item(item: Any) -> ScrapedListing | None:
    """Map one item of the scraping service's ``results`` array.

    Returns ``None`` for items that carry no usable link; raises
    ``ListingPayloadError`` when the item is not an object or a text field
    holds something other than a string.
    """
    if not isinstance(item, dict):
        raise ListingPayloadError(f"result item must be an object, got {type(item).__name__}")

    url = _absolute(_text(item, "url", "listing_url"))
    if not url:
        return None
    listing_id = str(item.get("id") or item.get("listing_id") or extract_listing_id(url) or url)
    title = (_text(item, "title") or "").strip() or f"Marketplace item {listing_id}"
    price, currency = extract_price_and_currency(item.get("price"))

    seller_info = {
        key: value
        for key, value in {
            "name": item.get("seller_name"),
            "rating": item.get("seller_rating"),
            "joined_date": item.get("seller_joined_date"),
            "profile_url": item.get("seller_profile_url"),
        }.items()
        if value not in (None, "")
    }
    if isinstance(item.get("seller"), dict):
        seller_info = {**item["seller"], **seller_info}

    return ScrapedListing(
        listing_id=listing_id[:255],
        title=title[:500],
        listing_url=url[:1000],
        price=price,
        currency=_text(item, "currency") or currency or "USD",
        location=(str(item["location"])[:255] if item.get("location") else None),
        distance=_to_float(item.get("distance")),
        image_url=_text(item, "image_url", "thumbnail"),
        description=_text(item, "description"),
        seller_info=seller_info,
        posted_at=_text(item, "posted_at"),
    )


def parse_results_payload(payload: Any) -> list[ScrapedListing]:
    if not isinstance(payload, dict):
        raise ListingPayloadError("payload must be a JSON object")
    results = payload.get("results")
    if results is None and isinstance(payload.get("data"), dict):
        results = payload["data"].get("results")
    if not isinstance(results, list):
        raise ListingPayloadError("payload has no 'results' list")

    listings: list[ScrapedListing] = []
    seen: set[str] = set()
    for item in results:
        listing = parse_result_item(item)
        if listing is None or listing.listing_id in seen:
            continue
        seen.add(listing.listing_id)
        listings.append(listing)
    return listings


def parse_marketplace_html(html: str) -> list[ScrapedListing]:
    soup = BeautifulSoup(html, "html.parser")
    cards = soup.select('div[data-testid="marketplace_feed_item"]')
    if not cards:
        raise ListingPayloadError("no marketplace listing cards found in page")

    listings: list[ScrapedListing] = []
    seen: set[str] = set()
    for card in cards:
        link_el = card.find("a", href=_LISTING_ID_RE)
        if not link_el:
            continue
        url = _absolute(link_el.get("href"))
        listing_id = extract_listing_id(url)
        if not listing_id or listing_id in seen:
            continue
        seen.add(listing_id)

        spans = [span.get_text(" ", strip=True) for span in card.find_all("span")]
        title_el = card.find("span", attrs={"dir": "auto"})
        price_text = next((text for text in spans if any(symbol in text for symbol in _CURRENCY_CODES)), "")
        location_text = next((text for text in reversed(spans) if "," in text and text != price_text), "")
        price, currency = extract_price_and_currency(price_text)
        image_el = card.find("img")

        listings.append(
            ScrapedListing(
                listing_id=listing_id,
                title=(title_el.get_text(" ", strip=True) if title_el else "")[:500]
                or f"Marketplace item {listing_id}",
                listing_url=f"{MARKETPLACE_BASE_URL}/marketplace/item/{listing_id}/",
                price=price,
                currency=currency,
                location=location_text[:255] or None,
                image_url=image_el.get("src") if image_el else None,
            )
        )
    return listings
