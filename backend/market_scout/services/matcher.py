from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from market_scout.records import SearchParameters
from market_scout.services.listing_parser import ScrapedListing


class RelevanceScorer:
    """Scores a scraped listing against the search that produced it, 0-100."""

    def __init__(self, default_radius: float = 25.0, now: Any = None) -> None:
        self.default_radius = default_radius
        self._now = now or (lambda: datetime.now(timezone.utc))

    def score(self, listing: ScrapedListing, params: SearchParameters) -> float:
        total = 50.0
        total += self._title_score(listing.title, params.query)
        total += self._price_score(listing.price, params.min_price, params.max_price)
        total += self._distance_score(listing.distance, params.radius)
        total += self._recency_score(listing.posted_at)
        total += self._description_score(listing.description, params.query)
        total += self._seller_score(listing.seller_info)
        return round(max(0.0, min(100.0, total)), 2)

    def _keywords(self, query: str) -> list[str]:
        return [token for token in re.split(r"\s+", query.lower()) if len(token) > 2]

    def _title_score(self, title: str, query: str) -> float:
        if not title or not query:
            return 0.0
        normalized_title = title.lower()
        exact_bonus = 15.0 if query.lower().strip() in normalized_title else 0.0
        keywords = self._keywords(query)
        if not keywords:
            return exact_bonus
        matched = sum(1 for keyword in keywords if keyword in normalized_title)
        return exact_bonus + matched / len(keywords) * 15.0

    def _price_score(self, price: float | None, min_price: float | None, max_price: float | None) -> float:
        if price is None or (min_price is None and max_price is None):
            return 10.0
        if max_price is None:
            if price < min_price:
                return 0.0
            return 20.0 if price <= min_price * 1.2 else 15.0
        if min_price is None:
            if price > max_price:
                return 0.0
            return 15.0 if price >= max_price * 0.8 else 20.0
        if price < min_price or price > max_price:
            return 0.0
        span = max_price - min_price
        if span <= 0:
            return 20.0
        # Cheaper within the range scores higher.
        return 20.0 - (price - min_price) / span * 10.0

    def _distance_score(self, distance: float | None, radius: float | None) -> float:
        if distance is None:
            return 7.5
        radius = radius or self.default_radius
        if distance <= radius * 0.2:
            return 15.0
        if distance <= radius * 0.5:
            return 12.0
        if distance <= radius * 0.8:
            return 9.0
        if distance <= radius:
            return 6.0
        return 0.0

    def _recency_score(self, posted_at: str | None) -> float:
        posted = self._parse_datetime(posted_at)
        if posted is None:
            return 7.5
        age_hours = (self._now() - posted).total_seconds() / 3600
        if age_hours < 6:
            return 15.0
        if age_hours < 24:
            return 12.0
        if age_hours < 72:
            return 9.0
        if age_hours < 168:
            return 6.0
        return 3.0

    def _description_score(self, description: str | None, query: str) -> float:
        if not description or not query:
            return 5.0
        keywords = self._keywords(query)
        if not keywords:
            return 5.0
        normalized = description.lower()
        ratio = sum(1 for keyword in keywords if keyword in normalized) / len(keywords)
        if ratio > 0.8:
            return 10.0
        if ratio > 0.6:
            return 8.0
        if ratio > 0.4:
            return 7.0
        if ratio > 0.2:
            return 6.0
        return 5.0

    def _seller_score(self, seller_info: dict[str, Any] | None) -> float:
        if not seller_info:
            return 5.0
        score = 5.0
        rating = self._to_float(seller_info.get("rating"))
        if rating is not None:
            if rating >= 4.5:
                score += 5
            elif rating >= 4.0:
                score += 4
            elif rating >= 3.5:
                score += 3
            elif rating >= 3.0:
                score += 2
            elif rating >= 2.5:
                score += 1
            else:
                score -= 1

        joined = self._parse_datetime(seller_info.get("joined_date"))
        if joined is not None:
            age_years = (self._now() - joined).days / 365
            if age_years >= 5:
                score += 2
            elif age_years >= 2:
                score += 1
            elif age_years < 0.25:
                score -= 1
        return max(0.0, min(10.0, score))

    def _parse_datetime(self, value: Any) -> datetime | None:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _to_float(self, value: Any) -> float | None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
