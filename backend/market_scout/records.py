from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed forward transitions; terminal states have none.
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

SORT_OPTIONS = ("relevance", "price_asc", "price_desc", "date")


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[current]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SearchParameters:
    query: str
    location: str | None = None
    radius: int | None = None
    min_price: float | None = None
    max_price: float | None = None
    category: str | None = None
    sort_by: str | None = None
    limit: int | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SearchParameters":
        known = {name: payload.get(name) for name in cls.__dataclass_fields__}
        known["query"] = str(known.get("query") or "")
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def cache_payload(self) -> dict[str, Any]:
        """Normalized query and filters; sort order and paging do not change what is scraped."""
        payload: dict[str, Any] = {"query": " ".join(self.query.lower().split())}
        if self.location:
            payload["location"] = " ".join(self.location.lower().split())
        if self.category:
            payload["category"] = self.category.strip().lower()
        for name in ("radius", "min_price", "max_price", "limit"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = float(value)
        return payload


@dataclass(frozen=True)
class SearchRecord:
    id: str
    user_id: int
    query_text: str
    parameters: SearchParameters
    status: JobStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SearchJobRecord:
    id: str
    search_id: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    error_code: str | None = None
    result_count: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True)
class MatchRecord:
    id: str
    job_id: str
    search_id: str
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
    relevance_score: float | None = None
    posted_at: str | None = None
    created_at: datetime | None = None
    is_unlocked: bool = False


@dataclass(frozen=True)
class SavedSearchRecord:
    id: str
    search_id: str
    user_id: int
    frequency: str
    is_active: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime | None = None
