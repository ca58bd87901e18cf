from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

SortBy = Literal["relevance", "price_asc", "price_desc", "date"]


class CreateSearchRequest(BaseModel):
    query: str = Field(min_length=2, max_length=100)
    location: str | None = Field(default=None, max_length=200)
    radius: int | None = Field(default=None, ge=1, le=100)
    min_price: float | None = Field(default=None, ge=0)
    max_price: float | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, max_length=100)
    sort_by: SortBy | None = None

    @model_validator(mode="after")
    def check_price_range(self) -> "CreateSearchRequest":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price cannot exceed max_price")
        return self


class CreateSearchResponse(BaseModel):
    search_id: str
    job_id: str
    message: str


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def build(cls, total: int, limit: int, offset: int, returned: int) -> "Pagination":
        return cls(total=total, limit=limit, offset=offset, has_more=offset + returned < total)


class SearchOut(BaseModel):
    id: str
    query_text: str
    parameters: dict[str, Any]
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SearchHistoryResponse(BaseModel):
    searches: list[SearchOut]
    pagination: Pagination


class JobStatusOut(BaseModel):
    id: str
    search_id: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    error_code: str | None = None
    created_at: datetime | None = None
    result_count: int = 0


class MatchOut(BaseModel):
    id: str
    job_id: str
    search_id: str
    listing_id: str
    title: str
    price: float | None = None
    currency: str | None = None
    location: str | None = None
    distance: float | None = None
    listing_url: str
    image_url: str | None = None
    description: str | None = None
    seller_info: dict[str, Any] = {}
    relevance_score: float | None = None
    posted_at: str | None = None
    created_at: datetime | None = None
    is_unlocked: bool = False

    class Config:
        from_attributes = True


class SearchResultsResponse(BaseModel):
    results: list[MatchOut]
    job_status: str | None = None
    job_error: str | None = None
    pagination: Pagination


class SaveSearchRequest(BaseModel):
    search_id: str
    frequency: Literal["daily", "weekly"] = "daily"


class SavedSearchOut(BaseModel):
    id: str
    search_id: str
    frequency: str
    is_active: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
