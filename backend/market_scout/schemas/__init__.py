from market_scout.schemas.scraper import PresetTestRequest, PresetTestResponse, ProxyDetailsOut, QuotaOut
from market_scout.schemas.search import (
    CreateSearchRequest,
    CreateSearchResponse,
    JobStatusOut,
    MatchOut,
    Pagination,
    SaveSearchRequest,
    SavedSearchOut,
    SearchHistoryResponse,
    SearchOut,
    SearchResultsResponse,
)

__all__ = [
    "CreateSearchRequest",
    "CreateSearchResponse",
    "SearchOut",
    "SearchHistoryResponse",
    "JobStatusOut",
    "MatchOut",
    "Pagination",
    "SearchResultsResponse",
    "SaveSearchRequest",
    "SavedSearchOut",
    "QuotaOut",
    "ProxyDetailsOut",
    "PresetTestRequest",
    "PresetTestResponse",
]
