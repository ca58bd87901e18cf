from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from market_scout.auth import get_current_user
from market_scout.container import Services, get_services
from market_scout.errors import ErrorCode, ScoutError
from market_scout.models.user import User
from market_scout.records import SearchParameters, SearchRecord
from market_scout.schemas.search import (
    CreateSearchRequest,
    CreateSearchResponse,
    JobStatusOut,
    MatchOut,
    Pagination,
    SavedSearchOut,
    SaveSearchRequest,
    SearchHistoryResponse,
    SearchOut,
    SearchResultsResponse,
    SortBy,
)


router = APIRouter()


def _owned_search(services: Services, search_id: str, user: User) -> SearchRecord:
    search = services.store.get_search(search_id)
    if search is None or search.user_id != user.id:
        raise ScoutError(ErrorCode.NOT_FOUND, "Search not found")
    return search


def _search_out(search: SearchRecord) -> SearchOut:
    return SearchOut(
        id=search.id,
        query_text=search.query_text,
        parameters=search.parameters.to_dict(),
        status=search.status.value,
        created_at=search.created_at,
        updated_at=search.updated_at,
    )


@router.post("", response_model=CreateSearchResponse, status_code=201)
async def create_search(
    payload: CreateSearchRequest,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> CreateSearchResponse:
    params = SearchParameters(limit=services.settings.scrape_result_limit, **payload.model_dump())
    search_id, job_id = services.store.create_search(current_user.id, params)
    services.dispatcher.submit(job_id)
    return CreateSearchResponse(search_id=search_id, job_id=job_id, message="Search created successfully")


@router.get("", response_model=SearchHistoryResponse)
def list_searches(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> SearchHistoryResponse:
    searches, total = services.store.list_searches(current_user.id, limit=limit, offset=offset)
    return SearchHistoryResponse(
        searches=[_search_out(search) for search in searches],
        pagination=Pagination.build(total, limit, offset, len(searches)),
    )


@router.get("/jobs/{job_id}", response_model=JobStatusOut)
def get_job_status(
    job_id: str,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> JobStatusOut:
    job = services.store.get_job(job_id)
    if job is None:
        raise ScoutError(ErrorCode.NOT_FOUND, "Job not found")
    _owned_search(services, job.search_id, current_user)
    return JobStatusOut(
        id=job.id,
        search_id=job.search_id,
        status=job.status.value,
        started_at=job.started_at,
        completed_at=job.completed_at,
        error=job.error,
        error_code=job.error_code,
        created_at=job.created_at,
        result_count=job.result_count or services.store.count_results(job.id),
    )


@router.get("/saved", response_model=list[SavedSearchOut])
def list_saved_searches(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> list[SavedSearchOut]:
    saved, _ = services.store.list_saved_searches(current_user.id, limit=limit, offset=offset)
    return [SavedSearchOut.model_validate(row) for row in saved]


@router.post("/saved", response_model=SavedSearchOut, status_code=201)
def save_search(
    payload: SaveSearchRequest,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> SavedSearchOut:
    saved = services.store.save_search(current_user.id, payload.search_id, payload.frequency)
    return SavedSearchOut.model_validate(saved)


@router.delete("/saved/{saved_search_id}", status_code=204)
def delete_saved_search(
    saved_search_id: str,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> Response:
    if not services.store.delete_saved_search(saved_search_id, current_user.id):
        raise ScoutError(ErrorCode.NOT_FOUND, "Saved search not found")
    return Response(status_code=204)


@router.post("/saved/{saved_search_id}/run", response_model=CreateSearchResponse)
async def run_saved_search(
    saved_search_id: str,
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> CreateSearchResponse:
    saved = services.store.get_saved_search(saved_search_id, current_user.id)
    if saved is None:
        raise ScoutError(ErrorCode.NOT_FOUND, "Saved search not found")
    job_id = services.store.create_job(saved.search_id)
    services.store.mark_saved_search_run(saved.id)
    services.dispatcher.submit(job_id)
    return CreateSearchResponse(search_id=saved.search_id, job_id=job_id, message="Search job created successfully")


@router.get("/{search_id}/results", response_model=SearchResultsResponse)
def get_search_results(
    search_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    sort_by: SortBy | None = Query(default=None),
    services: Services = Depends(get_services),
    current_user: User = Depends(get_current_user),
) -> SearchResultsResponse:
    _owned_search(services, search_id, current_user)
    job = services.store.latest_job_for_search(search_id)
    if job is None:
        return SearchResultsResponse(results=[], pagination=Pagination.build(0, limit, offset, 0))

    results, total = services.store.get_results(
        job.id,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        user_id=current_user.id,
    )
    return SearchResultsResponse(
        results=[MatchOut.model_validate(result) for result in results],
        job_status=job.status.value,
        job_error=job.error,
        pagination=Pagination.build(total, limit, offset, len(results)),
    )
