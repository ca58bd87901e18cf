from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from sqlalchemy import case
from sqlalchemy.orm import Session, sessionmaker

from market_scout.errors import ErrorCode, ScoutError
from market_scout.models.match import Match, Unlock
from market_scout.models.saved_search import SavedSearch
from market_scout.models.search import Search, SearchJob
from market_scout.records import (
    SORT_OPTIONS,
    JobStatus,
    MatchRecord,
    SavedSearchRecord,
    SearchJobRecord,
    SearchParameters,
    SearchRecord,
    can_transition,
    utcnow,
)

_JOB_PATCH_FIELDS = {"status", "started_at", "completed_at", "error", "error_code", "result_count"}
_MATCH_FIELDS = {
    "listing_id",
    "title",
    "price",
    "currency",
    "location",
    "distance",
    "listing_url",
    "image_url",
    "description",
    "seller_info",
    "relevance_score",
    "posted_at",
}
SAVED_SEARCH_INTERVALS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}


def _to_search_record(row: Search) -> SearchRecord:
    return SearchRecord(
        id=row.id,
        user_id=row.user_id,
        query_text=row.query_text,
        parameters=SearchParameters.from_dict(row.parameters or {}),
        status=JobStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_job_record(row: SearchJob) -> SearchJobRecord:
    return SearchJobRecord(
        id=row.id,
        search_id=row.search_id,
        status=JobStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        error=row.error,
        error_code=row.error_code,
        result_count=row.result_count or 0,
        created_at=row.created_at,
    )


def _to_match_record(row: Match, unlocked_ids: set[str]) -> MatchRecord:
    return MatchRecord(
        id=row.id,
        job_id=row.job_id,
        search_id=row.search_id,
        listing_id=row.listing_id,
        title=row.title,
        listing_url=row.listing_url,
        price=row.price,
        currency=row.currency,
        location=row.location,
        distance=row.distance,
        image_url=row.image_url,
        description=row.description,
        seller_info=row.seller_info or {},
        relevance_score=row.relevance_score,
        posted_at=row.posted_at,
        created_at=row.created_at,
        is_unlocked=row.id in unlocked_ids,
    )


def _to_saved_record(row: SavedSearch) -> SavedSearchRecord:
    return SavedSearchRecord(
        id=row.id,
        search_id=row.search_id,
        user_id=row.user_id,
        frequency=row.frequency,
        is_active=bool(row.is_active),
        last_run_at=row.last_run_at,
        next_run_at=row.next_run_at,
        created_at=row.created_at,
    )


def _order_clauses(sort_by: str | None) -> list[Any]:
    price_missing_last = case((Match.price.is_(None), 1), else_=0)
    if sort_by == "price_asc":
        return [price_missing_last, Match.price.asc(), Match.created_at.asc()]
    if sort_by == "price_desc":
        return [price_missing_last, Match.price.desc(), Match.created_at.asc()]
    if sort_by == "date":
        posted_missing_last = case((Match.posted_at.is_(None), 1), else_=0)
        return [posted_missing_last, Match.posted_at.desc(), Match.created_at.desc(), Match.id.asc()]
    return [Match.relevance_score.desc(), Match.created_at.asc(), Match.id.asc()]


class JobStore:
    """Keyed record store for searches, jobs and their matches.

    Every operation opens its own short session so concurrently running jobs
    never share one.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create_search(self, user_id: int, params: SearchParameters) -> tuple[str, str]:
        now = utcnow()
        with self._session_factory() as db:
            search = Search(
                user_id=user_id,
                query_text=params.query,
                parameters=params.to_dict(),
                status=JobStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            db.add(search)
            db.flush()
            job = SearchJob(search_id=search.id, status=JobStatus.PENDING.value, created_at=now)
            db.add(job)
            db.commit()
            return search.id, job.id

    def create_job(self, search_id: str) -> str:
        with self._session_factory() as db:
            search = db.get(Search, search_id)
            if search is None:
                raise ScoutError(ErrorCode.NOT_FOUND, "Search not found", {"search_id": search_id})
            job = SearchJob(search_id=search_id, status=JobStatus.PENDING.value, created_at=utcnow())
            db.add(job)
            search.status = JobStatus.PENDING.value
            search.updated_at = utcnow()
            db.commit()
            return job.id

    def get_job(self, job_id: str) -> SearchJobRecord | None:
        with self._session_factory() as db:
            row = db.get(SearchJob, job_id)
            return _to_job_record(row) if row else None

    def get_search(self, search_id: str) -> SearchRecord | None:
        with self._session_factory() as db:
            row = db.get(Search, search_id)
            return _to_search_record(row) if row else None

    def update_job(
        self,
        job_id: str,
        patch: dict[str, Any],
        expected_status: JobStatus | None = None,
    ) -> bool:
        """Apply ``patch`` to a job; with ``expected_status`` this is a compare-and-set.

        Returns False when the job is missing or its status no longer matches.
        A status change is mirrored onto the parent search when this job is
        the search's newest.
        """
        unknown = set(patch) - _JOB_PATCH_FIELDS
        if unknown:
            raise ValueError(f"unsupported job fields: {sorted(unknown)}")
        if "status" in patch:
            target = JobStatus(patch["status"])
            if expected_status is None or not can_transition(expected_status, target):
                raise ValueError(f"illegal job transition {expected_status} -> {target.value}")
        values = {key: (value.value if isinstance(value, JobStatus) else value) for key, value in patch.items()}

        with self._session_factory() as db:
            query = db.query(SearchJob).filter(SearchJob.id == job_id)
            if expected_status is not None:
                query = query.filter(SearchJob.status == expected_status.value)
            updated = query.update(values, synchronize_session=False)
            if not updated:
                db.rollback()
                return False
            if "status" in values:
                search_id = db.query(SearchJob.search_id).filter(SearchJob.id == job_id).scalar()
                latest_id = (
                    db.query(SearchJob.id)
                    .filter(SearchJob.search_id == search_id)
                    .order_by(SearchJob.created_at.desc())
                    .limit(1)
                    .scalar()
                )
                # Only the newest job speaks for the search.
                if latest_id == job_id:
                    db.query(Search).filter(Search.id == search_id).update(
                        {"status": values["status"], "updated_at": utcnow()},
                        synchronize_session=False,
                    )
            db.commit()
            return True

    def append_results(self, job_id: str, rows: Iterable[dict[str, Any]]) -> int:
        """Insert all rows for a job in one transaction."""
        with self._session_factory() as db:
            job = db.get(SearchJob, job_id)
            if job is None:
                raise ScoutError(ErrorCode.NOT_FOUND, "Job not found", {"job_id": job_id})
            now = utcnow()
            count = 0
            for row in rows:
                fields = {key: value for key, value in row.items() if key in _MATCH_FIELDS}
                db.add(Match(job_id=job_id, search_id=job.search_id, created_at=now, **fields))
                count += 1
            db.commit()
            return count

    def get_results(
        self,
        job_id: str,
        limit: int = 10,
        offset: int = 0,
        sort_by: str | None = None,
        user_id: int | None = None,
    ) -> tuple[list[MatchRecord], int]:
        if sort_by is not None and sort_by not in SORT_OPTIONS:
            raise ScoutError(ErrorCode.VALIDATION_ERROR, f"sort_by must be one of {', '.join(SORT_OPTIONS)}")
        with self._session_factory() as db:
            base = db.query(Match).filter(Match.job_id == job_id)
            total = base.count()
            rows = base.order_by(*_order_clauses(sort_by)).offset(offset).limit(limit).all()
            unlocked: set[str] = set()
            if user_id is not None and rows:
                unlocked = {
                    match_id
                    for (match_id,) in db.query(Unlock.match_id)
                    .filter(Unlock.user_id == user_id, Unlock.match_id.in_([row.id for row in rows]))
                    .all()
                }
            return [_to_match_record(row, unlocked) for row in rows], total

    def count_results(self, job_id: str) -> int:
        with self._session_factory() as db:
            return db.query(Match).filter(Match.job_id == job_id).count()

    def latest_job_for_search(self, search_id: str) -> SearchJobRecord | None:
        with self._session_factory() as db:
            row = (
                db.query(SearchJob)
                .filter(SearchJob.search_id == search_id)
                .order_by(SearchJob.created_at.desc())
                .first()
            )
            return _to_job_record(row) if row else None

    def list_searches(self, user_id: int, limit: int = 10, offset: int = 0) -> tuple[list[SearchRecord], int]:
        with self._session_factory() as db:
            base = db.query(Search).filter(Search.user_id == user_id)
            total = base.count()
            rows = base.order_by(Search.created_at.desc()).offset(offset).limit(limit).all()
            return [_to_search_record(row) for row in rows], total

    def list_pending_job_ids(self, limit: int = 10) -> list[str]:
        with self._session_factory() as db:
            return [
                job_id
                for (job_id,) in db.query(SearchJob.id)
                .filter(SearchJob.status == JobStatus.PENDING.value)
                .order_by(SearchJob.created_at.asc())
                .limit(limit)
                .all()
            ]

    def save_search(self, user_id: int, search_id: str, frequency: str = "daily") -> SavedSearchRecord:
        if frequency not in SAVED_SEARCH_INTERVALS:
            raise ScoutError(ErrorCode.VALIDATION_ERROR, "frequency must be 'daily' or 'weekly'")
        with self._session_factory() as db:
            search = db.query(Search).filter(Search.id == search_id, Search.user_id == user_id).first()
            if search is None:
                raise ScoutError(ErrorCode.NOT_FOUND, "Search not found", {"search_id": search_id})
            existing = (
                db.query(SavedSearch)
                .filter(SavedSearch.user_id == user_id, SavedSearch.search_id == search_id)
                .first()
            )
            now = utcnow()
            if existing:
                existing.frequency = frequency
                existing.is_active = True
                existing.updated_at = now
                db.commit()
                return _to_saved_record(existing)
            saved = SavedSearch(
                search_id=search_id,
                user_id=user_id,
                frequency=frequency,
                is_active=True,
                next_run_at=now + SAVED_SEARCH_INTERVALS[frequency],
                created_at=now,
                updated_at=now,
            )
            db.add(saved)
            db.commit()
            return _to_saved_record(saved)

    def list_saved_searches(self, user_id: int, limit: int = 10, offset: int = 0) -> tuple[list[SavedSearchRecord], int]:
        with self._session_factory() as db:
            base = db.query(SavedSearch).filter(SavedSearch.user_id == user_id, SavedSearch.is_active == True)  # noqa: E712
            total = base.count()
            rows = base.order_by(SavedSearch.created_at.desc()).offset(offset).limit(limit).all()
            return [_to_saved_record(row) for row in rows], total

    def get_saved_search(self, saved_search_id: str, user_id: int) -> SavedSearchRecord | None:
        with self._session_factory() as db:
            row = (
                db.query(SavedSearch)
                .filter(SavedSearch.id == saved_search_id, SavedSearch.user_id == user_id)
                .first()
            )
            return _to_saved_record(row) if row else None

    def delete_saved_search(self, saved_search_id: str, user_id: int) -> bool:
        with self._session_factory() as db:
            deleted = (
                db.query(SavedSearch)
                .filter(SavedSearch.id == saved_search_id, SavedSearch.user_id == user_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return bool(deleted)

    def mark_saved_search_run(self, saved_search_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(SavedSearch, saved_search_id)
            if row is None:
                return
            now = utcnow()
            row.last_run_at = now
            row.next_run_at = now + SAVED_SEARCH_INTERVALS.get(row.frequency, SAVED_SEARCH_INTERVALS["daily"])
            row.updated_at = now
            db.commit()
