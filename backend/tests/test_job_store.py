from datetime import timedelta

import pytest

from market_scout.errors import ErrorCode, ScoutError
from market_scout.models.match import Unlock
from market_scout.models.search import SearchJob
from market_scout.records import JobStatus, SearchParameters, utcnow


def _listing(listing_id: str, price=None, score=50.0) -> dict:
    return {
        "listing_id": listing_id,
        "title": f"Item {listing_id}",
        "listing_url": f"https://www.facebook.com/marketplace/item/{listing_id}/",
        "price": price,
        "relevance_score": score,
        "seller_info": {"name": "Pat"},
        "unexpected_field": "ignored",
    }


def test_create_search_starts_pending(store):
    search_id, job_id = store.create_search(1, SearchParameters(query="desk", location="Austin", radius=10))

    search = store.get_search(search_id)
    job = store.get_job(job_id)
    assert search.status is JobStatus.PENDING
    assert search.parameters.location == "Austin"
    assert search.parameters.radius == 10
    assert job.status is JobStatus.PENDING
    assert job.search_id == search_id
    assert store.get_job("missing") is None


def test_update_job_is_compare_and_set(store):
    search_id, job_id = store.create_search(1, SearchParameters(query="desk"))

    assert store.update_job(job_id, {"status": JobStatus.PROCESSING, "started_at": utcnow()}, JobStatus.PENDING)
    assert not store.update_job(job_id, {"status": JobStatus.PROCESSING}, JobStatus.PENDING)
    assert store.get_search(search_id).status is JobStatus.PROCESSING

    assert store.update_job(job_id, {"status": JobStatus.FAILED, "error": "x"}, JobStatus.PROCESSING)
    job = store.get_job(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error == "x"
    assert not store.update_job("missing", {"status": JobStatus.PROCESSING}, JobStatus.PENDING)


def test_update_job_rejects_illegal_transitions_and_unknown_fields(store):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    with pytest.raises(ValueError):
        store.update_job(job_id, {"status": JobStatus.COMPLETED}, JobStatus.PENDING)
    with pytest.raises(ValueError):
        store.update_job(job_id, {"status": JobStatus.PROCESSING})
    with pytest.raises(ValueError):
        store.update_job(job_id, {"search_id": "other"})
    assert store.get_job(job_id).status is JobStatus.PENDING


def test_results_are_paginated_with_total(store):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))
    rows = [_listing(str(index), price=float(index), score=float(index)) for index in range(25)]
    assert store.append_results(job_id, rows) == 25

    first, total = store.get_results(job_id, limit=10, offset=0)
    last, _ = store.get_results(job_id, limit=10, offset=20)
    beyond, beyond_total = store.get_results(job_id, limit=10, offset=25)

    assert total == 25
    assert len(first) == 10
    assert first[0].relevance_score == 24.0
    assert len(last) == 5
    assert beyond == [] and beyond_total == 25
    assert first[0].seller_info == {"name": "Pat"}


def test_price_sorts_put_missing_prices_last(store):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))
    store.append_results(job_id, [_listing("a", price=30.0), _listing("b"), _listing("c", price=10.0)])

    ascending, _ = store.get_results(job_id, sort_by="price_asc")
    descending, _ = store.get_results(job_id, sort_by="price_desc")

    assert [row.listing_id for row in ascending] == ["c", "a", "b"]
    assert [row.listing_id for row in descending] == ["a", "c", "b"]


def test_unknown_sort_is_a_validation_error(store):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))
    with pytest.raises(ScoutError) as exc_info:
        store.get_results(job_id, sort_by="cheapest")
    assert exc_info.value.code is ErrorCode.VALIDATION_ERROR


def test_unlocks_are_per_user(store, session_factory):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))
    store.append_results(job_id, [_listing("a"), _listing("b", score=40.0)])
    results, _ = store.get_results(job_id)
    with session_factory() as db:
        db.add(Unlock(user_id=1, match_id=results[0].id))
        db.commit()

    mine, _ = store.get_results(job_id, user_id=1)
    theirs, _ = store.get_results(job_id, user_id=2)

    assert [row.is_unlocked for row in mine] == [True, False]
    assert not any(row.is_unlocked for row in theirs)


def test_append_results_for_missing_job_fails(store):
    with pytest.raises(ScoutError) as exc_info:
        store.append_results("missing", [_listing("a")])
    assert exc_info.value.code is ErrorCode.NOT_FOUND


def test_latest_job_follows_reruns(store, session_factory):
    search_id, first_job = store.create_search(1, SearchParameters(query="desk"))
    with session_factory() as db:
        db.query(SearchJob).filter(SearchJob.id == first_job).update(
            {"created_at": utcnow() - timedelta(minutes=5)}, synchronize_session=False
        )
        db.commit()
    second_job = store.create_job(search_id)

    assert store.latest_job_for_search(search_id).id == second_job
    assert store.list_pending_job_ids() == [first_job, second_job]
    with pytest.raises(ScoutError):
        store.create_job("missing")


def test_search_history_is_per_user(store):
    for query in ("desk", "chair", "lamp"):
        store.create_search(1, SearchParameters(query=query))
    store.create_search(2, SearchParameters(query="bike"))

    searches, total = store.list_searches(1, limit=2, offset=0)
    assert total == 3
    assert len(searches) == 2
    assert all(search.user_id == 1 for search in searches)


def test_saved_searches_upsert_and_ownership(store):
    search_id, _ = store.create_search(1, SearchParameters(query="desk"))

    saved = store.save_search(1, search_id, "daily")
    again = store.save_search(1, search_id, "weekly")
    assert again.id == saved.id
    assert again.frequency == "weekly"
    assert saved.next_run_at is not None

    with pytest.raises(ScoutError) as exc_info:
        store.save_search(2, search_id, "daily")
    assert exc_info.value.code is ErrorCode.NOT_FOUND
    with pytest.raises(ScoutError) as exc_info:
        store.save_search(1, search_id, "hourly")
    assert exc_info.value.code is ErrorCode.VALIDATION_ERROR

    store.mark_saved_search_run(saved.id)
    assert store.get_saved_search(saved.id, 1).last_run_at is not None
    assert store.get_saved_search(saved.id, 2) is None

    listed, total = store.list_saved_searches(1)
    assert total == 1 and listed[0].id == saved.id
    assert not store.delete_saved_search(saved.id, 2)
    assert store.delete_saved_search(saved.id, 1)
    assert store.list_saved_searches(1) == ([], 0)


def test_older_job_does_not_overwrite_search_status(store, session_factory):
    search_id, old_job = store.create_search(1, SearchParameters(query="desk"))
    with session_factory() as db:
        db.query(SearchJob).filter(SearchJob.id == old_job).update(
            {"created_at": utcnow() - timedelta(minutes=5)}, synchronize_session=False
        )
        db.commit()
    store.update_job(old_job, {"status": JobStatus.PROCESSING}, JobStatus.PENDING)
    new_job = store.create_job(search_id)

    assert store.update_job(old_job, {"status": JobStatus.COMPLETED}, JobStatus.PROCESSING)

    assert store.get_job(old_job).status is JobStatus.COMPLETED
    assert store.latest_job_for_search(search_id).id == new_job
    assert store.get_search(search_id).status is JobStatus.PENDING

    store.update_job(new_job, {"status": JobStatus.PROCESSING}, JobStatus.PENDING)
    assert store.get_search(search_id).status is JobStatus.PROCESSING


def test_date_sort_uses_posting_time_within_a_run(store):
    _, job_id = store.create_search(1, SearchParameters(query="desk"))
    rows = [_listing("old"), _listing("unknown"), _listing("new")]
    rows[0]["posted_at"] = "2026-10-01T08:00:00Z"
    rows[2]["posted_at"] = "2026-10-18T08:00:00Z"
    store.append_results(job_id, rows)

    results, _ = store.get_results(job_id, sort_by="date")

    assert [row.listing_id for row in results] == ["new", "old", "unknown"]
