import asyncio
from dataclasses import replace

import httpx
import pytest

from market_scout.errors import ErrorCode, ScoutError, ScraperError
from market_scout.models.search import Search
from market_scout.records import JobStatus, SearchParameters
from market_scout.services.cache import Cache
from market_scout.services.job_store import JobStore
from market_scout.services.scraper_client import ScraperClient
from market_scout.services.search_processor import SearchProcessor, compute_cache_key

from fakes import FakeQuota, FakeScraper



class RecordingStore(JobStore):
    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.transitions = []

    def update_job(self, job_id, patch, expected_status=None):
        updated = super().update_job(job_id, patch, expected_status)
        if updated and "status" in patch:
            self.transitions.append((job_id, JobStatus(patch["status"])))
        return updated


def _processor(store, settings, quota=None, scraper=None) -> SearchProcessor:
    return SearchProcessor(
        store,
        Cache(ttl_seconds=60, max_size=10),
        quota or FakeQuota(),
        scraper or FakeScraper(),
        settings,
    )


def test_job_runs_to_completion_with_scored_results(session_factory, settings):
    store = RecordingStore(session_factory)
    processor = _processor(store, settings)
    _, job_id = store.create_search(1, SearchParameters(query="standing desk", max_price=200))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.COMPLETED
    assert job.result_count == 2
    assert job.started_at is not None and job.completed_at is not None
    assert job.error is None
    assert [status for _, status in store.transitions] == [JobStatus.PROCESSING, JobStatus.COMPLETED]
    results, total = store.get_results(job_id)
    assert total == 2
    assert results[0].listing_id == "1"
    assert results[0].relevance_score > results[1].relevance_score


def test_exhausted_quota_fails_job_without_scraping(store, settings):
    scraper = FakeScraper()
    processor = _processor(store, settings, quota=FakeQuota(remaining=0), scraper=scraper)
    search_id, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.QUOTA_EXCEEDED.value
    assert scraper.calls == []
    assert store.count_results(job_id) == 0
    assert store.get_search(search_id).status is JobStatus.FAILED


def test_identical_searches_share_one_scrape(store, settings):
    scraper = FakeScraper()
    processor = _processor(store, settings, scraper=scraper)
    _, first = store.create_search(1, SearchParameters(query="Standing Desk", location="Austin"))
    _, second = store.create_search(2, SearchParameters(query="standing   desk", location="austin", sort_by="date"))
    _, third = store.create_search(1, SearchParameters(query="standing desk", location="austin"))

    async def scenario():
        await asyncio.gather(processor.run(first), processor.run(second))
        await processor.run(third)

    asyncio.run(scenario())

    assert len(scraper.calls) == 1
    for job_id in (first, second, third):
        job = store.get_job(job_id)
        assert job.status is JobStatus.COMPLETED
        assert store.count_results(job_id) == 2


def test_failed_scrape_is_not_cached(store, settings):
    scraper = FakeScraper(error=ScraperError(ErrorCode.UPSTREAM_TIMEOUT, "Scraper did not answer within 2s"))
    processor = _processor(store, settings, scraper=scraper)
    _, first = store.create_search(1, SearchParameters(query="desk"))
    _, second = store.create_search(1, SearchParameters(query="desk"))

    asyncio.run(processor.run(first))
    asyncio.run(processor.run(second))

    assert len(scraper.calls) == 2
    job = store.get_job(first)
    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.UPSTREAM_TIMEOUT.value
    assert job.error == "Scraper did not answer within 2s"


def test_malformed_scraper_payload_fails_with_parse_error(store, settings):
    scraper = ScraperClient(settings, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": 1})))
    processor = _processor(store, settings, scraper=scraper)
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.PARSE_ERROR.value
    assert store.count_results(job_id) == 0


def test_job_that_is_not_pending_is_left_alone(store, settings):
    scraper = FakeScraper()
    processor = _processor(store, settings, scraper=scraper)
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    first = asyncio.run(processor.run(job_id))
    again = asyncio.run(processor.run(job_id))

    assert first.status is JobStatus.COMPLETED
    assert again.status is JobStatus.COMPLETED
    assert len(scraper.calls) == 1
    assert store.count_results(job_id) == 2


def test_concurrent_runs_of_one_job_execute_once(store, settings):
    scraper = FakeScraper()
    processor = _processor(store, settings, scraper=scraper)
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    async def scenario():
        return await asyncio.gather(processor.run(job_id), processor.run(job_id))

    asyncio.run(scenario())

    assert len(scraper.calls) == 1
    assert store.count_results(job_id) == 2


def test_quota_check_failure_proceeds_when_fail_open(store, settings):
    quota = FakeQuota(error=ScoutError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Quota check failed"))
    processor = _processor(store, settings, quota=quota)
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.COMPLETED


def test_quota_check_failure_fails_job_when_fail_closed(store, settings):
    quota = FakeQuota(error=ScoutError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Quota check failed"))
    scraper = FakeScraper()
    processor = _processor(store, replace(settings, quota_fail_open=False), quota=quota, scraper=scraper)
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.EXTERNAL_SERVICE_ERROR.value
    assert scraper.calls == []


def test_unexpected_exception_is_recorded_as_unknown(store, settings):
    processor = _processor(store, settings, scraper=FakeScraper(error=RuntimeError("socket exploded")))
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.UNKNOWN.value
    assert job.error == "socket exploded"


def test_missing_job_is_a_no_op(store, settings):
    assert asyncio.run(_processor(store, settings).run("does-not-exist")) is None


def test_job_whose_search_vanished_fails_with_not_found(store, session_factory, settings):
    search_id, job_id = store.create_search(1, SearchParameters(query="desk"))
    with session_factory() as db:
        db.query(Search).filter(Search.id == search_id).delete(synchronize_session=False)
        db.commit()

    job = asyncio.run(_processor(store, settings).run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.NOT_FOUND.value


def test_cache_key_ignores_case_whitespace_and_sort_order():
    base = SearchParameters(query="Standing Desk", location="Austin", radius=10, sort_by="relevance")
    same = SearchParameters(query="  standing   desk ", location="AUSTIN", radius=10, sort_by="price_asc")
    different = SearchParameters(query="standing desk", location="austin", radius=10, max_price=100)

    assert compute_cache_key(base) == compute_cache_key(same)
    assert compute_cache_key(base) != compute_cache_key(different)


@pytest.mark.parametrize(
    "item",
    [
        {"url": 12345},
        {"url": "https://www.facebook.com/marketplace/item/8/", "description": 5},
        {"url": "https://www.facebook.com/marketplace/item/8/", "image_url": ["a.jpg", "b.jpg"]},
    ],
)
def test_wrongly_typed_listing_fields_fail_with_parse_error(store, settings, item):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"results": [item]}))
    processor = _processor(store, settings, scraper=ScraperClient(settings, transport=transport))
    _, job_id = store.create_search(1, SearchParameters(query="desk"))

    job = asyncio.run(processor.run(job_id))

    assert job.status is JobStatus.FAILED
    assert job.error_code == ErrorCode.PARSE_ERROR.value
    assert store.count_results(job_id) == 0
