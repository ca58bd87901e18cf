from __future__ import annotations

import hashlib
import json
from dataclasses import asdict

from market_scout.config import Settings
from market_scout.errors import ErrorCode, ScoutError
from market_scout.log import get_logger
from market_scout.records import JobStatus, SearchJobRecord, SearchParameters, SearchRecord, utcnow
from market_scout.services.cache import Cache
from market_scout.services.job_store import JobStore
from market_scout.services.listing_parser import ScrapedListing
from market_scout.services.matcher import RelevanceScorer
from market_scout.services.quota import QuotaGuard
from market_scout.services.scraper_client import ScrapeResult, ScraperClient, ScrapeTarget

logger = get_logger(__name__)


def compute_cache_key(params: SearchParameters) -> str:
    normalized = json.dumps(params.cache_payload(), sort_keys=True, separators=(",", ":"))
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


class SearchProcessor:
    """Runs one search job from ``pending`` to a terminal state.

    Every failure after the job is claimed ends up in the job's ``error`` and
    ``error_code`` fields; ``run`` itself never raises for job-level errors.
    """

    def __init__(
        self,
        store: JobStore,
        cache: Cache[ScrapeResult],
        quota: QuotaGuard,
        scraper: ScraperClient,
        settings: Settings,
        scorer: RelevanceScorer | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.quota = quota
        self.scraper = scraper
        self.settings = settings
        self.scorer = scorer or RelevanceScorer(default_radius=settings.default_radius_miles)

    async def run(self, job_id: str) -> SearchJobRecord | None:
        job = self.store.get_job(job_id)
        if job is None:
            logger.warning("job %s not found (%s); nothing to process", job_id, ErrorCode.NOT_FOUND.value)
            return None
        if job.status is not JobStatus.PENDING:
            logger.info("job %s is already %s; skipping", job_id, job.status.value)
            return job

        claimed = self.store.update_job(
            job_id,
            {"status": JobStatus.PROCESSING, "started_at": utcnow()},
            expected_status=JobStatus.PENDING,
        )
        if not claimed:
            logger.info("job %s was claimed by another run; skipping", job_id)
            return self.store.get_job(job_id)

        try:
            search = self.store.get_search(job.search_id)
            if search is None:
                raise ScoutError(ErrorCode.NOT_FOUND, f"Search {job.search_id} not found")
            await self._ensure_capacity()
            result = await self._scrape(search)
            rows = self._normalize(result.listings, search.parameters)
            count = self.store.append_results(job_id, rows)
        except ScoutError as exc:
            self.fail(job_id, exc.code, exc.message)
        except Exception as exc:
            logger.exception("job %s crashed", job_id)
            self.fail(job_id, ErrorCode.UNKNOWN, str(exc) or type(exc).__name__)
        else:
            self.store.update_job(
                job_id,
                {"status": JobStatus.COMPLETED, "completed_at": utcnow(), "result_count": count},
                expected_status=JobStatus.PROCESSING,
            )
            logger.info("job %s completed with %d results", job_id, count)
        return self.store.get_job(job_id)

    def fail(self, job_id: str, code: ErrorCode, message: str) -> bool:
        """Move a processing job to ``failed``. Returns False if it was not processing."""
        failed = self.store.update_job(
            job_id,
            {
                "status": JobStatus.FAILED,
                "completed_at": utcnow(),
                "error": message[:2000],
                "error_code": code.value,
            },
            expected_status=JobStatus.PROCESSING,
        )
        if failed:
            logger.warning("job %s failed: %s %s", job_id, code.value, message)
        return failed

    async def _ensure_capacity(self) -> None:
        try:
            snapshot = await self.quota.check_quota()
        except ScoutError as exc:
            if not self.settings.quota_fail_open:
                raise
            logger.warning("quota unknown (%s); proceeding with scrape", exc.message)
            return
        if not snapshot.has_capacity:
            raise ScoutError(
                ErrorCode.QUOTA_EXCEEDED,
                "Scraper quota exhausted",
                {"reset_at": snapshot.reset_at.isoformat() if snapshot.reset_at else None},
            )

    async def _scrape(self, search: SearchRecord) -> ScrapeResult:
        key = compute_cache_key(search.parameters)
        target = ScrapeTarget.from_parameters(search.parameters)
        return await self.cache.get_or_set(key, lambda: self.scraper.fetch(target))

    def _normalize(self, listings: list[ScrapedListing], params: SearchParameters) -> list[dict]:
        rows = []
        for listing in listings:
            row = asdict(listing)
            row["relevance_score"] = self.scorer.score(listing, params)
            rows.append(row)
        return rows
