from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from market_scout.config import Settings
from market_scout.services.cache import Cache
from market_scout.services.dispatcher import Dispatcher
from market_scout.services.job_store import JobStore
from market_scout.services.quota import QuotaGuard
from market_scout.services.scraper_client import ScrapeResult, ScraperClient
from market_scout.services.search_processor import SearchProcessor


@dataclass
class Services:
    settings: Settings
    store: JobStore
    cache: Cache[ScrapeResult]
    quota: QuotaGuard
    scraper: ScraperClient
    processor: SearchProcessor
    dispatcher: Dispatcher


def build_services(
    settings: Settings,
    session_factory: sessionmaker[Session],
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    store = JobStore(session_factory)
    cache: Cache[ScrapeResult] = Cache(
        ttl_seconds=settings.scrape_cache_ttl_seconds,
        max_size=settings.scrape_cache_max_size,
    )
    quota = QuotaGuard(settings, transport=transport)
    scraper = ScraperClient(settings, transport=transport)
    processor = SearchProcessor(store, cache, quota, scraper, settings)
    dispatcher = Dispatcher(processor, store)
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        quota=quota,
        scraper=scraper,
        processor=processor,
        dispatcher=dispatcher,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
