import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from market_scout import models  # noqa: F401
from market_scout.config import Settings
from market_scout.database import Base
from market_scout.models.user import User
from market_scout.services.job_store import JobStore


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with factory() as db:
        db.add_all([
            User(id=1, username="alice", role="user"),
            User(id=2, username="bob", role="user"),
            User(id=3, username="admin", role="admin"),
        ])
        db.commit()
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        log_dir="",
        scraper_api_url="https://scraper.test/mcp",
        scraper_api_key="test-key",
        scraper_timeout_seconds=2,
        proxy_customer_id="hl_test",
        proxy_password="secret",
        scrape_cache_ttl_seconds=60,
        scrape_cache_max_size=10,
        quota_fail_open=True,
    )
