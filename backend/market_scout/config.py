from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote


@dataclass
class Settings:
    app_name: str = os.getenv("APP_NAME", "Market Scout")
    environment: str = os.getenv("ENV", "development")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./db/market_scout.db")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", "")

    scraper_api_url: str = os.getenv("SCRAPER_API_URL", "https://api.brightdata.com/mcp")
    scraper_api_key: str = os.getenv("SCRAPER_API_KEY", "")
    scraper_preset: str = os.getenv("SCRAPER_PRESET", "fb-marketplace-scraper")
    scraper_timeout_seconds: float = float(os.getenv("SCRAPER_TIMEOUT_SECONDS", "30"))
    scrape_result_limit: int = int(os.getenv("SCRAPE_RESULT_LIMIT", "50"))
    default_location: str = os.getenv("DEFAULT_LOCATION", "United States")
    default_radius_miles: int = int(os.getenv("DEFAULT_RADIUS_MILES", "25"))

    proxy_host: str = os.getenv("PROXY_HOST", "brd.superproxy.io")
    proxy_port: int = int(os.getenv("PROXY_PORT", "33325"))
    proxy_customer_id: str = os.getenv("PROXY_CUSTOMER_ID", "")
    proxy_zone: str = os.getenv("PROXY_ZONE", "mcp_unlocker")
    proxy_password: str = os.getenv("PROXY_PASSWORD", "")

    scrape_cache_ttl_seconds: float = float(os.getenv("SCRAPE_CACHE_TTL_SECONDS", "300"))
    scrape_cache_max_size: int = int(os.getenv("SCRAPE_CACHE_MAX_SIZE", "100"))
    quota_fail_open: bool = os.getenv("QUOTA_FAIL_OPEN", "true").lower() == "true"
    shutdown_grace_seconds: float = float(os.getenv("SHUTDOWN_GRACE_SECONDS", "10"))

    auth_secret: str = os.getenv("AUTH_SECRET", "market-scout-dev-secret")
    auth_token_ttl_seconds: int = int(os.getenv("AUTH_TOKEN_TTL_SECONDS", str(60 * 60 * 24 * 14)))

    def ensure_directories(self) -> None:
        if self.log_dir:
            Path(self.log_dir).mkdir(parents=True, exist_ok=True)
        self._ensure_sqlite_directory()

    def _ensure_sqlite_directory(self) -> None:
        if not self.database_url.startswith("sqlite:///"):
            return
        raw_path = self.database_url.replace("sqlite:///", "", 1)
        if not raw_path or raw_path == ":memory:":
            return
        db_path = Path(unquote(raw_path))
        if not db_path.is_absolute():
            db_path = Path(".") / db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
