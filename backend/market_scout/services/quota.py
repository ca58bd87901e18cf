from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from market_scout.config import Settings
from market_scout.errors import ErrorCode, ScoutError
from market_scout.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaSnapshot:
    remaining: int
    reset_at: datetime | None = None
    total: int | None = None
    used: int | None = None

    @property
    def has_capacity(self) -> bool:
        return self.remaining > 0


def _parse_reset(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


class QuotaGuard:
    """Reads the scraping service's call budget.

    The service is the source of truth: nothing is counted locally, every
    check is a fresh call. ``last_snapshot`` only remembers the most recent
    answer for diagnostics.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport
        self.last_snapshot: QuotaSnapshot | None = None

    async def check_quota(self) -> QuotaSnapshot:
        if not self.settings.scraper_api_key:
            raise ScoutError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Scraper API key is not configured")

        try:
            payload = await self._fetch_quota()
        except httpx.HTTPStatusError as exc:
            raise ScoutError(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                "Quota check failed",
                {"status_code": exc.response.status_code},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ScoutError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Quota check failed", {"reason": str(exc)}) from exc

        try:
            quota = payload.get("quota", payload) if isinstance(payload, dict) else None
            snapshot = QuotaSnapshot(
                remaining=int(quota["remaining"]),
                reset_at=_parse_reset(quota.get("reset_at") or quota.get("reset_date")),
                total=_optional_int(quota.get("total")),
                used=_optional_int(quota.get("used")),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ScoutError(
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                "Quota response is malformed",
                {"reason": str(exc)},
            ) from exc

        self.last_snapshot = snapshot
        logger.debug("quota remaining=%s reset_at=%s", snapshot.remaining, snapshot.reset_at)
        return snapshot

    async def has_capacity(self) -> bool:
        snapshot = await self.check_quota()
        return snapshot.has_capacity

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.2, max=1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch_quota(self) -> Any:
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            response = await client.get(
                f"{self.settings.scraper_api_url.rstrip('/')}/quota",
                headers={"Authorization": f"Bearer {self.settings.scraper_api_key}"},
            )
            response.raise_for_status()
            return response.json()
