from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from market_scout.auth import require_admin
from market_scout.container import Services, get_services
from market_scout.models.user import User
from market_scout.schemas.scraper import (
    PresetTestRequest,
    PresetTestResponse,
    ProcessPendingResponse,
    ProxyDetailsOut,
    QuotaOut,
)


router = APIRouter()


@router.get("/quota", response_model=QuotaOut)
async def get_quota(
    services: Services = Depends(get_services),
    _admin: User = Depends(require_admin),
) -> QuotaOut:
    snapshot = await services.quota.check_quota()
    return QuotaOut(
        remaining=snapshot.remaining,
        reset_at=snapshot.reset_at,
        total=snapshot.total,
        used=snapshot.used,
        has_capacity=snapshot.has_capacity,
    )


@router.get("/proxy", response_model=ProxyDetailsOut)
def get_proxy_details(
    services: Services = Depends(get_services),
    _admin: User = Depends(require_admin),
) -> ProxyDetailsOut:
    details = services.scraper.get_proxy_details()
    return ProxyDetailsOut(
        host=details.host,
        port=details.port,
        zone_name=details.zone_name,
        username=details.username,
        password_configured=bool(details.password),
    )


@router.post("/test", response_model=PresetTestResponse)
async def test_preset(
    payload: PresetTestRequest,
    services: Services = Depends(get_services),
    _admin: User = Depends(require_admin),
) -> PresetTestResponse:
    data = await services.scraper.test_preset(payload.url)
    return PresetTestResponse(message="Preset tested successfully", data=data)


@router.post("/jobs/process-pending", response_model=ProcessPendingResponse)
async def process_pending_jobs(
    limit: int = Query(default=10, ge=1, le=100),
    services: Services = Depends(get_services),
    _admin: User = Depends(require_admin),
) -> ProcessPendingResponse:
    job_ids = await services.dispatcher.submit_pending(limit)
    return ProcessPendingResponse(dispatched=len(job_ids), job_ids=job_ids)
