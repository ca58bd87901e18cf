from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from market_scout import models  # noqa: F401
from market_scout.api import scraper, searches
from market_scout.config import Settings, settings as default_settings
from market_scout.container import Services, build_services
from market_scout.database import Base, build_engine, build_session_factory
from market_scout.errors import ScoutError
from market_scout.log import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    services: Services | None = None,
) -> FastAPI:
    settings = settings or default_settings
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings.database_url))
    services = services or build_services(settings, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        settings.ensure_directories()
        Base.metadata.create_all(bind=session_factory.kw["bind"])
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        try:
            yield
        finally:
            await services.dispatcher.wait_idle(timeout=settings.shutdown_grace_seconds)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ScoutError)
    async def handle_scout_error(request: Request, exc: ScoutError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(searches.router, prefix="/api/v1/searches", tags=["searches"])
    app.include_router(scraper.router, prefix="/api/v1/scraper", tags=["scraper"])
    return app


app = create_app()
