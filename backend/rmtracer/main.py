"""
RM Tracer Station - medical-record file tracking, scanning-station service.
Queues file movements while offline and syncs them to the hospital backend.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import auth, notifications, reference, scan, sync
from .core.audit_middleware import AuditMiddleware
from .core.config import Settings, settings as default_settings
from .station import Station

logger = logging.getLogger(__name__)


def create_app(station: Optional[Station] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "station", None) is None:
            app.state.station = Station.from_settings(settings)
        await app.state.station.start()
        try:
            yield
        finally:
            await app.state.station.stop()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description=(
            "Scanning-station service for hospital medical-record file tracking. "
            "Records file location updates, queues them while offline and "
            "synchronizes them to the hosted backend."
        ),
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.station = station

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # TODO: restrict to the station UI origin once it is served from a fixed host
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuditMiddleware)

    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(scan.router, prefix="/api/v1")
    app.include_router(sync.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(reference.router, prefix="/api/v1")

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}

    return app


app = create_app()
