"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the scheduling services, registers routers, and owns the
background job manager's lifetime.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.resource_controller import router as resource_router
from backend.controllers.timetable_controller import router as timetable_router
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingService
from backend.services.generator_service import TimetableService
from backend.services.job_service import JobManager
from backend.services.meeting_service import MeetingService
from backend.services.optimizer_service import OptimizerService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and exposed through app.state, so each
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (single SQLite database) ---
    repository = DataRepository(settings)

    # --- Services ---
    availability_service = AvailabilityService(repository=repository, settings=settings)
    booking_service = BookingService(repository=repository, settings=settings)
    meeting_service = MeetingService(
        repository=repository,
        availability_service=availability_service,
    )
    timetable_service = TimetableService(
        repository=repository,
        availability_service=availability_service,
        settings=settings,
        optimizer=OptimizerService(settings),
    )
    job_manager = JobManager(timetable_service=timetable_service, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialise storage and workers before serving; stop workers on exit."""
        _startup(app, settings)
        try:
            yield
        finally:
            logger.info("Shutdown: stopping job manager")
            app.state.job_manager.shutdown(wait=False)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(timetable_router)
    app.include_router(resource_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.booking_service = booking_service
    app.state.meeting_service = meeting_service
    app.state.timetable_service = timetable_service
    app.state.job_manager = job_manager

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. The demo catalogue is seeded only into an empty database.
      3. The job manager starts last, once generation has data to read.
    """
    repository: DataRepository = app.state.repository
    job_manager: JobManager = app.state.job_manager

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_catalog:
        logger.info("Startup: seeding demo catalogue (skipped if Rooms table not empty)")
        repository.seed_demo_catalog_if_empty()

    logger.info("Startup: starting job manager")
    job_manager.start()

    logger.info("Startup complete | system ready")


# Module-level app object for uvicorn
app = create_app()
