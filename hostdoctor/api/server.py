"""FastAPI server exposing scan, plan, optimize, history and rollback."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hostdoctor import __version__
from hostdoctor.api.routes import router
from hostdoctor.config import settings
from hostdoctor.service import HostDoctor

logger = logging.getLogger(__name__)


def create_app(doctor: HostDoctor | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the shared HostDoctor service on startup."""
        app.state.doctor = doctor or HostDoctor(settings)
        logger.info("HostDoctor API ready (data dir %s)", app.state.doctor.settings.data_dir)
        yield
        # Stop a scan still running so its worker threads wind down
        app.state.doctor.cancel()

    app = FastAPI(
        title="HostDoctor",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")
    return app


app = create_app()
