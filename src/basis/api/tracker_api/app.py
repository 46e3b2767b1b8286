"""FastAPI application configuration (Tracker API)."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ...infrastructure.scripts import register_scripts
from .dependencies import (
    get_database_client_dependency,
    get_ledger_service,
    get_node_client,
    get_settings_dependency,
    get_store_dependency,
)
from .routers import notes, reserves

logger = logging.getLogger(__name__)

settings = get_settings_dependency()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await register_scripts(get_store_dependency())
    await get_ledger_service().load()
    yield
    await get_node_client().aclose()
    await get_database_client_dependency().close()
    logger.info("Tracker API shut down")


def create_tracker_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_name} Tracker",
        version=settings.app_version,
        description="Basis tracker: debt ledger, reserve redemptions and liabilities",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(notes.router, prefix="/api/v1/tracker")
    app.include_router(reserves.router, prefix="/api/v1/tracker")

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "message": f"Welcome to {settings.app_name} Tracker API",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": f"{settings.app_name} Tracker",
            "version": settings.app_version,
        }

    return app


app = create_tracker_app()
