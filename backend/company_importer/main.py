"""FastAPI application bootstrap with router wiring."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from company_importer.api.routers import health, imports
from company_importer.core.config import get_settings
from company_importer.core.logging import configure_logging
from company_importer.services.import_service import ImportService, build_import_service

logger = logging.getLogger(__name__)


def create_app(import_service: ImportService | None = None) -> FastAPI:
    """Instantiate the FastAPI app, its import service and top-level routers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version="0.1.0")

    # One service (and so one session store) per process
    app.state.import_service = import_service or build_import_service(settings)

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])

    return app


app = create_app()
