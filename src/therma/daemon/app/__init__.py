"""Therma daemon application package.

Creates the FastAPI app, registers routers and error handlers, and wires
the service container on startup. Re-exports `app` and `create_app`:
    from .app import app
"""

import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from therma import __version__
from ..errors import ServiceError
from ..services import Services, build_services
from ..utils.config_loader import config_loader
from ..utils.logging_config import StructuredLogger, setup_logging
from .journal import router as journal_router

logger = StructuredLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app; without ``services`` they are built from config on startup."""
    app = FastAPI(title="Therma", version=__version__)
    app.state.services = services

    @app.on_event("startup")
    async def _startup():
        if app.state.services is None:
            app.state.services = build_services(config_loader.get())
        logger.info("Therma daemon started", version=__version__)

    @app.on_event("shutdown")
    async def _shutdown():
        if app.state.services is not None:
            app.state.services.close()

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path, error=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal error", "code": "INTERNAL_ERROR"},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    app.include_router(journal_router)
    return app


load_dotenv()
setup_logging(os.getenv("THERMA_LOG_LEVEL", "INFO"))

app = create_app()

__all__ = ["app", "create_app"]
