"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config.settings import get_settings
from ..rbac.bootstrap import RBACServices, create_rbac_services_from_settings
from ..rbac.exceptions import NotFoundError, PersistenceError, ValidationError
from .admin_routes import router as admin_router

logger = logging.getLogger(__name__)


def create_app(services: Optional[RBACServices] = None) -> FastAPI:
    """
    Build the application.

    With ``services`` the given RBAC services are used as-is (tests, scripts).
    Without, they are built from settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "rbac", None) is None:
            owned = await create_rbac_services_from_settings()
            app.state.rbac = owned
        yield
        if owned is not None:
            await owned.close()

    settings = get_settings()
    app = FastAPI(title=settings.name, version=settings.version, lifespan=lifespan)
    if services is not None:
        app.state.rbac = services

    app.include_router(admin_router)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.warning(f"Rejected {request.url.path}: {exc}")
        return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage temporarily unavailable, no changes were applied"},
        )

    return app
