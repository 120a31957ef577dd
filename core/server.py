"""
FastAPI Application Factory.

Creates the FastAPI application hosting an Admin instance: security headers,
CORS, error envelopes, health check and the admin routes.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence, TYPE_CHECKING
import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.errors import AdminError

if TYPE_CHECKING:
    from core.admin import Admin

_logger = logging.getLogger(__name__)


def create_base_app(
    admin: "Admin",
    title: Optional[str] = None,
    description: str = "Auto-generated admin back office API",
    version: str = "1.0.0",
    allowed_origins: Sequence[str] = (),
) -> FastAPI:
    """
    Create the FastAPI application and bind the admin onto it.

    Args:
        admin: Configured Admin instance; initialized here.
        title: API title for OpenAPI documentation (defaults to the admin title).
        description: API description for OpenAPI documentation.
        version: API version string.
        allowed_origins: Origins allowed by CORS; none means same-origin only.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _logger.info(f"Admin '{admin.config.title}' starting.")
        await admin.startup()
        yield
        await admin.shutdown()
        _logger.info(f"Admin '{admin.config.title}' stopped.")

    app = FastAPI(
        title=title or admin.config.title,
        description=description,
        version=version,
        lifespan=lifespan,
    )
    app.state.admin = admin

    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(allowed_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Accept-Language"],
        )
        _logger.info(f"CORS configured with {len(allowed_origins)} origin(s): {list(allowed_origins)}")
    else:
        _logger.warning("CORS configured with no allowed origins (all cross-origin requests will be blocked)")

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    install_error_handlers(app)
    _register_core_routes(app)

    router = APIRouter()
    admin.initialize(router)
    app.include_router(router)

    return app


def install_error_handlers(app: FastAPI) -> None:
    """Map AdminError and request validation failures to the error envelope."""

    @app.exception_handler(AdminError)
    async def admin_error_handler(request: Request, exc: AdminError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "VALIDATION", "message": str(exc.errors())}},
        )


def _register_core_routes(app: FastAPI) -> None:
    """Register core API routes (health check)."""

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        admin: "Admin" = app.state.admin
        return {"status": "ok", "service": admin.config.title}
