"""
Admin Back Office - Entry Point.

Headless ASGI application for uvicorn execution.

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000 --reload

Or run directly:
    python main.py
"""

import logging
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI

from core.admin import Admin
from core.auth import AuthConfig, JWTAuthenticator
from core.config import AdminSettings, get_admin_settings
from core.interface import IAdminModule
from core.logging_config import setup_logging
from core.server import create_base_app

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Module Factories
# -----------------------------------------------------------------------------


def _web_module() -> IAdminModule:
    from modules.web.web_module import WebModule
    return WebModule()


def _commerce_module() -> IAdminModule:
    from modules.commerce.commerce_module import CommerceModule
    return CommerceModule()


def _esign_module() -> IAdminModule:
    from modules.esign.esign_module import EsignModule
    return EsignModule()


MODULE_FACTORIES: dict[str, Callable[[], IAdminModule]] = {
    "web": _web_module,
    "commerce": _commerce_module,
    "esign": _esign_module,
}


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------


def create_admin(settings: AdminSettings) -> Admin:
    """Create the Admin, wire authentication and register the configured modules."""
    admin = Admin(settings.to_config())

    secret = settings.jwt_secret_key.get_secret_value()
    if secret:
        admin.with_auth(
            JWTAuthenticator(secret, settings.jwt_algorithm, settings.default_locale),
            AuthConfig(login_path=settings.login_path),
        )
        logger.info("JWT authentication enabled")
    else:
        logger.warning("ADMIN_JWT_SECRET_KEY is empty; admin routes are served without authentication")

    for name in settings.module_list():
        factory = MODULE_FACTORIES.get(name)
        if factory is None:
            logger.error(f"Unknown module '{name}' in ADMIN_MODULES, skipping")
            continue
        admin.register_module(factory())

    return admin


def create_app(settings: Optional[AdminSettings] = None) -> FastAPI:
    settings = settings or get_admin_settings()
    admin = create_admin(settings)
    return create_base_app(admin)


# -----------------------------------------------------------------------------
# Module-level Application Instance
# -----------------------------------------------------------------------------

_settings = get_admin_settings()
setup_logging(getattr(logging, _settings.log_level.upper(), logging.INFO))

# Export for uvicorn
app = create_app(_settings)


# -----------------------------------------------------------------------------
# Direct Execution
# -----------------------------------------------------------------------------


def main() -> None:
    """Run the application directly with uvicorn."""
    uvicorn.run(
        "main:app",
        host=_settings.server_host,
        port=_settings.server_port,
        log_level="warning",  # Suppress uvicorn info logs
        access_log=False,
    )


if __name__ == "__main__":
    main()
