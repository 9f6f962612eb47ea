"""ezd6-engine — FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from app.api import auth, chat, web
from app.domain.runtime import ChatRuntime
from app.infra.config import settings
from app.infra.db import async_session_factory
from app.infra.init_admin import ensure_default_admin

logger = logging.getLogger("ezd6")

try:
    __version__ = version("ezd6-engine")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

DESCRIPTION = "EZD6 dice engine — shared chat rolls with +1, confirm and burn"


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    logging.basicConfig(level=settings.log_level)
    # Schema managed by Alembic; run `alembic upgrade head` before starting.
    try:
        await ensure_default_admin(async_session_factory)
    except Exception:
        logger.warning(
            "Could not create default admin user. "
            "Ensure Alembic migrations have been applied (`alembic upgrade head`).",
            exc_info=True,
        )
    owned = getattr(app.state, "runtime", None) is None
    if owned:
        app.state.runtime = ChatRuntime.from_settings(async_session_factory, settings)
    yield
    if owned:
        await app.state.runtime.close()
        app.state.runtime = None


app = FastAPI(
    title="ezd6-engine",
    description=DESCRIPTION,
    version=__version__,
    lifespan=lifespan,
)


def custom_openapi() -> dict:  # type: ignore[no-untyped-def]
    """Add security schemes to OpenAPI schema."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title="ezd6-engine",
        version=__version__,
        description=DESCRIPTION,
        routes=app.routes,
    )
    schemes = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    schemes.update({
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT access token from /api/auth/register or login endpoints",
        },
        "apiKey": {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "API key for scripted clients (64-char hex)",
        },
    })

    # get_current_user() parses headers manually, so FastAPI cannot detect
    # the chat routes as secured.
    for path, path_item in openapi_schema.get("paths", {}).items():
        if path.startswith("/api/chat"):
            for operation in path_item.values():
                if isinstance(operation, dict) and "security" not in operation:
                    operation["security"] = [{"bearerAuth": []}, {"apiKey": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.include_router(auth.router)
app.include_router(chat.router)
app.include_router(web.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "engine": "ezd6-engine", "version": __version__}
