from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response

from suiteauth import __version__
from suiteauth.api.error_handling import register_exception_handlers
from suiteauth.api.routes import dispatcher
from suiteauth.config import get_settings
from suiteauth.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"
_DISPATCHED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": get_settings().cors_allow_origin,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    from suiteauth.service.runtime import get_runtime

    # Fail fast when the database or Redis is unreachable
    runtime = get_runtime()
    logger.info("startup_complete", environment=runtime.settings.environment)
    yield
    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Suite Auth API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Bind X-Request-ID (or a fresh uuid) to the request's log context and echo it."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def apply_cors(request: Request, call_next):
    """Answer every preflight before routing and stamp CORS headers on every response."""
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=cors_headers())
    response = await call_next(request)
    for name, value in cors_headers().items():
        response.headers[name] = value
    return response


register_exception_handlers(app)


@app.api_route("/api/{path:path}", methods=_DISPATCHED_METHODS, include_in_schema=False)
async def api_entrypoint(request: Request, path: str) -> Response:
    return await dispatcher.dispatch(request)


def create_app() -> FastAPI:
    return app
