"""
api/main.py -- FastAPI reference server for TinyAuth.

Shows the intended wiring of the library into a web app: one AuthInstance
created at startup, handed to routes through app.state, and role-gated path
prefixes guarded by the instance's verifier middleware.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. log_requests          -- one log line per request with latency, including rejections
  4. role_gate             -- runs the matching AuthInstance verifier, if any

Lifespan handles startup (store + auth instance + verifiers) and shutdown
(close the store) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, NotInitializedError
from auth.instance import AuthInstance, create_auth_instance_from_settings, get_auth_instance
from auth.store import SQLUserStore
from core.config import get_settings

__version__ = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tinyauth.api")


def build_gates(auth: AuthInstance, admin_role: str) -> list[tuple[str, object]]:
    """Path prefix -> verifier table consulted by role_gate, most specific first.

    Built once at startup; an unknown admin_role fails startup with
    UnknownRoleError instead of failing every request later.
    """
    return [
        ("/api/v1/admin/", auth.make_verifier(admin_role)),
        ("/api/v1/auth/me", auth.make_verifier(auth.roles.lowest)),
    ]


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store and the process-wide AuthInstance, then the verifiers.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. A store is only opened (and later closed) when this process has no
    AuthInstance yet; an existing instance keeps the store it was built with.
    """
    settings = get_settings()
    logger.info("TinyAuth API starting up")
    store: SQLUserStore | None = None
    try:
        app.state.auth = get_auth_instance()
        logger.info("Reusing existing auth instance")
    except NotInitializedError:
        store = SQLUserStore(settings.database_url)
        app.state.auth = create_auth_instance_from_settings(store)
    app.state.gates = build_gates(app.state.auth, settings.admin_role)
    logger.info("Auth initialized (roles=%s)", list(app.state.auth.roles))

    yield

    if store is not None:
        store.close()
    logger.info("TinyAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TinyAuth API",
    description="User registration, JWT login and role-gated access.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Role gate
#
# Verifiers need the AuthInstance, which only exists once lifespan has run,
# while middleware must be registered before startup. This middleware is the
# bridge: it looks the verifier up in app.state.gates per request.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def role_gate(request: Request, call_next):
    path = request.url.path
    for prefix, verifier in getattr(request.app.state, "gates", ()):
        if path.startswith(prefix):
            return await verifier(request, call_next)
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# Each add_middleware() call wraps everything registered before it, so CORS
# ends up outermost and answers preflight requests before the role gate.
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body has the {"msg": ...} shape the verifier middleware writes,
# so clients parse one schema regardless of where the request was rejected.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain error with the status code its class declares."""
    if exc.status_code >= 500:
        logger.error("Auth error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(msg=exc.message).model_dump())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded, with Retry-After in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(status_code=429, content=ErrorResponse(msg="Too many requests.").model_dump())
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(msg=f"Request validation failed: {exc.errors()}").model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=ErrorResponse(msg="An unexpected error occurred.").model_dump())


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration state. No auth and no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness plus a cheap store round-trip."""
    components = {"app": "ok"}
    try:
        await asyncio.to_thread(request.app.state.auth.store.exists, {"email": "health@check.invalid"})
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: store unreachable")
        components["database"] = "error"
    return HealthResponse(version=__version__, components=components)
