"""
auth/middleware.py -- Role-gated bearer-token verifier for Starlette/FastAPI.

AuthInstance.make_verifier(min_role) returns a Verifier: an HTTP middleware
dispatch coroutine with the (request, call_next) signature that
@app.middleware("http") and BaseHTTPMiddleware(dispatch=...) expect.

Per request:
  1. Authorization must be "Bearer <token>"        else 401, nothing verified
  2. The token must verify against the secret     else 403
  3. A user with the token's email and id and a
     role rank >= min_rank must exist              else 403
  4. request.state.user_doc / request.state.user are set and call_next runs
     exactly once.

The verifier is an error boundary: every failure becomes a JSON response of
the form {"msg": ...}. Nothing raised inside it reaches the ASGI server.

Gating a subset of routes means mounting them as a sub-application:

    admin = FastAPI()
    admin.add_middleware(BaseHTTPMiddleware, dispatch=auth.make_verifier("admin"))
    app.mount("/admin", admin)

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from auth.errors import TokenError
from auth.models import AtLeast, Identity
from auth.tokens import decode_access_token

if TYPE_CHECKING:
    from auth.instance import AuthInstance

logger = logging.getLogger("tinyauth.auth")

CallNext = Callable[[Request], Awaitable[Response]]


def _send_msg(msg: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"msg": msg})


def extract_bearer_token(header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" value, or None if malformed."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token or " " in token:
        return None
    return token


class Verifier:
    """Middleware admitting requests whose user holds min_rank or above."""

    def __init__(self, auth: AuthInstance, min_rank: int) -> None:
        self._auth = auth
        self.min_rank = min_rank

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        try:
            token = extract_bearer_token(request.headers.get("authorization"))
            if token is None:
                return _send_msg("The token is invalid", 401)

            try:
                payload = await asyncio.to_thread(decode_access_token, token, self._auth.secret)
            except TokenError:
                return _send_msg("Forbidden", 403)

            identity = Identity(email=payload["email"], id=payload["id"])
            criteria = {"email": identity.email, "id": identity.id, "role": AtLeast(self.min_rank)}
            user = await asyncio.to_thread(self._auth.store.find_one, criteria)
            if user is None or user.id is None:
                logger.warning(
                    "Rejected request to %s (id=%s below rank %d)", request.url.path, identity.id, self.min_rank
                )
                return _send_msg("Invalid Credentials", 403)

            request.state.user_doc = user
            request.state.user = identity
        except Exception:
            logger.exception("Verifier failed on %s %s", request.method, request.url.path)
            return _send_msg("Something went wrong", 500)

        # Downstream errors belong to the app's own handlers, not this boundary.
        return await call_next(request)
