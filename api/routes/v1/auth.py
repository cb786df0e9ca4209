"""
api/routes/v1/auth.py -- Registration, login and user administration endpoints.

Routes:
  POST   /api/v1/auth/register               -- create a user with the lowest role
  POST   /api/v1/auth/login                  -- password login; returns a bearer token
  GET    /api/v1/auth/me                     -- the verified caller's record
  PATCH  /api/v1/admin/users/{email}         -- update stored fields
  DELETE /api/v1/admin/users/{email}         -- delete a user
  PUT    /api/v1/admin/users/{email}/role    -- grant a role
  DELETE /api/v1/admin/users/{email}/role    -- reset to the lowest role

Auth policy: the role gate in api/main.py runs the AuthInstance verifiers in
front of these handlers by path prefix, so by the time a gated handler runs
request.state.user_doc is populated and the caller's rank is already checked:
  /api/v1/auth/me   -- lowest role (any verified user)
  /api/v1/admin/*   -- Settings.admin_role or higher

Rank rule: admin routes refuse (403) to touch a user ranked above the caller,
and grants are capped at the caller's own rank.

Domain errors (AuthError subclasses) are not caught here; the exception
handler in api/main.py renders them as {"msg": ...} with their status code.

Security:
  POST /login is rate-limited per client IP.
  POST /login answers unknown email and wrong password with the same 401 so
  the response does not reveal which emails are registered.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    DeleteResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RoleChange,
    UpdateResponse,
    UserPatch,
    UserResponse,
)
from auth.errors import InvalidCredentialsError, NotFoundError
from auth.instance import AuthInstance
from auth.models import ByEmail
from core.config import get_settings

logger = logging.getLogger("tinyauth.api")

router = APIRouter()


def _auth(request: Request) -> AuthInstance:
    return request.app.state.auth


async def _outranks_caller(request: Request, email: str) -> bool:
    """True if the target user holds a higher role than the verified caller.

    A missing target returns False so the operation itself reports the miss.
    """
    auth = _auth(request)
    try:
        target = await auth.find_user(ByEmail(email))
    except NotFoundError:
        return False
    return target.role > auth.current_user(request).role


def _outranked() -> JSONResponse:
    return JSONResponse(status_code=403, content={"msg": "Cannot act on a user with a higher role than your own."})


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a user. Extra fields are stored as given; a "role" key is ignored."""
    auth = _auth(request)
    user = await auth.create_user(body.email, body.password, body.fields)
    return UserResponse.from_record(user, auth.roles)


# @limiter.limit must sit BELOW @router so the registered endpoint is the limited one.
@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(lambda: get_settings().login_rate_limit)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email and password for a bearer token."""
    try:
        result = await _auth(request).log_in(body.email, body.password)
    except (NotFoundError, InvalidCredentialsError):
        resp = JSONResponse(status_code=401, content={"msg": "Invalid email or password."})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(status_code=200, content=LoginResponse(token=result["token"]).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Verified endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(request: Request) -> UserResponse:
    auth = _auth(request)
    return UserResponse.from_record(auth.current_user(request), auth.roles)


# ---------------------------------------------------------------------------
# Administration (admin role or higher)
# ---------------------------------------------------------------------------


@router.patch("/admin/users/{email}", response_model=UpdateResponse)
async def update_user(request: Request, email: str, body: UserPatch) -> UpdateResponse | JSONResponse:
    """Patch stored fields. Users ranked above the caller are off limits."""
    if await _outranks_caller(request, email):
        return _outranked()
    result = await _auth(request).update_user(ByEmail(email), body.changes)
    return UpdateResponse(matched_count=result.matched_count, modified_count=result.modified_count)


@router.delete("/admin/users/{email}", response_model=DeleteResponse)
async def delete_user(request: Request, email: str) -> DeleteResponse | JSONResponse:
    """Delete a user. Admins cannot delete themselves or anyone ranked above them."""
    auth = _auth(request)
    if auth.current_user(request).email == email:
        return JSONResponse(status_code=400, content={"msg": "You cannot delete your own account."})
    if await _outranks_caller(request, email):
        return _outranked()
    result = await auth.remove_user(ByEmail(email))
    logger.info("User deleted by admin (id=%s)", auth.current_user(request).id)
    return DeleteResponse(deleted_count=result.deleted_count)


@router.put("/admin/users/{email}/role", response_model=UpdateResponse)
async def grant_role(request: Request, email: str, body: RoleChange) -> UpdateResponse | JSONResponse:
    """Set a user's role. Only roles up to the caller's own rank may be granted."""
    auth = _auth(request)
    caller = auth.current_user(request)
    if auth.rank_of(body.role) > caller.role:
        return JSONResponse(status_code=403, content={"msg": "Cannot grant a role above your own."})
    if await _outranks_caller(request, email):
        return _outranked()
    result = await auth.add_role(ByEmail(email), body.role)
    return UpdateResponse(matched_count=result.matched_count, modified_count=result.modified_count)


@router.delete("/admin/users/{email}/role", response_model=UpdateResponse)
async def revoke_role(request: Request, email: str, role: str) -> UpdateResponse | JSONResponse:
    """Reset a user to the lowest role. `role` names the role being revoked.

    Users ranked above the caller cannot be demoted.
    """
    if await _outranks_caller(request, email):
        return _outranked()
    result = await _auth(request).remove_role(ByEmail(email), role)
    return UpdateResponse(matched_count=result.matched_count, modified_count=result.modified_count)
