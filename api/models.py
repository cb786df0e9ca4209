"""
API request and response models for the TinyAuth reference server.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.

Format checks on email/password are deliberately NOT duplicated here: the
AuthInstance enforces them and the AuthError handler renders the result, so
HTTP and direct library callers see the same rules and messages.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from auth.models import UserRecord
from auth.roles import RoleSet

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(max_length=255)
    # 255 keeps inputs well below anything that could slow bcrypt down.
    password: str = Field(max_length=255)
    fields: dict[str, Any] = Field(default_factory=dict)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class RoleChange(BaseModel):
    """Request body for PUT /api/v1/admin/users/{email}/role."""

    role: str = Field(min_length=1, max_length=64)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{email}.

    Keys land on the stored record; "role", "id" and "created_at" are
    dropped by the AuthInstance before the store sees them.
    """

    changes: dict[str, Any] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """Public view of a user. The password hash is never serialized."""

    id: int
    email: str
    role: str
    rank: int
    fields: dict[str, Any]
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, user: UserRecord, roles: RoleSet) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=roles.name_of(user.role),
            rank=user.role,
            fields=user.fields,
            created_at=user.created_at,
        )


class UpdateResponse(BaseModel):
    matched_count: int
    modified_count: int


class DeleteResponse(BaseModel):
    deleted_count: int


class ErrorResponse(BaseModel):
    """Body of every error response. Same shape the verifier middleware writes."""

    msg: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
