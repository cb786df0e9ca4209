"""
auth/errors.py -- Error taxonomy for TinyAuth.

Every failure of a core operation is raised as a subclass of AuthError. Each
class carries the HTTP status a web layer should answer with, so api/main.py
maps the whole family with one exception handler instead of one per class.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all TinyAuth errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(AuthError):
    """Invalid construction parameters. `field` names the offending one."""

    status_code = 500

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid auth config for '{field}': {message}")


class NotInitializedError(AuthError):
    """The instance was requested before create_auth_instance() ran."""

    status_code = 500


class ValidationError(AuthError):
    """Malformed email or password."""

    status_code = 400


class ConflictError(AuthError):
    """A unique field (email) is already taken."""

    status_code = 409


class NotFoundError(AuthError):
    status_code = 404


class NoopError(AuthError):
    """An update or delete matched nothing."""

    status_code = 404


class InvalidCredentialsError(AuthError):
    status_code = 401


class UnknownRoleError(AuthError):
    """A role name that is not part of the registered roles."""

    status_code = 400

    def __init__(self, role: object) -> None:
        self.role = role
        super().__init__(f"Role {role!r} is not part of the registered roles")


class TokenError(AuthError):
    """Token signing or verification failed."""

    status_code = 403


__all__ = [
    "AuthError",
    "ConfigError",
    "NotInitializedError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "NoopError",
    "InvalidCredentialsError",
    "UnknownRoleError",
    "TokenError",
]
