"""
auth/instance.py -- The AuthInstance facade and its process-wide lifecycle.

AuthInstance composes the role registry, the credential/token gateways and a
UserStore into the operations a web server needs: user CRUD, login, role
changes and a role-gated verifier middleware.

Lifecycle:
  create_auth_instance() constructs the instance the first time it is called
  and returns that same instance on every later call -- later arguments are
  ignored, so the first caller's configuration wins. get_auth_instance()
  returns it or raises NotInitializedError. There is no teardown.

  Both are thin wrappers over a module-level InstanceCell. The cell is a
  one-time initialization guard: a lock with a double-checked read, so racing
  initializers still cache at most one instance. Hosts that prefer explicit
  dependency injection create their own InstanceCell (or pass the instance
  through app.state, as api/main.py does).

Blocking work (store calls, bcrypt, JWT signing) runs in worker threads via
asyncio.to_thread(), so every public operation is an awaitable that never
blocks the event loop.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator

from auth.errors import (
    ConfigError,
    ConflictError,
    InvalidCredentialsError,
    NoopError,
    NotFoundError,
    NotInitializedError,
    ValidationError,
)
from auth.middleware import Verifier
from auth.models import DeleteResult, Filter, UpdateResult, UserRecord
from auth.roles import RoleSet
from auth.store import UserStore
from auth.tokens import create_access_token, dummy_hash, hash_password, verify_password
from auth.validation import (
    PASSWORD_MIN_LENGTH,
    extra_fields,
    is_valid_email,
    is_valid_password,
    normalize_filter,
    normalize_patch,
    validate_credentials,
)
from core.config import get_settings

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger("tinyauth.auth")

FilterInput = str | Mapping[str, Any] | Filter


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class AuthConfig(BaseModel):
    """Validated, immutable construction parameters.

    store:  any object satisfying the UserStore protocol
    roles:  at least two unique, non-blank role names, least privileged first
    secret: non-blank JWT signing key
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, extra="forbid")

    store: Any
    roles: tuple[str, ...]
    secret: str
    token_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    @field_validator("store")
    @classmethod
    def check_store(cls, value: Any) -> Any:
        if value is None or not isinstance(value, UserStore):
            raise ValueError("must implement exists/find_one/update_one/delete_one/insert")
        return value

    @field_validator("roles", mode="before")
    @classmethod
    def check_roles(cls, value: Any) -> Any:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ValueError("must be a list of role names")
        if len(value) < 2:
            raise ValueError("at least two roles are required")
        if any(not isinstance(role, str) or not role.strip() for role in value):
            raise ValueError("role names must be non-blank strings")
        if len(set(value)) != len(value):
            raise ValueError("role names must be unique")
        return tuple(value)

    @field_validator("secret", mode="before")
    @classmethod
    def check_secret(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("a non-blank secret is required")
        return value

    @classmethod
    def build(cls, **kwargs: Any) -> AuthConfig:
        """Construct and validate, raising ConfigError naming the first bad field."""
        try:
            return cls(**kwargs)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = str(first["loc"][0]) if first.get("loc") else "config"
            raise ConfigError(field, first["msg"]) from None

    @classmethod
    def from_settings(cls, store: UserStore) -> AuthConfig:
        """Build a config from environment-driven Settings (SECRET_KEY, AUTH_ROLES, ...)."""
        settings = get_settings()
        return cls.build(
            store=store,
            roles=settings.auth_roles,
            secret=settings.secret_key,
            token_expire_seconds=settings.token_expire_seconds,
            bcrypt_rounds=settings.bcrypt_rounds,
        )


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class AuthInstance:
    """User management, login and role checks over a single UserStore.

    Construct through create_auth_instance() (or InstanceCell.get_or_create());
    the configuration is frozen once built.
    """

    def __init__(self, config: AuthConfig) -> None:
        self._config = config
        self._roles = RoleSet(config.roles)
        self._dummy_hash = dummy_hash(config.bcrypt_rounds)

    @property
    def store(self) -> UserStore:
        return self._config.store

    @property
    def roles(self) -> RoleSet:
        return self._roles

    @property
    def secret(self) -> str:
        return self._config.secret

    @property
    def config(self) -> AuthConfig:
        return self._config

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, email: str, password: str, fields: Mapping[str, Any] | None = None) -> UserRecord:
        """Create a user with the lowest role and return the stored record.

        Raises ValidationError on a malformed email/password and ConflictError
        if the email is taken. Any "role" key in fields is ignored.
        """
        validate_credentials(email, password)
        email = email.strip()

        if await asyncio.to_thread(self.store.exists, {"email": email}):
            raise ConflictError("The email already exists. Please try again with a unique email")

        hashed = await asyncio.to_thread(hash_password, password, self._config.bcrypt_rounds)
        record = UserRecord(email=email, password=hashed, role=0, fields=extra_fields(fields))
        created = await asyncio.to_thread(self.store.insert, record)
        logger.info("User created (id=%s)", created.id)
        return created

    async def find_user(self, query: FilterInput) -> UserRecord:
        """Return the first user matching query. Raises NotFoundError on a miss."""
        criteria = normalize_filter(query)
        user = await asyncio.to_thread(self.store.find_one, criteria)
        if user is None or user.id is None:
            raise NotFoundError("Could not find user")
        return user

    async def update_user(self, query: FilterInput, patch: Mapping[str, Any]) -> UpdateResult:
        """Patch the first user matching query.

        The role rank cannot be changed here -- use add_role()/remove_role().
        A new password in the patch is validated and stored hashed.
        Raises NoopError if no user matched.
        """
        criteria = normalize_filter(query)
        changes = normalize_patch(patch)
        if "email" in changes:
            if not is_valid_email(changes["email"]):
                raise ValidationError("Invalid email address")
            changes["email"] = changes["email"].strip()
        if "password" in changes:
            if not is_valid_password(changes["password"]):
                raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
            changes["password"] = await asyncio.to_thread(
                hash_password, changes["password"], self._config.bcrypt_rounds
            )

        result = await asyncio.to_thread(self.store.update_one, criteria, changes)
        if not result.matched_count:
            raise NoopError("User not updated")
        return result

    async def remove_user(self, query: FilterInput) -> DeleteResult:
        """Delete the first user matching query. Raises NoopError if none was deleted."""
        criteria = normalize_filter(query)
        result = await asyncio.to_thread(self.store.delete_one, criteria)
        if not result.deleted_count:
            raise NoopError("User not deleted")
        logger.info("User deleted")
        return result

    async def log_in(self, email: str, password: str) -> dict[str, str]:
        """Check credentials and return {"token": <jwt>} carrying the user's email and id.

        Raises ValidationError, NotFoundError, InvalidCredentialsError or
        TokenError. An unknown email still costs one bcrypt comparison so
        response time does not reveal which emails are registered.
        """
        validate_credentials(email, password)
        email = email.strip()

        user = await asyncio.to_thread(self.store.find_one, {"email": email})
        if user is None or user.id is None:
            await asyncio.to_thread(verify_password, password, self._dummy_hash)
            raise NotFoundError("Could not find user")

        if not await asyncio.to_thread(verify_password, password, user.password):
            logger.warning("Failed login (id=%s)", user.id)
            raise InvalidCredentialsError("Invalid credentials")

        token = await asyncio.to_thread(
            create_access_token,
            {"email": user.email, "id": user.id},
            self.secret,
            self._config.token_expire_seconds,
        )
        logger.info("Login succeeded (id=%s)", user.id)
        return {"token": token}

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def rank_of(self, role: str) -> int:
        return self._roles.rank_of(role)

    def role_filter(self, role: str) -> dict[str, int]:
        return self._roles.role_filter(role)

    async def add_role(self, query: FilterInput, role: str) -> UpdateResult:
        """Set the matched user's rank to role. Raises UnknownRoleError or NoopError."""
        rank = self.rank_of(role)
        criteria = normalize_filter(query)
        result = await asyncio.to_thread(self.store.update_one, criteria, {"role": rank})
        if not result.matched_count:
            raise NoopError("Role not added")
        logger.info("Role %r granted", role)
        return result

    async def remove_role(self, query: FilterInput, role: str) -> UpdateResult:
        """Reset the matched user's rank to the lowest role. Raises UnknownRoleError or NoopError."""
        self.rank_of(role)
        criteria = normalize_filter(query)
        result = await asyncio.to_thread(self.store.update_one, criteria, {"role": 0})
        if not result.matched_count:
            raise NoopError("Role not removed")
        logger.info("Role %r removed", role)
        return result

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def make_verifier(self, min_role: str) -> Verifier:
        """Return a Starlette HTTP middleware admitting users ranked min_role or higher.

        Raises UnknownRoleError right away if min_role is not registered.
        """
        return Verifier(self, self.rank_of(min_role))

    @staticmethod
    def current_user(request: Request) -> UserRecord:
        """The record a verifier attached to this request. Raises NotFoundError if none."""
        user = getattr(request.state, "user_doc", None)
        if user is None:
            raise NotFoundError("No verified user on this request")
        return user


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class InstanceCell:
    """Holds at most one AuthInstance for its whole lifetime."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._instance: AuthInstance | None = None

    def get_or_create(self, config: AuthConfig) -> AuthInstance:
        instance = self._instance
        if instance is not None:
            return instance
        with self._lock:
            if self._instance is None:
                self._instance = AuthInstance(config)
                logger.info("Auth instance created (roles=%s)", list(config.roles))
            return self._instance

    def get(self) -> AuthInstance:
        instance = self._instance
        if instance is None:
            raise NotInitializedError("Auth instance has not been created yet")
        return instance

    @property
    def initialized(self) -> bool:
        return self._instance is not None


_cell = InstanceCell()


def create_auth_instance(
    store: UserStore | None = None,
    roles: Sequence[str] | None = None,
    secret: str | None = None,
    **options: Any,
) -> AuthInstance:
    """Return the process-wide AuthInstance, creating it on first call.

    Once created, the cached instance is returned and the arguments are not
    even validated. On first call an invalid configuration raises ConfigError
    and nothing is cached.

    options: token_expire_seconds, bcrypt_rounds.
    """
    if _cell.initialized:
        return _cell.get()
    config = AuthConfig.build(store=store, roles=roles, secret=secret, **options)
    return _cell.get_or_create(config)


def create_auth_instance_from_settings(store: UserStore) -> AuthInstance:
    """create_auth_instance() with roles, secret and options taken from Settings."""
    if _cell.initialized:
        return _cell.get()
    return _cell.get_or_create(AuthConfig.from_settings(store))


def get_auth_instance() -> AuthInstance:
    """Return the process-wide AuthInstance. Raises NotInitializedError before creation."""
    return _cell.get()
