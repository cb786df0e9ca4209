"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store and the
AuthInstance do the work; these own the shape of what flows between them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class UserRecord:
    """A user as persisted by the record store.

    The store owns the record; the AuthInstance only reads and writes it
    through the store, keyed by the unique email.

    role is the integer rank of the user's role in the configured role list
    (0 = least privileged). fields holds whatever extra properties the caller
    supplied at creation (name, tier, ...).
    """

    email: str
    password: str  # bcrypt hash, never plaintext
    role: int = 0
    fields: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class ByEmail:
    """Filter sugar: locate a user by email."""

    email: str


@dataclass(frozen=True)
class ByFields:
    """Filter: locate a user by arbitrary key/value criteria."""

    criteria: dict[str, Any]


Filter = ByEmail | ByFields


@dataclass(frozen=True)
class AtLeast:
    """Criteria value meaning ">= value" instead of equality."""

    value: int


@dataclass(frozen=True)
class Identity:
    """Decoded token identity attached to verified requests."""

    email: str
    id: int


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int
