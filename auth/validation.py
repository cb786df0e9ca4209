"""
auth/validation.py -- Input checks and filter/patch normalization.

Every user-facing AuthInstance operation passes its raw input through here
before anything reaches the record store:

  validate_credentials()  email/password format policy
  to_filter()             str | mapping | Filter -> ByEmail | ByFields
  normalize_filter()      Filter -> store criteria, reserved fields removed
  normalize_patch()       mapping -> store patch, reserved fields removed
  extra_fields()          caller extras for create_user, managed fields removed

Reserved fields are a fixed deny-list rather than ad hoc deletes at each call
site. The role rank may only change through add_role()/remove_role().

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from auth.errors import ValidationError
from auth.models import ByEmail, ByFields, Filter

# Lowercase local part of letters, digits and dots,
# one domain label, a 2-8 letter TLD and an optional second-level suffix
# (example.co.uk). ASCII only, so \d is never a non-Latin digit.
EMAIL_PATTERN = re.compile(r"([a-z\d.]+)@([a-z\d-]+)\.([a-z]{2,8})(\.[a-z]{2,8})?", re.ASCII)
PASSWORD_MIN_LENGTH = 6

# Never accepted in a filter or patch coming from a caller.
RESERVED_FIELDS: frozenset[str] = frozenset({"role"})

# Managed by the store or by create_user itself; never patched directly and
# never taken from caller extras.
MANAGED_FIELDS: frozenset[str] = frozenset({"id", "created_at"})
CREDENTIAL_FIELDS: frozenset[str] = frozenset({"email", "password"})


def is_valid_email(email: object) -> bool:
    return isinstance(email, str) and EMAIL_PATTERN.fullmatch(email.strip()) is not None


def is_valid_password(password: object) -> bool:
    return isinstance(password, str) and len(password) >= PASSWORD_MIN_LENGTH


def validate_credentials(email: object, password: object) -> None:
    """Raise ValidationError unless both email and password pass the policy."""
    if not is_valid_email(email):
        raise ValidationError("Invalid email address")
    if not is_valid_password(password):
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")


def to_filter(value: str | Mapping[str, Any] | Filter) -> Filter:
    """Resolve the caller's filter input once, at the API boundary.

    A bare string is sugar for ByEmail; any mapping becomes ByFields.
    """
    if isinstance(value, (ByEmail, ByFields)):
        return value
    if isinstance(value, str):
        return ByEmail(value.strip())
    if isinstance(value, Mapping):
        return ByFields(dict(value))
    raise ValidationError(f"Unsupported filter type: {type(value).__name__}")


def normalize_filter(value: str | Mapping[str, Any] | Filter) -> dict[str, Any]:
    """Return store criteria for a filter, with reserved fields removed.

    Raises ValidationError when nothing is left to match on -- an empty
    criteria mapping would match an arbitrary user.
    """
    flt = to_filter(value)
    if isinstance(flt, ByEmail):
        criteria: dict[str, Any] = {"email": flt.email}
    else:
        criteria = {k: v for k, v in flt.criteria.items() if k not in RESERVED_FIELDS}
    if not criteria or criteria.get("email", None) == "":
        raise ValidationError("Filter must name at least one field")
    return criteria


def normalize_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return a store patch with reserved and store-managed fields removed."""
    if not isinstance(patch, Mapping):
        raise ValidationError(f"Unsupported patch type: {type(patch).__name__}")
    return {k: v for k, v in patch.items() if k not in RESERVED_FIELDS | MANAGED_FIELDS}


def extra_fields(fields: Mapping[str, Any] | None) -> dict[str, Any]:
    """Caller-supplied extras for a new user, minus everything create_user sets itself."""
    if not fields:
        return {}
    blocked = RESERVED_FIELDS | MANAGED_FIELDS | CREDENTIAL_FIELDS
    return {k: v for k, v in fields.items() if k not in blocked}
