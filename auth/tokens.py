"""
auth/tokens.py -- Credential gateway (bcrypt) and token gateway (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with the AuthInstance secret
       and carry the user's email and id plus iat/exp claims. Verification
       raises TokenError on any failure -- the verifier middleware turns that
       into a 403.

  Passwords: bcrypt directly (no passlib wrapper). The work factor comes from
       Settings.bcrypt_rounds. dummy_hash(rounds) enables timing equalization in
       AuthInstance.log_in() so response time does not reveal whether an
       email exists.

All functions here are synchronous and CPU-bound. AuthInstance runs them via
asyncio.to_thread() so bcrypt never blocks the event loop.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenError

logger = logging.getLogger("tinyauth.auth")

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt (a known bcrypt
    limitation); anything past that point does not contribute to the hash.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        # Malformed hash in the store; treat as a mismatch.
        return False


@lru_cache(maxsize=None)
def dummy_hash(rounds: int) -> str:
    """Timing equalization hash, built once per work factor.

    Must share the cost of real hashes, otherwise a login against an unknown
    email returns measurably faster than one against a registered email.
    """
    return hash_password("tinyauth_timing_dummy", rounds=rounds)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(payload: dict[str, Any], secret: str, expire_seconds: int = 3600) -> str:
    """Encode a signed JWT carrying payload plus iat/exp claims.

    Raises TokenError if the payload cannot be signed (non-serializable values,
    unusable secret). The token itself is returned -- never swallowed.
    """
    now = datetime.now(timezone.utc)
    claims = {**payload, "iat": now, "exp": now + timedelta(seconds=expire_seconds)}
    try:
        return jwt.encode(claims, secret, algorithm=ALGORITHM)
    except (JWTError, TypeError, ValueError) as exc:
        logger.warning("Token signing failed: %s", type(exc).__name__)
        raise TokenError("Could not sign token") from exc


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    """Decode and verify a JWT. Returns the payload dict, raises TokenError on any failure.

    A token without an email and an integer id is rejected as well -- it was
    not issued by AuthInstance.log_in().
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenError("Invalid or expired token") from exc
    if not isinstance(payload.get("email"), str) or not isinstance(payload.get("id"), int):
        raise TokenError("Token payload is missing identity claims")
    return payload
