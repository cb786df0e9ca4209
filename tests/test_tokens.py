"""Unit tests for auth/tokens.py -- bcrypt and JWT gateways.

Covers:
- hash_password/verify_password agree, and a malformed hash is a mismatch
- The timing-equalization hash shares the cost of real hashes
- Tokens round-trip identity claims and carry an expiry
- Wrong secret, tampering, expiry and missing claims all raise TokenError
- Unserializable payloads raise TokenError instead of returning nothing
"""

import pytest
from jose import jwt

from auth.errors import TokenError
from auth.tokens import ALGORITHM, create_access_token, decode_access_token, dummy_hash, hash_password, verify_password

SECRET = "unit-test-secret"


def test_password_hash_verifies():
    hashed = hash_password("secret1", rounds=4)
    assert hashed != "secret1"
    assert verify_password("secret1", hashed)
    assert not verify_password("secret2", hashed)


def test_malformed_hash_is_a_mismatch():
    assert not verify_password("secret1", "not-a-bcrypt-hash")


def test_token_carries_identity_and_expiry():
    token = create_access_token({"email": "a@b.com", "id": 7}, SECRET, expire_seconds=60)
    payload = decode_access_token(token, SECRET)
    assert payload["email"] == "a@b.com"
    assert payload["id"] == 7
    assert payload["exp"] > payload["iat"]


def test_wrong_secret_is_rejected():
    token = create_access_token({"email": "a@b.com", "id": 7}, SECRET)
    with pytest.raises(TokenError):
        decode_access_token(token, "another-secret")


def test_tampered_token_is_rejected():
    token = create_access_token({"email": "a@b.com", "id": 7}, SECRET)
    head, body, sig = token.split(".")
    with pytest.raises(TokenError):
        decode_access_token(f"{head}.{body}x.{sig}", SECRET)
    with pytest.raises(TokenError):
        decode_access_token("garbage", SECRET)


def test_expired_token_is_rejected():
    token = create_access_token({"email": "a@b.com", "id": 7}, SECRET, expire_seconds=-10)
    with pytest.raises(TokenError):
        decode_access_token(token, SECRET)


def test_token_without_identity_claims_is_rejected():
    token = jwt.encode({"sub": "someone"}, SECRET, algorithm=ALGORITHM)
    with pytest.raises(TokenError):
        decode_access_token(token, SECRET)


def test_unsignable_payload_raises_token_error():
    with pytest.raises(TokenError):
        create_access_token({"email": "a@b.com", "id": 7, "blob": object()}, SECRET)


@pytest.mark.parametrize("rounds", [4, 5])
def test_dummy_hash_matches_real_hash_cost(rounds):
    # bcrypt hashes read "$2b$<cost>$..."; equal cost means equal verify time.
    assert dummy_hash(rounds)[4:6] == hash_password("secret1", rounds=rounds)[4:6] == f"{rounds:02d}"
    assert dummy_hash(rounds) is dummy_hash(rounds)
    assert not verify_password("secret1", dummy_hash(rounds))
