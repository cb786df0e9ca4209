"""Unit tests for auth/validation.py -- credential policy and filter/patch normalization.

Covers:
- Email pattern accepts conservative ASCII addresses and rejects the rest
- Password minimum length
- String filters become {"email": ...}; mappings pass through
- Reserved "role" is stripped from filters, patches and create-time extras
- Empty filters are rejected instead of matching an arbitrary user
"""

import pytest

from auth.errors import ValidationError
from auth.models import ByEmail, ByFields
from auth.validation import (
    extra_fields,
    is_valid_email,
    is_valid_password,
    normalize_filter,
    normalize_patch,
    to_filter,
    validate_credentials,
)


@pytest.mark.parametrize(
    "email",
    ["a@b.com", "first.last@example.org", "x1@my-host.co.uk", "  padded@example.com "],
)
def test_valid_emails(email):
    assert is_valid_email(email)


@pytest.mark.parametrize(
    "email",
    [
        "",
        "plain",
        "a@b",
        "A@B.COM",
        "a+tag@b.com",
        "a@b.c",
        "a@b.toolongtld",
        "a@@b.com",
        "\u0661@b.com",  # Arabic-Indic digit one
        "a@b\u0662.com",
        None,
        42,
    ],
)
def test_invalid_emails(email):
    assert not is_valid_email(email)


def test_password_minimum_length():
    assert is_valid_password("secret")
    assert is_valid_password("      ")
    assert not is_valid_password("short")
    assert not is_valid_password(None)


def test_validate_credentials_raises_on_bad_input():
    validate_credentials("a@b.com", "secret1")
    with pytest.raises(ValidationError):
        validate_credentials("not-an-email", "secret1")
    with pytest.raises(ValidationError):
        validate_credentials("a@b.com", "12345")


class TestFilters:
    def test_string_is_email_sugar(self):
        assert to_filter(" a@b.com ") == ByEmail("a@b.com")
        assert normalize_filter("a@b.com") == {"email": "a@b.com"}

    def test_mapping_passes_through(self):
        assert to_filter({"name": "Ann"}) == ByFields({"name": "Ann"})
        assert normalize_filter({"name": "Ann", "id": 3}) == {"name": "Ann", "id": 3}

    def test_tagged_filters_are_accepted_as_is(self):
        assert normalize_filter(ByEmail("a@b.com")) == {"email": "a@b.com"}
        assert normalize_filter(ByFields({"id": 1})) == {"id": 1}

    def test_role_is_stripped(self):
        assert normalize_filter({"email": "a@b.com", "role": 2}) == {"email": "a@b.com"}

    def test_filter_left_empty_is_rejected(self):
        with pytest.raises(ValidationError):
            normalize_filter({"role": 1})
        with pytest.raises(ValidationError):
            normalize_filter({})
        with pytest.raises(ValidationError):
            normalize_filter("   ")

    def test_unsupported_type_is_rejected(self):
        with pytest.raises(ValidationError):
            to_filter(42)


def test_patch_drops_reserved_and_managed_fields():
    patch = {"role": 2, "id": 9, "created_at": "x", "name": "Ann", "email": "b@c.com"}
    assert normalize_patch(patch) == {"name": "Ann", "email": "b@c.com"}


def test_extra_fields_drop_everything_create_user_sets():
    fields = {"role": 2, "email": "x@y.com", "password": "p", "id": 1, "tier": "pro"}
    assert extra_fields(fields) == {"tier": "pro"}
    assert extra_fields(None) == {}
