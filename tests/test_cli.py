"""
tests/test_cli.py -- Tests for the admin CLI in main.py.

The CLI builds the process-wide AuthInstance from Settings, so every test
swaps in an empty InstanceCell and hands main() an in-memory store.

Covers:
  - create-user / grant / revoke / delete-user round-trip against the store
  - login prints a token that decodes to the user's identity
  - Domain errors exit 1 with a message on stderr
"""

from __future__ import annotations

import pytest

import auth.instance as instance_module
from auth.instance import InstanceCell
from auth.tokens import decode_access_token
from main import main


@pytest.fixture(autouse=True)
def fresh_cell(monkeypatch) -> InstanceCell:
    cell = InstanceCell()
    monkeypatch.setattr(instance_module, "_cell", cell)
    return cell


def test_create_user_with_fields(store, capsys):
    code = main(["create-user", "ann@example.com", "secret1", "--field", "name=Ann", "--field", "team=ops"], store)
    assert code == 0
    assert "Created user ann@example.com" in capsys.readouterr().out
    user = store.find_one({"email": "ann@example.com"})
    assert user.fields == {"name": "Ann", "team": "ops"}
    assert user.role == 0


def test_grant_revoke_delete(store, capsys):
    main(["create-user", "ann@example.com", "secret1"], store)

    assert main(["grant", "ann@example.com", "owner"], store) == 0
    assert store.find_one({"email": "ann@example.com"}).role == 2

    assert main(["revoke", "ann@example.com", "owner"], store) == 0
    assert store.find_one({"email": "ann@example.com"}).role == 0

    assert main(["delete-user", "ann@example.com"], store) == 0
    assert store.find_one({"email": "ann@example.com"}) is None


def test_login_prints_token(store, capsys, fresh_cell):
    main(["create-user", "ann@example.com", "secret1"], store)
    capsys.readouterr()

    assert main(["login", "ann@example.com", "secret1"], store) == 0
    token = capsys.readouterr().out.strip()
    payload = decode_access_token(token, fresh_cell.get().secret)
    assert payload["email"] == "ann@example.com"


def test_roles_lists_ranks(store, capsys):
    assert main(["roles"], store) == 0
    out = capsys.readouterr().out.split("\n")
    assert [line.split() for line in out if line.strip()] == [["0", "user"], ["1", "admin"], ["2", "owner"]]


@pytest.mark.parametrize(
    "argv",
    [
        ["create-user", "not-an-email", "secret1"],
        ["grant", "ghost@example.com", "admin"],
        ["grant", "ghost@example.com", "ghost"],
        ["login", "ghost@example.com", "secret1"],
        ["create-user", "ann@example.com", "secret1", "--field", "novalue"],
    ],
)
def test_errors_exit_nonzero(store, capsys, argv):
    assert main(argv, store) == 1
    assert "[!]" in capsys.readouterr().err


def test_duplicate_user_exits_nonzero(store, capsys):
    assert main(["create-user", "ann@example.com", "secret1"], store) == 0
    assert main(["create-user", "ann@example.com", "secret2"], store) == 1
    assert "already exists" in capsys.readouterr().err
