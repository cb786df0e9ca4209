"""
auth/store.py -- Record store contract and its SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper. UserStore is the contract AuthInstance
depends on; SQLUserStore is the shipped repository and _row_to_user is its
mapper. AuthInstance never touches SQL directly, so any object satisfying
UserStore (a document store adapter, an in-memory fake) can stand in.

Criteria semantics (shared by every implementation):
  {"email": "a@b.com"}          equality on each key
  {"role": AtLeast(1)}          ">=" comparison
  keys outside the core columns match the record's extra fields

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced in SQL. AuthInstance.create_user() checks
  existence first for a friendly error, but that check-then-insert is not
  atomic; the constraint is what actually keeps emails unique, and a lost race
  surfaces as ConflictError from insert().

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import AtLeast, DeleteResult, UpdateResult, UserRecord

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@runtime_checkable
class UserStore(Protocol):
    """What AuthInstance needs from a record store. All methods are blocking."""

    def exists(self, criteria: Mapping[str, Any]) -> bool: ...

    def find_one(self, criteria: Mapping[str, Any]) -> UserRecord | None: ...

    def update_one(self, criteria: Mapping[str, Any], patch: Mapping[str, Any]) -> UpdateResult: ...

    def delete_one(self, criteria: Mapping[str, Any]) -> DeleteResult: ...

    def insert(self, record: UserRecord) -> UserRecord: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("role", Integer, nullable=False, server_default="0"),
    Column("fields", JSON, nullable=False),  # caller-supplied extras
    Column("created_at", String(32), nullable=False),
)

_COLUMNS = frozenset({"id", "email", "password", "role", "created_at"})


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


_MISSING = object()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        password=row.password,
        role=row.role,
        fields=dict(row.fields or {}),
        created_at=row.created_at,
    )


def _matches(value: Any, expected: Any) -> bool:
    if isinstance(expected, AtLeast):
        return isinstance(value, (int, float)) and value >= expected.value
    return value == expected


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SQLUserStore:
    """SQLAlchemy Core implementation of UserStore.

    Usage:
        store = SQLUserStore("sqlite:///users.db")
        store.insert(UserRecord(email="a@b.com", password=hash_password("secret1")))
        user = store.find_one({"email": "a@b.com"})
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # AuthInstance calls the store from worker threads (asyncio.to_thread).
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def _select(self, criteria: Mapping[str, Any]):
        """Split criteria into a SQL WHERE on core columns and an in-Python extras check."""
        stmt = _users.select().order_by(_users.c.id)
        extras: dict[str, Any] = {}
        for key, expected in criteria.items():
            if key in _COLUMNS:
                col = _users.c[key]
                stmt = stmt.where(col >= expected.value if isinstance(expected, AtLeast) else col == expected)
            else:
                extras[key] = expected
        return stmt, extras

    def _first(self, conn, criteria: Mapping[str, Any]):
        stmt, extras = self._select(criteria)
        if not extras:
            return conn.execute(stmt.limit(1)).fetchone()
        for row in conn.execute(stmt):
            fields = row.fields or {}
            if all(key in fields and _matches(fields[key], exp) for key, exp in extras.items()):
                return row
        return None

    # ------------------------------------------------------------------
    # UserStore contract
    # ------------------------------------------------------------------

    def exists(self, criteria: Mapping[str, Any]) -> bool:
        with self.engine.connect() as conn:
            return self._first(conn, criteria) is not None

    def find_one(self, criteria: Mapping[str, Any]) -> UserRecord | None:
        with self.engine.connect() as conn:
            row = self._first(conn, criteria)
        return _row_to_user(row) if row is not None else None

    def insert(self, record: UserRecord) -> UserRecord:
        """Insert a new user and return it with id and created_at assigned.

        Raises ConflictError if the email is already taken.
        """
        created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=record.email,
                        password=record.password,
                        role=record.role,
                        fields=dict(record.fields),
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"The email {record.email!r} already exists") from exc
        return UserRecord(
            id=result.inserted_primary_key[0],
            email=record.email,
            password=record.password,
            role=record.role,
            fields=dict(record.fields),
            created_at=created_at,
        )

    def update_one(self, criteria: Mapping[str, Any], patch: Mapping[str, Any]) -> UpdateResult:
        """Apply patch to the first record matching criteria.

        Core-column keys update their column; every other key is merged into
        the record's extra fields. Raises ConflictError if the patch would
        duplicate another user's email.
        """
        with self.engine.connect() as conn:
            row = self._first(conn, criteria)
            if row is None:
                return UpdateResult(matched_count=0, modified_count=0)

            values: dict[str, Any] = {}
            fields = dict(row.fields or {})
            for key, value in patch.items():
                if key in _COLUMNS:
                    if getattr(row, key) != value:
                        values[key] = value
                elif fields.get(key, _MISSING) != value:
                    fields[key] = value
                    values["fields"] = fields
            if not values:
                return UpdateResult(matched_count=1, modified_count=0)

            try:
                conn.execute(_users.update().where(_users.c.id == row.id).values(**values))
                conn.commit()
            except IntegrityError as exc:
                raise ConflictError("The email already exists") from exc
        return UpdateResult(matched_count=1, modified_count=1)

    def delete_one(self, criteria: Mapping[str, Any]) -> DeleteResult:
        with self.engine.connect() as conn:
            row = self._first(conn, criteria)
            if row is None:
                return DeleteResult(deleted_count=0)
            result = conn.execute(_users.delete().where(_users.c.id == row.id))
            conn.commit()
        return DeleteResult(deleted_count=result.rowcount)
