"""
auth/roles.py -- Ordered role registry.

Roles are registered least to most privileged, e.g. ["user", "admin", "owner"].
A role's rank is its 0-based position, so comparing ranks compares privilege:
a check for "admin" admits "admin" and everything registered after it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from auth.errors import UnknownRoleError


class RoleSet:
    """Read-only view over an ordered sequence of role names.

    Construction does not validate the names; AuthConfig does that before a
    RoleSet is ever built.
    """

    __slots__ = ("_names", "_ranks")

    def __init__(self, names: Iterable[str]) -> None:
        self._names: tuple[str, ...] = tuple(names)
        self._ranks: dict[str, int] = {name: i for i, name in enumerate(self._names)}

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    @property
    def lowest(self) -> str:
        return self._names[0]

    @property
    def highest(self) -> str:
        return self._names[-1]

    def rank_of(self, role: str) -> int:
        """Return the rank of role. Raises UnknownRoleError if it is not registered."""
        try:
            return self._ranks[role]
        except (KeyError, TypeError):
            raise UnknownRoleError(role) from None

    def name_of(self, rank: int) -> str:
        """Inverse of rank_of, for display."""
        if not 0 <= rank < len(self._names):
            raise UnknownRoleError(rank)
        return self._names[rank]

    def role_filter(self, role: str) -> dict[str, int]:
        """Criteria fragment selecting users holding exactly this role."""
        return {"role": self.rank_of(role)}

    def __contains__(self, role: object) -> bool:
        return isinstance(role, str) and role in self._ranks

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"RoleSet({list(self._names)!r})"
