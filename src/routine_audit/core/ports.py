# src/routine_audit/core/ports.py

"""
Ports (interfaces) used by the core.

The boards and the materializer depend on this Protocol instead of a concrete store.
This keeps the remote relational store swappable (the bundled adapter is SQLite) and
makes testing easier.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

Row = dict[str, Any]

TABLES = ("roles", "users", "task_definitions", "assignments", "routines")


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """
    Change notification.

    Only a signal: subscribers refetch instead of patching their collections from `row`.
    """

    table: str
    kind: ChangeKind
    row: Row


ChangeListener = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class PersistenceGateway(Protocol):
    """
    Remote store contract, one instance shared by the whole app.

    Reads:
    - eq / gte: column predicates combined with AND
    - order_by + descending, optional limit
    - joins: relation names resolved by foreign key ("task", "user", "role")

    Writes raise PersistenceError on failure (including unknown ids for update/delete).
    """

    async def select(
            self,
            table: str,
            *,
            eq: Mapping[str, Any] | None = None,
            gte: Mapping[str, Any] | None = None,
            order_by: str | None = None,
            descending: bool = False,
            limit: int | None = None,
            joins: Iterable[str] = (),
    ) -> list[Row]: ...

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]: ...

    async def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> None: ...

    async def delete(self, table: str, row_id: str) -> None: ...

    def subscribe(
            self,
            table: str,
            listener: ChangeListener,
            *,
            eq: Mapping[str, Any] | None = None,
    ) -> Unsubscribe: ...
