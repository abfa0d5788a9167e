# src/routine_audit/assignments/optimistic.py

"""
Optimistic update command.

1. snapshot the local collection
2. apply the tentative collection immediately (the user sees the change)
3. await the effectful write
4. on failure restore the exact snapshot and raise PersistenceError
5. on success keep the tentative state; the next refresh brings the authoritative rows

With a WriteFence attached, steps 2-4 count as an in-flight local write, so a refetch
that overlapped them does not overwrite the tentative state.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from ..core.errors import PersistenceError

logger = logging.getLogger(__name__)


class _HasId(Protocol):
    @property
    def id(self) -> str: ...


T = TypeVar("T", bound=_HasId)


def replace_item(items: Sequence[T], new: T) -> list[T]:
    return [new if item.id == new.id else item for item in items]


def remove_item(items: Sequence[T], item_id: str) -> list[T]:
    return [item for item in items if item.id != item_id]


class WriteFence:
    """
    Lets a refetch tell whether a local write overlapped it.

    A refetch takes mark() before reading and asks superseded(mark) before applying:
    rows read while a write was in flight may predate it and must not replace the
    locally patched collection. The write's own change notification brings a fresh
    refetch afterwards.
    """

    def __init__(self) -> None:
        self._generation = 0
        self._active = 0

    @contextlib.contextmanager
    def writing(self) -> Iterator[None]:
        self._active += 1
        self._generation += 1
        try:
            yield
        finally:
            self._active -= 1
            self._generation += 1

    def mark(self) -> int:
        return self._generation

    def superseded(self, mark: int) -> bool:
        return self._active > 0 or self._generation != mark


@dataclass(slots=True)
class OptimisticCommand(Generic[T]):
    label: str
    read: Callable[[], list[T]]
    write: Callable[[list[T]], None]
    tentative: list[T]
    effect: Callable[[], Awaitable[None]]
    fence: WriteFence | None = None

    async def execute(self) -> None:
        with self.fence.writing() if self.fence is not None else contextlib.nullcontext():
            await self._run()

    async def _run(self) -> None:
        snapshot = list(self.read())
        self.write(list(self.tentative))
        try:
            await self.effect()
        except Exception as e:
            self.write(snapshot)
            logger.warning("%s failed; local state rolled back", self.label, exc_info=True)
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"{self.label} failed: connection problem, previous state restored") from e
        logger.debug("%s applied", self.label)
