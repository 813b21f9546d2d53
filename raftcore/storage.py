"""Durable storage interfaces and a wrapper that gives them one async face."""

from __future__ import annotations

import abc
from typing import Any, Optional

from raftcore.conf import ConfValue, ConfVersion
from raftcore.model import LogEntry
from raftcore.term_index import TermIndex

ConfPair = tuple[tuple[ConfValue, ConfVersion], tuple[ConfValue, ConfVersion]]


class StoreSync(abc.ABC):
    """Blocking storage backend."""

    @abc.abstractmethod
    def conf(self) -> ConfPair:
        """Return ``((committed value, version), (new value, version))``."""

    @abc.abstractmethod
    def term_and_voted_for(self) -> tuple[int, Optional[int]]:
        """Return the current term and the node voted for in it."""

    @abc.abstractmethod
    def max_log_index(self) -> int:
        """Largest index of the un-compacted log."""

    @abc.abstractmethod
    def min_log_index(self) -> int:
        """Smallest index of the un-compacted log."""

    @abc.abstractmethod
    def read_log_entries(self, start: Optional[int], end: Optional[int]) -> list[LogEntry]:
        """Entries in ``[start, end)``; ``None`` leaves a side unbounded."""

    @abc.abstractmethod
    def snapshot_index_term(self) -> TermIndex:
        """Last index and term covered by the snapshot."""

    @abc.abstractmethod
    def read_snapshot_value(self, index: int, limit: Optional[int]) -> list[LogEntry]:
        """Snapshot entries from ``index``, at most ``limit`` of them."""

    @abc.abstractmethod
    def write(self, operations: list) -> None:
        """Make the operations durable, in order."""


class StoreAsync(abc.ABC):
    """Asynchronous storage backend; same contract as :class:`StoreSync`."""

    @abc.abstractmethod
    async def conf(self) -> ConfPair:
        """Return ``((committed value, version), (new value, version))``."""

    @abc.abstractmethod
    async def term_and_voted_for(self) -> tuple[int, Optional[int]]:
        """Return the current term and the node voted for in it."""

    @abc.abstractmethod
    async def max_log_index(self) -> int:
        """Largest index of the un-compacted log."""

    @abc.abstractmethod
    async def min_log_index(self) -> int:
        """Smallest index of the un-compacted log."""

    @abc.abstractmethod
    async def read_log_entries(self, start: Optional[int], end: Optional[int]) -> list[LogEntry]:
        """Entries in ``[start, end)``; ``None`` leaves a side unbounded."""

    @abc.abstractmethod
    async def snapshot_index_term(self) -> TermIndex:
        """Last index and term covered by the snapshot."""

    @abc.abstractmethod
    async def read_snapshot_value(self, index: int, limit: Optional[int]) -> list[LogEntry]:
        """Snapshot entries from ``index``, at most ``limit`` of them."""

    @abc.abstractmethod
    async def write(self, operations: list) -> None:
        """Make the operations durable, in order."""


class Storage:
    """Awaitable access to either a synchronous or an asynchronous store."""

    def __init__(self, store: StoreSync | StoreAsync) -> None:
        if isinstance(store, StoreAsync):
            self._is_async = True
        elif isinstance(store, StoreSync):
            self._is_async = False
        else:
            raise TypeError(f"not a store: {type(store).__name__}")
        self._store = store

    @property
    def is_async(self) -> bool:
        return self._is_async

    @property
    def store(self) -> StoreSync | StoreAsync:
        return self._store

    async def _resolve(self, result: Any) -> Any:
        return await result if self._is_async else result

    async def conf(self) -> ConfPair:
        """Committed and new configuration with their versions."""
        return await self._resolve(self._store.conf())

    async def term_and_voted_for(self) -> tuple[int, Optional[int]]:
        """Current term and the vote cast in it."""
        return await self._resolve(self._store.term_and_voted_for())

    async def max_log_index(self) -> int:
        """Largest index of the un-compacted log."""
        return await self._resolve(self._store.max_log_index())

    async def min_log_index(self) -> int:
        """Smallest index of the un-compacted log."""
        return await self._resolve(self._store.min_log_index())

    async def read_log_entries(self, start: Optional[int] = None,
                               end: Optional[int] = None) -> list[LogEntry]:
        """Entries in ``[start, end)``; ``None`` leaves a side unbounded."""
        return await self._resolve(self._store.read_log_entries(start, end))

    async def snapshot_index_term(self) -> TermIndex:
        """Last index and term covered by the snapshot."""
        return await self._resolve(self._store.snapshot_index_term())

    async def read_snapshot_value(self, index: int, limit: Optional[int] = None) -> list[LogEntry]:
        """Snapshot entries from ``index``, at most ``limit`` of them."""
        return await self._resolve(self._store.read_snapshot_value(index, limit))

    async def write(self, operations: list) -> None:
        """Make the operations durable, in order."""
        await self._resolve(self._store.write(list(operations)))