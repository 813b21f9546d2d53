"""Basic value types of the replicated log."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable

from raftcore.term_index import TermIndex


class RaftRole(enum.Enum):
    """Role a node plays in the cluster."""

    LEADER = "leader"
    FOLLOWER = "follower"
    CANDIDATE = "candidate"
    LEARNER = "learner"


@dataclass(frozen=True)
class LogEntry:
    """One entry of the replicated log; indices start at 1."""

    term: int
    index: int
    value: Any


@dataclass(frozen=True)
class NodeInfo:
    """A cluster member and whether it may vote."""

    node_id: int
    can_vote: bool = False


def _as_frozenset(entries: Iterable[LogEntry]) -> frozenset:
    return entries if isinstance(entries, frozenset) else frozenset(entries)


@dataclass(frozen=True)
class Snapshot:
    """Compacted state: the last index and term it covers and its entries."""

    index: int = 0
    term: int = 0
    entries: frozenset = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", _as_frozenset(self.entries))

    @property
    def term_index(self) -> TermIndex:
        return TermIndex(term=self.term, index=self.index)


@dataclass(frozen=True)
class SnapshotRange:
    """Snapshot entries that cover the index range from begin to end."""

    begin_index: int = 0
    end_index: int = 0
    entries: frozenset = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", _as_frozenset(self.entries))