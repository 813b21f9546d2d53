"""Operations to be made durable by the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from raftcore.conf import ConfValue, ConfVersion
from raftcore.model import LogEntry, SnapshotRange


@dataclass(frozen=True)
class WriteEntriesOpt:
    """Whether to drop stored entries left of or right of the written range."""

    truncate_left: bool = False
    truncate_right: bool = False


@dataclass(frozen=True)
class OpUpCommitIndex:
    """Persist a new commit index."""

    index: int


@dataclass(frozen=True)
class OpUpTermVotedFor:
    """Persist the current term and the vote cast in it."""

    term: int
    voted_for: Optional[int]


def _as_tuple(entries: Iterable[LogEntry]) -> tuple:
    return entries if isinstance(entries, tuple) else tuple(entries)


@dataclass(frozen=True)
class OpWriteLog:
    """Write ``entries`` after ``prev_index``."""

    prev_index: int
    entries: tuple = ()
    opt: WriteEntriesOpt = field(default_factory=WriteEntriesOpt)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", _as_tuple(self.entries))


@dataclass(frozen=True)
class OpApplySnapshot:
    """Install a range of snapshot entries."""

    snapshot: SnapshotRange


@dataclass(frozen=True)
class OpCompactLog:
    """Move ``entries`` from the log into the snapshot."""

    entries: tuple = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", _as_tuple(self.entries))


@dataclass(frozen=True)
class OpUpConfCommitted:
    """Persist the committed configuration."""

    value: ConfValue
    version: ConfVersion


@dataclass(frozen=True)
class OpUpConfNew:
    """Persist the new configuration."""

    value: ConfValue
    version: ConfVersion


NonVolatileWrite = Union[
    OpUpCommitIndex,
    OpUpTermVotedFor,
    OpWriteLog,
    OpApplySnapshot,
    OpCompactLog,
    OpUpConfCommitted,
    OpUpConfNew,
]