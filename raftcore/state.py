"""Outputs collected while the state machine handles one step."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from raftcore.model import RaftRole


@dataclass
class StateNonVolatile:
    """Writes that must reach durable storage."""

    operations: list = field(default_factory=list)


@dataclass
class StateVolatile:
    """In-memory changes worth reporting, such as a new role."""

    role: Optional[RaftRole] = None


@dataclass
class RaftState:
    """Messages to send, writes to persist and volatile changes of one step."""

    messages: list[Any] = field(default_factory=list)
    non_volatile: StateNonVolatile = field(default_factory=StateNonVolatile)
    volatile: StateVolatile = field(default_factory=StateVolatile)

    @property
    def is_empty(self) -> bool:
        """True when the step produced nothing."""
        return (
            not self.messages
            and not self.non_volatile.operations
            and self.volatile.role is None
        )