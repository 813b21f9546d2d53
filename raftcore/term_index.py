"""A (term, index) pair identifying a position in the replicated log."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass
class TermIndex:
    """Term and index of a log position; zero means "no position"."""

    term: int = 0
    index: int = 0

    def __post_init__(self) -> None:
        for name in ("term", "index"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")

    def to_dict(self) -> dict[str, int]:
        """Return a plain mapping suitable for serialisation."""
        return {"term": self.term, "index": self.index}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TermIndex":
        """Build a pair from a mapping produced by :meth:`to_dict`."""
        try:
            return cls(term=data["term"], index=data["index"])
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None