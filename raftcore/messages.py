"""Messages exchanged between nodes, and their wire encoding."""

from __future__ import annotations

import dataclasses
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from raftcore.conf import ConfNode, ConfNodeValue, ConfValue, ConfVersion
from raftcore.model import LogEntry, NodeInfo, RaftRole, Snapshot, SnapshotRange
from raftcore.term_index import TermIndex

RCR_OK = 0
RCR_ERR_RESP = 1


@dataclass(frozen=True)
class VoteReq:
    """Request for a vote in ``term``."""

    term: int = 0
    last_log_term: int = 0
    last_log_index: int = 0


@dataclass(frozen=True)
class VoteResp:
    """Answer to a vote request."""

    term: int = 0
    vote_granted: bool = False


@dataclass(frozen=True)
class PreVoteReq:
    """Probe whether an election in the next term could succeed."""

    source_nid: int = 0
    request_term: int = 0
    last_log_term: int = 0
    last_log_index: int = 0


@dataclass(frozen=True)
class PreVoteResp:
    """Answer to a pre-vote probe."""

    source_nid: int = 0
    request_term: int = 0
    vote_granted: bool = False


@dataclass(frozen=True)
class AppendReq:
    """Log entries sent by the leader after ``prev_log_index``."""

    term: int = 0
    prev_log_index: int = 0
    prev_log_term: int = 0
    log_entries: tuple = ()
    commit_index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "log_entries", tuple(self.log_entries))


@dataclass(frozen=True)
class AppendResp:
    """Answer to an append request."""

    term: int = 0
    append_success: bool = False
    commit_index: int = 0
    match_index: int = 0
    next_index: int = 0


@dataclass(frozen=True)
class ApplyReq:
    """Snapshot sent to a follower that is too far behind."""

    term: int = 0
    id: str = ""
    begin_index: int = 0
    end_index: int = 0
    snapshot: Snapshot = field(default_factory=Snapshot)


@dataclass(frozen=True)
class ApplyResp:
    """Answer to a snapshot install."""

    term: int = 0
    match_index: int = 0
    id: str = ""


@dataclass(frozen=True)
class ClientReq:
    """A value a client asks the cluster to replicate."""

    id: str = ""
    value: Any = None
    source_id: Optional[int] = None
    wait_write_local: bool = False
    wait_commit: bool = False
    from_client_request: bool = False


@dataclass(frozen=True)
class ClientResp:
    """Answer to a client request; ``error`` is RCR_OK on success."""

    id: str = ""
    source_id: int = 0
    index: int = 0
    term: int = 0
    error: int = RCR_OK
    info: str = ""


@dataclass(frozen=True)
class UpdateConfReq:
    """Leader's committed and new configurations."""

    term: int = 0
    conf_committed: ConfNodeValue = field(default_factory=ConfNodeValue)
    conf_new: ConfNodeValue = field(default_factory=ConfNodeValue)


@dataclass(frozen=True)
class UpdateConfResp:
    """Configuration versions a follower now holds."""

    term: int = 0
    conf_committed: ConfVersion = ConfVersion()
    conf_new: ConfVersion = ConfVersion()


@dataclass(frozen=True)
class ConfVersionPair:
    """Committed and new configuration versions of one node."""

    conf_committed: ConfVersion = ConfVersion()
    conf_new: ConfVersion = ConfVersion()


@dataclass
class RaftStateImage:
    """Full snapshot of a node's state, used to set up or check it."""

    role: RaftRole = RaftRole.FOLLOWER
    current_term: int = 0
    log: tuple = ()
    snapshot: Snapshot = field(default_factory=Snapshot)
    voted_for: Optional[int] = None
    follower_vote_granted: dict = field(default_factory=dict)
    commit_index: int = 0
    follower_next_index: dict = field(default_factory=dict)
    follower_match_index: dict = field(default_factory=dict)
    follower_conf: dict = field(default_factory=dict)
    conf_new: ConfNode = field(default_factory=ConfNode)
    conf_committed: ConfNode = field(default_factory=ConfNode)
    follower_term_commit_index: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.log = tuple(self.log)
        for name in (
            "follower_vote_granted",
            "follower_next_index",
            "follower_match_index",
            "follower_conf",
            "follower_term_commit_index",
        ):
            setattr(self, name, dict(getattr(self, name)))


@dataclass(frozen=True)
class UpdateConf:
    """Voting and log-receiving members of a proposed configuration."""

    nid_vote: frozenset = frozenset()
    nid_log: frozenset = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "nid_vote", frozenset(self.nid_vote))
        object.__setattr__(self, "nid_log", frozenset(self.nid_log))


@dataclass(frozen=True)
class DtmCheck:
    """Check that the node's state equals ``image``."""

    image: RaftStateImage


@dataclass(frozen=True)
class DtmSetup:
    """Overwrite the node's state with ``image``."""

    image: RaftStateImage


@dataclass(frozen=True)
class DtmUpdateConfBegin:
    """Ask the leader to begin moving to a new membership."""

    conf: UpdateConf


@dataclass(frozen=True)
class DtmRequestVote:
    """Start an election."""


@dataclass(frozen=True)
class DtmClientWriteLog:
    """Write ``value`` to the leader's log."""

    value: Any


@dataclass(frozen=True)
class DtmUpdateConfCommit:
    """Try to commit the new configuration."""


@dataclass(frozen=True)
class DtmRestart:
    """Drop volatile state and recover from storage."""


@dataclass(frozen=True)
class DtmAppendLog:
    """Send append requests to all followers."""


@dataclass(frozen=True)
class DtmLogCompaction:
    """Compact the log."""

    index: int = 0


@dataclass(frozen=True)
class DtmSendUpdateConf:
    """Send the configuration to all followers."""


@dataclass(frozen=True)
class DtmUpdateConfReq:
    """A configuration update given as memberships only."""

    term: int = 0
    conf_committed: ConfNode = field(default_factory=ConfNode)
    conf_new: ConfNode = field(default_factory=ConfNode)


@dataclass(frozen=True)
class DtmBecomeLeader:
    """Request that the node becomes leader."""


DtmTesting = Union[
    DtmCheck,
    DtmSetup,
    DtmUpdateConfBegin,
    DtmRequestVote,
    DtmClientWriteLog,
    DtmUpdateConfCommit,
    DtmRestart,
    DtmAppendLog,
    DtmLogCompaction,
    DtmSendUpdateConf,
    DtmUpdateConfReq,
    DtmBecomeLeader,
]

RaftMessage = Union[
    VoteReq,
    VoteResp,
    PreVoteReq,
    PreVoteResp,
    AppendReq,
    AppendResp,
    ApplyReq,
    ApplyResp,
    ClientReq,
    ClientResp,
    UpdateConfReq,
    UpdateConfResp,
    DtmTesting,
]

_TYPES: dict[str, type] = {
    cls.__name__: cls
    for cls in (
        TermIndex, LogEntry, NodeInfo, Snapshot, SnapshotRange,
        ConfVersion, ConfValue, ConfNode, ConfNodeValue,
        VoteReq, VoteResp, PreVoteReq, PreVoteResp, AppendReq, AppendResp,
        ApplyReq, ApplyResp, ClientReq, ClientResp, UpdateConfReq, UpdateConfResp,
        ConfVersionPair, RaftStateImage, UpdateConf,
        DtmCheck, DtmSetup, DtmUpdateConfBegin, DtmRequestVote, DtmClientWriteLog,
        DtmUpdateConfCommit, DtmRestart, DtmAppendLog, DtmLogCompaction,
        DtmSendUpdateConf, DtmUpdateConfReq, DtmBecomeLeader,
    )
}

_ENUMS: dict[str, type] = {RaftRole.__name__: RaftRole}


def _encode(obj: Any) -> Any:
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, enum.Enum):
        name = type(obj).__name__
        if name not in _ENUMS:
            raise TypeError(f"cannot encode enum {name}")
        return {"$enum": name, "value": obj.value}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        name = type(obj).__name__
        if _TYPES.get(name) is not type(obj):
            raise TypeError(f"cannot encode {name}")
        return {
            "$type": name,
            "fields": {f.name: _encode(getattr(obj, f.name)) for f in dataclasses.fields(obj)},
        }
    if isinstance(obj, (set, frozenset)):
        return {"$set": [_encode(item) for item in obj]}
    if isinstance(obj, dict):
        return {"$map": [[_encode(k), _encode(v)] for k, v in obj.items()]}
    if isinstance(obj, (list, tuple)):
        return [_encode(item) for item in obj]
    raise TypeError(f"cannot encode {type(obj).__name__}")


def _decode(data: Any) -> Any:
    if isinstance(data, list):
        return [_decode(item) for item in data]
    if not isinstance(data, dict):
        return data
    if "$type" in data:
        cls = _TYPES.get(data["$type"])
        if cls is None:
            raise ValueError(f"unknown type {data['$type']!r}")
        return cls(**{k: _decode(v) for k, v in data["fields"].items()})
    if "$enum" in data:
        enum_cls = _ENUMS.get(data["$enum"])
        if enum_cls is None:
            raise ValueError(f"unknown enum {data['$enum']!r}")
        return enum_cls(data["value"])
    if "$set" in data:
        return frozenset(_decode(item) for item in data["$set"])
    if "$map" in data:
        return {_decode(k): _decode(v) for k, v in data["$map"]}
    raise ValueError("malformed encoded value")


@dataclass(frozen=True)
class Message:
    """A payload travelling from ``source`` to ``dest``."""

    payload: Any
    source: int
    dest: int

    def encode(self) -> bytes:
        """Serialise the message to bytes."""
        doc = {"source": self.source, "dest": self.dest, "payload": _encode(self.payload)}
        return json.dumps(doc, separators=(",", ":")).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> "Message":
        """Rebuild a message produced by :meth:`encode`."""
        try:
            doc = json.loads(data.decode("utf-8"))
            return cls(payload=_decode(doc["payload"]), source=doc["source"], dest=doc["dest"])
        except (KeyError, TypeError, UnicodeDecodeError) as exc:
            raise ValueError(f"malformed message: {exc}") from None