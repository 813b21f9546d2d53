"""State shared by every part of the consensus state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from raftcore.conf import ConfNodeValue, RaftConf
from raftcore.model import LogEntry, RaftRole
from raftcore.state import RaftState
from raftcore.storage import Storage
from raftcore.term_index import TermIndex
from raftcore.writes import OpUpCommitIndex, OpUpTermVotedFor

MAX_APPEND_ENTRIES = 2


@dataclass
class NodeSet:
    """Cached membership derived from the committed and new configurations."""

    nid_log_all: list[int] = field(default_factory=list)
    nid_vote_all: list[int] = field(default_factory=list)
    committed_log: frozenset = frozenset()
    new_log: frozenset = frozenset()
    committed_vote: frozenset = frozenset()
    new_vote: frozenset = frozenset()

    @classmethod
    def from_conf(cls, conf: RaftConf) -> "NodeSet":
        """Build the cached sets for ``conf``."""
        committed_log = frozenset(conf.committed.nid_log)
        new_log = frozenset(conf.new.nid_log)
        # Vote gating follows the log membership of each configuration.
        committed_vote = committed_log
        new_vote = new_log
        return cls(
            nid_log_all=sorted(committed_log | new_log),
            nid_vote_all=sorted(committed_vote | new_vote),
            committed_log=committed_log,
            new_log=new_log,
            committed_vote=committed_vote,
            new_vote=new_vote,
        )

    def can_vote(self, nid: int) -> bool:
        """True when ``nid`` takes part in elections of the committed configuration."""
        return nid in self.committed_vote and nid in self.committed_log

    def can_log(self, nid: int) -> bool:
        """True when ``nid`` receives the log in the committed configuration."""
        return nid in self.committed_log


class MachineCore:
    """Persistent and volatile state of one node, plus the basic transitions."""

    def __init__(self, conf: Optional[RaftConf] = None) -> None:
        self.role: RaftRole = RaftRole.FOLLOWER
        self.current_term: int = 0
        self.commit_index: int = 0
        self.log: list[LogEntry] = []
        self.voted_for: Optional[int] = None
        self.conf: RaftConf = conf if conf is not None else RaftConf()
        self.snapshot_max_index_term: TermIndex = TermIndex()
        self.max_append_entries: int = MAX_APPEND_ENTRIES
        self.tick: int = 0
        self.testing_is_crash: bool = False
        self.follower_next_index: dict[int, int] = {}
        self.follower_match_index: dict[int, int] = {}
        self.follower_pre_vote_granted: dict[int, int] = {}
        self.follower_vote_granted: dict[int, int] = {}
        self.follower_conf_committed: dict = {}
        self.follower_conf_new: dict = {}
        self.follower_term_committed_index: dict[int, TermIndex] = {}
        self.node_set: NodeSet = NodeSet.from_conf(self.conf)

    @property
    def node_id(self) -> int:
        return self.conf.node_id

    def _update_conf_local(self) -> None:
        self.node_set = NodeSet.from_conf(self.conf)

    def _clear_follower_state(self) -> None:
        self.follower_match_index.clear()
        self.follower_next_index.clear()
        self.follower_vote_granted.clear()
        self.follower_pre_vote_granted.clear()
        self.follower_term_committed_index.clear()
        self.follower_conf_committed.clear()
        self.follower_conf_new.clear()

    def last_log_index(self) -> int:
        """Index of the last entry, or of the snapshot when the log is empty."""
        return self.log[-1].index if self.log else self.snapshot_max_index_term.index

    def last_log_term(self) -> int:
        """Term of the last entry, or of the snapshot when the log is empty."""
        return self.log[-1].term if self.log else self.snapshot_max_index_term.term

    def log_term(self, index: int) -> int:
        """Term of the entry at ``index``; the snapshot's term for compacted ones."""
        snapshot = self.snapshot_max_index_term
        if index <= snapshot.index:
            return snapshot.term
        offset = index - snapshot.index - 1
        if offset >= len(self.log):
            raise IndexError(f"log index error: {index} beyond last index {self.last_log_index()}")
        return self.log[offset].term

    def only_one_node_can_vote(self) -> bool:
        """True when this cluster has exactly one voter in every active configuration."""
        committed = self.conf.committed
        new = self.conf.new
        if committed.conf_version == new.conf_version:
            return len(committed.nid_vote) == 1
        return (
            len(committed.nid_vote) == 1
            and len(new.nid_vote) == 1
            and committed.nid_vote == new.nid_vote
        )

    def update_term(self, term: int, state: RaftState) -> None:
        """Move to ``term`` and step down when it is newer than the current one."""
        if self.current_term < term:
            self.current_term = term
            self.become_follower(state)

    def become_follower(self, state: RaftState) -> None:
        """Step down, forget the vote and the leader's bookkeeping."""
        if self.role != RaftRole.LEARNER:
            self.role = RaftRole.FOLLOWER
            state.volatile.role = self.role
        self.tick = 0
        self.voted_for = None
        state.non_volatile.operations.append(
            OpUpTermVotedFor(term=self.current_term, voted_for=self.voted_for)
        )
        self.follower_match_index.clear()
        self.follower_next_index.clear()
        self.follower_vote_granted.clear()

    def set_commit_index(self, new_commit_index: int, state: RaftState) -> None:
        """Advance the commit index; it never moves backwards."""
        if self.commit_index < new_commit_index:
            self.commit_index = new_commit_index
            state.non_volatile.operations.append(OpUpCommitIndex(index=new_commit_index))

    async def recovery(self, storage: Storage) -> None:
        """Load the persisted state from ``storage``."""
        (value_committed, version_committed), (value_new, version_new) = await storage.conf()
        conf_committed = ConfNodeValue.from_value(
            value_committed, version_committed.term, version_committed.version,
            version_committed.index,
        )
        conf_new = ConfNodeValue.from_value(
            value_new, version_new.term, version_new.version, version_new.index,
        )
        snapshot = await storage.snapshot_index_term()
        log = await storage.read_log_entries(None, None)
        term, voted_for = await storage.term_and_voted_for()

        self.log = list(log)
        self.snapshot_max_index_term = TermIndex(term=snapshot.term, index=snapshot.index)
        self.current_term = term
        self.voted_for = voted_for
        self.conf.update_committed(conf_committed)
        self.conf.update_new(conf_new)
        self._update_conf_local()
        self.commit_index = self.snapshot_max_index_term.index

    async def check_storage(self, storage: Storage) -> None:
        """Raise AssertionError when the cached log or snapshot differs from storage."""
        snapshot = await storage.snapshot_index_term()
        if snapshot != self.snapshot_max_index_term:
            raise AssertionError(
                f"snapshot mismatch: stored {snapshot}, cached {self.snapshot_max_index_term}"
            )
        log = list(await storage.read_log_entries(None, None))
        if log != self.log:
            raise AssertionError(f"log mismatch: stored {log}, cached {self.log}")