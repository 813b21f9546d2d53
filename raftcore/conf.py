"""Cluster configuration: values, versions and the committed/new pair."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable

from raftcore.model import NodeInfo


@dataclass(frozen=True, order=True)
class ConfVersion:
    """Version stamp of a configuration, ordered by term, version, index."""

    term: int = 0
    version: int = 0
    index: int = 0


@dataclass
class ConfValue:
    """Settings of a node together with the list of cluster peers."""

    cluster_name: str = ""
    storage_path: str = ""
    node_id: int = 0
    bind_address: str = ""
    bind_port: int = 0
    timeout_max_tick: int = 0
    millisecond_tick: int = 0
    max_compact_entries: int = 0
    send_value_to_leader: bool = False
    node_peer: list[NodeInfo] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        cluster_name: str,
        node_id: int,
        storage_path: str,
        bind_address: str,
        bind_port: int,
    ) -> "ConfValue":
        """Build a value for one node with no peers yet."""
        return cls(
            cluster_name=cluster_name,
            storage_path=storage_path,
            node_id=node_id,
            bind_address=bind_address,
            bind_port=bind_port,
        )

    def add_peers(self, node_id: int, can_vote: bool) -> None:
        """Append a peer to the member list."""
        self.node_peer.append(NodeInfo(node_id=node_id, can_vote=can_vote))

    def with_peers(self, can_vote: Iterable[int], log_nids: Iterable[int]) -> "ConfValue":
        """Return a copy whose peers are ``log_nids``, voting if in ``can_vote``."""
        voters = set(can_vote)
        peers = [NodeInfo(node_id=nid, can_vote=nid in voters) for nid in sorted(set(log_nids))]
        return replace(self, node_peer=peers)

    @property
    def voters(self) -> frozenset:
        return frozenset(p.node_id for p in self.node_peer if p.can_vote)

    @property
    def members(self) -> frozenset:
        return frozenset(p.node_id for p in self.node_peer)


@dataclass(frozen=True)
class ConfNode:
    """Membership of one configuration: voting and log-receiving nodes."""

    conf_version: ConfVersion = ConfVersion()
    nid_vote: frozenset = frozenset()
    nid_log: frozenset = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "nid_vote", frozenset(self.nid_vote))
        object.__setattr__(self, "nid_log", frozenset(self.nid_log))


@dataclass
class ConfNodeValue:
    """A configuration's membership together with its settings."""

    node: ConfNode = field(default_factory=ConfNode)
    value: ConfValue = field(default_factory=ConfValue)

    @classmethod
    def from_value(cls, value: ConfValue, term: int, version: int, index: int) -> "ConfNodeValue":
        """Derive the membership from ``value``'s peers and stamp it."""
        node = ConfNode(
            conf_version=ConfVersion(term=term, version=version, index=index),
            nid_vote=value.voters,
            nid_log=value.members,
        )
        return cls(node=node, value=value)

    @property
    def conf_version(self) -> ConfVersion:
        return self.node.conf_version

    @property
    def nid_vote(self) -> frozenset:
        return self.node.nid_vote

    @property
    def nid_log(self) -> frozenset:
        return self.node.nid_log


@dataclass
class RaftConf:
    """The committed configuration and the one being moved to."""

    committed: ConfNodeValue = field(default_factory=ConfNodeValue)
    new: ConfNodeValue = field(default_factory=ConfNodeValue)

    @property
    def node_id(self) -> int:
        return self.committed.value.node_id

    @property
    def in_transition(self) -> bool:
        """True while the new configuration differs from the committed one."""
        return self.committed.conf_version != self.new.conf_version

    def update_committed(self, conf: ConfNodeValue) -> None:
        self.committed = conf

    def update_new(self, conf: ConfNodeValue) -> None:
        self.new = conf