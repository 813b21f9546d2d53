import dataclasses

import pytest

from raftcore.model import LogEntry, NodeInfo, RaftRole, Snapshot, SnapshotRange
from raftcore.term_index import TermIndex


def test_roles_are_distinct():
    assert len(RaftRole) == 4
    assert RaftRole.LEADER != RaftRole.FOLLOWER
    assert RaftRole("candidate") is RaftRole.CANDIDATE


def test_log_entry_equality_and_hashing():
    a = LogEntry(term=0, index=0, value=1)
    b = LogEntry(term=0, index=0, value=1)
    assert a == b
    assert len({a, b}) == 1


def test_log_entry_is_immutable():
    entry = LogEntry(term=2, index=3, value="x")
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.term = 5
    assert entry.term == 2
    assert entry == LogEntry(term=2, index=3, value="x")


def test_node_info_defaults_to_non_voter():
    info = NodeInfo(node_id=0)
    assert info.can_vote is False
    assert info == NodeInfo(node_id=0, can_vote=False)


def test_snapshot_default_is_empty():
    snap = Snapshot()
    assert snap.entries == frozenset()
    assert snap.term_index == TermIndex()


def test_snapshot_converts_entries_to_frozenset():
    entries = [LogEntry(1, 1, "a"), LogEntry(1, 2, "b"), LogEntry(1, 1, "a")]
    snap = Snapshot(index=2, term=1, entries=entries)
    assert snap.entries == frozenset(entries)
    assert snap.term_index == TermIndex(term=1, index=2)


def test_snapshot_range_defaults_and_equality():
    assert SnapshotRange() == SnapshotRange(begin_index=0, end_index=0, entries=[])
    entries = [LogEntry(3, 4, "v")]
    rng = SnapshotRange(begin_index=4, end_index=5, entries=entries)
    assert rng.entries == frozenset(entries)