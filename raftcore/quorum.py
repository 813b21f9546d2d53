"""Majority checks over one or two (joint) configurations."""

from __future__ import annotations

from typing import Iterable, Mapping

from raftcore.conf import ConfNode, ConfVersion
from raftcore.term_index import TermIndex


def _is_majority(count: int, voters: int) -> bool:
    return voters > 0 and count * 2 > voters


def _agreed_index(node_id: int, leader_last_index: int, match_index: Mapping[int, int],
                  voters: Iterable[int]) -> int:
    indices = sorted(
        (leader_last_index if nid == node_id else match_index.get(nid, 0) for nid in voters),
        reverse=True,
    )
    if not indices:
        return 0
    return indices[len(indices) // 2]


def quorum_agree_vote(node_id: int, term: int, granted: Mapping[int, int],
                      conf_committed: ConfNode, conf_new: ConfNode) -> bool:
    """True when a majority of both configurations granted a vote in ``term``."""
    def agreed(conf: ConfNode) -> bool:
        count = sum(1 for nid in conf.nid_vote if granted.get(nid) == term)
        return _is_majority(count, len(conf.nid_vote))

    return agreed(conf_committed) and agreed(conf_new)


def quorum_agree_match_index(node_id: int, leader_last_index: int, match_index: Mapping[int, int],
                             conf_committed: ConfNode, conf_new: ConfNode) -> int:
    """Highest log index stored by a majority of both configurations."""
    return min(
        _agreed_index(node_id, leader_last_index, match_index, conf_committed.nid_vote),
        _agreed_index(node_id, leader_last_index, match_index, conf_new.nid_vote),
    )


def quorum_check_conf_term_version(node_id: int, nid_vote: Iterable[int], version: ConfVersion,
                                   follower_conf: Mapping[int, ConfVersion]) -> bool:
    """True when a majority of ``nid_vote`` holds configuration ``version``."""
    voters = set(nid_vote)
    count = sum(1 for nid in voters if nid == node_id or follower_conf.get(nid) == version)
    return _is_majority(count, len(voters))


def quorum_check_term_commit_index(node_id: int, nid_vote: Iterable[int], term: int, index: int,
                                   follower_term_index: Mapping[int, TermIndex]) -> bool:
    """True when a majority is in ``term`` with a commit index of at least ``index``."""
    voters = set(nid_vote)

    def accepted(nid: int) -> bool:
        if nid == node_id:
            return True
        ti = follower_term_index.get(nid)
        return ti is not None and ti.term == term and ti.index >= index

    count = sum(1 for nid in voters if accepted(nid))
    return _is_majority(count, len(voters))