from raftcore.conf import ConfNode, ConfVersion
from raftcore.quorum import (
    quorum_agree_match_index,
    quorum_agree_vote,
    quorum_check_conf_term_version,
    quorum_check_term_commit_index,
)
from raftcore.term_index import TermIndex

THREE = ConfNode(nid_vote={1, 2, 3}, nid_log={1, 2, 3})
OTHER = ConfNode(nid_vote={3, 4, 5}, nid_log={3, 4, 5})


def test_vote_majority_single_conf():
    assert quorum_agree_vote(1, 2, {1: 2, 2: 2}, THREE, THREE) is True


def test_vote_stale_term_not_counted():
    assert quorum_agree_vote(1, 2, {1: 2, 2: 1}, THREE, THREE) is False


def test_vote_joint_requires_both():
    assert quorum_agree_vote(1, 1, {1: 1, 2: 1}, THREE, OTHER) is False
    assert quorum_agree_vote(1, 1, {1: 1, 2: 1, 4: 1, 5: 1}, THREE, OTHER) is True


def test_vote_empty_config_never_agrees():
    assert quorum_agree_vote(1, 1, {1: 1}, ConfNode(), ConfNode()) is False


def test_match_index_single_conf():
    assert quorum_agree_match_index(1, 5, {2: 3, 3: 1}, THREE, THREE) == 3


def test_match_index_joint_takes_minimum():
    new = ConfNode(nid_vote={1, 4, 5}, nid_log={1, 4, 5})
    match = {2: 3, 3: 1, 4: 2, 5: 0}
    result = quorum_agree_match_index(1, 5, match, THREE, new)
    assert result == 2
    assert result <= quorum_agree_match_index(1, 5, match, THREE, THREE)


def test_match_index_single_voter_is_leader_last():
    alone = ConfNode(nid_vote={1}, nid_log={1})
    assert quorum_agree_match_index(1, 9, {}, alone, alone) == 9


def test_match_index_never_above_leader():
    result = quorum_agree_match_index(1, 4, {2: 10, 3: 10}, THREE, THREE)
    assert result <= 10
    assert result in (4, 10)


def test_conf_version_majority():
    version = ConfVersion(term=1, version=2, index=0)
    assert quorum_check_conf_term_version(1, {1, 2, 3}, version, {2: version}) is True
    assert quorum_check_conf_term_version(
        1, {1, 2, 3}, version, {2: ConfVersion(term=1, version=1)}
    ) is False


def test_term_commit_index():
    followers = {2: TermIndex(term=3, index=7)}
    assert quorum_check_term_commit_index(1, {1, 2, 3}, 3, 5, followers) is True
    assert quorum_check_term_commit_index(1, {1, 2, 3}, 3, 8, followers) is False
    assert quorum_check_term_commit_index(1, {1, 2, 3}, 4, 5, followers) is False


def test_term_commit_index_leader_outside_voters():
    followers = {2: TermIndex(term=3, index=7)}
    assert quorum_check_term_commit_index(9, {1, 2, 3}, 3, 5, followers) is False