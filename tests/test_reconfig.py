import copy

import pytest

from raftcore.conf import ConfNodeValue, ConfValue, ConfVersion, RaftConf
from raftcore.messages import AppendResp, Message, UpdateConfReq, UpdateConfResp
from raftcore.model import NodeInfo, RaftRole
from raftcore.reconfig import ReconfigMachine
from raftcore.state import RaftState
from raftcore.writes import OpUpConfCommitted, OpUpConfNew

BASE_VERSION = ConfVersion(term=1, version=1, index=0)


def make_conf(node_id, members=(1, 2, 3), cluster="cluster"):
    value = ConfValue(
        cluster_name=cluster,
        node_id=node_id,
        timeout_max_tick=5,
        node_peer=[NodeInfo(node_id=n, can_vote=True) for n in members],
    )
    committed = ConfNodeValue.from_value(value, BASE_VERSION.term, BASE_VERSION.version,
                                         BASE_VERSION.index)
    new = ConfNodeValue.from_value(copy.deepcopy(value), BASE_VERSION.term,
                                   BASE_VERSION.version, BASE_VERSION.index)
    return RaftConf(committed=committed, new=new)


def make_leader(term=2):
    machine = ReconfigMachine(make_conf(1))
    machine.role = RaftRole.LEADER
    machine.current_term = term
    return machine


def test_send_update_conf_from_leader():
    machine = make_leader()
    state = RaftState()
    machine.send_update_conf_to_follower(state)
    assert [m.dest for m in state.messages] == [2, 3]
    for m in state.messages:
        assert m.source == 1
        assert isinstance(m.payload, UpdateConfReq)
        assert m.payload.term == machine.current_term
        assert m.payload.conf_new.conf_version == machine.conf.new.conf_version


def test_send_update_conf_not_from_follower():
    machine = ReconfigMachine(make_conf(1))
    state = RaftState()
    machine.send_update_conf_to_follower(state)
    assert state.messages == []


def test_handle_update_conf_req_adopts_newer_new_conf():
    leader = make_leader(term=2)
    value = leader.conf.committed.value.with_peers({1, 2}, {1, 2, 3, 4})
    leader.leader_re_conf_begin(RaftState(), value, {1, 2}, {1, 2, 3, 4})
    req = UpdateConfReq(term=2, conf_committed=leader.conf.committed, conf_new=leader.conf.new)

    follower = ReconfigMachine(make_conf(2))
    follower.current_term = 2
    state = RaftState()
    follower.handle_update_conf_req(1, req, state)

    assert follower.conf.new.conf_version == leader.conf.new.conf_version
    assert follower.conf.committed.conf_version == BASE_VERSION
    assert [type(op) for op in state.non_volatile.operations] == [OpUpConfNew]
    assert state.messages == [
        Message(
            UpdateConfResp(term=2, conf_committed=BASE_VERSION,
                           conf_new=leader.conf.new.conf_version),
            2,
            1,
        )
    ]
    assert follower.node_set.nid_log_all == [1, 2, 3, 4]


def test_handle_update_conf_req_ignores_other_term():
    follower = ReconfigMachine(make_conf(2))
    follower.current_term = 3
    state = RaftState()
    follower.handle_update_conf_req(1, UpdateConfReq(term=2), state)
    assert state.is_empty
    assert follower.conf.new.conf_version == BASE_VERSION


def test_handle_update_conf_req_ignores_unknown_source():
    follower = ReconfigMachine(make_conf(2))
    follower.current_term = 2
    state = RaftState()
    follower.handle_update_conf_req(9, UpdateConfReq(term=2), state)
    assert state.is_empty


def test_update_conf_resp_recorded_by_leader():
    leader = make_leader()
    resp = UpdateConfResp(term=2, conf_committed=BASE_VERSION, conf_new=BASE_VERSION)
    leader.handle_update_conf_resp(2, resp)
    assert leader.follower_conf_committed == {2: BASE_VERSION}
    assert leader.follower_conf_new == {2: BASE_VERSION}


def test_update_conf_resp_ignored_by_follower_and_stale_term():
    follower = ReconfigMachine(make_conf(1))
    follower.current_term = 2
    follower.handle_update_conf_resp(
        2, UpdateConfResp(term=2, conf_committed=BASE_VERSION, conf_new=BASE_VERSION))
    assert follower.follower_conf_new == {}

    leader = make_leader(term=2)
    leader.handle_update_conf_resp(
        2, UpdateConfResp(term=1, conf_committed=BASE_VERSION, conf_new=BASE_VERSION))
    assert leader.follower_conf_new == {}


def test_re_conf_begin_stamps_new_version():
    leader = make_leader(term=2)
    state = RaftState()
    value = leader.conf.committed.value.with_peers({1, 2, 3, 4}, {1, 2, 3, 4})
    leader.leader_re_conf_begin(state, value, {1, 2, 3, 4}, {1, 2, 3, 4})

    assert leader.conf.new.conf_version == ConfVersion(term=2, version=2, index=0)
    assert leader.conf.new.nid_vote == frozenset({1, 2, 3, 4})
    assert leader.conf.in_transition
    assert leader.node_set.nid_log_all == [1, 2, 3, 4]
    assert state.non_volatile.operations == [
        OpUpConfNew(value=value, version=leader.conf.new.conf_version)
    ]


def test_re_conf_begin_ignored_while_pending_or_not_leader():
    leader = make_leader()
    value = leader.conf.committed.value.with_peers({1, 2}, {1, 2})
    leader.leader_re_conf_begin(RaftState(), value, {1, 2}, {1, 2})
    pending = leader.conf.new.conf_version
    state = RaftState()
    leader.leader_re_conf_begin(state, value, {1}, {1})
    assert leader.conf.new.conf_version == pending
    assert state.is_empty

    follower = ReconfigMachine(make_conf(1))
    follower.leader_re_conf_begin(RaftState(), value, {1, 2}, {1, 2})
    assert follower.conf.new.conf_version == BASE_VERSION


def test_re_conf_begin_rejects_other_cluster():
    leader = make_leader()
    other = ConfValue(cluster_name="elsewhere", node_id=1)
    with pytest.raises(ValueError):
        leader.leader_re_conf_begin(RaftState(), other, {1}, {1})


def test_re_conf_commit_needs_quorums():
    leader = make_leader(term=2)
    value = leader.conf.committed.value.with_peers({1, 2, 3}, {1, 2, 3})
    leader.leader_re_conf_begin(RaftState(), value, {1, 2, 3}, {1, 2, 3})
    new_version = leader.conf.new.conf_version
    assert leader.can_re_conf_commit() is False

    leader.handle_update_conf_resp(
        2, UpdateConfResp(term=2, conf_committed=BASE_VERSION, conf_new=new_version))
    assert leader.can_re_conf_commit() is False

    leader.handle_append_resp(
        2, AppendResp(term=2, append_success=True, commit_index=0, match_index=0), RaftState())
    assert leader.can_re_conf_commit() is True

    state = RaftState()
    leader.leader_re_conf_commit(state)
    assert leader.conf.committed.conf_version == new_version
    assert not leader.conf.in_transition
    assert [type(op) for op in state.non_volatile.operations] == [OpUpConfCommitted]
    assert leader.can_re_conf_commit() is False


def test_re_conf_commit_without_change_does_nothing():
    leader = make_leader()
    state = RaftState()
    leader.leader_re_conf_commit(state)
    assert leader.can_re_conf_commit() is False
    assert state.is_empty