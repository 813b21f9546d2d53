from raftcore.conf import ConfNode, ConfNodeValue, ConfValue, ConfVersion, RaftConf
from raftcore.model import NodeInfo


def test_conf_version_order_is_lexicographic():
    assert ConfVersion(1, 1, 9) < ConfVersion(1, 2, 0)
    assert ConfVersion(2, 0, 0) > ConfVersion(1, 9, 9)
    assert not ConfVersion(1, 1, 1) < ConfVersion(1, 1, 1)


def test_create_sets_fields():
    value = ConfValue.create("cluster", 1, "/tmp/store", "127.0.0.1", 35)
    assert value.cluster_name == "cluster"
    assert value.node_id == 1
    assert value.storage_path == "/tmp/store"
    assert value.bind_address == "127.0.0.1"
    assert value.bind_port == 35
    assert value.node_peer == []


def test_add_peers_appends_in_order():
    value = ConfValue()
    value.add_peers(2, True)
    value.add_peers(3, False)
    assert value.node_peer == [NodeInfo(2, True), NodeInfo(3, False)]
    assert value.voters == frozenset({2})
    assert value.members == frozenset({2, 3})


def test_default_values_have_independent_peer_lists():
    a = ConfValue()
    b = ConfValue()
    a.add_peers(1, True)
    assert b.node_peer == []


def test_with_peers_returns_updated_copy():
    value = ConfValue(cluster_name="c", timeout_max_tick=500, millisecond_tick=50)
    updated = value.with_peers({1, 2}, {1, 2, 3})
    assert updated.members == frozenset({1, 2, 3})
    assert updated.voters == frozenset({1, 2})
    assert updated.timeout_max_tick == value.timeout_max_tick
    assert value.node_peer == []


def test_conf_node_value_from_value():
    value = ConfValue(node_id=1)
    value.add_peers(1, True)
    value.add_peers(2, True)
    value.add_peers(3, False)
    cnv = ConfNodeValue.from_value(value, 4, 5, 6)
    assert cnv.conf_version == ConfVersion(term=4, version=5, index=6)
    assert cnv.nid_vote == frozenset({1, 2})
    assert cnv.nid_log == frozenset({1, 2, 3})


def test_conf_node_accepts_lists():
    node = ConfNode(ConfVersion(), [1, 2, 2], [1])
    assert node.nid_vote == frozenset({1, 2})
    assert node == ConfNode(ConfVersion(), {1, 2}, {1})


def test_raft_conf_updates_and_transition():
    conf = RaftConf()
    assert not conf.in_transition
    committed = ConfNodeValue(ConfNode(ConfVersion(1, 1, 0)), ConfValue(node_id=7))
    conf.update_committed(committed)
    assert conf.node_id == 7
    assert conf.in_transition
    conf.update_new(ConfNodeValue(ConfNode(ConfVersion(1, 1, 0)), ConfValue(node_id=7)))
    assert not conf.in_transition