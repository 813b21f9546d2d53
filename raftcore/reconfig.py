"""Membership changes: propose, spread and commit a new configuration."""

from __future__ import annotations

import copy
from typing import Iterable

from raftcore.conf import ConfNode, ConfNodeValue, ConfValue, ConfVersion
from raftcore.messages import Message, UpdateConfReq, UpdateConfResp
from raftcore.model import RaftRole
from raftcore.quorum import quorum_check_conf_term_version, quorum_check_term_commit_index
from raftcore.replication import ReplicationMachine
from raftcore.state import RaftState
from raftcore.writes import OpUpConfCommitted, OpUpConfNew


class ReconfigMachine(ReplicationMachine):
    """Adds joint-consensus configuration changes to log replication."""

    def _store_conf(self, committed: bool, conf: ConfNodeValue, state: RaftState) -> None:
        op_type = OpUpConfCommitted if committed else OpUpConfNew
        state.non_volatile.operations.append(
            op_type(value=copy.deepcopy(conf.value), version=conf.conf_version)
        )
        if committed:
            self.conf.update_committed(conf)
        else:
            self.conf.update_new(conf)

    def send_update_conf_to_follower(self, state: RaftState) -> None:
        """Send the leader's configurations to every other log member."""
        if self.role != RaftRole.LEADER:
            return
        for nid in self.node_set.nid_log_all:
            if nid != self.node_id:
                req = UpdateConfReq(
                    term=self.current_term,
                    conf_committed=copy.deepcopy(self.conf.committed),
                    conf_new=copy.deepcopy(self.conf.new),
                )
                state.messages.append(Message(req, self.node_id, nid))

    def _update_conf(self, msg: UpdateConfReq, state: RaftState) -> bool:
        updated = False
        if self.conf.committed.conf_version < msg.conf_committed.conf_version:
            self._store_conf(True, copy.deepcopy(msg.conf_committed), state)
            updated = True
        if self.conf.new.conf_version < msg.conf_new.conf_version:
            self._store_conf(False, copy.deepcopy(msg.conf_new), state)
            updated = True
        return updated

    def handle_update_conf_req(self, source: int, msg: UpdateConfReq, state: RaftState) -> None:
        """Adopt newer configurations from the leader and report the versions held."""
        if not self.node_set.can_log(self.node_id) or not self.node_set.can_log(source):
            return
        if self.current_term != msg.term:
            return
        if self._update_conf(msg, state):
            self._update_conf_local()
        resp = UpdateConfResp(
            term=self.current_term,
            conf_committed=self.conf.committed.conf_version,
            conf_new=self.conf.new.conf_version,
        )
        state.messages.append(Message(resp, self.node_id, source))

    def handle_update_conf_resp(self, source: int, msg: UpdateConfResp) -> None:
        """Remember which configuration versions a follower holds."""
        if not self.node_set.can_vote(self.node_id) or not self.node_set.can_log(source):
            return
        if self.role != RaftRole.LEADER or self.current_term != msg.term:
            return
        self.follower_conf_committed[source] = msg.conf_committed
        self.follower_conf_new[source] = msg.conf_new

    def leader_re_conf_begin(self, state: RaftState, conf_value: ConfValue,
                             nid_vote: Iterable[int], nid_log: Iterable[int]) -> None:
        """Propose a new membership; ignored unless leader and no change is pending."""
        if self.role != RaftRole.LEADER:
            return
        if self.conf.committed.conf_version != self.conf.new.conf_version:
            return
        if self.conf.committed.value.cluster_name != conf_value.cluster_name:
            raise ValueError(
                f"cluster name {conf_value.cluster_name!r} differs from "
                f"{self.conf.committed.value.cluster_name!r}"
            )
        version = ConfVersion(
            term=self.current_term,
            version=self.conf.new.conf_version.version + 1,
            index=self.commit_index,
        )
        conf = ConfNodeValue(
            node=ConfNode(conf_version=version, nid_vote=nid_vote, nid_log=nid_log),
            value=conf_value,
        )
        self._store_conf(False, conf, state)
        self._update_conf_local()

    def leader_re_conf_commit(self, state: RaftState) -> None:
        """Make the new configuration the committed one once quorums accept it."""
        if self.can_re_conf_commit():
            self._store_conf(True, copy.deepcopy(self.conf.new), state)
            self._update_conf_local()

    def can_re_conf_commit(self) -> bool:
        """True when a pending configuration change is accepted by all required quorums."""
        if self.role != RaftRole.LEADER:
            return False
        committed = self.conf.committed
        new = self.conf.new
        if committed.conf_version == new.conf_version:
            return False
        if not quorum_check_conf_term_version(
            self.node_id, committed.nid_vote, committed.conf_version, self.follower_conf_committed
        ):
            return False
        if not quorum_check_conf_term_version(
            self.node_id, committed.nid_vote, new.conf_version, self.follower_conf_new
        ):
            return False
        if not quorum_check_conf_term_version(
            self.node_id, new.nid_vote, new.conf_version, self.follower_conf_new
        ):
            return False
        return quorum_check_term_commit_index(
            self.node_id,
            new.nid_vote,
            self.current_term,
            new.conf_version.index,
            self.follower_term_committed_index,
        )