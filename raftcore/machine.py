"""The complete consensus state machine: message dispatch, ticks and test hooks."""

from __future__ import annotations

import copy

from raftcore.conf import ConfNodeValue
from raftcore.messages import (
    AppendReq,
    AppendResp,
    ApplyReq,
    ApplyResp,
    ClientReq,
    ClientResp,
    DtmAppendLog,
    DtmCheck,
    DtmClientWriteLog,
    DtmLogCompaction,
    DtmRequestVote,
    DtmRestart,
    DtmSendUpdateConf,
    DtmSetup,
    DtmUpdateConfBegin,
    DtmUpdateConfCommit,
    DtmUpdateConfReq,
    Message,
    PreVoteReq,
    PreVoteResp,
    RaftStateImage,
    UpdateConfReq,
    UpdateConfResp,
    VoteReq,
    VoteResp,
)
from raftcore.model import RaftRole, SnapshotRange
from raftcore.reconfig import ReconfigMachine
from raftcore.state import RaftState
from raftcore.storage import Storage
from raftcore.term_index import TermIndex
from raftcore.writes import (
    OpApplySnapshot,
    OpUpCommitIndex,
    OpUpConfCommitted,
    OpUpConfNew,
    OpUpTermVotedFor,
    OpWriteLog,
    WriteEntriesOpt,
)


class StateMachineInner(ReconfigMachine):
    """One node's state machine; all state except snapshot values is cached here."""

    async def step_incoming(self, message: Message, state: RaftState, storage: Storage) -> None:
        """Handle one message addressed to this node."""
        if message.dest != self.node_id:
            raise ValueError(f"message for node {message.dest} delivered to node {self.node_id}")
        source = message.source
        payload = message.payload
        match payload:
            case VoteReq():
                self.handle_vote_req(source, payload, state)
            case VoteResp():
                self.handle_vote_resp(source, payload, state)
            case AppendReq():
                self.handle_append_req(source, payload, state)
            case AppendResp():
                self.handle_append_resp(source, payload, state)
            case PreVoteReq():
                self.handle_pre_vote_request(source, payload, state)
            case PreVoteResp():
                self.handle_pre_vote_response(source, payload, state)
            case ApplyReq():
                self.handle_apply_snapshot_req(source, payload, state)
            case ApplyResp():
                self.handle_apply_snapshot_resp(source, payload)
            case ClientReq():
                await self.handle_client_req(source, payload, state, storage)
            case ClientResp():
                pass
            case UpdateConfReq():
                self.handle_update_conf_req(source, payload, state)
            case UpdateConfResp():
                self.handle_update_conf_resp(source, payload)
            case _:
                await self._handle_dtm(source, payload, state, storage)

    async def _handle_dtm(self, source: int, msg, state: RaftState, storage: Storage) -> None:
        match msg:
            case DtmCheck(image=image):
                self.state_check(image)
            case DtmSetup(image=image):
                self.state_setup(image, state)
            case DtmUpdateConfBegin(conf=conf):
                value = self.conf.committed.value.with_peers(conf.nid_vote, conf.nid_log)
                self.leader_re_conf_begin(state, value, conf.nid_vote, conf.nid_log)
            case DtmRequestVote():
                self.start_request_vote(state)
            case DtmClientWriteLog(value=value):
                await self.client_write_value(value, state, storage)
            case DtmUpdateConfCommit():
                self.leader_re_conf_commit(state)
            case DtmRestart():
                await self.restart_for_testing(storage)
            case DtmAppendLog():
                await self.append_entries(state, storage)
            case DtmLogCompaction():
                self.compact_log(state)
            case DtmSendUpdateConf():
                self.send_update_conf_to_follower(state)
            case DtmUpdateConfReq():
                self._handle_dtm_update_conf_req(source, msg, state)
            case _:
                raise ValueError(f"unsupported message {msg!r}")

    def _handle_dtm_update_conf_req(self, source: int, msg: DtmUpdateConfReq,
                                    state: RaftState) -> None:
        committed_value = self.conf.committed.value.with_peers(
            msg.conf_committed.nid_vote, msg.conf_committed.nid_log
        )
        new_value = self.conf.new.value.with_peers(msg.conf_new.nid_vote, msg.conf_new.nid_log)
        req = UpdateConfReq(
            term=msg.term,
            conf_committed=ConfNodeValue(node=msg.conf_committed, value=committed_value),
            conf_new=ConfNodeValue(node=msg.conf_new, value=new_value),
        )
        self.handle_update_conf_req(source, req, state)

    async def step_tick_short(self, state: RaftState, storage: Storage) -> None:
        """Heartbeat for a leader, election timer for followers and candidates."""
        if self.role == RaftRole.LEADER:
            await self.append_entries(state, storage)
        elif self.role in (RaftRole.FOLLOWER, RaftRole.CANDIDATE):
            if self.tick > self.conf.committed.value.timeout_max_tick:
                self.pre_vote_request(state)
            self.tick += 1

    async def step_tick_long(self, state: RaftState) -> None:
        """Compact the log and drive a pending configuration change."""
        self.compact_log(state)
        self.send_update_conf_to_follower(state)
        self.leader_re_conf_commit(state)

    async def restart_for_testing(self, storage: Storage) -> None:
        """Drop volatile state and reload the persisted state from ``storage``."""
        self.testing_is_crash = False
        self.role = RaftRole.FOLLOWER
        self.tick = 0
        self._clear_follower_state()
        await self.recovery(storage)

    def state_setup(self, image: RaftStateImage, state: RaftState) -> None:
        """Overwrite this node's state with ``image`` and record the writes."""
        log = list(image.log)
        if log and log[0].index != image.snapshot.index + 1:
            raise ValueError(
                f"first log index {log[0].index} does not follow snapshot index "
                f"{image.snapshot.index}"
            )
        ops = state.non_volatile.operations

        self.current_term = image.current_term
        self.voted_for = image.voted_for
        ops.append(OpUpTermVotedFor(term=self.current_term, voted_for=self.voted_for))

        self.log = log
        ops.append(
            OpWriteLog(
                prev_index=0,
                entries=list(log),
                opt=WriteEntriesOpt(truncate_left=True, truncate_right=True),
            )
        )

        self.snapshot_max_index_term = TermIndex(
            term=image.snapshot.term, index=image.snapshot.index
        )
        ops.append(
            OpApplySnapshot(
                SnapshotRange(
                    begin_index=0,
                    end_index=image.snapshot.index,
                    entries=image.snapshot.entries,
                )
            )
        )

        self.role = image.role
        state.volatile.role = self.role

        self.commit_index = image.commit_index
        ops.append(OpUpCommitIndex(index=self.commit_index))

        self.follower_match_index = dict(image.follower_match_index)
        self.follower_next_index = dict(image.follower_next_index)
        self.follower_vote_granted = dict(image.follower_vote_granted)
        self.follower_term_committed_index = {
            nid: TermIndex(term=ti.term, index=ti.index)
            for nid, ti in image.follower_term_commit_index.items()
        }
        for nid, pair in image.follower_conf.items():
            self.follower_conf_committed[nid] = pair.conf_committed
            self.follower_conf_new[nid] = pair.conf_new

        self.conf.update_committed(
            ConfNodeValue(node=image.conf_committed, value=copy.deepcopy(self.conf.committed.value))
        )
        self.conf.update_new(
            ConfNodeValue(node=image.conf_new, value=copy.deepcopy(self.conf.new.value))
        )
        self._update_conf_local()
        ops.append(
            OpUpConfCommitted(
                value=copy.deepcopy(self.conf.committed.value),
                version=self.conf.committed.conf_version,
            )
        )
        ops.append(
            OpUpConfNew(
                value=copy.deepcopy(self.conf.new.value),
                version=self.conf.new.conf_version,
            )
        )

    def state_check(self, image: RaftStateImage) -> None:
        """Raise AssertionError when this node's state differs from ``image``."""
        expected_snapshot = TermIndex(term=image.snapshot.term, index=image.snapshot.index)
        checks = (
            ("role", self.role, image.role),
            ("current_term", self.current_term, image.current_term),
            ("voted_for", self.voted_for, image.voted_for),
            ("log", self.log, list(image.log)),
            ("snapshot", self.snapshot_max_index_term, expected_snapshot),
            ("commit_index", self.commit_index, image.commit_index),
            ("conf_committed", self.conf.committed.node, image.conf_committed),
            ("conf_new", self.conf.new.node, image.conf_new),
        )
        for name, actual, expected in checks:
            if actual != expected:
                raise AssertionError(f"{name} mismatch: have {actual!r}, expected {expected!r}")