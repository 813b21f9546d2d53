"""Log replication: append requests, snapshot installs, compaction and client writes."""

from __future__ import annotations

from typing import Any, Optional

from raftcore.election import ElectionMachine
from raftcore.messages import (
    RCR_ERR_RESP,
    RCR_OK,
    AppendReq,
    AppendResp,
    ApplyReq,
    ApplyResp,
    ClientReq,
    ClientResp,
    Message,
)
from raftcore.model import LogEntry, RaftRole, Snapshot, SnapshotRange
from raftcore.quorum import quorum_agree_match_index
from raftcore.state import RaftState
from raftcore.storage import Storage
from raftcore.term_index import TermIndex
from raftcore.writes import (
    OpApplySnapshot,
    OpCompactLog,
    OpWriteLog,
    WriteEntriesOpt,
)


class ReplicationMachine(ElectionMachine):
    """Adds log replication to the election part of the protocol."""

    # leader side

    async def append_entries(self, state: RaftState, storage: Storage) -> None:
        """Send an append request, or a snapshot, to every other log member."""
        for nid in self.node_set.nid_log_all:
            if nid != self.node_id:
                payload = await self._make_append_req_message(nid, storage)
                state.messages.append(Message(payload, self.node_id, nid))

    def _prev_log_index_of_node(self, nid: int) -> int:
        next_index = self.follower_next_index.get(nid, self.last_log_index() + 1)
        return next_index - 1 if next_index >= 1 else 0

    def _select_log_entries(self, index: int, limit: int) -> list[LogEntry]:
        snapshot_index = self.snapshot_max_index_term.index
        if index <= snapshot_index:
            raise IndexError(f"log index {index} is already compacted")
        start = index - snapshot_index - 1
        return self.log[start:start + limit]

    async def _make_apply_snapshot_message(self, index: int, storage: Storage) -> ApplyReq:
        values = await storage.read_snapshot_value(index, None)
        indices = [entry.index for entry in values]
        begin_index, end_index = (min(indices), max(indices)) if indices else (0, 0)
        snapshot = self.snapshot_max_index_term
        if end_index != snapshot.index:
            raise AssertionError(
                f"stored snapshot ends at {end_index}, expected {snapshot.index}"
            )
        return ApplyReq(
            term=self.current_term,
            id="",
            begin_index=begin_index,
            end_index=end_index,
            snapshot=Snapshot(index=snapshot.index, term=snapshot.term, entries=values),
        )

    async def _make_append_req_message(self, dest: int, storage: Storage) -> Any:
        prev_log_index = self._prev_log_index_of_node(dest)
        if prev_log_index < self.snapshot_max_index_term.index:
            return await self._make_apply_snapshot_message(prev_log_index + 1, storage)
        entries = self._select_log_entries(prev_log_index + 1, self.max_append_entries)
        if entries and entries[0].index != prev_log_index + 1:
            raise AssertionError("selected entries do not follow the previous index")
        return AppendReq(
            term=self.current_term,
            prev_log_index=prev_log_index,
            prev_log_term=self.log_term(prev_log_index),
            log_entries=entries,
            commit_index=self.commit_index,
        )

    # follower side

    def _is_prev_log_entry_ok(self, prev_log_index: int, prev_log_term: int) -> bool:
        snapshot = self.snapshot_max_index_term
        if prev_log_index == 0 and snapshot.index == 0 and not self.log:
            return True
        if snapshot.index >= prev_log_index:
            return snapshot.index == prev_log_index and snapshot.term == prev_log_term
        offset = prev_log_index - snapshot.index
        if offset > len(self.log):
            return False
        entry = self.log[offset - 1]
        return entry.term == prev_log_term and entry.index == prev_log_index

    def _follower_append_entries(self, prev_index: int, entries: list[LogEntry],
                                 state: RaftState) -> int:
        if not entries:
            return prev_index
        offset_start = prev_index - self.snapshot_max_index_term.index
        if len(self.log) < offset_start:
            raise IndexError("log index error: gap before appended entries")
        if len(self.log) == offset_start:
            return self._write_log_entries(prev_index, offset_start, entries, state)

        inconsistent: Optional[int] = None
        for i, incoming in enumerate(entries):
            if len(self.log) == offset_start + i:
                break
            existing = self.log[offset_start + i]
            if existing.term != incoming.term:
                inconsistent = i
                break
            prev_index += 1
            if existing.index != prev_index or existing.index != incoming.index:
                raise AssertionError("log entry indices are inconsistent")

        if inconsistent is not None:
            to_append = entries[inconsistent:]
            offset_write = offset_start + inconsistent
        else:
            pos = min(len(self.log) - offset_start, len(entries))
            to_append = entries[pos:]
            offset_write = offset_start + pos
        return self._write_log_entries(prev_index, offset_write, to_append, state)

    def _write_log_entries(self, prev_index: int, offset: int, entries: list[LogEntry],
                           state: RaftState) -> int:
        """Replace the log from ``offset`` with ``entries``; return the match index."""
        if len(self.log) < offset or not entries:
            return prev_index
        entries = list(entries)
        self.log[offset:] = entries
        state.non_volatile.operations.append(
            OpWriteLog(
                prev_index=prev_index,
                entries=entries,
                opt=WriteEntriesOpt(truncate_left=False, truncate_right=True),
            )
        )
        return prev_index + len(entries)

    def handle_append_req(self, source: int, msg: AppendReq, state: RaftState) -> None:
        """Accept or reject entries sent by the leader ``source``."""
        if not self.node_set.can_log(source) or not self.node_set.can_log(self.node_id):
            return
        self.update_term(msg.term, state)
        self.tick = 0
        self._append_req_resp(source, msg, state)

    def _append_req_resp(self, source: int, msg: AppendReq, state: RaftState) -> None:
        log_ok = self._is_prev_log_entry_ok(msg.prev_log_index, msg.prev_log_term)
        same_term = self.current_term == msg.term
        if self.current_term > msg.term or (
            same_term and self.role == RaftRole.FOLLOWER and not log_ok
        ):
            snapshot_index = self.snapshot_max_index_term.index
            resp = AppendResp(
                term=self.current_term,
                append_success=False,
                commit_index=0,
                match_index=0,
                next_index=snapshot_index if snapshot_index > msg.prev_log_index else 0,
            )
            state.messages.append(Message(resp, self.node_id, source))
        elif same_term and self.role == RaftRole.CANDIDATE:
            self.become_follower(state)
        elif same_term and self.role == RaftRole.FOLLOWER and log_ok:
            if self.snapshot_max_index_term.index > msg.prev_log_index:
                raise AssertionError("previous index lies inside the snapshot")
            match_index = self._follower_append_entries(
                msg.prev_log_index, list(msg.log_entries), state
            )
            if msg.commit_index > self.commit_index:
                commit_index = msg.commit_index
                self.set_commit_index(msg.commit_index, state)
            else:
                commit_index = self.commit_index
            resp = AppendResp(
                term=self.current_term,
                append_success=True,
                commit_index=commit_index,
                match_index=match_index,
                next_index=0,
            )
            state.messages.append(Message(resp, self.node_id, source))

    def handle_append_resp(self, source: int, msg: AppendResp, state: RaftState) -> None:
        """Track a follower's progress and advance the commit index."""
        if not self.node_set.can_log(source) or not self.node_set.can_vote(self.node_id):
            return
        self.update_term(msg.term, state)
        if not (self.current_term == msg.term and self.role == RaftRole.LEADER):
            return
        if msg.append_success:
            self.follower_next_index[source] = msg.match_index + 1
            if self.last_log_index() < msg.match_index:
                raise AssertionError("follower matched beyond the leader's log")
            self.follower_match_index[source] = msg.match_index
            self.advance_commit_index(state)
            self.follower_term_committed_index[source] = TermIndex(
                term=msg.term, index=msg.commit_index
            )
            return

        last_log_index = self.last_log_index()
        current = self.follower_next_index.get(source)
        if current is not None:
            if msg.next_index > 0:
                self.follower_next_index[source] = min(msg.next_index, last_log_index + 1)
            elif current > 1:
                self.follower_next_index[source] = current - 1
        elif msg.next_index > 0:
            self.follower_next_index[source] = msg.next_index

    def advance_commit_index(self, state: RaftState) -> None:
        """Commit the highest index stored on a quorum of both configurations."""
        if self.role != RaftRole.LEADER:
            raise AssertionError("only the leader advances the commit index")
        new_commit_index = quorum_agree_match_index(
            self.node_id,
            self.last_log_index(),
            self.follower_match_index,
            self.conf.committed.node,
            self.conf.new.node,
        )
        self.set_commit_index(new_commit_index, state)

    # snapshots

    def handle_apply_snapshot_req(self, source: int, msg: ApplyReq, state: RaftState) -> None:
        """Install a snapshot sent by the leader and drop the local log."""
        if not self.node_set.can_log(source) or not self.node_set.can_log(self.node_id):
            return
        self.update_term(msg.term, state)
        if self.current_term != msg.term:
            return
        if msg.begin_index >= msg.end_index or msg.end_index < 1:
            return
        end_index = msg.end_index
        if not (end_index >= self.last_log_index() and end_index > self.commit_index):
            return
        self.snapshot_max_index_term = TermIndex(term=msg.snapshot.term, index=msg.snapshot.index)
        state.non_volatile.operations.append(
            OpApplySnapshot(
                SnapshotRange(
                    begin_index=msg.begin_index,
                    end_index=msg.end_index,
                    entries=msg.snapshot.entries,
                )
            )
        )
        state.non_volatile.operations.append(
            OpWriteLog(
                prev_index=msg.end_index,
                entries=(),
                opt=WriteEntriesOpt(truncate_left=True, truncate_right=True),
            )
        )
        self.log.clear()
        resp = ApplyResp(term=msg.term, match_index=end_index, id=msg.id)
        state.messages.append(Message(resp, self.node_id, source))

    def handle_apply_snapshot_resp(self, source: int, msg: ApplyResp) -> None:
        """Move a follower's next and match indices past the installed snapshot."""
        if not self.node_set.can_log(source) or not self.node_set.can_vote(self.node_id):
            return
        if self.current_term != msg.term:
            return
        next_index = msg.match_index + 1
        if self.follower_next_index.get(source, -1) < next_index:
            self.follower_next_index[source] = next_index
        if self.follower_match_index.get(source, -1) < msg.match_index:
            self.follower_match_index[source] = msg.match_index

    def compact_log(self, state: RaftState) -> None:
        """Move committed entries from the log into the snapshot."""
        index = min(self.last_log_index(), self.commit_index)
        snapshot_index = self.snapshot_max_index_term.index
        if snapshot_index >= index:
            return
        count = index - snapshot_index
        removed = self.log[:count]
        del self.log[:count]
        if removed:
            last = removed[-1]
            self.snapshot_max_index_term = TermIndex(term=last.term, index=last.index)
            state.non_volatile.operations.append(OpCompactLog(entries=removed))

    # client writes

    async def client_write_value(self, value: Any, state: RaftState,
                                 storage: Storage) -> tuple[int, int]:
        """Append ``value`` to the leader's log; return its ``(index, term)``."""
        if self.role != RaftRole.LEADER:
            raise RuntimeError("only the leader can write values")
        last_index = self.last_log_index()
        index = last_index + 1
        term = self.current_term
        entry = LogEntry(term=term, index=index, value=value)
        self._write_log_entries(last_index, len(self.log), [entry], state)
        if self.conf.committed.value.millisecond_tick > 0:
            await self.append_entries(state, storage)
        if self.only_one_node_can_vote():
            self.advance_commit_index(state)
        return index, term

    async def handle_client_req(self, source: int, msg: ClientReq, state: RaftState,
                                storage: Storage) -> None:
        """Write a client's value and answer when the client waits for it."""
        if not self.node_set.can_vote(self.node_id):
            return
        need_resp = msg.wait_commit or msg.wait_write_local
        try:
            resp = await self._client_req_resp(msg, state, storage)
            info = ""
        except Exception as exc:  # any storage failure is reported to the client
            resp = None
            info = str(exc)
        if not need_resp:
            return
        if resp is None:
            resp = ClientResp(
                id=msg.id,
                source_id=self.node_id,
                index=0,
                term=0,
                error=RCR_ERR_RESP,
                info=info,
            )
        state.messages.append(Message(resp, self.node_id, source))

    async def _client_req_resp(self, msg: ClientReq, state: RaftState,
                               storage: Storage) -> Optional[ClientResp]:
        if self.role != RaftRole.LEADER:
            return None
        index, term = await self.client_write_value(msg.value, state, storage)
        if msg.wait_write_local or msg.wait_commit:
            return ClientResp(
                id=msg.id,
                source_id=self.node_id,
                index=index,
                term=term,
                error=RCR_OK,
                info="",
            )
        return None