"""Leader election: pre-vote, vote requests, vote handling and promotion."""

from __future__ import annotations

from raftcore.core import MachineCore
from raftcore.messages import Message, PreVoteReq, PreVoteResp, VoteReq, VoteResp
from raftcore.model import RaftRole
from raftcore.quorum import quorum_agree_vote
from raftcore.state import RaftState
from raftcore.writes import OpUpTermVotedFor


class ElectionMachine(MachineCore):
    """Adds the election part of the protocol to the shared node state."""

    def _voting_pair_ok(self, source: int) -> bool:
        return self.node_set.can_vote(source) and self.node_set.can_vote(self.node_id)

    def _quorum_granted(self) -> bool:
        return quorum_agree_vote(
            self.node_id,
            self.current_term,
            self.follower_vote_granted,
            self.conf.committed.node,
            self.conf.new.node,
        )

    def _persist_term_vote(self, state: RaftState) -> None:
        state.non_volatile.operations.append(
            OpUpTermVotedFor(term=self.current_term, voted_for=self.voted_for)
        )

    # pre-vote

    def pre_vote_request(self, state: RaftState) -> None:
        """Reset the election timer and probe whether an election could succeed."""
        self.tick = 0
        self.role = RaftRole.FOLLOWER
        if self.only_one_node_can_vote():
            self.start_request_vote(state)
        else:
            self._send_pre_vote_request(state)

    def _send_pre_vote_request(self, state: RaftState) -> None:
        source = self.node_id
        request = PreVoteReq(
            source_nid=source,
            request_term=self.current_term,
            last_log_term=self.last_log_term(),
            last_log_index=self.last_log_index(),
        )
        state.messages.extend(
            Message(request, source, nid) for nid in self.node_set.nid_vote_all if nid != source
        )

    def handle_pre_vote_request(self, source: int, msg: PreVoteReq, state: RaftState) -> None:
        """Answer whether a vote in the term after ``msg.request_term`` would be granted."""
        if not self._voting_pair_ok(source):
            return
        grant = self.can_grant_vote(
            msg.request_term + 1, msg.last_log_index, msg.last_log_term, msg.source_nid
        )
        resp = PreVoteResp(
            source_nid=self.node_id,
            request_term=msg.request_term,
            vote_granted=grant,
        )
        state.messages.append(Message(resp, self.node_id, msg.source_nid))

    def handle_pre_vote_response(self, source: int, msg: PreVoteResp, state: RaftState) -> None:
        """Record a pre-vote and start an election once a quorum agrees."""
        if not self._voting_pair_ok(source):
            return
        if self.current_term == msg.request_term and self.role == RaftRole.FOLLOWER:
            if msg.vote_granted:
                self.follower_pre_vote_granted[msg.source_nid] = msg.request_term
            self._try_become_candidate(state)

    def _try_become_candidate(self, state: RaftState) -> None:
        if self._quorum_granted() and self.role == RaftRole.FOLLOWER:
            self.start_request_vote(state)

    # vote

    def start_request_vote(self, state: RaftState) -> None:
        """Enter the next term as a candidate, voting for this node."""
        self.current_term += 1
        self.voted_for = self.node_id
        self.role = RaftRole.CANDIDATE
        self._persist_term_vote(state)
        state.volatile.role = self.role
        self.follower_vote_granted[self.node_id] = self.current_term
        if self.only_one_node_can_vote():
            self.become_leader(state)
        else:
            self._send_vote_request(state)

    def _send_vote_request(self, state: RaftState) -> None:
        source = self.node_id
        if not self.node_set.can_vote(source):
            return
        request = VoteReq(
            term=self.current_term,
            last_log_term=self.last_log_term(),
            last_log_index=self.last_log_index(),
        )
        state.messages.extend(
            Message(request, source, nid) for nid in self.node_set.nid_vote_all if nid != source
        )

    def handle_vote_req(self, source: int, msg: VoteReq, state: RaftState) -> None:
        """Grant or refuse a vote requested by ``source``."""
        if not self._voting_pair_ok(source):
            return
        self.update_term(msg.term, state)
        if not self._voting_pair_ok(source):
            return
        self._vote_req_resp(source, msg, state)

    def _vote_req_resp(self, source: int, msg: VoteReq, state: RaftState) -> None:
        if self.current_term < msg.term:
            raise AssertionError("term was not updated before answering a vote request")
        grant = self.can_grant_vote(msg.term, msg.last_log_index, msg.last_log_term, source)
        if grant:
            self.voted_for = source
            self._persist_term_vote(state)
        resp = VoteResp(term=self.current_term, vote_granted=grant)
        state.messages.append(Message(resp, self.node_id, source))

    def handle_vote_resp(self, source: int, msg: VoteResp, state: RaftState) -> None:
        """Count a vote and become leader when a quorum has granted one."""
        if not self._voting_pair_ok(source):
            return
        self.update_term(msg.term, state)
        if msg.term == self.current_term and self.role in (RaftRole.CANDIDATE, RaftRole.LEADER):
            if msg.vote_granted:
                self.follower_vote_granted[source] = msg.term
            self._try_become_leader(state)

    def _try_become_leader(self, state: RaftState) -> None:
        if self.role == RaftRole.CANDIDATE and self._quorum_granted():
            self.become_leader(state)

    def become_leader(self, state: RaftState) -> None:
        """Take the leader role and reset replication progress of every follower."""
        self.follower_next_index.clear()
        self.follower_match_index.clear()
        self.tick = 0
        self.role = RaftRole.LEADER
        self.commit_index = self.snapshot_max_index_term.index
        state.volatile.role = RaftRole.LEADER

        next_index = self.last_log_index() + 1
        snapshot_index = self.snapshot_max_index_term.index
        for nid in self.node_set.nid_log_all:
            if nid != self.node_id:
                self.follower_next_index[nid] = next_index
                self.follower_match_index[nid] = snapshot_index

    def _is_last_log_term_index_ok(self, last_index: int, last_term: int) -> bool:
        term = self.last_log_term()
        index = self.last_log_index()
        return last_term > term or (last_term == term and last_index >= index)

    def can_grant_vote(self, term: int, last_index: int, last_term: int, vote_for: int) -> bool:
        """True when a candidate at ``term`` with that last log position may get this vote."""
        if not self._is_last_log_term_index_ok(last_index, last_term):
            return False
        if term > self.current_term:
            return True
        return term == self.current_term and (self.voted_for is None or self.voted_for == vote_for)