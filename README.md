# raftcore

`raftcore` is a Raft consensus state machine. It does no networking and no disk I/O of
its own. Each step takes one input and records its effects:

- an incoming `Message`, via `StateMachineInner.step_incoming(message, state, storage)`
- a short tick, via `step_tick_short(state, storage)`: a leader sends append requests to
  its followers; a follower or candidate counts ticks and starts a pre-vote once the count
  passes `timeout_max_tick`
- a long tick, via `step_tick_long(state)`: compacts the log up to the commit index,
  sends the configuration to followers and tries to commit a pending configuration change

The effects are collected in a `RaftState` (`raftcore.state`):

- `state.messages` holds the outgoing `Message` objects.
- `state.non_volatile.operations` holds the writes that must be persisted
  (`raftcore.writes`): `OpWriteLog`, `OpUpTermVotedFor`, `OpUpCommitIndex`,
  `OpApplySnapshot`, `OpCompactLog`, `OpUpConfCommitted` and `OpUpConfNew`.
- `state.volatile.role` holds the role change, if there was one.
- `state.is_empty` is true when the step produced nothing.

The caller delivers the messages and hands the writes to `Storage.write`.

## Features

- Leader election with pre-vote (`raftcore.election.ElectionMachine`).
- Log replication, with snapshot transfer (`ApplyReq`) for followers whose next entry
  has already been compacted (`raftcore.replication.ReplicationMachine`).
- Log compaction up to the commit index.
- Client writes through `ClientReq`; a `ClientResp` is returned when the request sets
  `wait_write_local` or `wait_commit`, with `error` set to `RCR_OK` or `RCR_ERR_RESP`.
- Joint-consensus membership changes (`raftcore.reconfig.ReconfigMachine`):
  `leader_re_conf_begin` proposes a new membership, `leader_re_conf_commit` makes it the
  committed one once `can_re_conf_commit` finds the required quorums. Members can vote
  or only receive the log.
- Quorum helpers in `raftcore.quorum`.
- Testing hooks: `state_setup` loads a full `RaftStateImage`, `state_check` raises
  `AssertionError` when the role, term, vote, log, snapshot position, commit index or
  memberships differ from one. The `Dtm*` messages in `raftcore.messages` drive single
  actions such as `DtmRequestVote`, `DtmAppendLog`, `DtmClientWriteLog` and `DtmRestart`.
- `Message.encode()` and `Message.decode()` turn messages into JSON bytes and back.

## Installation

```
pip install raftcore
```

To include the test tools:

```
pip install "raftcore[test]"
```

## Storage

Implement either `StoreSync` or `StoreAsync` from `raftcore.storage`, then wrap it in
`Storage`. The state machine always awaits `Storage`, whichever kind of store is wrapped.

A store must provide:

- `conf()`: `((committed value, version), (new value, version))`
- `term_and_voted_for()`
- `max_log_index()` and `min_log_index()`
- `read_log_entries(start, end)`: entries in `[start, end)`, `None` for an open side
- `snapshot_index_term()`
- `read_snapshot_value(index, limit)`
- `write(operations)`

## Usage sketch

```python
from raftcore.machine import StateMachineInner
from raftcore.state import RaftState
from raftcore.storage import Storage

storage = Storage(my_store)              # a StoreSync or StoreAsync implementation
machine = StateMachineInner()
await machine.recovery(storage)          # load term, vote, log, snapshot and configuration

state = RaftState()
await machine.step_tick_short(state, storage)
for message in state.messages:
    send(message.encode())               # your transport
await storage.write(state.non_volatile.operations)
```

When a message arrives from a peer, feed it to the machine the same way:

```python
state = RaftState()
await machine.step_incoming(Message.decode(data), state, storage)
```

`step_incoming` raises `ValueError` when the message is addressed to another node.

## What the package does not do

- It has no transport: sending and receiving messages is up to the caller.
- It ships no storage backend; only the `StoreSync` and `StoreAsync` interfaces.
- It has no node runner, timer loop or command-line program; the caller calls the
  tick methods on its own schedule.

## Running the tests

```
pytest
```