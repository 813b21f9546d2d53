import pytest

from raftcore.conf import ConfValue, ConfVersion
from raftcore.model import LogEntry
from raftcore.storage import Storage, StoreAsync, StoreSync
from raftcore.term_index import TermIndex
from raftcore.writes import OpUpCommitIndex, OpUpTermVotedFor, OpWriteLog


class MemoryStore(StoreSync):
    def __init__(self):
        self.log = [LogEntry(1, i, f"v{i}") for i in range(3, 7)]
        self.snapshot = [LogEntry(1, 1, "a"), LogEntry(1, 2, "b")]
        self.term = 1
        self.voted_for = None
        self.commit_index = 0
        self.value = ConfValue(cluster_name="c", node_id=1)

    def conf(self):
        version = ConfVersion(term=1, version=1, index=0)
        return (self.value, version), (self.value, version)

    def term_and_voted_for(self):
        return self.term, self.voted_for

    def max_log_index(self):
        return self.log[-1].index

    def min_log_index(self):
        return self.log[0].index

    def read_log_entries(self, start, end):
        return [
            e for e in self.log
            if (start is None or e.index >= start) and (end is None or e.index < end)
        ]

    def snapshot_index_term(self):
        last = self.snapshot[-1]
        return TermIndex(term=last.term, index=last.index)

    def read_snapshot_value(self, index, limit):
        selected = [e for e in self.snapshot if e.index >= index]
        return selected if limit is None else selected[:limit]

    def write(self, operations):
        for op in operations:
            if isinstance(op, OpUpTermVotedFor):
                self.term, self.voted_for = op.term, op.voted_for
            elif isinstance(op, OpUpCommitIndex):
                self.commit_index = op.index
            elif isinstance(op, OpWriteLog):
                self.log = [e for e in self.log if e.index <= op.prev_index] + list(op.entries)


class AsyncMemoryStore(StoreAsync):
    def __init__(self):
        self.inner = MemoryStore()

    async def conf(self):
        return self.inner.conf()

    async def term_and_voted_for(self):
        return self.inner.term_and_voted_for()

    async def max_log_index(self):
        return self.inner.max_log_index()

    async def min_log_index(self):
        return self.inner.min_log_index()

    async def read_log_entries(self, start, end):
        return self.inner.read_log_entries(start, end)

    async def snapshot_index_term(self):
        return self.inner.snapshot_index_term()

    async def read_snapshot_value(self, index, limit):
        return self.inner.read_snapshot_value(index, limit)

    async def write(self, operations):
        self.inner.write(operations)


@pytest.fixture(params=["sync", "async"])
def storage(request):
    store = MemoryStore() if request.param == "sync" else AsyncMemoryStore()
    return Storage(store)


def test_kind_detected():
    assert Storage(MemoryStore()).is_async is False
    assert Storage(AsyncMemoryStore()).is_async is True


def test_rejects_non_store():
    with pytest.raises(TypeError):
        Storage(object())


def test_store_sync_is_abstract():
    with pytest.raises(TypeError):
        StoreSync()


@pytest.mark.asyncio
async def test_log_bounds(storage):
    assert await storage.min_log_index() == 3
    assert await storage.max_log_index() == 6
    entries = await storage.read_log_entries()
    assert [e.index for e in entries] == [3, 4, 5, 6]


@pytest.mark.asyncio
async def test_read_range_is_half_open(storage):
    entries = await storage.read_log_entries(4, 6)
    assert [e.index for e in entries] == [4, 5]


@pytest.mark.asyncio
async def test_snapshot(storage):
    assert await storage.snapshot_index_term() == TermIndex(term=1, index=2)
    values = await storage.read_snapshot_value(1, 1)
    assert values == [LogEntry(1, 1, "a")]


@pytest.mark.asyncio
async def test_conf(storage):
    (committed, cv), (new, nv) = await storage.conf()
    assert committed.cluster_name == "c"
    assert cv == nv


@pytest.mark.asyncio
async def test_write_then_read(storage):
    await storage.write([
        OpUpTermVotedFor(term=5, voted_for=2),
        OpWriteLog(prev_index=4, entries=[LogEntry(5, 5, "x")]),
    ])
    assert await storage.term_and_voted_for() == (5, 2)
    entries = await storage.read_log_entries()
    assert entries[-1] == LogEntry(5, 5, "x")
    assert await storage.max_log_index() == 5