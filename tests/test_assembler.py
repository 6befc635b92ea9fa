import itertools
import threading

import pytest

from sealink.assembler import Assembler, ReassemblyError, ReassemblyErrorReason
from sealink.chunking import split
from sealink.protocol import Part, PartAnnouncement, ProtocolMessage, Single


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def announce(tid="ID", count=4, action="res", sender="S", receiver="R"):
    return ProtocolMessage(sender, receiver, PartAnnouncement(action, tid, count))


def part(index, payload, tid="ID", sender="S", receiver="R"):
    return ProtocolMessage(sender, receiver, Part(tid, index, payload))


CHUNKS = [b"he", b"ll", b"o ", b"world"]


def test_single_passes_through():
    asm = Assembler()
    c = asm.feed(ProtocolMessage("S", "R", Single("ty")))
    assert c.action == "ty"
    assert c.payload is None
    assert c.transfer_id is None
    assert len(asm) == 0


def test_in_order():
    asm = Assembler()
    assert asm.feed(announce()) is None
    results = [asm.feed(part(i, p)) for i, p in enumerate(CHUNKS)]
    assert results[:-1] == [None, None, None]
    assert results[-1].payload == b"hello world"
    assert results[-1].action == "res"
    assert results[-1].transfer_id == "ID"
    assert len(asm) == 0


def test_any_order():
    for order in itertools.permutations(range(len(CHUNKS))):
        asm = Assembler()
        asm.feed(announce())
        done = [asm.feed(part(i, CHUNKS[i])) for i in order]
        assert done[-1].payload == b"hello world"
        assert all(d is None for d in done[:-1])


def test_duplicate_part_is_ignored():
    asm = Assembler()
    asm.feed(announce())
    asm.feed(part(0, b"he"))
    assert asm.feed(part(0, b"XX")) is None
    asm.feed(part(1, b"ll"))
    asm.feed(part(1, b"ll"))
    asm.feed(part(2, b"o "))
    assert asm.feed(part(3, b"world")).payload == b"hello world"


def test_unknown_transfer_leaves_state_unchanged():
    asm = Assembler()
    asm.feed(announce(tid="KNOWN"))
    with pytest.raises(ReassemblyError) as ei:
        asm.feed(part(0, b"x", tid="OTHER"))
    assert ei.value.reason is ReassemblyErrorReason.UNKNOWN_TRANSFER
    assert asm.pending() == [("S", "R", "KNOWN")]
    assert asm.missing(("S", "R", "KNOWN")) == [0, 1, 2, 3]


def test_index_out_of_range_keeps_transfer():
    asm = Assembler()
    asm.feed(announce(count=2))
    asm.feed(part(0, b"a"))
    with pytest.raises(ReassemblyError) as ei:
        asm.feed(part(2, b"c"))
    assert ei.value.reason is ReassemblyErrorReason.INDEX_OUT_OF_RANGE
    assert asm.feed(part(1, b"b")).payload == b"ab"


def test_transfers_keyed_by_peers():
    asm = Assembler()
    asm.feed(announce(count=1, sender="A"))
    asm.feed(announce(count=1, sender="B"))
    assert asm.feed(part(0, b"from b", sender="B")).payload == b"from b"
    assert asm.feed(part(0, b"from a", sender="A")).payload == b"from a"
    with pytest.raises(ReassemblyError):
        asm.feed(part(0, b"x", receiver="OTHER"))


def test_repeat_announcement():
    asm = Assembler()
    asm.feed(announce(count=2))
    asm.feed(part(0, b"a"))
    asm.feed(announce(count=2))
    assert asm.missing(("S", "R", "ID")) == [1]
    asm.feed(announce(count=3))
    assert asm.missing(("S", "R", "ID")) == [0, 1, 2]


def test_idle_transfer_is_evicted():
    clock = FakeClock()
    asm = Assembler(idle_timeout=10.0, clock=clock)
    asm.feed(announce(count=2))
    clock.now = 5.0
    asm.feed(part(0, b"a"))
    clock.now = 14.0
    assert asm.evict_expired() == []
    clock.now = 15.5
    with pytest.raises(ReassemblyError) as ei:
        asm.feed(part(1, b"b"))
    assert ei.value.reason is ReassemblyErrorReason.UNKNOWN_TRANSFER
    assert len(asm) == 0


def test_periodic_sweep():
    clock = FakeClock()
    asm = Assembler(idle_timeout=1.0, clock=clock)
    asm.feed(announce(tid="OLD"))
    clock.now = 0.8
    asm.feed(announce(tid="NEW"))
    clock.now = 1.5
    assert asm.evict_expired() == [("S", "R", "OLD")]
    assert asm.pending() == [("S", "R", "NEW")]


def test_max_transfers_drops_least_recent():
    clock = FakeClock()
    asm = Assembler(max_transfers=2, clock=clock)
    asm.feed(announce(tid="T1"))
    clock.now = 1.0
    asm.feed(announce(tid="T2"))
    clock.now = 2.0
    asm.feed(part(0, b"x", tid="T1"))
    clock.now = 3.0
    asm.feed(announce(tid="T3"))
    assert sorted(k[2] for k in asm.pending()) == ["T1", "T3"]


def test_bad_arguments():
    with pytest.raises(ValueError):
        Assembler(idle_timeout=0)
    with pytest.raises(ValueError):
        Assembler(max_transfers=0)


def test_concurrent_feeds():
    asm = Assembler()
    results = {}
    errors = []

    def worker(n):
        sender = f"PEER{n}"
        payload = bytes((n + i) % 256 for i in range(500))
        try:
            for msg in split(sender, "R", "res", payload, 60, transfer_id=f"T{n}"):
                c = asm.feed(msg)
                if c is not None:
                    results[sender] = (c.payload, payload)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == 16
    assert all(got == want for got, want in results.values())
    assert len(asm) == 0
