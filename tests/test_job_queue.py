import threading
import time

import pytest

from matebench.job_queue import JobQueue
from matebench.positions import records_from_payloads


def make_queue(count: int, max_requeues: int = 2) -> JobQueue:
    return JobQueue(records_from_payloads([f"pos{i}" for i in range(count)]), max_requeues=max_requeues)


def test_claims_in_input_order_then_none():
    q = make_queue(3)
    claimed = []
    for _ in range(3):
        record = q.claim()
        claimed.append(record.index)
        q.complete(record)
    assert claimed == [0, 1, 2]
    assert q.claim() is None
    assert q.claim() is None
    assert q.remaining() == 0


def test_concurrent_claims_deliver_each_record_once():
    q = make_queue(500)
    seen = []
    lock = threading.Lock()

    def worker():
        while True:
            record = q.claim()
            if record is None:
                return
            with lock:
                seen.append(record.index)
            q.complete(record)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sorted(seen) == list(range(500))


def test_requeue_puts_record_back_in_front():
    q = make_queue(3)
    first = q.claim()
    assert q.requeue(first) is True
    assert q.retries(first) == 1
    assert q.claim().index == first.index


def test_requeue_bound_finalizes_record():
    q = make_queue(1, max_requeues=2)
    record = q.claim()
    assert q.requeue(record)
    record = q.claim()
    assert q.requeue(record)
    record = q.claim()
    assert q.requeue(record) is False
    assert q.remaining() == 0
    assert q.claim() is None


def test_zero_requeues_allowed():
    q = make_queue(1, max_requeues=0)
    record = q.claim()
    assert q.requeue(record) is False
    assert q.claim() is None


def test_release_does_not_charge_a_retry():
    q = make_queue(1, max_requeues=0)
    record = q.claim()
    q.release(record)
    assert q.retries(record) == 0
    assert q.claim().index == record.index


def test_claim_blocks_while_records_in_flight():
    q = make_queue(1)
    held = q.claim()
    result = {}

    def waiter():
        result["record"] = q.claim()

    t = threading.Thread(target=waiter)
    t.start()
    time.sleep(0.1)
    assert t.is_alive(), "claim should wait for the in-flight record"

    q.requeue(held)
    t.join(timeout=2)
    assert not t.is_alive()
    assert result["record"].index == held.index


def test_claim_returns_none_when_last_in_flight_completes():
    q = make_queue(1)
    held = q.claim()
    result = {}
    t = threading.Thread(target=lambda: result.setdefault("record", q.claim()))
    t.start()
    time.sleep(0.05)
    q.complete(held)
    t.join(timeout=2)
    assert result["record"] is None


def test_cancel_wakes_blocked_claimers_and_stops_handing_out():
    q = make_queue(2)
    held = q.claim()
    q.claim()
    result = {}
    t = threading.Thread(target=lambda: result.setdefault("record", q.claim()))
    t.start()
    time.sleep(0.05)
    q.cancel()
    t.join(timeout=2)
    assert result["record"] is None
    assert q.cancelled

    q.requeue(held)
    assert q.claim() is None


def test_completing_unknown_record_raises():
    q = make_queue(2)
    record = q.claim()
    q.complete(record)
    with pytest.raises(ValueError):
        q.complete(record)
