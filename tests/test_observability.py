"""Tests for the metrics collector."""

import threading

from observability import Metrics


def test_counters():
    m = Metrics()
    m.counter("queue.replayed")
    m.counter("queue.replayed", 2)
    assert m.get("queue.replayed") == 3
    assert m.get("missing") == 0


def test_timer_records_even_on_error():
    m = Metrics()
    try:
        with m.timer("sync.manual"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert m.summary()["timers"]["sync.manual"]["count"] == 1


def test_reset():
    m = Metrics()
    m.counter("a")
    with m.timer("b"):
        pass
    m.reset()
    assert m.summary() == {"counters": {}, "timers": {}}


def test_counter_from_many_threads():
    m = Metrics()

    def bump():
        for _ in range(500):
            m.counter("queue.enqueued")

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert m.get("queue.enqueued") == 4000
