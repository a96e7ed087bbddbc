import threading
import time

import pytest

from tsunami.pool import Pool, PoolConfig, PoolError


class FakeSession:
    def __init__(self, seq, idle=True, streams=0, idle_since=None, alive=True):
        self._seq = seq
        self.idle = idle
        self.streams = streams
        self._idle_since = idle_since
        self.alive = alive
        self.closed = False
        self.close_calls = 0

    def is_closed(self):
        return self.closed

    def is_idle(self):
        return self.idle

    def seq(self):
        return self._seq

    def active_stream_count(self):
        return self.streams

    def idle_since(self):
        return self._idle_since

    def send_heartbeat(self):
        return None

    def is_alive(self, timeout):
        return self.alive

    def close(self):
        self.closed = True
        self.close_calls += 1


def test_get_or_create_session_concurrent_first_dial():
    dials = []
    lock = threading.Lock()

    def dial():
        with lock:
            dials.append(1)
            seq = len(dials)
        time.sleep(0.02)
        return FakeSession(seq, idle=False)

    pool = Pool(PoolConfig(), dial)
    results, errors = [], []

    def worker():
        try:
            results.append(pool.get_or_create_session())
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    try:
        assert errors == []
        assert len(dials) == 1
        assert pool.session_count() == 1
        assert len({id(s) for s in results}) == 1
    finally:
        pool.close()


def test_prefers_newest_idle_then_newest_any():
    pool = Pool(PoolConfig(), lambda: FakeSession(99))
    try:
        busy_new = FakeSession(5, idle=False)
        idle_old = FakeSession(1, idle=True)
        idle_new = FakeSession(3, idle=True)
        for s in (busy_new, idle_old, idle_new):
            pool.add_session(s)
        assert pool.get_or_create_session() is idle_new

        idle_old.idle = False
        idle_new.idle = False
        assert pool.get_or_create_session() is busy_new
    finally:
        pool.close()


def test_least_loaded_and_counts():
    pool = Pool()
    try:
        with pytest.raises(PoolError):
            pool.get_least_loaded_session()
        a, b, c = FakeSession(1, streams=4), FakeSession(2, streams=1), FakeSession(3, streams=7)
        c.closed = True
        for s in (a, b, c):
            pool.add_session(s)
        assert pool.get_least_loaded_session() is b
        assert pool.session_count() == 2
        assert pool.active_stream_count() == 5
    finally:
        pool.close()


def test_dial_failure_raises_pool_error():
    def dial():
        raise OSError("refused")

    pool = Pool(PoolConfig(), dial)
    try:
        with pytest.raises(PoolError, match="dial new session"):
            pool.create_new_session()
        assert pool.session_count() == 0
    finally:
        pool.close()


def test_create_new_session_always_dials():
    counter = iter(range(1, 10))
    pool = Pool(PoolConfig(), lambda: FakeSession(next(counter)))
    try:
        first = pool.create_new_session()
        second = pool.create_new_session()
        assert first is not second
        assert pool.session_count() == 2
    finally:
        pool.close()


def test_next_seq_increments():
    pool = Pool()
    try:
        assert [pool.next_seq() for _ in range(3)] == [1, 2, 3]
    finally:
        pool.close()


def test_close_idle_sessions_keeps_minimum():
    pool = Pool(clock=lambda: 1000.0)
    try:
        old1 = FakeSession(1, idle_since=900.0)
        old2 = FakeSession(2, idle_since=900.0)
        fresh = FakeSession(3, idle_since=999.0)
        busy = FakeSession(4, idle=False)
        for s in (old1, old2, fresh, busy):
            pool.add_session(s)

        pool.close_idle_sessions(idle_duration=10.0, min_keep=3)
        assert old1.closed is True
        assert old2.closed is False
        assert fresh.closed is False
        assert pool.session_count() == 3
    finally:
        pool.close()


def test_background_idle_cleanup_closes_expired():
    config = PoolConfig(min_idle_session=0, idle_check_interval=0.01, idle_timeout=1.0)
    pool = Pool(config, clock=lambda: 500.0)
    try:
        stale = FakeSession(1, idle_since=100.0)
        pool.add_session(stale)
        deadline = time.monotonic() + 2.0
        while not stale.closed and time.monotonic() < deadline:
            time.sleep(0.01)
        assert stale.closed is True
        assert pool.session_count() == 0
    finally:
        pool.close()


def test_close_closes_all_once():
    pool = Pool()
    sessions = [FakeSession(i) for i in range(3)]
    for s in sessions:
        pool.add_session(s)
    pool.close()
    pool.close()
    assert [s.close_calls for s in sessions] == [1, 1, 1]
    assert pool.session_count() == 0