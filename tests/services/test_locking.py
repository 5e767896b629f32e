"""Tests for the per-request lock table."""

import threading

import pytest

from approval_kernel.services.locking import RequestLockManager


class TestRequestLockManager:
    def test_lock_is_dropped_after_release(self):
        locks = RequestLockManager()
        with locks.hold("req-1"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_lock_is_dropped_when_body_raises(self):
        locks = RequestLockManager()
        with pytest.raises(KeyError):
            with locks.hold("req-1"):
                raise KeyError("req-1")
        assert len(locks) == 0

    def test_table_stays_empty_after_many_requests(self):
        locks = RequestLockManager()
        for n in range(500):
            with locks.hold(f"req-{n}"):
                pass
        assert len(locks) == 0

    def test_waiter_keeps_lock_alive_and_is_excluded(self):
        locks = RequestLockManager()
        entered = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def first():
            with locks.hold("req-1"):
                entered.set()
                release.wait(timeout=5)
                order.append("first")

        def second():
            entered.wait(timeout=5)
            with locks.hold("req-1"):
                order.append("second")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        entered.wait(timeout=5)
        release.set()
        for t in threads:
            t.join(timeout=5)

        assert order == ["first", "second"]
        assert len(locks) == 0

    def test_different_requests_do_not_block(self):
        locks = RequestLockManager()
        with locks.hold("req-1"):
            with locks.hold("req-2"):
                assert len(locks) == 2
        assert len(locks) == 0
