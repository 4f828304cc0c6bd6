"""
Unit tests for per-key locks.
Tests cloudnest/core/locks.py
"""
import threading

import pytest

from cloudnest.core.locks import KeyedLock


@pytest.mark.unit
class TestKeyedLock:
    """Test per-key locking and lock eviction."""

    def test_lock_is_dropped_after_release(self):
        locks = KeyedLock()

        for i in range(100):
            with locks.hold(f"user-{i}"):
                assert len(locks) == 1

        assert len(locks) == 0

    def test_reentrant_hold(self):
        locks = KeyedLock()

        with locks.hold("user-1"):
            with locks.hold("user-1"):
                assert len(locks) == 1
            assert len(locks) == 1

        assert len(locks) == 0

    def test_lock_survives_while_waited_on(self):
        locks = KeyedLock()
        entered = threading.Event()
        order = []

        def waiter():
            entered.set()
            with locks.hold("user-1"):
                order.append("waiter")

        with locks.hold("user-1"):
            thread = threading.Thread(target=waiter)
            thread.start()
            entered.wait(timeout=5)
            thread.join(timeout=0.1)
            assert thread.is_alive()
            order.append("holder")

        thread.join(timeout=5)
        assert order == ["holder", "waiter"]
        assert len(locks) == 0

    def test_keys_do_not_block_each_other(self):
        locks = KeyedLock()
        done = threading.Event()

        def other_owner():
            with locks.hold("user-2"):
                done.set()

        with locks.hold("user-1"):
            thread = threading.Thread(target=other_owner)
            thread.start()
            assert done.wait(timeout=5)

        thread.join(timeout=5)
