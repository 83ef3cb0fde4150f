"""
Unit tests for keyed locks.
"""

import threading

import pytest
from flask import Flask

from pickem.utils.locks import (
    LockManager,
    LockTimeout,
    MemoryLockBackend,
    aggregate_lock_key,
    game_lock_key,
    rank_lock_key,
)


class TestMemoryLockBackend:
    def test_second_holder_times_out(self):
        backend = MemoryLockBackend()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with backend.hold("game:1", timeout=30, wait_timeout=1):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)

        try:
            with pytest.raises(LockTimeout) as excinfo:
                with backend.hold("game:1", timeout=30, wait_timeout=0.05):
                    pass
            assert excinfo.value.key == "game:1"
        finally:
            release.set()
            thread.join(5)

    def test_different_keys_do_not_block(self):
        backend = MemoryLockBackend()

        with backend.hold("game:1", timeout=30, wait_timeout=0.05):
            with backend.hold("game:2", timeout=30, wait_timeout=0.05):
                pass

    def test_lock_released_after_error(self):
        backend = MemoryLockBackend()

        with pytest.raises(RuntimeError):
            with backend.hold("game:1", timeout=30, wait_timeout=0.05):
                raise RuntimeError("boom")

        with backend.hold("game:1", timeout=30, wait_timeout=0.05):
            pass


class TestLockManager:
    def test_requires_init(self):
        with pytest.raises(RuntimeError):
            LockManager().hold("game:1")

    def test_unknown_backend(self):
        app = Flask(__name__)
        app.config["LOCK_BACKEND"] = "carrier-pigeon"

        with pytest.raises(ValueError):
            LockManager(app)

    def test_memory_backend_registered(self):
        app = Flask(__name__)
        app.config["LOCK_BACKEND"] = "memory"
        manager = LockManager(app)

        assert isinstance(manager.backend, MemoryLockBackend)
        assert app.extensions["pickem_locks"] is manager

    def test_key_helpers(self):
        assert game_lock_key(5) == "game:5"
        assert aggregate_lock_key(3, 2024) == "aggregate:2024:3"
        assert rank_lock_key(2024) == "rank:2024:season"
        assert rank_lock_key(2024, 7) == "rank:2024:week:7"
