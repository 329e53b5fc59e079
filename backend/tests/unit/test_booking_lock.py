"""
Unit tests for reservation locks (process-local and Redis-backed).
"""

from datetime import date
import threading
from unittest.mock import MagicMock, patch

import pytest

from app.core import booking_lock
from app.core.booking_lock import ledger_lock_key, reservation_lock, slot_lock_key
from app.core.exceptions import TransientFailureException


def unique_key(name: str) -> str:
    return f"test:{name}:{threading.get_ident()}"


def test_lock_keys_are_scoped_by_instructor_and_date():
    assert slot_lock_key("I1", date(2024, 12, 23)) == "reservation:I1:2024-12-23"
    assert ledger_lock_key("S1") == "ledger:S1"


def test_lock_is_reentrant_in_the_same_thread():
    key = unique_key("reentrant")
    with reservation_lock([key]):
        with reservation_lock([key], wait_s=0.01):
            pass


def test_contended_lock_times_out_as_transient_failure():
    key = unique_key("contended")
    held = threading.Event()
    release = threading.Event()

    def holder():
        with reservation_lock([key]):
            held.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(TransientFailureException) as exc_info:
            with reservation_lock([key], wait_s=0.05):
                pass
        assert exc_info.value.details == {"lock_key": key}
    finally:
        release.set()
        thread.join(timeout=5)

    # Released by the holder; free again
    with reservation_lock([key], wait_s=0.5):
        pass


def test_partial_acquisition_is_released_on_timeout():
    first = unique_key("first")
    second = unique_key("second")
    held = threading.Event()
    release = threading.Event()

    def holder():
        with reservation_lock([second]):
            held.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(TransientFailureException):
            with reservation_lock([first, second], wait_s=0.05):
                pass
    finally:
        release.set()
        thread.join(timeout=5)

    acquired = []

    def other_thread():
        with reservation_lock([first], wait_s=0.5):
            acquired.append(True)

    checker = threading.Thread(target=other_thread)
    checker.start()
    checker.join(timeout=5)
    assert acquired == [True]


class TestRedisLock:
    def test_redis_lock_set_and_released(self):
        client = MagicMock()
        client.set.return_value = True
        key = unique_key("redis")

        with patch.object(booking_lock, "_get_sync_redis", return_value=client):
            with reservation_lock([key], ttl_s=7):
                pass

        namespaced = booking_lock._namespaced_key(key)
        args, kwargs = client.set.call_args
        assert args[0] == namespaced
        assert kwargs == {"nx": True, "ex": 7}
        client.delete.assert_called_once_with(namespaced)

    def test_redis_lock_held_elsewhere_times_out(self):
        client = MagicMock()
        client.set.return_value = False
        key = unique_key("redis-held")

        with patch.object(booking_lock, "_get_sync_redis", return_value=client):
            with pytest.raises(TransientFailureException):
                with reservation_lock([key], wait_s=0.05):
                    pass

        client.delete.assert_not_called()

    def test_redis_errors_fall_back_to_local_lock(self):
        client = MagicMock()
        client.set.side_effect = ConnectionError("redis down")
        key = unique_key("redis-down")
        entered = []

        with patch.object(booking_lock, "_get_sync_redis", return_value=client):
            with reservation_lock([key], wait_s=0.05):
                entered.append(True)

        assert entered == [True]
