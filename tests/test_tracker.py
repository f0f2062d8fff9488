import threading
import time

import pytest

from oraclesim.errors import LifecycleError, RequestFailed
from oraclesim.schema import RequestState

RID = b"\x07" * 32
OTHER = b"\x08" * 32


def test_pickup_succeeds_once(tracker):
    assert tracker.try_mark_picked_up(RID) is True
    assert tracker.try_mark_picked_up(RID) is False
    assert tracker.try_mark_picked_up(OTHER) is True


def test_concurrent_pickup_has_one_winner(tracker):
    wins = []
    start = threading.Barrier(16)

    def contend():
        start.wait()
        wins.append(tracker.try_mark_picked_up(RID))

    threads = [threading.Thread(target=contend) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert wins.count(True) == 1
    assert wins.count(False) == 15


def test_handled_requires_pickup(tracker):
    with pytest.raises(LifecycleError):
        tracker.mark_handled(RID)
    assert tracker.is_handled(RID) is False
    with pytest.raises(LifecycleError):
        tracker.mark_executing(RID)
    with pytest.raises(LifecycleError):
        tracker.mark_failed(RID, "x")


def test_mark_handled_is_idempotent(tracker):
    tracker.try_mark_picked_up(RID)
    tracker.mark_handled(RID)
    tracker.mark_handled(RID)
    assert tracker.is_handled(RID)


def test_states_only_move_forward(tracker):
    assert tracker.state(RID) is RequestState.CREATED
    tracker.try_mark_picked_up(RID)
    assert tracker.state(RID) is RequestState.PICKED_UP
    tracker.mark_executing(RID)
    assert tracker.state(RID) is RequestState.EXECUTING
    tracker.mark_handled(RID)
    assert tracker.state(RID) is RequestState.HANDLED
    assert tracker.try_mark_picked_up(RID) is False
    assert tracker.is_picked_up(RID) and tracker.is_handled(RID)
    assert tracker.state(RID) is RequestState.HANDLED


def test_failure_is_queryable_and_does_not_handle(tracker):
    tracker.try_mark_picked_up(RID)
    tracker.mark_failed(RID, "DecodeError: truncated")
    assert tracker.is_failed(RID)
    assert tracker.failure(RID) == "DecodeError: truncated"
    assert tracker.is_picked_up(RID)
    assert not tracker.is_handled(RID)
    assert not tracker.is_failed(OTHER)


def test_wait_handled_times_out(tracker):
    tracker.try_mark_picked_up(RID)
    assert tracker.wait_handled(RID, timeout=0.05) is False


def test_wait_handled_wakes_on_mark_handled(tracker):
    tracker.try_mark_picked_up(RID)
    done = threading.Event()

    def wait():
        if tracker.wait_handled(RID):
            done.set()

    waiter = threading.Thread(target=wait, daemon=True)
    waiter.start()
    assert not done.wait(0.05)
    tracker.mark_handled(RID)
    assert done.wait(2)


def test_wait_registered_before_pickup(tracker):
    result = []
    waiter = threading.Thread(target=lambda: result.append(tracker.wait_handled(RID, timeout=5)), daemon=True)
    waiter.start()
    tracker.try_mark_picked_up(RID)
    tracker.mark_handled(RID)
    waiter.join(5)
    assert result == [True]


def test_wait_on_failed_request(tracker):
    tracker.try_mark_picked_up(RID)
    tracker.mark_failed(RID, "ExecutionError: boom")
    assert tracker.wait_handled(RID, timeout=0.05) is False
    with pytest.raises(RequestFailed, match="boom"):
        tracker.wait_handled(RID, raise_on_failure=True)


def test_reset_clears_entries(tracker):
    tracker.try_mark_picked_up(RID)
    tracker.mark_handled(RID)
    assert len(tracker) == 1
    tracker.reset()
    assert len(tracker) == 0
    assert tracker.try_mark_picked_up(RID) is True


def test_waiter_blocked_across_reset_sees_new_entry(tracker):
    tracker.try_mark_picked_up(RID)
    result = []
    started = threading.Event()

    def wait():
        started.set()
        result.append(tracker.wait_handled(RID, timeout=5))

    waiter = threading.Thread(target=wait, daemon=True)
    waiter.start()
    started.wait(1)
    time.sleep(0.05)
    tracker.reset()
    tracker.try_mark_picked_up(RID)
    tracker.mark_handled(RID)
    waiter.join(5)
    assert result == [True]


def test_wait_does_not_create_entries(tracker):
    assert tracker.wait_handled(RID, timeout=0) is False
    assert len(tracker) == 0


def test_snapshot(tracker):
    tracker.try_mark_picked_up(RID)
    assert tracker.snapshot() == {"0x" + RID.hex(): RequestState.PICKED_UP}
