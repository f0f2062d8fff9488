"""
Request lifecycle tracker: the one piece of shared mutable state.

Per request id it records pickedUp / executing / handled plus an optional
failure. pickedUp is an atomic test-and-set and is the only defence against
duplicate event delivery. handled is never set unless pickedUp is.

Waiters block on a condition and wake when markHandled (or markFailed) runs.
Entries live for the tracker's lifetime; reset() clears them between test runs.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from oraclesim.errors import LifecycleError, RequestFailed
from oraclesim.schema import RequestState

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    picked_up: bool = False
    executing: bool = False
    handled: bool = False
    failure: Optional[str] = None


def _label(request_id: bytes) -> str:
    return "0x" + request_id.hex()


class LifecycleTracker:
    """Thread-safe lifecycle store keyed by request id."""

    def __init__(self):
        self._cond = threading.Condition()
        self._entries: Dict[bytes, _Entry] = {}

    def _entry(self, request_id: bytes) -> _Entry:
        # caller holds self._cond
        entry = self._entries.get(request_id)
        if entry is None:
            entry = self._entries[request_id] = _Entry()
        return entry

    def try_mark_picked_up(self, request_id: bytes) -> bool:
        """Return True only for the first call per id."""
        with self._cond:
            entry = self._entry(request_id)
            if entry.picked_up:
                return False
            entry.picked_up = True
        logger.debug("Request %s picked up", _label(request_id))
        return True

    def mark_executing(self, request_id: bytes) -> None:
        with self._cond:
            entry = self._entry(request_id)
            if not entry.picked_up:
                raise LifecycleError(f"Request {_label(request_id)} cannot execute before pickup")
            entry.executing = True

    def mark_handled(self, request_id: bytes) -> None:
        """Idempotent. Wakes every waiter on this id."""
        with self._cond:
            entry = self._entry(request_id)
            if not entry.picked_up:
                raise LifecycleError(f"Request {_label(request_id)} cannot be handled before pickup")
            if entry.handled:
                return
            entry.handled = True
            self._cond.notify_all()
        logger.debug("Request %s handled", _label(request_id))

    def mark_failed(self, request_id: bytes, error: str) -> None:
        """Record that a picked-up request was abandoned. handled stays False."""
        with self._cond:
            entry = self._entry(request_id)
            if not entry.picked_up:
                raise LifecycleError(f"Request {_label(request_id)} cannot fail before pickup")
            entry.failure = error
            self._cond.notify_all()

    def is_picked_up(self, request_id: bytes) -> bool:
        with self._cond:
            entry = self._entries.get(request_id)
            return bool(entry and entry.picked_up)

    def is_handled(self, request_id: bytes) -> bool:
        with self._cond:
            entry = self._entries.get(request_id)
            return bool(entry and entry.handled)

    def is_failed(self, request_id: bytes) -> bool:
        return self.failure(request_id) is not None

    def failure(self, request_id: bytes) -> Optional[str]:
        with self._cond:
            entry = self._entries.get(request_id)
            return entry.failure if entry else None

    def state(self, request_id: bytes) -> RequestState:
        with self._cond:
            entry = self._entries.get(request_id)
            if entry is None or not entry.picked_up:
                return RequestState.CREATED
            if entry.handled:
                return RequestState.HANDLED
            if entry.executing:
                return RequestState.EXECUTING
            return RequestState.PICKED_UP

    def wait_handled(
        self,
        request_id: bytes,
        timeout: Optional[float] = None,
        raise_on_failure: bool = False,
    ) -> bool:
        """
        Block until request_id is handled.

        Args:
            timeout: seconds to wait; None waits forever (the default).
            raise_on_failure: raise RequestFailed instead of waiting on an abandoned request.

        Returns:
            True once handled, False if the timeout expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                # looked up on every pass: reset() replaces entries under a blocked waiter
                entry = self._entries.get(request_id)
                if entry is not None and entry.handled:
                    return True
                if raise_on_failure and entry is not None and entry.failure is not None:
                    raise RequestFailed(request_id, entry.failure)
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)

    def snapshot(self) -> Dict[str, RequestState]:
        with self._cond:
            ids = list(self._entries)
        return {_label(i): self.state(i) for i in ids}

    def reset(self) -> None:
        """Drop every entry. For test isolation between simulator runs."""
        with self._cond:
            self._entries.clear()
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)
