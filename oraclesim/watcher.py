"""
Event watcher: RequestCreated stream → decode → execute → encode → fulfill.

Per event:
    Seen → (dedup) → Decoding → Executing → Encoding → Submitting → Handled

Each event runs on its own thread so a slow script never holds up the
subscription loop. Decode/execution/encoding failures abandon the request
(pickedUp stays True, handled stays False) and are recorded on the tracker so
the stuck state is queryable. Submission failures are retried, then surfaced.
"""

import logging
import threading
import time
from typing import Callable, List, Mapping, Optional

from oraclesim.codec import decode_request
from oraclesim.errors import DecodeError, ExecutionError, OracleSimError, SubmissionError, SubmissionPending
from oraclesim.router import Router
from oraclesim.sandbox import Sandbox
from oraclesim.schema import ComputeRequest, RequestCreatedEvent
from oraclesim.secrets_bundle import SecretsProvider, static_provider
from oraclesim.tracker import LifecycleTracker

logger = logging.getLogger(__name__)

FailureCallback = Callable[[bytes, OracleSimError], None]


class EventWatcher:
    """
    Drives requests from the router's event stream to fulfillment.

    Args:
        router: chain surface (events, requesters, fulfill).
        tracker: shared lifecycle store; the only dedup mechanism.
        sandbox: script executor.
        secrets_provider: request → secrets bundle. Defaults to an empty bundle.
        poll_interval_seconds: subscription loop poll interval.
        submit_retries: extra fulfill attempts after the first failure.
        submit_backoff_seconds: linear backoff between fulfill attempts.
        report_errors: fulfill failed executions with err set instead of abandoning them.
        on_failure: called with (request_id, error) whenever a request is abandoned.
    """

    def __init__(
        self,
        router: Router,
        tracker: LifecycleTracker,
        sandbox: Sandbox,
        secrets_provider: Optional[SecretsProvider] = None,
        poll_interval_seconds: float = 0.05,
        submit_retries: int = 3,
        submit_backoff_seconds: float = 0.5,
        report_errors: bool = False,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.router = router
        self.tracker = tracker
        self.sandbox = sandbox
        self.secrets_provider = secrets_provider or static_provider()
        self.poll_interval_seconds = poll_interval_seconds
        self.submit_retries = max(0, int(submit_retries))
        self.submit_backoff_seconds = submit_backoff_seconds
        self.report_errors = report_errors
        self.on_failure = on_failure
        self._stop = threading.Event()
        self._loop: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []
        self._workers_lock = threading.Lock()

    # --- per-event state machine ---

    def handle_event(self, event: RequestCreatedEvent) -> bool:
        """Process one event in the calling thread. True only if the request reached Handled."""
        request_id = event.request_id
        label = "0x" + request_id.hex()
        if not self.tracker.try_mark_picked_up(request_id):
            logger.debug("Request %s already picked up; skipping redelivery", label)
            return False

        try:
            logger.debug("Request %s: decoding", label)
            request = decode_request(request_id, event.data, requester=self._requester(request_id))

            logger.debug("Request %s: executing", label)
            self.tracker.mark_executing(request_id)
            value = self.sandbox.run(request, self._secrets_for(request))

            logger.debug("Request %s: encoding", label)
            result = self.sandbox.encode(value)
        except (DecodeError, ExecutionError) as e:
            return self._abandon(request_id, e)

        logger.debug("Request %s: submitting %d bytes", label, len(result))
        try:
            self._submit(request_id, result, b"")
        except SubmissionError as e:
            self._surface(request_id, e)
            return False
        self.tracker.mark_handled(request_id)
        logger.info("Request %s fulfilled (%d bytes)", label, len(result))
        return True

    def _requester(self, request_id: bytes) -> Optional[str]:
        try:
            return self.router.requester_of(request_id)
        except Exception as e:
            logger.warning("requesters(0x%s) lookup failed: %s", request_id.hex(), e)
            return None

    def _secrets_for(self, request: ComputeRequest) -> Mapping[str, str]:
        try:
            return self.secrets_provider(request)
        except Exception as e:
            raise ExecutionError(f"Secrets unavailable: {type(e).__name__}: {e}", thrown=e) from e

    def _submit(self, request_id: bytes, response: bytes, err: bytes) -> str:
        # a SubmissionPending retry re-awaits the broadcast tx inside the router
        attempts = self.submit_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.router.fulfill(request_id, response, err)
            except Exception as e:
                if attempt == attempts:
                    if isinstance(e, SubmissionError):
                        raise
                    raise SubmissionError(f"fulfill failed for 0x{request_id.hex()}: {e}") from e
                if isinstance(e, SubmissionPending):
                    logger.warning(
                        "fulfill 0x%s attempt %d/%d: tx %s not mined yet",
                        request_id.hex(), attempt, attempts, e.tx_hash,
                    )
                else:
                    logger.warning(
                        "fulfill 0x%s attempt %d/%d failed: %s", request_id.hex(), attempt, attempts, e
                    )
                time.sleep(self.submit_backoff_seconds * attempt)
        raise SubmissionError(f"fulfill was never attempted for 0x{request_id.hex()}")

    def _abandon(self, request_id: bytes, error: OracleSimError) -> bool:
        label = "0x" + request_id.hex()
        if self.report_errors:
            try:
                self._submit(request_id, b"", str(error).encode("utf-8"))
            except SubmissionError as e:
                self._surface(request_id, e)
                return False
            self.tracker.mark_handled(request_id)
            logger.warning("Request %s failed and was fulfilled with an error: %s", label, error)
            return True
        logger.warning("Request %s abandoned: %s: %s", label, type(error).__name__, error)
        self._record_failure(request_id, error)
        return False

    def _surface(self, request_id: bytes, error: SubmissionError) -> None:
        logger.error("Request 0x%s could not be submitted: %s", request_id.hex(), error)
        self._record_failure(request_id, error)

    def _record_failure(self, request_id: bytes, error: OracleSimError) -> None:
        self.tracker.mark_failed(request_id, f"{type(error).__name__}: {error}")
        if self.on_failure is not None:
            try:
                self.on_failure(request_id, error)
            except Exception:
                logger.exception("on_failure callback raised for 0x%s", request_id.hex())

    # --- subscription loop ---

    def dispatch(self, event: RequestCreatedEvent) -> threading.Thread:
        """Run handle_event on its own daemon thread."""
        worker = threading.Thread(
            target=self._run_worker,
            args=(event,),
            name=f"oraclesim-request-{event.request_id.hex()[:8]}",
            daemon=True,
        )
        with self._workers_lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()
        return worker

    def _run_worker(self, event: RequestCreatedEvent) -> None:
        try:
            self.handle_event(event)
        except Exception:
            logger.exception("Unexpected error handling request 0x%s", event.request_id.hex())

    def poll_once(self) -> int:
        """Fetch pending events and dispatch each. Returns how many were dispatched."""
        events = self.router.poll_request_events()
        for event in events:
            self.dispatch(event)
        return len(events)

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.warning("Router poll failed: %s", e)
            self._stop.wait(self.poll_interval_seconds)

    def start(self) -> None:
        if self._loop is not None and self._loop.is_alive():
            return
        self._stop.clear()
        self._loop = threading.Thread(target=self._run_loop, name="oraclesim-watcher", daemon=True)
        self._loop.start()
        logger.info("Watching for RequestCreated events (poll every %.3fs)", self.poll_interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop polling and wait for in-flight requests (up to timeout each)."""
        self._stop.set()
        if self._loop is not None:
            self._loop.join(timeout)
            self._loop = None
        with self._workers_lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.join(timeout)

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_alive()
