"""
Completion waiter: block until every request created by a transaction is handled.

The consumer contract emits RequestSent(bytes32 indexed id) for each request it
sends. The waiter reads the transaction's receipt logs, keeps the RequestSent
logs emitted by the consumer, and waits on the tracker for each id.
"""

import logging
import time
from typing import Iterable, List, Optional

from oraclesim.errors import WaitTimeout
from oraclesim.router import Router, request_sent_topic
from oraclesim.schema import LogRecord
from oraclesim.tracker import LifecycleTracker

logger = logging.getLogger(__name__)


def extract_request_ids(logs: Iterable[LogRecord], consumer_address: str) -> List[bytes]:
    """One request id per RequestSent log emitted by consumer_address, in log order."""
    topic = request_sent_topic()
    consumer = consumer_address.lower()
    ids = []
    for log in logs:
        if log.address.lower() != consumer:
            continue
        if len(log.topics) < 2 or bytes(log.topics[0]) != topic:
            continue
        ids.append(bytes(log.topics[1]))
    return ids


class CompletionWaiter:
    def __init__(self, router: Router, tracker: LifecycleTracker):
        self.router = router
        self.tracker = tracker

    def request_ids(self, consumer_address: str, tx_hash: str) -> List[bytes]:
        return extract_request_ids(self.router.get_transaction_logs(tx_hash), consumer_address)

    def wait(
        self,
        consumer_address: str,
        tx_hash: str,
        timeout: Optional[float] = None,
        raise_on_failure: bool = False,
    ) -> List[bytes]:
        """
        Block until every request created by tx_hash is handled, in any completion order.

        Args:
            consumer_address: contract that sent the requests (RequestSent emitter).
            tx_hash: transaction that created them.
            timeout: overall deadline in seconds; None waits forever (the default).
            raise_on_failure: raise RequestFailed as soon as one request is abandoned.

        Returns:
            The request ids, in log order.

        Raises:
            WaitTimeout: deadline passed with requests still pending.
            RequestFailed: raise_on_failure and a request was abandoned.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        ids = self.request_ids(consumer_address, tx_hash)
        logger.debug("Waiting on %d request(s) from tx %s", len(ids), tx_hash)
        for i, request_id in enumerate(ids):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not self.tracker.wait_handled(request_id, timeout=remaining, raise_on_failure=raise_on_failure):
                raise WaitTimeout([r for r in ids[i:] if not self.tracker.is_handled(r)])
        return ids


def wait_for_request_handling(
    router: Router,
    tracker: LifecycleTracker,
    consumer_address: str,
    tx_hash: str,
    timeout: Optional[float] = None,
    raise_on_failure: bool = False,
) -> List[bytes]:
    """Single-call form of CompletionWaiter.wait()."""
    return CompletionWaiter(router, tracker).wait(
        consumer_address, tx_hash, timeout=timeout, raise_on_failure=raise_on_failure
    )
