import threading

import pytest
from web3.exceptions import TransactionNotFound

from conftest import CONSUMER, OTHER_CONSUMER
from oraclesim.codec import encode_request
from oraclesim.errors import RequestFailed, WaitTimeout
from oraclesim.router import event_topic, request_sent_topic
from oraclesim.schema import LogRecord
from oraclesim.waiter import CompletionWaiter, extract_request_ids, wait_for_request_handling

ID_A = b"\x0a" * 32
ID_B = b"\x0b" * 32


def test_extract_keeps_consumer_request_sent_logs_in_order():
    sent = request_sent_topic()
    logs = [
        LogRecord(address=CONSUMER, topics=[sent, ID_B]),
        LogRecord(address=OTHER_CONSUMER, topics=[sent, b"\x0c" * 32]),
        LogRecord(address=CONSUMER, topics=[event_topic("Transfer(address,address,uint256)"), b"\x0d" * 32]),
        LogRecord(address=CONSUMER, topics=[sent]),
        LogRecord(address=CONSUMER, topics=[sent, ID_A]),
    ]
    assert extract_request_ids(logs, CONSUMER) == [ID_B, ID_A]


def test_extract_ignores_address_case():
    checksummed = "0xAbCdEf0000000000000000000000000000000001"
    logs = [LogRecord(address=checksummed, topics=[request_sent_topic(), ID_A])]
    assert extract_request_ids(logs, checksummed.lower()) == [ID_A]


def test_extract_with_no_matching_logs():
    assert extract_request_ids([], CONSUMER) == []


def test_request_ids_come_from_the_receipt(router, tracker):
    tx_hash, ids = router.send_requests(CONSUMER, [encode_request("return b''")] * 2, [ID_A, ID_B])
    assert CompletionWaiter(router, tracker).request_ids(CONSUMER, tx_hash) == [ID_A, ID_B]
    assert CompletionWaiter(router, tracker).request_ids(OTHER_CONSUMER, tx_hash) == []


def test_unknown_transaction_propagates(router, tracker):
    with pytest.raises(TransactionNotFound):
        CompletionWaiter(router, tracker).wait(CONSUMER, "0x" + "00" * 32, timeout=0.1)


def test_waits_for_every_request_in_any_order(router, tracker):
    tx_hash, _ = router.send_requests(CONSUMER, [b"", b""], [ID_A, ID_B])
    tracker.try_mark_picked_up(ID_A)
    tracker.try_mark_picked_up(ID_B)
    finished = threading.Event()
    result = []

    def wait():
        result.extend(wait_for_request_handling(router, tracker, CONSUMER, tx_hash, timeout=5))
        finished.set()

    thread = threading.Thread(target=wait, daemon=True)
    thread.start()
    tracker.mark_handled(ID_B)
    assert not finished.wait(0.1)
    tracker.mark_handled(ID_A)
    assert finished.wait(5)
    assert result == [ID_A, ID_B]


def test_already_handled_returns_immediately(router, tracker):
    tx_hash, _ = router.send_requests(CONSUMER, [b""], [ID_A])
    tracker.try_mark_picked_up(ID_A)
    tracker.mark_handled(ID_A)
    assert CompletionWaiter(router, tracker).wait(CONSUMER, tx_hash, timeout=0) == [ID_A]


def test_timeout_lists_pending_requests(router, tracker):
    tx_hash, _ = router.send_requests(CONSUMER, [b"", b""], [ID_A, ID_B])
    tracker.try_mark_picked_up(ID_A)
    tracker.mark_handled(ID_A)
    with pytest.raises(WaitTimeout) as info:
        CompletionWaiter(router, tracker).wait(CONSUMER, tx_hash, timeout=0.05)
    assert info.value.pending == [ID_B]


def test_failed_request_raises_when_asked(router, tracker):
    tx_hash, _ = router.send_requests(CONSUMER, [b""], [ID_A])
    tracker.try_mark_picked_up(ID_A)
    tracker.mark_failed(ID_A, "DecodeError: truncated payload")
    with pytest.raises(RequestFailed) as info:
        CompletionWaiter(router, tracker).wait(CONSUMER, tx_hash, timeout=1, raise_on_failure=True)
    assert info.value.request_id == ID_A
    assert "truncated" in info.value.reason
