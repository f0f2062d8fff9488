"""
Chain surface the oracle talks to: the functions router.

Router protocol (all the oracle needs from the chain):
- poll_request_events(): new RequestCreated(requestId, data) logs
- requester_of(requestId): originating consumer contract (requesters mapping)
- fulfill(requestId, response, err): submit the result, returns tx hash
- get_transaction_logs(txHash): receipt logs, used by the completion waiter

Web3Router talks to a deployed router over JSON-RPC. LocalRouter is an
in-process stand-in for tests and local simulations.
"""

import logging
import os
import secrets
import threading
from typing import Dict, List, Optional, Protocol, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_bytes
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound

from oraclesim.errors import SubmissionError, SubmissionPending
from oraclesim.schema import Fulfillment, LogRecord, RequestCreatedEvent

logger = logging.getLogger(__name__)

REQUEST_SENT_SIGNATURE = "RequestSent(bytes32)"
REQUEST_CREATED_SIGNATURE = "RequestCreated(bytes32,bytes)"

ROUTER_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "bytes32", "name": "requestId", "type": "bytes32"},
            {"indexed": False, "internalType": "bytes", "name": "data", "type": "bytes"},
        ],
        "name": "RequestCreated",
        "type": "event",
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "requestId", "type": "bytes32"},
            {"internalType": "bytes", "name": "response", "type": "bytes"},
            {"internalType": "bytes", "name": "err", "type": "bytes"},
        ],
        "name": "fulfill",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "name": "requesters",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ZERO_ADDRESS = "0x" + "0" * 40


def event_topic(signature: str) -> bytes:
    """topic0 of an event: keccak256 of its textual signature."""
    return keccak(to_bytes(text=signature))


def request_sent_topic() -> bytes:
    return event_topic(REQUEST_SENT_SIGNATURE)


class Router(Protocol):
    def poll_request_events(self) -> List[RequestCreatedEvent]: ...

    def requester_of(self, request_id: bytes) -> Optional[str]: ...

    def fulfill(self, request_id: bytes, response: bytes, err: bytes = b"") -> str: ...

    def get_transaction_logs(self, tx_hash: str) -> List[LogRecord]: ...


def _new_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


class LocalRouter:
    """
    In-process router. Consumers call send_request(); the oracle polls events,
    fulfills, and the waiter reads receipts. Thread-safe.
    """

    def __init__(self, address: Optional[str] = None):
        self.address = address or Web3.to_checksum_address("0x" + secrets.token_hex(20))
        self._lock = threading.Lock()
        self._pending: List[RequestCreatedEvent] = []
        self._events: Dict[bytes, RequestCreatedEvent] = {}
        self._requesters: Dict[bytes, str] = {}
        self._receipts: Dict[str, List[LogRecord]] = {}
        self._fulfillments: List[Fulfillment] = []
        self._fail_fulfills = 0
        self._block = 0

    def send_request(self, requester: str, data: bytes, request_id: Optional[bytes] = None) -> Tuple[str, bytes]:
        """Emit RequestCreated for a consumer. Returns (tx_hash, request_id)."""
        tx_hash, request_ids = self.send_requests(requester, [data], [request_id] if request_id else None)
        return tx_hash, request_ids[0]

    def send_requests(
        self,
        requester: str,
        payloads: List[bytes],
        request_ids: Optional[List[bytes]] = None,
    ) -> Tuple[str, List[bytes]]:
        """Emit several requests from one consumer transaction. Returns (tx_hash, request_ids)."""
        if request_ids is None:
            request_ids = [secrets.token_bytes(32) for _ in payloads]
        if len(request_ids) != len(payloads):
            raise ValueError("request_ids and payloads differ in length")
        tx_hash = _new_tx_hash()
        consumer = Web3.to_checksum_address(requester)
        created_topic = event_topic(REQUEST_CREATED_SIGNATURE)
        logs = []
        with self._lock:
            self._block += 1
            for request_id, data in zip(request_ids, payloads):
                event = RequestCreatedEvent(
                    request_id=request_id, data=data, block_number=self._block, transaction_hash=tx_hash
                )
                self._events[request_id] = event
                self._pending.append(event)
                self._requesters[request_id] = consumer
                logs.append(LogRecord(address=self.address, topics=[created_topic, request_id], data=data))
                logs.append(LogRecord(address=consumer, topics=[request_sent_topic(), request_id]))
            self._receipts[tx_hash] = logs
        return tx_hash, list(request_ids)

    def redeliver(self, request_id: bytes) -> None:
        """Replay an already emitted event, as a reorg or retrying node would."""
        with self._lock:
            self._pending.append(self._events[request_id])

    def fail_next_fulfills(self, count: int) -> None:
        """Make the next `count` fulfill calls raise SubmissionError."""
        with self._lock:
            self._fail_fulfills = count

    def poll_request_events(self) -> List[RequestCreatedEvent]:
        with self._lock:
            events, self._pending = self._pending, []
        return events

    def requester_of(self, request_id: bytes) -> Optional[str]:
        with self._lock:
            return self._requesters.get(request_id)

    def fulfill(self, request_id: bytes, response: bytes, err: bytes = b"") -> str:
        with self._lock:
            if self._fail_fulfills > 0:
                self._fail_fulfills -= 1
                raise SubmissionError(f"fulfill reverted for 0x{request_id.hex()}")
            tx_hash = _new_tx_hash()
            self._fulfillments.append(
                Fulfillment(request_id=request_id, response=response, err=err, transaction_hash=tx_hash)
            )
        return tx_hash

    def get_transaction_logs(self, tx_hash: str) -> List[LogRecord]:
        with self._lock:
            if tx_hash not in self._receipts:
                raise TransactionNotFound(f"Transaction {tx_hash} not found")
            return list(self._receipts[tx_hash])

    @property
    def fulfillments(self) -> List[Fulfillment]:
        with self._lock:
            return list(self._fulfillments)

    def fulfillments_for(self, request_id: bytes) -> List[Fulfillment]:
        return [f for f in self.fulfillments if f.request_id == request_id]


class Web3Router:
    """
    Router deployed on an EVM chain, reached over JSON-RPC.

    Events are read incrementally with get_logs over block ranges; fulfill is a
    signed transaction from the oracle's key.
    """

    def __init__(
        self,
        rpc_url: str,
        router_address: str,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        start_block: Optional[int] = None,
        max_block_range: int = 50,
        gas_limit: int = 500_000,
        receipt_timeout: int = 120,
        w3: Optional[Web3] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        if w3 is None and not self.w3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC: {rpc_url}")
        self.address = Web3.to_checksum_address(router_address)
        self.contract = self.w3.eth.contract(address=self.address, abi=ROUTER_ABI)
        self.account: Optional[LocalAccount] = _load_account(private_key)
        self.chain_id = chain_id
        self.max_block_range = max_block_range
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self._last_block = (self.w3.eth.block_number if start_block is None else start_block - 1)
        self._nonce_lock = threading.Lock()
        self._sent: Dict[bytes, HexBytes] = {}

    def poll_request_events(self) -> List[RequestCreatedEvent]:
        current = self.w3.eth.block_number
        if current <= self._last_block:
            return []
        to_block = min(current, self._last_block + self.max_block_range)
        logs = self.contract.events.RequestCreated().get_logs(from_block=self._last_block + 1, to_block=to_block)
        self._last_block = to_block
        events = []
        for log in logs:
            events.append(
                RequestCreatedEvent(
                    request_id=bytes(log["args"]["requestId"]),
                    data=bytes(log["args"]["data"]),
                    block_number=log["blockNumber"],
                    transaction_hash=log["transactionHash"].to_0x_hex(),
                )
            )
        return events

    def requester_of(self, request_id: bytes) -> Optional[str]:
        address = self.contract.functions.requesters(request_id).call()
        if not address or int(address, 16) == 0:
            return None
        return Web3.to_checksum_address(address)

    def fulfill(self, request_id: bytes, response: bytes, err: bytes = b"") -> str:
        """
        Send fulfill and wait for its receipt.

        Once a transaction is broadcast it is remembered per request id; a later
        call for the same id waits on that transaction again instead of sending
        a second one.

        Raises:
            SubmissionPending: broadcast, but no receipt within receipt_timeout.
            SubmissionError: not sent, or the transaction reverted.
        """
        if self.account is None:
            raise SubmissionError("No oracle key configured; set ORACLESIM_PRIVATE_KEY")
        with self._nonce_lock:
            tx_hash = self._sent.get(request_id)
        if tx_hash is None:
            tx_hash = self._send_fulfill(request_id, response, err)
        else:
            logger.info("fulfill 0x%s already broadcast as %s; waiting on it", request_id.hex(), tx_hash.to_0x_hex())

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            raise SubmissionPending(
                f"fulfill for 0x{request_id.hex()} sent as {tx_hash.to_0x_hex()} but not yet mined: {e}",
                tx_hash=tx_hash.to_0x_hex(),
            ) from e
        with self._nonce_lock:
            self._sent.pop(request_id, None)
        if receipt["status"] != 1:
            raise SubmissionError(f"fulfill reverted for 0x{request_id.hex()} (tx {tx_hash.to_0x_hex()})")
        return tx_hash.to_0x_hex()

    def _send_fulfill(self, request_id: bytes, response: bytes, err: bytes):
        try:
            with self._nonce_lock:
                tx = self.contract.functions.fulfill(request_id, response, err).build_transaction(
                    {
                        "from": self.account.address,
                        "chainId": self.chain_id or self.w3.eth.chain_id,
                        "gas": self.gas_limit,
                        "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                    }
                )
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
                self._sent[request_id] = tx_hash
        except Exception as e:
            raise SubmissionError(f"fulfill failed for 0x{request_id.hex()}: {e}") from e
        return tx_hash

    def get_transaction_logs(self, tx_hash: str) -> List[LogRecord]:
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return [
            LogRecord(
                address=Web3.to_checksum_address(log["address"]),
                topics=[bytes(t) for t in log["topics"]],
                data=bytes(log["data"]),
            )
            for log in receipt["logs"]
        ]


def _load_account(private_key: Optional[str]) -> Optional[LocalAccount]:
    pk = (private_key or os.getenv("ORACLESIM_PRIVATE_KEY") or "").strip()
    if not pk:
        return None
    if not pk.startswith("0x"):
        pk = "0x" + pk
    return Account.from_key(pk)
