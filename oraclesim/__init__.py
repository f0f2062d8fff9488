"""
oraclesim: off-chain compute oracle simulator.

Watches a functions router for RequestCreated events and, for each request:
- decodes the CBOR tag/value payload (script source, args, secrets reference)
- runs the script in a capability sandbox (httpRequest, secret, args, encodeUint, encodeString)
- submits the encoded result with fulfill(requestId, response, err)

A completion waiter blocks a caller until every request a transaction created
has been handled. Runs against an in-process LocalRouter by default, or a
deployed router over JSON-RPC.
"""

import logging

__version__ = "0.1.0"

from oraclesim.codec import decode_payload, decode_request, encode_request
from oraclesim.config import SimulatorConfig
from oraclesim.encoding import (
    decode_packed_records,
    decode_uint,
    decode_weighted_items,
    encode_packed_records,
    encode_string,
    encode_uint,
    encode_weighted_items,
    finalize_result,
)
from oraclesim.errors import (
    DecodeError,
    EncodingMismatch,
    ExecutionError,
    LifecycleError,
    OracleSimError,
    RequestFailed,
    SubmissionError,
    SubmissionPending,
    WaitTimeout,
)
from oraclesim.router import LocalRouter, Router, Web3Router
from oraclesim.sandbox import Sandbox
from oraclesim.schema import (
    ComputeRequest,
    EncodingScheme,
    HttpResponse,
    RequestCreatedEvent,
    RequestState,
    WeightedItem,
)
from oraclesim.secrets_bundle import SecretsBundle
from oraclesim.simulator import Simulator, start_simulator
from oraclesim.tracker import LifecycleTracker
from oraclesim.waiter import CompletionWaiter, extract_request_ids, wait_for_request_handling
from oraclesim.watcher import EventWatcher

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "ComputeRequest",
    "RequestCreatedEvent",
    "RequestState",
    "EncodingScheme",
    "HttpResponse",
    "WeightedItem",
    "SecretsBundle",
    "SimulatorConfig",
    "decode_payload",
    "decode_request",
    "encode_request",
    "encode_uint",
    "decode_uint",
    "encode_string",
    "encode_packed_records",
    "decode_packed_records",
    "encode_weighted_items",
    "decode_weighted_items",
    "finalize_result",
    "Sandbox",
    "LifecycleTracker",
    "Router",
    "LocalRouter",
    "Web3Router",
    "EventWatcher",
    "CompletionWaiter",
    "extract_request_ids",
    "wait_for_request_handling",
    "Simulator",
    "start_simulator",
    "OracleSimError",
    "DecodeError",
    "ExecutionError",
    "EncodingMismatch",
    "SubmissionError",
    "SubmissionPending",
    "LifecycleError",
    "RequestFailed",
    "WaitTimeout",
]
