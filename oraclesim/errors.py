"""
Error kinds raised across the oracle pipeline.

Decode, execution and encoding errors abandon a request at the watcher
boundary. Submission errors are retried and then surfaced.
"""

from typing import Any, Optional


class OracleSimError(Exception):
    """Base class for all oraclesim errors."""


class DecodeError(OracleSimError):
    """Request payload is malformed, truncated or missing a required tag."""


class ExecutionError(OracleSimError):
    """Script raised, was rejected by validation, or produced an unusable result."""

    def __init__(self, message: str, thrown: Optional[Any] = None):
        super().__init__(message)
        self.thrown = thrown


class EncodingMismatch(ExecutionError):
    """Script returned a value that is not shaped as bytes or a (types, values) tuple."""


class SubmissionError(OracleSimError):
    """The on-chain fulfill call failed."""


class SubmissionPending(SubmissionError):
    """A fulfill transaction was broadcast but its receipt has not been seen yet."""

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class LifecycleError(OracleSimError):
    """A lifecycle transition would break handled ⇒ pickedUp."""


class RequestFailed(OracleSimError):
    """A waited-on request was abandoned and will never be handled."""

    def __init__(self, request_id: bytes, reason: str):
        super().__init__(f"Request 0x{request_id.hex()} failed: {reason}")
        self.request_id = request_id
        self.reason = reason


class WaitTimeout(OracleSimError):
    """Completion wait hit its deadline before every request was handled."""

    def __init__(self, pending: list):
        ids = ", ".join("0x" + p.hex() for p in pending)
        super().__init__(f"Timed out waiting for request handling: {ids}")
        self.pending = pending
