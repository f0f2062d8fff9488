"""
Request, event and result schema for the compute oracle.

Contract: router emits RequestCreated(requestId, data) → oracle decodes data into
a ComputeRequest → script runs in the sandbox → encoded bytes go back through
fulfill(requestId, response, err).
"""

from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CodeLocation(IntEnum):
    """Where the request's source lives. Only inline source is executable here."""

    INLINE = 0
    REMOTE = 1
    DON_HOSTED = 2


class CodeLanguage(IntEnum):
    SCRIPT = 0


class RequestState(str, Enum):
    """Lifecycle of one request id. Transitions only move forward."""

    CREATED = "created"
    PICKED_UP = "picked_up"
    EXECUTING = "executing"
    HANDLED = "handled"


class EncodingScheme(str, Enum):
    """
    Result encoding contract shared by scripts and the consuming contract.

    PACKED: raw bytes (32-byte words, counted records). Default.
    TUPLE: (wire type, value) pairs run through encode_packed.
    """

    PACKED = "packed"
    TUPLE = "tuple"


class TagValuePayload(BaseModel):
    """Decoded tag/value sequence. Pairs keep wire order; mapping keeps the last value per tag."""

    model_config = ConfigDict(frozen=True)

    pairs: List[Tuple[Any, Any]] = Field(default_factory=list)

    def as_mapping(self) -> Dict[Any, Any]:
        mapping: Dict[Any, Any] = {}
        for tag, value in self.pairs:
            mapping[tag] = value
        return mapping


class ComputeRequest(BaseModel):
    """Compute request decoded from a RequestCreated payload."""

    model_config = ConfigDict(frozen=True)

    request_id: bytes = Field(..., description="32-byte request identifier")
    source: str = Field(..., description="Script source text")
    language: int = Field(CodeLanguage.SCRIPT, description="Runtime identifier")
    code_location: int = Field(CodeLocation.INLINE, description="Code location identifier")
    secrets_location: Optional[int] = Field(None, description="Where the secret bundle lives")
    secrets: Optional[bytes] = Field(None, description="Reference to the secret bundle")
    args: List[str] = Field(default_factory=list)
    bytes_args: List[bytes] = Field(default_factory=list)
    requester: Optional[str] = Field(None, description="Originating consumer contract (0x)")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Unknown tags, not interpreted")

    @property
    def request_id_hex(self) -> str:
        return "0x" + self.request_id.hex()


class RequestCreatedEvent(BaseModel):
    """One RequestCreated log as delivered by the router's event stream."""

    model_config = ConfigDict(frozen=True)

    request_id: bytes
    data: bytes = b""
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None


class LogRecord(BaseModel):
    """Receipt log entry: (address, topics, data)."""

    model_config = ConfigDict(frozen=True)

    address: str
    topics: List[bytes] = Field(default_factory=list)
    data: bytes = b""


class HttpResponse(BaseModel):
    """What httpRequest hands back to a script. failed=True covers network errors and non-2xx."""

    failed: bool
    body: Optional[Any] = None
    status: Optional[int] = None
    error: Optional[str] = None


class Fulfillment(BaseModel):
    """A fulfill(requestId, response, err) call as observed by the router."""

    model_config = ConfigDict(frozen=True)

    request_id: bytes
    response: bytes = b""
    err: bytes = b""
    transaction_hash: Optional[str] = None


class WeightedItem(BaseModel):
    """(id, weight) record as consumed by the rebalancing contract."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0)
    weight: int = Field(..., ge=0)
