"""
Request payload codec: CBOR tag/value sequences.

A request payload is a CBOR sequence of alternating items:
    tag_0, value_0, tag_1, value_1, ...
Known tags project into ComputeRequest fields. Tags may repeat on the wire;
the last occurrence wins. Unknown tags are kept in ComputeRequest.extra.
"""

import io
import json
from typing import Any, Dict, List, Optional, Sequence

import cbor2

from oraclesim.errors import DecodeError
from oraclesim.schema import CodeLanguage, CodeLocation, ComputeRequest, TagValuePayload

TAG_CODE_LOCATION = "codeLocation"
TAG_LANGUAGE = "language"
TAG_SOURCE = "source"
TAG_SECRETS_LOCATION = "secretsLocation"
TAG_SECRETS = "secrets"
TAG_ARGS = "args"
TAG_BYTES_ARGS = "bytesArgs"

KNOWN_TAGS = (
    TAG_CODE_LOCATION,
    TAG_LANGUAGE,
    TAG_SOURCE,
    TAG_SECRETS_LOCATION,
    TAG_SECRETS,
    TAG_ARGS,
    TAG_BYTES_ARGS,
)

REQUEST_ID_SIZE = 32


def decode_items(data: bytes) -> List[Any]:
    """Decode every top-level item of a CBOR sequence. Raises DecodeError on malformed or truncated input."""
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"Payload must be bytes, got {type(data).__name__}")
    fp = io.BytesIO(bytes(data))
    decoder = cbor2.CBORDecoder(fp)
    items: List[Any] = []
    while fp.tell() < len(data):
        try:
            items.append(decoder.decode())
        except cbor2.CBORDecodeError as e:
            raise DecodeError(f"Malformed payload at offset {fp.tell()}: {e}") from e
    return items


def decode_payload(data: bytes) -> TagValuePayload:
    """Fold alternating tag/value items into ordered pairs."""
    items = decode_items(data)
    if len(items) % 2:
        raise DecodeError(f"Payload has {len(items)} items; expected tag/value pairs")
    pairs = []
    for i in range(0, len(items), 2):
        tag = items[i]
        try:
            hash(tag)
        except TypeError as e:
            raise DecodeError(f"Unusable tag of type {type(tag).__name__} at item {i}") from e
        pairs.append((tag, items[i + 1]))
    return TagValuePayload(pairs=pairs)


def _as_int(tag: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"Tag {tag!r} must be an integer, got {type(value).__name__}")
    return value


def _as_args(value: Any) -> List[str]:
    # args travel either as a CBOR array or as a JSON array embedded in a string
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else []
        except json.JSONDecodeError as e:
            raise DecodeError(f"Tag 'args' holds invalid JSON: {e}") from e
        if not isinstance(value, list):
            raise DecodeError("Tag 'args' must decode to an array")
        return [v if isinstance(v, str) else json.dumps(v) for v in value]
    if not isinstance(value, list):
        raise DecodeError(f"Tag 'args' must be an array, got {type(value).__name__}")
    for v in value:
        if not isinstance(v, str):
            raise DecodeError(f"Tag 'args' items must be strings, got {type(v).__name__}")
    return list(value)


def _as_bytes_args(value: Any) -> List[bytes]:
    if not isinstance(value, list) or not all(isinstance(v, (bytes, bytearray)) for v in value):
        raise DecodeError("Tag 'bytesArgs' must be an array of byte strings")
    return [bytes(v) for v in value]


def decode_request(request_id: bytes, data: bytes, requester: Optional[str] = None) -> ComputeRequest:
    """
    Decode a RequestCreated payload into a ComputeRequest.

    Args:
        request_id: 32-byte request identifier from the event.
        data: CBOR tag/value payload from the event.
        requester: Optional originating contract address (requesters(requestId)).

    Raises:
        DecodeError: payload malformed/truncated, source missing, or a known tag has the wrong type.
    """
    if len(request_id) != REQUEST_ID_SIZE:
        raise DecodeError(f"Request id must be {REQUEST_ID_SIZE} bytes, got {len(request_id)}")
    fields = decode_payload(data).as_mapping()

    source = fields.get(TAG_SOURCE)
    if not isinstance(source, str):
        raise DecodeError("Payload has no string 'source' tag")

    secrets = fields.get(TAG_SECRETS)
    if secrets is not None and not isinstance(secrets, (bytes, bytearray)):
        raise DecodeError("Tag 'secrets' must be a byte string")

    secrets_location = fields.get(TAG_SECRETS_LOCATION)
    extra: Dict[str, Any] = {str(k): v for k, v in fields.items() if k not in KNOWN_TAGS}

    return ComputeRequest(
        request_id=bytes(request_id),
        source=source,
        language=_as_int(TAG_LANGUAGE, fields.get(TAG_LANGUAGE, CodeLanguage.SCRIPT)),
        code_location=_as_int(TAG_CODE_LOCATION, fields.get(TAG_CODE_LOCATION, CodeLocation.INLINE)),
        secrets_location=None if secrets_location is None else _as_int(TAG_SECRETS_LOCATION, secrets_location),
        secrets=None if secrets is None else bytes(secrets),
        args=_as_args(fields[TAG_ARGS]) if TAG_ARGS in fields else [],
        bytes_args=_as_bytes_args(fields[TAG_BYTES_ARGS]) if TAG_BYTES_ARGS in fields else [],
        requester=requester,
        extra=extra,
    )


def encode_request(
    source: str,
    args: Optional[Sequence[str]] = None,
    bytes_args: Optional[Sequence[bytes]] = None,
    secrets: Optional[bytes] = None,
    secrets_location: int = CodeLocation.REMOTE,
    code_location: int = CodeLocation.INLINE,
    language: int = CodeLanguage.SCRIPT,
) -> bytes:
    """
    Build the CBOR payload a requesting contract emits.

    Tag order follows the on-chain request builder: codeLocation, language, source,
    then secrets, args and bytesArgs when present.
    """
    items: List[Any] = [
        TAG_CODE_LOCATION, int(code_location),
        TAG_LANGUAGE, int(language),
        TAG_SOURCE, source,
    ]
    if secrets:
        items += [TAG_SECRETS_LOCATION, int(secrets_location), TAG_SECRETS, bytes(secrets)]
    if args:
        items += [TAG_ARGS, [str(a) for a in args]]
    if bytes_args:
        items += [TAG_BYTES_ARGS, [bytes(b) for b in bytes_args]]
    return b"".join(cbor2.dumps(item) for item in items)
