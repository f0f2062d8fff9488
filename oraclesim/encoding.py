"""
Result encoding rules shared by request scripts and consuming contracts.

No type tag travels with the result bytes: the script and the contract agree on
the layout out of band, so these rules must stay fixed for a deployment.

Packed-record layout (default):
    uint256 count | count x (uint256 field_1 ... uint256 field_n)
"""

from typing import Any, List, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError
from eth_abi.packed import encode_packed

from oraclesim.errors import EncodingMismatch
from oraclesim.schema import EncodingScheme, WeightedItem

WORD_SIZE = 32
UINT256_MAX = 2**256 - 1


def encode_uint(value: int) -> bytes:
    """Fixed-width 32-byte big-endian encoding of a non-negative integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"encodeUint expects an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"encodeUint value out of range: {value}")
    return encode(["uint256"], [value])


def decode_uint(data: bytes) -> int:
    if len(data) != WORD_SIZE:
        raise EncodingMismatch(f"uint256 must be {WORD_SIZE} bytes, got {len(data)}")
    return decode(["uint256"], data)[0]


def encode_string(value: str, scheme: EncodingScheme = EncodingScheme.PACKED) -> Union[bytes, Tuple[str, str]]:
    """Raw UTF-8 bytes under PACKED; a ("string", value) pair under TUPLE."""
    if not isinstance(value, str):
        raise ValueError(f"encodeString expects a string, got {type(value).__name__}")
    if scheme == EncodingScheme.TUPLE:
        return ("string", value)
    return value.encode("utf-8")


def encode_tuple(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """Tuple scheme: encode_packed over declared wire types and their values."""
    if len(types) != len(values):
        raise EncodingMismatch(f"Tuple result has {len(types)} types but {len(values)} values")
    try:
        return encode_packed(list(types), list(values))
    except (EncodingError, ValueError, TypeError) as e:
        raise EncodingMismatch(f"Tuple result cannot be packed as {list(types)}: {e}") from e


def encode_packed_records(records: Sequence[Sequence[int]], fields: int = 2) -> bytes:
    """Leading count word, then `fields` uint256 words per record in declared order."""
    words = [encode_uint(len(records))]
    for record in records:
        if len(record) != fields:
            raise ValueError(f"Record {tuple(record)} has {len(record)} fields, expected {fields}")
        words.extend(encode_uint(v) for v in record)
    return b"".join(words)


def decode_packed_records(data: bytes, fields: int = 2) -> List[Tuple[int, ...]]:
    if len(data) < WORD_SIZE:
        raise EncodingMismatch("Packed records are missing the count word")
    count = decode_uint(data[:WORD_SIZE])
    expected = WORD_SIZE * (1 + count * fields)
    if len(data) != expected:
        raise EncodingMismatch(f"Packed records declare {count} entries: expected {expected} bytes, got {len(data)}")
    values = decode(["uint256"] * (count * fields), data[WORD_SIZE:]) if count else ()
    return [tuple(values[i : i + fields]) for i in range(0, len(values), fields)]


def encode_weighted_items(items: Sequence[WeightedItem]) -> bytes:
    return encode_packed_records([(item.id, item.weight) for item in items], fields=2)


def decode_weighted_items(data: bytes) -> List[WeightedItem]:
    return [WeightedItem(id=i, weight=w) for i, w in decode_packed_records(data, fields=2)]


def finalize_result(value: Any) -> bytes:
    """
    Turn a script's return value into the bytes submitted on-chain.

    Accepted shapes (both schemes are tolerated during a migration window):
        bytes / bytearray           → as-is
        (type, value)               → encode_packed([type], [value])
        ([types...], [values...])   → encode_packed(types, values)

    Raises:
        EncodingMismatch: any other shape, e.g. an un-encoded str or int.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        head, tail = value
        if isinstance(head, str):
            return encode_tuple([head], [tail])
        if isinstance(head, (tuple, list)) and isinstance(tail, (tuple, list)) and all(isinstance(t, str) for t in head):
            return encode_tuple(head, tail)
    raise EncodingMismatch(
        f"Script returned {type(value).__name__}; expected bytes or a (types, values) tuple. "
        "Wrap the result with encodeUint/encodeString.",
        thrown=value,
    )
