from __future__ import annotations
import json
import math
from enum import Enum
from typing import Any, Dict, Mapping

from .errors import CorruptFrameError, InvalidRecordError
from .utils import sha256_hex

Record = Dict[str, Any]


class ValueKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    RECORD = "record"
    SEQUENCE = "sequence"


def kind_of(value: Any) -> ValueKind:
    """
    Classify a value into one of the supported variants.
    bool is checked before int since bool is an int subclass.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.NUMBER
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidRecordError(f"non-finite number is not storable: {value!r}")
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.RECORD
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    raise InvalidRecordError(f"unsupported value type: {type(value).__name__}")


def validate_record(record: Any) -> None:
    if not isinstance(record, Mapping):
        raise InvalidRecordError(f"record must be a mapping, got {type(record).__name__}")

    def visit(obj: Any, path: str) -> None:
        try:
            kind = kind_of(obj)
        except InvalidRecordError as e:
            raise InvalidRecordError(f"{path or '<root>'}: {e}") from None
        if kind is ValueKind.RECORD:
            for k, v in obj.items():
                if not isinstance(k, str):
                    raise InvalidRecordError(f"{path or '<root>'}: field names must be strings, got {k!r}")
                visit(v, f"{path}/{k}" if path else k)
        elif kind is ValueKind.SEQUENCE:
            for i, v in enumerate(obj):
                visit(v, f"{path}[{i}]")

    visit(record, "")


def _plain(obj: Any) -> Any:
    # json only serializes dict/list, not arbitrary Mapping or tuple
    if isinstance(obj, Mapping):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def encode_record(record: Mapping[str, Any]) -> bytes:
    """
    Serialize a record to compact UTF-8 JSON. Field order is preserved, so the
    same record always yields the same bytes.
    """
    validate_record(record)
    text = json.dumps(_plain(record), ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        # Lone surrogates are str but not encodable text
        raise InvalidRecordError(f"record text is not valid unicode: {e.reason}") from None


def decode_record(payload: bytes) -> Record:
    try:
        obj = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise CorruptFrameError(f"undecodable record payload: {e}") from e
    if not isinstance(obj, dict):
        raise CorruptFrameError(f"record payload is not an object: {type(obj).__name__}")
    return obj


def record_digest(record: Mapping[str, Any]) -> str:
    return sha256_hex(encode_record(record))
