from .codec import Record, ValueKind, decode_record, encode_record, kind_of, record_digest, validate_record
from .config import StoreSettings, get_settings
from .coordinator import CoordinatorState, WriteCoordinator
from .database import CollectionHandle, Store, validate_name
from .errors import (
    CorruptFrameError,
    DocStoreError,
    InvalidNameError,
    InvalidRecordError,
    StoreClosedError,
    StoreIOError,
    ValidationError,
    WriteFailedError,
)
from .storage import CollectionFile, RecordID

__version__ = "0.1.0"

__all__ = [
    "Store",
    "CollectionHandle",
    "CollectionFile",
    "RecordID",
    "Record",
    "ValueKind",
    "kind_of",
    "validate_record",
    "encode_record",
    "decode_record",
    "record_digest",
    "WriteCoordinator",
    "CoordinatorState",
    "StoreSettings",
    "get_settings",
    "validate_name",
    "DocStoreError",
    "ValidationError",
    "InvalidNameError",
    "InvalidRecordError",
    "StoreIOError",
    "WriteFailedError",
    "CorruptFrameError",
    "StoreClosedError",
]
