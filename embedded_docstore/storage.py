"""
Append-only collection files.

File layout:
    header (16 bytes): magic(8) + base_seq(8, big-endian)
    frames:            length(4) + payload + crc32(4)
    payload:           record_id(8) + encoded record

base_seq is the highest record id ever assigned when the file was written;
it keeps ids monotonic after compaction drops the newest records.
"""
from __future__ import annotations
import os
import struct
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterator, Mapping, Optional, Tuple

from .codec import Record, decode_record, encode_record
from .coordinator import WriteCoordinator
from .errors import (
    CorruptFrameError,
    InvalidRecordError,
    StoreClosedError,
    StoreIOError,
    WriteFailedError,
)
from .logging import get_logger
from .progress import Progress
from .utils import crc32, fsync_dir

LOG_SUFFIX = ".log"
TMP_SUFFIX = ".tmp"

HEADER_MAGIC = b"EDSLOG\x00\x01"
HEADER_FORMAT = ">8sQ"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

LENGTH_FORMAT = ">I"
CRC_FORMAT = ">I"
SEQ_FORMAT = ">Q"
SEQ_SIZE = struct.calcsize(SEQ_FORMAT)
MAX_PAYLOAD = 0xFFFFFFFF

RecordID = int

log = get_logger(__name__)


@dataclass
class FrameInfo:
    offset: int
    end: int
    record_id: RecordID
    body: bytes


@dataclass
class CompactionResult:
    kept: int
    removed: int
    bytes_before: int
    bytes_after: int


def encode_header(base_seq: int) -> bytes:
    return struct.pack(HEADER_FORMAT, HEADER_MAGIC, base_seq)


def encode_frame(record_id: RecordID, body: bytes) -> bytes:
    payload = struct.pack(SEQ_FORMAT, record_id) + body
    if len(payload) > MAX_PAYLOAD:
        raise InvalidRecordError(f"record too large: {len(payload)} bytes")
    return (
        struct.pack(LENGTH_FORMAT, len(payload))
        + payload
        + struct.pack(CRC_FORMAT, crc32(payload))
    )


def read_header(fh: BinaryIO, path: str) -> int:
    fh.seek(0)
    raw = fh.read(HEADER_SIZE)
    if len(raw) < HEADER_SIZE:
        raise CorruptFrameError("collection header too short", path=path, offset=0)
    magic, base_seq = struct.unpack(HEADER_FORMAT, raw)
    if magic != HEADER_MAGIC:
        raise CorruptFrameError(f"invalid collection magic: {magic!r}", path=path, offset=0)
    return base_seq


def iter_frames(fh: BinaryIO, path: str, start: int, end: int) -> Iterator[FrameInfo]:
    """
    Replay frames in [start, end).

    A frame that is incomplete or fails its checksum and reaches `end` is a
    torn tail: iteration stops quietly. A bad frame followed by more bytes
    cannot come from an interrupted append and raises CorruptFrameError.
    So does a damaged length prefix that overshoots `end` while intact
    frames with higher ids still lie behind it.
    """
    pos = start
    last_id = 0
    fh.seek(pos)
    while pos < end:
        raw_len = fh.read(4) if end - pos >= 4 else b""
        if len(raw_len) < 4:
            return
        (length,) = struct.unpack(LENGTH_FORMAT, raw_len)
        frame_end = pos + 4 + length + 4
        if frame_end > end:
            _check_torn_tail(fh, path, pos, end, last_id)
            return
        payload = fh.read(length)
        crc_raw = fh.read(4)
        if len(payload) < length or len(crc_raw) < 4:
            _check_torn_tail(fh, path, pos, end, last_id)
            return
        (stored_crc,) = struct.unpack(CRC_FORMAT, crc_raw)
        if length < SEQ_SIZE or stored_crc != crc32(payload):
            if frame_end == end:
                return
            raise CorruptFrameError(
                f"checksum mismatch: stored={stored_crc}, computed={crc32(payload)}",
                path=path,
                offset=pos,
            )
        (record_id,) = struct.unpack(SEQ_FORMAT, payload[:SEQ_SIZE])
        yield FrameInfo(offset=pos, end=frame_end, record_id=record_id, body=payload[SEQ_SIZE:])
        last_id = record_id
        pos = frame_end
        fh.seek(pos)


def _check_torn_tail(fh: BinaryIO, path: str, pos: int, end: int, last_id: int) -> None:
    """
    Make sure the bytes in (pos, end) hold no checksum-valid frame with an id
    above `last_id`. An interrupted append leaves only a fragment of one
    frame; a later intact frame means a committed frame was damaged.
    """
    fh.seek(pos + 1)
    data = fh.read(end - pos - 1)
    min_frame = 4 + SEQ_SIZE + 4
    for i in range(len(data) - min_frame + 1):
        (length,) = struct.unpack_from(LENGTH_FORMAT, data, i)
        if length < SEQ_SIZE or i + 4 + length + 4 > len(data):
            continue
        payload = data[i + 4:i + 4 + length]
        (stored_crc,) = struct.unpack_from(CRC_FORMAT, data, i + 4 + length)
        if stored_crc != crc32(payload):
            continue
        (record_id,) = struct.unpack_from(SEQ_FORMAT, payload)
        if record_id > last_id:
            raise CorruptFrameError(
                f"damaged frame followed by intact record {record_id}",
                path=path,
                offset=pos,
            )


def _write_all(fh: Any, data: bytes) -> None:
    # Unbuffered writes may be partial
    view = memoryview(data)
    while view:
        n = fh.write(view)
        view = view[n:]


class CollectionFile:
    """
    Durable append-only storage for one collection.

    Appends are serialized by the WriteCoordinator and only become visible to
    scans once the frame is written and synced: `_end` (the committed end of
    file) moves after the fsync, never before.
    """
    def __init__(
        self,
        path: str,
        name: str,
        *,
        fsync: bool = True,
        progress: Optional[Progress] = None,
    ) -> None:
        self.path = path
        self.name = name
        self._fsync = fsync
        self._progress = progress or Progress(None)
        self._coord = WriteCoordinator(name)
        # Guards the (_fh, _end) pair that scans snapshot
        self._view_lock = threading.Lock()
        self._fh: Any = None
        self._end = HEADER_SIZE
        self._last_seq = 0
        self._count = 0
        self._dirty_tail = False
        self._read_only = False
        self._closed = True

    # ----- lifecycle -----

    @classmethod
    def create(cls, path: str, name: str, **kwargs: Any) -> "CollectionFile":
        """
        Create an empty collection file: header goes to a temp file that is
        renamed into place, so a half-created file never appears.
        """
        tmp = path + TMP_SUFFIX
        fsync = kwargs.get("fsync", True)
        try:
            with open(tmp, "wb") as fh:
                fh.write(encode_header(0))
                fh.flush()
                if fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp, path)
            if fsync:
                fsync_dir(os.path.dirname(os.path.abspath(path)))
        except OSError as e:
            _discard(tmp)
            raise StoreIOError(f"cannot create collection {name!r}: {e}") from e
        cf = cls(path, name, **kwargs)
        cf.open()
        log.info("collection.created", collection=name, path=path)
        return cf

    def open(self) -> None:
        """
        Open the file, replay it and cut off a torn trailing frame if present.
        A file we may not write to is opened read-only: scans work, mutations
        raise WriteFailedError.
        """
        try:
            try:
                fh = open(self.path, "r+b", buffering=0)
                self._read_only = False
            except PermissionError:
                fh = open(self.path, "rb", buffering=0)
                self._read_only = True
                log.info("collection.read_only", collection=self.name, path=self.path)
        except OSError as e:
            raise StoreIOError(f"cannot open collection {self.name!r}: {e}") from e
        try:
            self._recover(fh)
        except BaseException:
            fh.close()
            raise
        self._fh = fh
        self._closed = False

    def _recover(self, fh: Any) -> None:
        try:
            size = os.fstat(fh.fileno()).st_size
            with open(self.path, "rb") as reader:
                base_seq = read_header(reader, self.path)
                prev_id = 0
                count = 0
                end = HEADER_SIZE
                for frame in iter_frames(reader, self.path, HEADER_SIZE, size):
                    # Survivors of a compaction may sit below base_seq
                    if frame.record_id <= prev_id:
                        raise CorruptFrameError(
                            f"record id {frame.record_id} does not follow {prev_id}",
                            path=self.path,
                            offset=frame.offset,
                        )
                    prev_id = frame.record_id
                    count += 1
                    end = frame.end
            if end < size:
                log.warning(
                    "collection.tail_ignored" if self._read_only else "collection.tail_truncated",
                    collection=self.name,
                    valid_bytes=end,
                    dropped_bytes=size - end,
                )
                if not self._read_only:
                    fh.truncate(end)
                    if self._fsync:
                        os.fsync(fh.fileno())
        except StoreIOError:
            raise
        except OSError as e:
            raise StoreIOError(f"cannot read collection {self.name!r}: {e}") from e
        self._last_seq = max(base_seq, prev_id)
        self._count = count
        self._end = end

    def close(self) -> None:
        if self._closed:
            return
        with self._coord.exclusive():
            if self._closed:
                return
            with self._view_lock:
                fh, self._fh = self._fh, None
                self._closed = True
            if fh is not None:
                fh.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def read_only(self) -> bool:
        return self._read_only

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"collection {self.name!r} is closed")

    def _check_writable(self) -> None:
        self._check_open()
        if self._read_only:
            raise WriteFailedError(f"collection {self.name!r} is read-only")

    # ----- introspection -----

    @property
    def coordinator(self) -> WriteCoordinator:
        return self._coord

    @property
    def last_id(self) -> RecordID:
        return self._last_seq

    @property
    def size_bytes(self) -> int:
        return self._end

    def count(self) -> int:
        return self._count

    # ----- operations -----

    def append(self, record: Mapping[str, Any]) -> RecordID:
        body = encode_record(record)
        with self._coord.writing():
            self._check_writable()
            record_id = self._last_seq + 1
            frame = encode_frame(record_id, body)
            start = self._end
            try:
                self._fh.seek(start)
                _write_all(self._fh, frame)
                if self._dirty_tail:
                    self._fh.truncate()
                if self._fsync:
                    os.fsync(self._fh.fileno())
            except OSError as e:
                self._rollback(start)
                log.error("append.failed", collection=self.name, record_id=record_id, error=str(e))
                raise WriteFailedError(f"append to {self.name!r} failed: {e}") from e
            with self._view_lock:
                self._end = start + len(frame)
                self._last_seq = record_id
                self._count += 1
            self._dirty_tail = False
            return record_id

    def _rollback(self, start: int) -> None:
        try:
            self._fh.truncate(start)
        except OSError as e:
            # Bytes past the committed end are ignored by scans and cut by the next append
            self._dirty_tail = True
            log.warning("append.rollback_failed", collection=self.name, error=str(e))

    def scan(self) -> Iterator[Tuple[RecordID, Record]]:
        """
        Replay the collection from the start. The committed end is captured
        now; appends completing after this call may or may not be seen.
        """
        self._check_open()
        with self._view_lock:
            try:
                fh = open(self.path, "rb")
            except OSError as e:
                raise StoreIOError(f"cannot read collection {self.name!r}: {e}") from e
            end = self._end
        return self._replay(fh, end)

    def _replay(self, fh: BinaryIO, end: int) -> Iterator[Tuple[RecordID, Record]]:
        with fh:
            try:
                for frame in iter_frames(fh, self.path, HEADER_SIZE, end):
                    yield frame.record_id, self._decode(frame)
            except StoreIOError:
                raise
            except OSError as e:
                raise StoreIOError(f"read of {self.name!r} failed: {e}") from e

    def _decode(self, frame: FrameInfo) -> Record:
        try:
            return decode_record(frame.body)
        except CorruptFrameError as e:
            raise CorruptFrameError(str(e), path=self.path, offset=frame.offset) from e

    def compact(self, keep: Callable[[Record], bool]) -> CompactionResult:
        """
        Rewrite the file keeping only records for which `keep` is true.
        Survivors go to a temp file which replaces the original atomically;
        on any failure the original file is left untouched.
        """
        tmp = self.path + TMP_SUFFIX
        with self._coord.compacting():
            self._check_writable()
            try:
                result = self._rewrite(tmp, keep)
            except BaseException as e:
                _discard(tmp)
                if isinstance(e, OSError) and not isinstance(e, StoreIOError):
                    log.error("compaction.failed", collection=self.name, error=str(e))
                    raise WriteFailedError(f"compaction of {self.name!r} failed: {e}") from e
                raise
        log.info(
            "compaction.done",
            collection=self.name,
            kept=result.kept,
            removed=result.removed,
            bytes_before=result.bytes_before,
            bytes_after=result.bytes_after,
        )
        return result

    def _rewrite(self, tmp: str, keep: Callable[[Record], bool]) -> CompactionResult:
        progress = self._progress
        end = self._end
        total = end - HEADER_SIZE
        kept = removed = 0
        progress.emit("compact.start", 0, self.name)
        with open(self.path, "rb") as src, open(tmp, "wb") as dst:
            written = dst.write(encode_header(self._last_seq))
            for frame in iter_frames(src, self.path, HEADER_SIZE, end):
                if keep(self._decode(frame)):
                    written += dst.write(encode_frame(frame.record_id, frame.body))
                    kept += 1
                else:
                    removed += 1
                progress.step("compact.copy", frame.end - HEADER_SIZE, total)
            dst.flush()
            if self._fsync:
                os.fsync(dst.fileno())
        new_fh = open(tmp, "r+b", buffering=0)
        try:
            with self._view_lock:
                os.replace(tmp, self.path)
                old_fh, self._fh = self._fh, new_fh
                self._end = written
                self._count = kept
        except BaseException:
            new_fh.close()
            raise
        old_fh.close()
        self._dirty_tail = False
        if self._fsync:
            fsync_dir(os.path.dirname(os.path.abspath(self.path)))
        progress.emit("compact.done", 100, f"kept {kept}, removed {removed}")
        return CompactionResult(kept=kept, removed=removed, bytes_before=end, bytes_after=written)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
