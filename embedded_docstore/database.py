from __future__ import annotations
import itertools
import os
import re
import threading
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .codec import Record
from .config import StoreSettings, get_settings
from .coordinator import WriteCoordinator
from .errors import InvalidNameError, StoreClosedError, StoreIOError, ValidationError
from .logging import get_logger
from .progress import Progress, ProgressCallback
from .query import Predicate, Query, as_predicate, project, sort_records
from .storage import LOG_SUFFIX, TMP_SUFFIX, CollectionFile, RecordID

NAME_RE = re.compile(r"[A-Za-z0-9_-]+")

log = get_logger(__name__)


def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not NAME_RE.fullmatch(name):
        raise InvalidNameError(f"invalid collection name: {name!r} (allowed: letters, digits, '_' and '-')")
    return name


class CollectionHandle:
    """
    Caller-facing view of one collection. Obtained from Store.collection();
    stays bound to the store and stops working once the store is closed.
    """
    __slots__ = ("_store", "_file")

    def __init__(self, store: "Store", file: CollectionFile) -> None:
        self._store = store
        self._file = file

    def __repr__(self) -> str:
        return f"CollectionHandle(name={self.name!r}, count={self._file.count()})"

    @property
    def name(self) -> str:
        return self._file.name

    @property
    def path(self) -> str:
        return self._file.path

    @property
    def last_id(self) -> RecordID:
        return self._file.last_id

    @property
    def size_bytes(self) -> int:
        return self._file.size_bytes

    @property
    def read_only(self) -> bool:
        return self._file.read_only

    @property
    def coordinator(self) -> WriteCoordinator:
        return self._file.coordinator

    # ----- writes -----

    def append(self, record: Mapping[str, Any]) -> RecordID:
        """Durably append one record and return its id."""
        return self._file.append(record)

    insert = append

    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> List[RecordID]:
        # Each record is its own frame: a failure leaves earlier ones committed
        return [self._file.append(r) for r in records]

    def compact(self, predicate: Union[Predicate, Query]) -> None:
        """Keep only records matching `predicate` (callable or query mapping), in order."""
        self._file.compact(as_predicate(predicate))

    def delete(self, query: Union[Predicate, Query]) -> int:
        if query is None:
            raise ValidationError("delete() needs a query; use clear() to remove everything")
        pred = as_predicate(query)
        return self._file.compact(lambda rec: not pred(rec)).removed

    def clear(self) -> int:
        return self._file.compact(lambda _rec: False).removed

    # ----- reads -----

    def scan(self) -> Iterator[Tuple[RecordID, Record]]:
        return self._file.scan()

    def __iter__(self) -> Iterator[Tuple[RecordID, Record]]:
        return self.scan()

    def get(self, record_id: RecordID) -> Optional[Record]:
        for rid, rec in self._file.scan():
            if rid == record_id:
                return rec
            if rid > record_id:
                break
        return None

    def find(
        self,
        query: Union[Query, Predicate, None] = None,
        *,
        limit: Optional[int] = None,
        skip: int = 0,
        order_by: Optional[List[Tuple[str, str]]] = None,
        fields: Optional[List[str]] = None,
    ) -> Iterator[Tuple[RecordID, Record]]:
        # Full-scan plan; sorting materializes the matches
        if skip < 0 or (limit is not None and limit < 0):
            raise ValidationError("skip and limit must be non-negative")
        pred = as_predicate(query)
        hits: Iterator[Tuple[RecordID, Record]] = (
            (rid, rec) for rid, rec in self._file.scan() if pred(rec)
        )
        if order_by:
            ordered = list(hits)
            sort_records(ordered, order_by)
            hits = iter(ordered)
        stop = None if limit is None else skip + limit
        return ((rid, project(rec, fields)) for rid, rec in itertools.islice(hits, skip, stop))

    def count(self, query: Union[Query, Predicate, None] = None) -> int:
        if query is None:
            return self._file.count()
        pred = as_predicate(query)
        return sum(1 for _rid, rec in self._file.scan() if pred(rec))

    def __len__(self) -> int:
        return self._file.count()


class Store:
    """
    A directory of collections, one `<name>.log` file each.

    There is no process-wide instance: open a Store and pass it to whatever
    needs it. Safe to share between threads.
    """
    def __init__(
        self,
        path: Union[str, os.PathLike, None] = None,
        *,
        settings: Optional[StoreSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._settings = settings or get_settings()
        root = path if path is not None else self._settings.root_dir
        self.path = os.path.abspath(os.fspath(root))
        self._progress = Progress(on_progress)
        self._lock = threading.Lock()
        self._files: Dict[str, CollectionFile] = {}
        self._closed = False
        self._open()

    @classmethod
    def open(
        cls,
        path: Union[str, os.PathLike, None] = None,
        *,
        settings: Optional[StoreSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "Store":
        return cls(path, settings=settings, on_progress=on_progress)

    def _open(self) -> None:
        """
        Scan the directory, drop temp files of interrupted writes and open
        (recovering) every collection file found.
        """
        progress = self._progress
        progress.emit("open.start", 0, self.path)
        try:
            os.makedirs(self.path, exist_ok=True)
            entries = sorted(os.listdir(self.path))
        except OSError as e:
            raise StoreIOError(f"cannot open store at {self.path!r}: {e}") from e

        names: List[str] = []
        for entry in entries:
            full = os.path.join(self.path, entry)
            if entry.endswith(LOG_SUFFIX + TMP_SUFFIX):
                try:
                    os.remove(full)
                except OSError as e:
                    raise StoreIOError(f"cannot remove stale temp file {full!r}: {e}") from e
                log.warning("store.stale_temp_removed", path=full)
                continue
            if not entry.endswith(LOG_SUFFIX) or not os.path.isfile(full):
                continue
            name = entry[: -len(LOG_SUFFIX)]
            if NAME_RE.fullmatch(name):
                names.append(name)
            else:
                log.debug("store.skip_file", path=full)

        try:
            for i, name in enumerate(names, 1):
                self._files[name] = self._open_file(name)
                progress.step("open.scan", i, len(names), name)
        except BaseException:
            for cf in self._files.values():
                cf.close()
            self._files.clear()
            raise

        progress.emit("open.done", 100, f"{len(names)} collection(s)")
        log.info("store.opened", path=self.path, collections=len(names))

    def _file_path(self, name: str) -> str:
        return os.path.join(self.path, name + LOG_SUFFIX)

    def _open_file(self, name: str) -> CollectionFile:
        cf = CollectionFile(
            self._file_path(name),
            name,
            fsync=self._settings.fsync,
            progress=self._progress,
        )
        cf.open()
        return cf

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"store at {self.path!r} is closed")

    # ----- public API -----

    @property
    def closed(self) -> bool:
        return self._closed

    def collection(self, name: str) -> CollectionHandle:
        """Return the named collection, creating an empty one on first use."""
        validate_name(name)
        with self._lock:
            self._check_open()
            cf = self._files.get(name)
            if cf is None:
                cf = CollectionFile.create(
                    self._file_path(name),
                    name,
                    fsync=self._settings.fsync,
                    progress=self._progress,
                )
                self._files[name] = cf
        return CollectionHandle(self, cf)

    __getitem__ = collection

    def collections(self) -> List[str]:
        with self._lock:
            self._check_open()
            return sorted(self._files)

    def has_collection(self, name: str) -> bool:
        with self._lock:
            return name in self._files

    __contains__ = has_collection

    def drop(self, name: str) -> bool:
        """Close and delete a collection file. Returns False if it did not exist."""
        validate_name(name)
        with self._lock:
            self._check_open()
            cf = self._files.pop(name, None)
            if cf is None:
                return False
            cf.close()
            try:
                os.remove(cf.path)
            except OSError as e:
                raise StoreIOError(f"cannot drop collection {name!r}: {e}") from e
        log.info("collection.dropped", collection=name)
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            files = list(self._files.values())
            self._files.clear()
        for cf in files:
            cf.close()
        log.info("store.closed", path=self.path)

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{len(self._files)} collection(s)"
        return f"Store({self.path!r}, {state})"
