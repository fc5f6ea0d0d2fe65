from __future__ import annotations
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from .logging import get_logger

log = get_logger(__name__)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    WRITING = "writing"
    COMPACTING = "compacting"


class WriteCoordinator:
    """
    Serializes mutations of one collection file.

    At most one append or compaction is in flight at a time:
        IDLE -> WRITING -> IDLE
        IDLE -> COMPACTING -> IDLE
    Readers never take this lock; they snapshot the committed end of the file
    instead (see CollectionFile.scan).
    """
    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._state = CoordinatorState.IDLE
        self._appends = 0
        self._compactions = 0

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def appends(self) -> int:
        return self._appends

    @property
    def compactions(self) -> int:
        return self._compactions

    @contextmanager
    def writing(self) -> Iterator[None]:
        with self._transition(CoordinatorState.WRITING):
            yield
            self._appends += 1

    @contextmanager
    def compacting(self) -> Iterator[None]:
        with self._transition(CoordinatorState.COMPACTING):
            log.debug("compaction.lock_acquired", collection=self.name)
            yield
            self._compactions += 1

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Wait for the in-flight mutation, if any, and hold off new ones (used by close)."""
        with self._lock:
            yield

    @contextmanager
    def _transition(self, state: CoordinatorState) -> Iterator[None]:
        with self._lock:
            self._state = state
            try:
                yield
            finally:
                self._state = CoordinatorState.IDLE
