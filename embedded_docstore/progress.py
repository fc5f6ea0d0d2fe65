from __future__ import annotations
from typing import Any, Callable, Dict, Optional

ProgressCallback = Callable[[Dict[str, Any]], None]


class Progress:
    """
    Thin wrapper over an optional user callback.
    Events are dicts: {"phase": "compact.copy", "pct": 40, "msg": "..."}.
    """
    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._cb = callback

    @property
    def enabled(self) -> bool:
        return self._cb is not None

    def emit(self, phase: str, pct: float = 0, msg: str = "") -> None:
        if self._cb is None:
            return
        evt: Dict[str, Any] = {"phase": phase, "pct": max(0, min(100, int(pct)))}
        if msg:
            evt["msg"] = msg
        self._cb(evt)

    def step(self, phase: str, done: int, total: int, msg: str = "") -> None:
        pct = 100 if total <= 0 else (done * 100) // total
        self.emit(phase, pct, msg)
