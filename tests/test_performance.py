import os
import sys
import time

from rich.console import Console

from embedded_docstore import Store, StoreSettings

_force_tty = os.environ.get("FORCE_TTY", "").lower() in ("1", "true", "yes", "on")
_isatty = getattr(sys.stderr, "isatty", lambda: False)()
_console = Console(file=sys.stderr, force_terminal=(_isatty or _force_tty), color_system="standard")
_tty_progress = os.environ.get("TTY_PROGRESS", "").lower() in ("1", "true", "yes", "on")


def progress_printer(evt):
    phase = evt.get("phase", "")
    pct = int(evt.get("pct", 0))
    msg = evt.get("msg", "")
    state = getattr(progress_printer, "_state", {"last": {}})
    last = state["last"]
    prev = last.get(phase, -1)
    is_tty = _tty_progress and getattr(_console, "is_terminal", False)

    if not is_tty:
        if pct in (0, 100) and (prev != pct):
            parts = [p for p in (phase, f"{pct}%", (f"- {msg}" if msg else "")) if p]
            _console.print("[progress] " + " ".join(parts), markup=False)
        last[phase] = pct
        progress_printer._state = state
        return

    if pct < 100 and prev != -1 and (pct - prev) < 5:
        return
    parts = [p for p in (phase, f"{pct}%", (f"- {msg}" if (msg and pct in (0, 100)) else "")) if p]
    text = "[progress] " + " ".join(parts)
    _console.print("\r\x1b[2K" + text, end="", markup=False)
    if pct >= 100:
        _console.print()
    last[phase] = pct
    progress_printer._state = state


def make_record(i):
    rec = {
        "ix1": i,
        "ix2": f"s{i % 1000}",
        "ix3": (i % 2 == 0),
        "nested": {"grp": f"grp{i % 5}", "vals": [i % 7, i % 11]},
    }
    for k in range(20):
        if k % 3 == 0:
            rec[f"f{k:02d}"] = f"v{i % 10}"
        elif k % 3 == 1:
            rec[f"f{k:02d}"] = i % 100
        else:
            rec[f"f{k:02d}"] = (i % 3 == 0)
    return rec


def test_performance_big_dataset(tmp_path):
    settings = StoreSettings(root_dir=tmp_path, fsync=False)
    N = 10_000

    t0 = time.perf_counter()
    store = Store.open(tmp_path, settings=settings, on_progress=progress_printer)
    coll = store.collection("perf")
    t1 = time.perf_counter()
    _console.print(f"[perf] initial open (new collection): {(t1 - t0):.3f}s", markup=False)

    t2 = time.perf_counter()
    for i in range(N):
        coll.append(make_record(i))
        if (i + 1) % 1000 == 0:
            line = f"[perf] inserted {i+1}/{N}"
            if _tty_progress and _console.is_terminal:
                _console.print("\r\x1b[2K" + line, end="", markup=False)
    t3 = time.perf_counter()
    _console.print(f"[perf] append {N} records: {(t3 - t2):.3f}s", markup=False)

    # Close and reopen to measure replay time
    store.close()
    t4 = time.perf_counter()
    store2 = Store.open(tmp_path, settings=settings, on_progress=progress_printer)
    coll2 = store2.collection("perf")
    t5 = time.perf_counter()
    _console.print(f"[perf] reopen and replay {N} records: {(t5 - t4):.3f}s", markup=False)
    assert coll2.count() == N

    t6 = time.perf_counter()
    res = list(coll2.find({"ix1": {"$gte": N // 2}}))
    t7 = time.perf_counter()
    _console.print(f"[perf] scan query (>= {N//2}) matched={len(res)}: {(t7 - t6):.3f}s", markup=False)
    assert len(res) == N // 2

    t8 = time.perf_counter()
    res_or = list(coll2.find({"$or": [{"ix1": {"$gte": N // 2}}, {"ix1": {"$gte": N // 2}}]}))
    t9 = time.perf_counter()
    _console.print(f"[perf] $or query matched={len(res_or)}: {(t9 - t8):.3f}s", markup=False)
    assert len(res_or) == len(res)

    # Compact away every other record
    t10 = time.perf_counter()
    coll2.compact(lambda rec: rec["ix3"])
    t11 = time.perf_counter()
    _console.print(f"[perf] compact: {(t11 - t10):.3f}s", markup=False)

    assert coll2.count() == N // 2
    assert [rid for rid, _ in coll2.scan()][:3] == [1, 3, 5]
    store2.close()
