import os

import pytest
from rich.console import Console

from embedded_docstore import (
    CorruptFrameError,
    InvalidNameError,
    Store,
    StoreClosedError,
    StoreIOError,
    StoreSettings,
)

_console = Console(force_terminal=True, color_system="standard")


def progress_printer(evt):
    phase = evt.get("phase", "")
    pct = int(evt.get("pct", 0))
    msg = evt.get("msg", "")
    parts = []
    if phase:
        parts.append(phase)
    parts.append(f"{pct}%")
    if msg:
        parts.append(f"- {msg}")
    text = f"[progress] {' '.join(parts)}"
    _console.print(f"\r{text}", end="", highlight=False, soft_wrap=False)
    if pct >= 100:
        _console.print()


def test_append_scan_compact_scenario(tmp_path, settings):
    store = Store.open(tmp_path, settings=settings, on_progress=progress_printer)
    users = store.collection("users")

    assert users.append({"name": "Ronak"}) == 1
    assert users.append({"name": "Bhavya"}) == 2
    assert list(users.scan()) == [(1, {"name": "Ronak"}), (2, {"name": "Bhavya"})]

    users.compact(lambda rec: rec["name"] != "Bhavya")
    assert list(users.scan()) == [(1, {"name": "Ronak"})]

    # Ids are never reused, even when the newest record was compacted away
    assert users.append({"name": "Utsav"}) == 3
    store.close()

    store2 = Store.open(tmp_path, settings=settings)
    users2 = store2.collection("users")
    assert list(users2.scan()) == [(1, {"name": "Ronak"}), (3, {"name": "Utsav"})]
    assert users2.append({"name": "Kavya"}) == 4
    store2.close()


def test_ids_survive_compaction_and_reopen(tmp_path, settings):
    with Store.open(tmp_path, settings=settings) as store:
        c = store.collection("events")
        for i in range(5):
            c.append({"i": i})
        c.compact(lambda rec: rec["i"] < 2)
        assert c.last_id == 5

    with Store.open(tmp_path, settings=settings) as store:
        c = store.collection("events")
        assert [rid for rid, _ in c.scan()] == [1, 2]
        assert c.last_id == 5
        assert c.append({"i": 99}) == 6


def test_directory_layout(tmp_path, settings):
    with Store.open(tmp_path / "data", settings=settings) as store:
        store.collection("users").append({"name": "Ronak"})
        store.collection("audit-log_2").append({"ev": "login"})
    assert sorted(os.listdir(tmp_path / "data")) == ["audit-log_2.log", "users.log"]


def test_open_discovers_existing_collections(tmp_path, settings):
    with Store.open(tmp_path, settings=settings) as store:
        store.collection("b").append({"x": 1})
        store.collection("a").append({"x": 2})
    # Unrelated files are ignored
    (tmp_path / "notes.txt").write_text("hello")
    (tmp_path / "bad name.log").write_bytes(b"whatever")

    with Store.open(tmp_path, settings=settings) as store:
        assert store.collections() == ["a", "b"]
        assert "a" in store
        assert "notes" not in store
        assert list(store.collection("a").scan()) == [(1, {"x": 2})]


def test_default_root_comes_from_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCSTORE_ROOT_DIR", str(tmp_path / "envroot"))
    monkeypatch.setenv("DOCSTORE_FSYNC", "false")
    settings = StoreSettings()
    assert settings.fsync is False
    with Store(settings=settings) as store:
        assert store.path == str(tmp_path / "envroot")
        store.collection("users").append({"name": "Ronak"})
    assert (tmp_path / "envroot" / "users.log").exists()


@pytest.mark.parametrize("name", ["", "bad name", "../escape", "a.b", "x/y", "users.log", "é", None, 42])
def test_invalid_collection_names(store, tmp_path, name):
    before = sorted(os.listdir(tmp_path))
    with pytest.raises(InvalidNameError):
        store.collection(name)
    assert sorted(os.listdir(tmp_path)) == before


def test_open_fails_on_non_directory(tmp_path, settings):
    target = tmp_path / "plainfile"
    target.write_text("not a dir")
    with pytest.raises(StoreIOError) as ei:
        Store.open(target, settings=settings)
    assert isinstance(ei.value, OSError)


def test_open_rejects_foreign_log_file(tmp_path, settings):
    (tmp_path / "junk.log").write_bytes(b"definitely not a collection file")
    with pytest.raises(CorruptFrameError):
        Store.open(tmp_path, settings=settings)


def test_close_is_idempotent_and_final(tmp_path, settings):
    store = Store.open(tmp_path, settings=settings)
    users = store.collection("users")
    users.append({"name": "Ronak"})
    store.close()
    store.close()
    assert store.closed
    with pytest.raises(StoreClosedError):
        store.collection("users")
    with pytest.raises(StoreClosedError):
        users.append({"name": "late"})
    with pytest.raises(StoreClosedError):
        users.scan()


def test_drop_collection(store, tmp_path):
    store.collection("tmp").append({"x": 1})
    assert store.drop("tmp") is True
    assert not (tmp_path / "tmp.log").exists()
    assert "tmp" not in store
    assert store.drop("tmp") is False
    # Recreated empty on next access
    assert list(store.collection("tmp").scan()) == []


def test_progress_events(tmp_path, settings):
    events = []

    def collect(evt):
        events.append(evt.get("phase"))

    with Store.open(tmp_path, settings=settings) as store:
        c = store.collection("users")
        for i in range(3):
            c.append({"name": f"U{i}"})

    store = Store.open(tmp_path, settings=settings, on_progress=collect)
    assert events[0] == "open.start"
    assert "open.scan" in events
    assert events[-1] == "open.done"

    events.clear()
    store.collection("users").compact(lambda rec: rec["name"] != "U1")
    assert "compact.start" in events
    assert "compact.copy" in events
    assert "compact.done" in events
    store.close()
