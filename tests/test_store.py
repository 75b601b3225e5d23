# tests/test_store.py
"""
Record store contract for the flat JSON file and the SQL backend.
"""
import json
import threading

import pytest

from proofdesk import db as dbmod
from proofdesk.errors import PersistenceWarning
from proofdesk.schemas import Submission
from proofdesk.storage import LocalStorage
from proofdesk.store import JsonFileRecordStore, SqlRecordStore


def make_record(rid="r1", bukti="/uploads/proof.png", paket="Premium"):
    return Submission(
        id=rid, userId="u1", username="Ali", paket=paket,
        buktiPath=bukti, timestamp="2025-01-01T00:00:00Z",
    )


@pytest.fixture
def storage(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return LocalStorage(root=root)


def test_missing_file_loads_empty(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "nope.json", storage)
    assert store.load_all() == []


def test_corrupt_file_loads_empty(tmp_path, storage):
    path = tmp_path / "transactions.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileRecordStore(path, storage)
    with pytest.warns(PersistenceWarning):
        assert store.load_all() == []


def test_non_array_document_loads_empty(tmp_path, storage):
    path = tmp_path / "transactions.json"
    path.write_text(json.dumps({"id": "r1"}), encoding="utf-8")
    with pytest.warns(PersistenceWarning):
        assert JsonFileRecordStore(path, storage).load_all() == []


def test_malformed_entries_are_skipped(tmp_path, storage):
    path = tmp_path / "transactions.json"
    good = make_record().model_dump(mode="json")
    path.write_text(json.dumps([good, {"id": "broken"}]), encoding="utf-8")
    with pytest.warns(PersistenceWarning):
        records = JsonFileRecordStore(path, storage).load_all()
    assert [r.id for r in records] == ["r1"]


def test_append_persists_pretty_json_in_order(tmp_path, storage):
    path = tmp_path / "transactions.json"
    store = JsonFileRecordStore(path, storage)
    store.append(make_record("r1"))
    store.append(make_record("r2"))

    raw = path.read_text(encoding="utf-8")
    data = json.loads(raw)
    assert [d["id"] for d in data] == ["r1", "r2"]
    assert data[0]["status"] == "pending"
    assert data[0]["buktiPath"] == "/uploads/proof.png"
    assert '\n  {' in raw  # indent=2


def test_duplicates_for_same_user_are_kept(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    store.append(make_record("r1"))
    store.append(make_record("r2"))
    assert len([r for r in store.load_all() if r.userId == "u1"]) == 2


def test_remove_by_id_deletes_file_and_record(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    bukti = storage.put_bytes("proof.png", b"img")
    store.append(make_record("r1", bukti=bukti))
    store.append(make_record("r2", bukti="/uploads/other.png"))

    assert store.remove_by_id("r1") is True
    assert not storage.exists(bukti)
    assert [r.id for r in store.load_all()] == ["r2"]


def test_remove_tolerates_missing_proof_file(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    store.append(make_record("r1", bukti="/uploads/already-gone.png"))
    assert store.remove_by_id("r1") is True
    assert store.load_all() == []


def test_remove_unknown_id_returns_false(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    store.append(make_record("r1"))
    assert store.remove_by_id("missing") is False
    assert len(store.load_all()) == 1


def test_save_failure_is_swallowed(tmp_path, storage):
    # a directory where the file should be makes every write fail
    path = tmp_path / "as_dir.json"
    path.mkdir()
    store = JsonFileRecordStore(path, storage)
    with pytest.warns(PersistenceWarning):
        store.save_all([make_record()])


def test_get_returns_none_for_unknown(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    store.append(make_record("r1"))
    assert store.get("r1").username == "Ali"
    assert store.get("r2") is None


def test_sql_store_same_contract(tmp_path, storage):
    dbmod.reconfigure(f"sqlite:///{tmp_path}/store.db")
    dbmod.init_db()
    store = SqlRecordStore(storage)

    assert store.load_all() == []
    bukti = storage.put_bytes("p.jpg", b"img")
    store.append(make_record("r1", bukti=bukti, paket="Lifetime"))
    store.append(make_record("r2"))
    assert [r.id for r in store.load_all()] == ["r1", "r2"]
    assert store.get("r1").paket == "Lifetime"

    assert store.remove_by_id("r1") is True
    assert not storage.exists(bukti)
    assert store.remove_by_id("r1") is False
    assert [r.id for r in store.load_all()] == ["r2"]


def test_reads_never_see_a_half_written_file(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    records = [make_record(f"r{i}") for i in range(300)]
    store.save_all(records)
    stop = threading.Event()

    def writer():
        while not stop.is_set():
            store.save_all(records)

    t = threading.Thread(target=writer)
    t.start()
    try:
        sizes = [len(store.load_all()) for _ in range(300)]
    finally:
        stop.set()
        t.join(5)

    assert sizes == [300] * 300
    assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]


def test_concurrent_appends_keep_every_record(tmp_path, storage):
    store = JsonFileRecordStore(tmp_path / "t.json", storage)
    store.append(make_record("seed"))

    def add(i):
        store.append(make_record(f"r{i}"))

    threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert len(store.load_all()) == 21
