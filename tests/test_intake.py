# tests/test_intake.py
import pytest

from proofdesk.errors import ValidationError

from conftest import submit


def test_submit_creates_pending_record_with_proof_file(services):
    sub = services.broadcaster.subscribe()
    rec = submit(services)

    assert rec.status == "pending"
    assert rec.userId == "u1" and rec.paket == "Premium"
    assert rec.buktiPath.startswith("/uploads/")
    assert rec.buktiPath.endswith(".png")
    assert services.storage.exists(rec.buktiPath)

    stored = services.store.get(rec.id)
    assert stored is not None and stored.status == "pending"

    event = sub.queue.get_nowait()
    assert event["type"] == "created"
    assert event["record"]["id"] == rec.id


def test_submit_ids_and_filenames_are_unique(services):
    a = submit(services)
    b = submit(services)
    assert a.id != b.id
    assert a.buktiPath != b.buktiPath
    assert len(services.store.load_all()) == 2


def test_submit_without_extension_keeps_bare_name(services):
    rec = submit(services, filename="scan")
    name = rec.buktiPath.rsplit("/", 1)[1]
    assert "." not in name
    assert "_" in name


@pytest.mark.parametrize("field", ["user_id", "username", "paket", "filename"])
def test_submit_missing_field_is_rejected(services, field):
    kwargs = {"user_id": "u1", "username": "Ali", "paket": "Premium", "filename": "proof.png"}
    kwargs[field] = None
    with pytest.raises(ValidationError):
        submit(services, **kwargs)
    assert services.store.load_all() == []
    assert list(services.storage.root.iterdir()) == []


def test_submit_blank_or_empty_upload_is_rejected(services):
    with pytest.raises(ValidationError) as exc:
        services.intake.submit("u1", "  ", "Premium", "proof.png", b"")
    assert set(exc.value.details["missing"]) == {"username", "bukti"}
    assert services.store.load_all() == []
