import json

import pytest

from nazuna.errors import StartupError
from nazuna.session.credential_store import CredentialStore


def test_load_missing_directory_gives_fresh_state(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")

    state = store.load()

    assert state.creds == {}
    assert state.registered is False


def test_save_creds_merges_and_round_trips(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()

    store.save_creds({"registered": True, "me": {"id": "5511@s.whatsapp.net"}})
    store.save_creds({"account": {"signature": "abc"}})

    state = store.load()
    assert state.registered is True
    assert state.creds["me"]["id"] == "5511@s.whatsapp.net"
    assert state.creds["account"] == {"signature": "abc"}
    assert not list(store.directory.glob("*.tmp"))


def test_corrupt_creds_start_fresh(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()
    store.creds_path.write_text("{broken", encoding="utf-8")

    assert store.load().creds == {}


def test_key_files_write_read_delete(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()
    state = store.load()

    state.write_keys("pre-key", {"1": {"public": "p1"}, "2": {"public": "p2"}})
    assert state.read_keys("pre-key", ["1", "2", "3"]) == {"1": {"public": "p1"}, "2": {"public": "p2"}}

    state.write_keys("pre-key", {"1": None})
    assert state.read_keys("pre-key", ["1"]) == {}


def test_key_ids_are_sanitized(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()
    store.write_keys("session", {"5511@s.whatsapp.net/0": {"v": 1}})

    (path,) = store.keys_dir.iterdir()
    assert "/" not in path.name[len("session-"):]
    assert json.loads(path.read_text(encoding="utf-8")) == {"v": 1}


def test_purge_removes_directory(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()
    store.save_creds({"registered": True})
    assert store.exists()

    store.purge()
    store.purge()  # already gone

    assert not store.exists()


def test_writes_after_purge_do_not_recreate_directory(tmp_path):
    store = CredentialStore(tmp_path / "qr-code")
    store.ensure_directory()
    store.save_creds({"registered": True})
    store.purge()

    store.save_creds({"registered": True, "me": {"id": "5511@s.whatsapp.net"}})
    store.write_keys("pre-key", {"1": {"public": "p1"}})

    assert not store.exists()

    store.ensure_directory()
    assert store.load().creds == {}


def test_ensure_directory_failure_raises_startup_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = CredentialStore(blocker / "qr-code")

    with pytest.raises(StartupError):
        store.ensure_directory()
