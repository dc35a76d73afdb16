# tests/test_issuer.py
from pathlib import Path

import pytest

from conftest import make_entry
from stoneledger.config import get_settings
from stoneledger.crypto.hashing import default_report_hash
from stoneledger.crypto.registry import save_registry
from stoneledger.errors import ConfigurationError, DuplicateEntryIdError, StructuralError
from stoneledger.issue.issuer import LedgerIssuer
from stoneledger.storage import FileLedgerStore, SQLiteLedgerStore
from stoneledger.verify.verifier import LedgerVerifier


@pytest.fixture
def issuer(registry, signing_key, file_store):
    return LedgerIssuer(registry=registry, signing_key=signing_key, storage=file_store)


def test_issue_signs_and_appends(issuer, registry, file_store):
    sealed = issuer.issue(make_entry())

    assert sealed["key_id"] == "K1"
    assert file_store.get("E1") == sealed
    assert file_store.lookup_by_subject_ref("abc") == ["E1"]
    assert LedgerVerifier(registry).verify(sealed).valid


def test_default_report_hash(issuer):
    payload = make_entry()
    del payload["report_hash"]
    sealed = issuer.issue(payload)
    assert sealed["report_hash"] == default_report_hash("E1")


def test_invalid_payload_is_not_stored(issuer, file_store):
    with pytest.raises(StructuralError):
        issuer.issue(make_entry(result="maybe"))
    assert "E1" not in file_store


def test_duplicate_issue(issuer):
    issuer.issue(make_entry())
    with pytest.raises(DuplicateEntryIdError):
        issuer.issue(make_entry(result="fail"))


def test_from_settings(tmp_path: Path, registry, signing_key):
    save_registry(registry, tmp_path / "keys" / "keys.json")
    settings = get_settings(
        STONE_LEDGER_ROOT=tmp_path,
        STONE_LEDGER_PRIVATE_KEY_B64=signing_key.expanded_b64(),
    )

    issuer = LedgerIssuer.from_settings(settings)
    try:
        assert isinstance(issuer.storage, FileLedgerStore)
        assert issuer.storage.root == tmp_path.resolve()
        issuer.issue(make_entry())
    finally:
        issuer.close()
    assert (tmp_path / "entries" / "E1.json").exists()


def test_from_settings_with_sqlite_uri(tmp_path: Path, registry, signing_key):
    save_registry(registry, tmp_path / "keys.json")
    settings = get_settings(
        STONE_LEDGER_KEYS=tmp_path / "keys.json",
        STONE_LEDGER_STORAGE=f"sqlite://{tmp_path}/ledger.db",
        STONE_LEDGER_PRIVATE_KEY_B64=signing_key.expanded_b64(),
    )
    issuer = LedgerIssuer.from_settings(settings)
    try:
        assert isinstance(issuer.storage, SQLiteLedgerStore)
    finally:
        issuer.close()


def test_from_settings_requires_private_key(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("STONE_LEDGER_PRIVATE_KEY_B64", raising=False)
    with pytest.raises(ConfigurationError, match="STONE_LEDGER_PRIVATE_KEY_B64"):
        LedgerIssuer.from_settings(get_settings(STONE_LEDGER_ROOT=tmp_path))


def test_from_settings_rejects_key_not_in_registry(tmp_path: Path, registry):
    from stoneledger.crypto.keys import SigningKey

    save_registry(registry, tmp_path / "keys" / "keys.json")
    settings = get_settings(
        STONE_LEDGER_ROOT=tmp_path,
        STONE_LEDGER_PRIVATE_KEY_B64=SigningKey.generate().expanded_b64(),
    )
    with pytest.raises(ConfigurationError, match="does not match"):
        LedgerIssuer.from_settings(settings)
