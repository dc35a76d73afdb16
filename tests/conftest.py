# tests/conftest.py
"""Shared fixtures: deterministic keys, a one-key registry and sample entries."""

from __future__ import annotations

from pathlib import Path

import pytest

from stoneledger.core.types import KeyRecord
from stoneledger.crypto.keys import SigningKey
from stoneledger.crypto.registry import KeyRegistry
from stoneledger.sign.signer import Signer
from stoneledger.storage import FileLedgerStore, SQLiteLedgerStore

ZERO_REPORT_HASH = "sha256:" + "0" * 64


def make_entry(entry_id: str = "E1", **overrides) -> dict:
    entry = {
        "entry_id": entry_id,
        "issued_at": "2026-02-01T05:00:00.000Z",
        "subject_type": "code",
        "subject_ref": "abc",
        "policy_version": "sv-0.1",
        "result": "pass",
        "scores": {"repro": 7, "security": 8},
        "report_hash": ZERO_REPORT_HASH,
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def signing_key() -> SigningKey:
    return SigningKey.from_bytes(bytes(range(32)))


@pytest.fixture
def registry(signing_key: SigningKey) -> KeyRegistry:
    return KeyRegistry(
        active="K1",
        keys={"K1": KeyRecord(public_key=signing_key.public_key, created_at="2026-01-01T00:00:00.000Z")},
    )


@pytest.fixture
def signer(registry: KeyRegistry, signing_key: SigningKey) -> Signer:
    return Signer.from_registry(registry, signing_key)


@pytest.fixture
def sample_entry() -> dict:
    return make_entry()


@pytest.fixture
def file_store(tmp_path: Path) -> FileLedgerStore:
    return FileLedgerStore(tmp_path / "ledger-repo")


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SQLiteLedgerStore(tmp_path / "ledger.db")
    yield store
    store.close()


@pytest.fixture(params=["file", "sqlite"])
def store(request, file_store, sqlite_store):
    return file_store if request.param == "file" else sqlite_store
