# tests/test_verify.py
import base64

import pytest

from conftest import make_entry
from stoneledger.core.canon import canonicalize, strip_signature
from stoneledger.core.types import KeyRecord, VerificationReason
from stoneledger.crypto.keys import SigningKey, verify_bytes
from stoneledger.errors import ConfigurationError, StructuralError
from stoneledger.sign.signer import Signer, sign
from stoneledger.verify.verifier import LedgerVerifier, verify


# ── signer


def test_sign_stamps_active_key_and_appends_signature(signer, sample_entry):
    sealed = signer.sign(sample_entry)

    assert sealed["key_id"] == "K1"
    assert list(sealed)[-1] == "signature"
    assert len(base64.b64decode(sealed["signature"])) == 64
    assert "key_id" not in sample_entry and "signature" not in sample_entry


def test_signature_covers_canonical_bytes(signer, signing_key, sample_entry):
    sealed = signer.sign(sample_entry)
    canon = canonicalize(strip_signature(sealed))
    assert verify_bytes(signing_key.public_key, base64.b64decode(sealed["signature"]), canon)


def test_sign_ignores_input_order(signer, sample_entry):
    reordered = dict(reversed(list(sample_entry.items())))
    reordered["scores"] = {"security": 8, "repro": 7}
    assert signer.sign(reordered)["signature"] == signer.sign(sample_entry)["signature"]


@pytest.mark.parametrize("field", ["entry_id", "issued_at"])
def test_sign_requires_id_and_timestamp(signer, sample_entry, field):
    del sample_entry[field]
    with pytest.raises(StructuralError, match=field):
        signer.sign(sample_entry)


def test_sign_refuses_sealed_entry(signer, sample_entry):
    with pytest.raises(StructuralError, match="already sealed"):
        signer.sign(signer.sign(sample_entry))


def test_sign_refuses_foreign_key_id(signer, sample_entry):
    with pytest.raises(ConfigurationError):
        signer.sign(dict(sample_entry, key_id="K7"))


def test_signer_must_match_active_record(registry):
    with pytest.raises(ConfigurationError, match="does not match"):
        Signer.from_registry(registry, SigningKey.generate())


def test_sign_from_expanded_key(registry, signing_key, sample_entry):
    expanded = SigningKey.from_bytes(signing_key.expanded)
    assert sign(sample_entry, expanded, registry) == sign(sample_entry, signing_key, registry)


# ── verifier


def test_scenario_round_trip(signer, registry, sample_entry):
    result = verify(signer.sign(sample_entry), registry)
    assert result.valid
    assert result.entry_id == "E1"
    assert result.key_id == "K1"
    assert result.reason is None
    assert bool(result)


@pytest.mark.parametrize("field,value", [
    ("entry_id", "E2"),
    ("issued_at", "2026-02-01T05:00:00.001Z"),
    ("subject_ref", "abd"),
    ("result", "fail"),
    ("scores", {"repro": 7, "security": 9}),
    ("report_hash", "sha256:" + "0" * 63 + "1"),
    ("subject_locator", "https://evil.example"),
])
def test_tampered_field_is_signature_mismatch(signer, registry, sample_entry, field, value):
    sealed = signer.sign(sample_entry)
    sealed[field] = value
    result = verify(sealed, registry)
    assert not result.valid
    assert result.reason is VerificationReason.SIGNATURE_MISMATCH
    assert result.reason.is_tampering


def test_flipped_signature_byte(signer, registry, sample_entry):
    sealed = signer.sign(sample_entry)
    sig = bytearray(base64.b64decode(sealed["signature"]))
    sig[10] ^= 0x01
    sealed["signature"] = base64.b64encode(bytes(sig)).decode()
    assert verify(sealed, registry).reason is VerificationReason.SIGNATURE_MISMATCH


@pytest.mark.parametrize("field", ["signature", "key_id"])
def test_missing_field(signer, registry, sample_entry, field):
    sealed = signer.sign(sample_entry)
    del sealed[field]
    result = verify(sealed, registry)
    assert result.reason is VerificationReason.MISSING_FIELD
    assert not result.reason.is_tampering


def test_unknown_key(signer, registry, sample_entry):
    sealed = signer.sign(sample_entry)
    sealed["key_id"] = "K404"
    assert verify(sealed, registry).reason is VerificationReason.UNKNOWN_KEY


def test_unsupported_algorithm(signing_key, sample_entry):
    from stoneledger.crypto.registry import KeyRegistry

    registry = KeyRegistry(active="K1", keys={
        "K1": KeyRecord(public_key=signing_key.public_key, created_at="", type="rsa"),
    })
    sealed = Signer(signing_key, "K1").sign(sample_entry)
    assert verify(sealed, registry).reason is VerificationReason.UNSUPPORTED_ALGORITHM


def test_malformed_signature(signer, registry, sample_entry):
    sealed = signer.sign(sample_entry)
    result = verify(dict(sealed, signature="!!!"), registry)
    assert result.reason is VerificationReason.MALFORMED_FIELD
    assert not result.reason.is_tampering


@pytest.mark.parametrize("field", ["key_id", "signature"])
@pytest.mark.parametrize("value", [["K1"], {"id": "K1"}, 7])
def test_non_string_key_id_or_signature(signer, registry, sample_entry, field, value):
    sealed = signer.sign(sample_entry)
    sealed[field] = value
    result = verify(sealed, registry)
    assert not result.valid
    assert result.reason is VerificationReason.MALFORMED_FIELD


def test_added_field_is_tampering(signer, registry, sample_entry):
    sealed = signer.sign(sample_entry)
    result = verify(dict(sealed, injected="x"), registry)
    assert result.reason is VerificationReason.SIGNATURE_MISMATCH
    assert result.reason.is_tampering
    assert "injected" in result.message


def test_renamed_field_is_tampering(signer, registry, sample_entry):
    sealed = signer.sign(sample_entry)
    sealed["subject_reg"] = sealed.pop("subject_ref")
    result = verify(sealed, registry)
    assert result.reason is VerificationReason.SIGNATURE_MISMATCH
    assert result.reason.is_tampering


def test_non_mapping_entry(registry):
    assert LedgerVerifier(registry).verify(["not", "an", "entry"]).reason is VerificationReason.MALFORMED_FIELD


def test_key_rotation_keeps_old_entries_valid(signer, registry, sample_entry):
    old_sealed = signer.sign(sample_entry)

    new_key = SigningKey.generate()
    rotated = registry.rotate("K2", KeyRecord(public_key=new_key.public_key, created_at=""))
    new_sealed = Signer.from_registry(rotated, new_key).sign(make_entry("E2"))

    assert verify(old_sealed, rotated).valid
    assert verify(new_sealed, rotated).valid
    assert new_sealed["key_id"] == "K2"
    assert rotated.resolve("K1") and rotated.resolve("K2")
    # the old registry does not know K2
    assert verify(new_sealed, registry).reason is VerificationReason.UNKNOWN_KEY


def test_result_to_dict(signer, registry, sample_entry):
    ok = verify(signer.sign(sample_entry), registry).to_dict()
    assert ok == {"valid": True, "entry_id": "E1", "key_id": "K1", "issued_at": "2026-02-01T05:00:00.000Z"}

    sealed = signer.sign(sample_entry)
    sealed["result"] = "fail"
    bad = verify(sealed, registry).to_dict()
    assert bad["valid"] is False
    assert bad["reason"] == "SignatureMismatch"


def test_verify_all_survives_hostile_record(file_store, signer, registry):
    file_store.append(signer.sign(make_entry("E1")))
    file_store.append(signer.sign(make_entry("E2")))
    path = file_store.entries_dir / "E2.json"
    path.write_text(path.read_text(encoding="utf-8").replace('"key_id": "K1"', '"key_id": ["K1"]'),
                    encoding="utf-8")

    results = list(LedgerVerifier(registry).verify_all(file_store))
    assert [r.valid for r in results] == [True, False]
    assert results[1].reason is VerificationReason.MALFORMED_FIELD


def test_stored_entry_must_match_sealed_schema(file_store, signer, registry):
    # signed directly, bypassing the issuer's schema check
    sealed = signer.sign(make_entry(subject_type="vehicle"))
    file_store.append(sealed)

    assert verify(sealed, registry).valid
    result = LedgerVerifier(registry).verify_stored("E1", file_store)
    assert result.reason is VerificationReason.MALFORMED_FIELD
    assert "subject_type" in result.message
