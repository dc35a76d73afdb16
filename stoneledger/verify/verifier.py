# stoneledger/verify/verifier.py
import logging
from typing import Any, Iterator, Mapping

from stoneledger.core.canon import SIGNATURE_FIELD, canonicalize, strip_signature, unknown_fields
from stoneledger.core.encoding import b64_decode
from stoneledger.core.schema import validate_entry
from stoneledger.core.types import ED25519, VerificationReason, VerificationResult
from stoneledger.crypto.keys import verify_bytes
from stoneledger.crypto.registry import KeyRegistry
from stoneledger.errors import EntryNotFoundError, StructuralError, UnknownKeyError
from stoneledger.storage import LedgerStore

logger = logging.getLogger(__name__)


def _invalid(entry: Mapping[str, Any], reason: VerificationReason, message: str) -> VerificationResult:
    return VerificationResult(
        False,
        entry_id=entry.get("entry_id"),
        key_id=entry.get("key_id"),
        issued_at=entry.get("issued_at"),
        reason=reason,
        message=message,
    )


class LedgerVerifier:
    """
    Offline verifier for sealed ledger entries.
    Can check a single entry or load entries directly from a ledger store.
    """

    def __init__(self, registry: KeyRegistry):
        self.registry = registry

    def verify(self, entry: Mapping[str, Any]) -> VerificationResult:
        """Recompute the canonical form and check the signature against the entry's key."""
        if not isinstance(entry, Mapping):
            return VerificationResult(False, reason=VerificationReason.MALFORMED_FIELD,
                                      message="Entry must be a JSON object")

        for field in (SIGNATURE_FIELD, "key_id"):
            if not entry.get(field):
                return _invalid(entry, VerificationReason.MISSING_FIELD, f"Entry missing {field} field")
            if not isinstance(entry[field], str):
                return _invalid(entry, VerificationReason.MALFORMED_FIELD, f"Field {field} must be a string")

        key_id = entry["key_id"]
        try:
            record = self.registry.resolve(key_id)
        except UnknownKeyError as e:
            return _invalid(entry, VerificationReason.UNKNOWN_KEY, str(e))
        if record.type != ED25519:
            return _invalid(entry, VerificationReason.UNSUPPORTED_ALGORITHM,
                            f"Unsupported key type: {record.type}")

        try:
            signature = b64_decode(entry[SIGNATURE_FIELD])
        except ValueError as e:
            return _invalid(entry, VerificationReason.MALFORMED_FIELD, str(e))

        # A field the signer never saw (added or renamed after sealing) is tampering.
        unknown = unknown_fields(entry)
        if unknown:
            logger.warning("Entry %s carries unsigned fields %s", entry.get("entry_id"), unknown)
            return _invalid(entry, VerificationReason.SIGNATURE_MISMATCH,
                            f"Fields not covered by the signature: {', '.join(unknown)}")

        try:
            canon_bytes = canonicalize(strip_signature(entry))
        except (StructuralError, TypeError) as e:
            return _invalid(entry, VerificationReason.MALFORMED_FIELD, str(e))

        try:
            ok = verify_bytes(record.public_key, signature, canon_bytes)
        except ValueError as e:
            return _invalid(entry, VerificationReason.MALFORMED_FIELD, f"Key '{key_id}': {e}")

        if not ok:
            logger.warning("Signature mismatch for entry %s (key %s)", entry.get("entry_id"), key_id)
            return _invalid(entry, VerificationReason.SIGNATURE_MISMATCH, "Signature verification failed")

        return VerificationResult(
            True,
            entry_id=entry.get("entry_id"),
            key_id=key_id,
            issued_at=entry.get("issued_at"),
            message="Valid signature",
        )

    def _verify_record(self, entry: Mapping[str, Any]) -> VerificationResult:
        """Signature check, then the sealed-entry schema for an entry read back from a store."""
        result = self.verify(entry)
        if not result.valid:
            return result
        try:
            validate_entry(entry, sealed=True)
        except StructuralError as e:
            return _invalid(entry, VerificationReason.MALFORMED_FIELD, str(e))
        return result

    def verify_stored(self, entry_id: str, storage: LedgerStore) -> VerificationResult:
        """Load one entry from the store and verify it."""
        try:
            entry = storage.get(entry_id)
        except EntryNotFoundError as e:
            return VerificationResult(False, entry_id=entry_id, reason=VerificationReason.NOT_FOUND, message=str(e))
        return self._verify_record(entry)

    def verify_all(self, storage: LedgerStore) -> Iterator[VerificationResult]:
        """Verify every committed entry, in entry id order."""
        for entry in storage.iter_entries():
            yield self._verify_record(entry)


def verify(entry: Mapping[str, Any], registry: KeyRegistry) -> VerificationResult:
    return LedgerVerifier(registry).verify(entry)
