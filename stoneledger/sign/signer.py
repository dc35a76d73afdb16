# stoneledger/sign/signer.py
from typing import Any, Dict, Mapping

from stoneledger.core.canon import SIGNATURE_FIELD, canonicalize
from stoneledger.core.encoding import b64_encode
from stoneledger.crypto.keys import SigningKey
from stoneledger.crypto.registry import KeyRegistry
from stoneledger.errors import ConfigurationError, StructuralError

REQUIRED_FOR_SIGNING = ("entry_id", "issued_at")


class Signer:
    """
    Seals entries with one Ed25519 key.

    Signing is pure computation: nothing is persisted here. Committing the
    sealed entry is the ledger store's job, so the two can be tested and
    retried independently by the caller.
    """

    def __init__(self, signing_key: SigningKey, key_id: str):
        if not key_id:
            raise ConfigurationError("Signer requires a key id")
        self.signing_key = signing_key
        self.key_id = key_id

    @classmethod
    def from_registry(cls, registry: KeyRegistry, signing_key: SigningKey) -> "Signer":
        """Bind to the registry's active key; the private key must match its public record."""
        record = registry.active_key()
        if record.public_key != signing_key.public_key:
            raise ConfigurationError(
                f"Private key does not match the public key registered for active key '{registry.active}'"
            )
        return cls(signing_key, registry.active)

    def sign(self, entry: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Return a new sealed entry: the input fields, `key_id` stamped when
        unset, and `signature` appended last. The input is not modified.
        """
        if SIGNATURE_FIELD in entry:
            raise StructuralError("Entry is already sealed")
        missing = [f for f in REQUIRED_FOR_SIGNING if not entry.get(f)]
        if missing:
            raise StructuralError(f"Cannot sign entry without: {', '.join(missing)}")

        unsigned = dict(entry)
        if not unsigned.get("key_id"):
            unsigned["key_id"] = self.key_id
        elif unsigned["key_id"] != self.key_id:
            raise ConfigurationError(
                f"Entry names key '{unsigned['key_id']}' but this signer holds '{self.key_id}'"
            )

        signature = self.signing_key.sign_bytes(canonicalize(unsigned))

        sealed = dict(unsigned)
        sealed[SIGNATURE_FIELD] = b64_encode(signature)
        return sealed


def sign(entry: Mapping[str, Any], signing_key: SigningKey, registry: KeyRegistry) -> Dict[str, Any]:
    """One-shot: seal `entry` with the registry's active key."""
    return Signer.from_registry(registry, signing_key).sign(entry)
