# stoneledger/issue/issuer.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from stoneledger.config import LedgerSettings
from stoneledger.core.schema import validate_entry
from stoneledger.crypto.hashing import default_report_hash
from stoneledger.crypto.keys import SigningKey
from stoneledger.crypto.registry import KeyRegistry, load_registry
from stoneledger.errors import ConfigurationError
from stoneledger.sign.signer import Signer
from stoneledger.storage import LedgerStore, create_storage

logger = logging.getLogger(__name__)


@dataclass
class LedgerIssuer:
    """
    The sign-and-append workflow.
    Validates a candidate entry → signs it → commits it to the store.
    """
    registry: KeyRegistry
    signing_key: SigningKey
    storage: LedgerStore

    def __post_init__(self):
        self.signer = Signer.from_registry(self.registry, self.signing_key)

    @classmethod
    def from_settings(cls, settings: LedgerSettings, storage: Optional[LedgerStore] = None) -> "LedgerIssuer":
        if settings.private_key_b64 is None:
            raise ConfigurationError("STONE_LEDGER_PRIVATE_KEY_B64 is not set")
        signing_key = SigningKey.from_b64(settings.private_key_b64.get_secret_value())
        registry = load_registry(settings.registry_path)
        return cls(
            registry=registry,
            signing_key=signing_key,
            storage=storage or create_storage(settings.storage_uri),
        )

    def prepare(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Fill workflow defaults and validate. Returns the entry ready for signing."""
        entry = dict(payload)
        if not entry.get("report_hash") and entry.get("entry_id"):
            # simple verification without a full report
            entry["report_hash"] = default_report_hash(str(entry["entry_id"]))
            logger.info("No report_hash for %s; using %s", entry["entry_id"], entry["report_hash"])
        if not entry.get("key_id"):
            entry["key_id"] = self.signer.key_id
        return validate_entry(entry)

    def issue(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate, sign and append. Returns the sealed entry as committed."""
        sealed = self.signer.sign(self.prepare(payload))
        self.storage.append(sealed)
        return sealed

    def close(self) -> None:
        self.storage.close()
