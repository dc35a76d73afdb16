# stoneledger/core/types.py
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

ED25519 = "ed25519"


def utc_iso_now() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class KeyRecord:
    """One public verification key known to the registry."""
    public_key: bytes               # raw 32-byte Ed25519 public key
    created_at: str                 # ISO 8601 UTC
    type: str = ED25519


class VerificationReason(str, Enum):
    MISSING_FIELD = "MissingField"
    MALFORMED_FIELD = "MalformedField"
    UNKNOWN_KEY = "UnknownKey"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    SIGNATURE_MISMATCH = "SignatureMismatch"
    NOT_FOUND = "NotFound"

    @property
    def is_tampering(self) -> bool:
        return self is VerificationReason.SIGNATURE_MISMATCH


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    entry_id: Optional[str] = None
    key_id: Optional[str] = None
    issued_at: Optional[str] = None
    reason: Optional[VerificationReason] = None
    message: str = ""

    def __bool__(self):
        return self.valid

    def __str__(self):
        if self.valid:
            return f"Entry '{self.entry_id}' is valid ✓ (key {self.key_id})"
        return f"Entry '{self.entry_id}' FAILED: {self.reason.value}: {self.message}"

    def to_dict(self) -> dict:
        out = {"valid": self.valid, "entry_id": self.entry_id, "key_id": self.key_id}
        if self.valid:
            out["issued_at"] = self.issued_at
        else:
            out["reason"] = self.reason.value if self.reason else None
            out["error"] = self.message
        return out


@dataclass(frozen=True)
class AppendReceipt:
    """Where an accepted entry was written."""
    entry_id: str
    day: str                        # YYYY-MM-DD bucket derived from issued_at
    subject_hash: str
    locations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConsistencyIssue:
    """A detectable partial state between the record, log and index."""
    entry_id: str
    kind: str                       # e.g. "missing_log_line", "missing_index", "corrupt_index"
    detail: str = ""
