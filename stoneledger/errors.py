# stoneledger/errors.py
"""
Error taxonomy for issuing and storing ledger entries.

Verification outcomes are not exceptions: the verifier reports them as
VerificationResult values so callers can tell tampering apart from
malformed requests without try/except ladders.
"""

from typing import Sequence


class LedgerError(Exception):
    """Base class for every error raised by stoneledger."""


class StructuralError(LedgerError, ValueError):
    """A required field is missing or malformed. Fatal to the request."""


class ConfigurationError(LedgerError):
    """Operator must fix the registry or the signing secret."""


class DuplicateEntryIdError(LedgerError):
    """An entry with this id is already committed. Nothing was written."""

    def __init__(self, entry_id: str):
        super().__init__(f"Entry '{entry_id}' already exists in the ledger")
        self.entry_id = entry_id


class EntryNotFoundError(LedgerError, LookupError):
    def __init__(self, entry_id: str):
        super().__init__(f"Entry '{entry_id}' not found")
        self.entry_id = entry_id


class UnknownKeyError(LedgerError, LookupError):
    def __init__(self, key_id: str):
        super().__init__(f"Key '{key_id}' is not in the key registry")
        self.key_id = key_id


class KeyRotationError(LedgerError):
    """Rotation would replace or remove an existing key record."""


class StorageError(LedgerError):
    """I/O failure while reading or writing the ledger."""


class PartialAppendError(StorageError):
    """
    The per-entry record was committed but a later write failed.

    The ledger is in a recoverable inconsistent state: replaying the
    per-entry records (FileLedgerStore.reconcile) repairs it.
    """

    def __init__(self, entry_id: str, pending: Sequence[str], cause: BaseException):
        self.entry_id = entry_id
        self.pending = tuple(pending)
        super().__init__(
            f"Entry '{entry_id}' committed but {', '.join(self.pending)} "
            f"not written: {cause}. Run reconcile to repair."
        )


class IndexCorruptionError(StorageError):
    """An index bucket could not be parsed. Rebuild the index from records."""
