# stoneledger/__init__.py
"""
Stone Ledger: signed, tamper-evident verification entries in an append-only ledger.
Each entry is canonicalized and sealed with an Ed25519 signature; anyone holding
the public key registry can re-verify it independently.
"""

__version__ = "0.1.0"

from stoneledger.core.canon import canonicalize
from stoneledger.crypto.keys import SigningKey
from stoneledger.crypto.registry import KeyRegistry
from stoneledger.issue.issuer import LedgerIssuer
from stoneledger.sign.signer import Signer
from stoneledger.storage import FileLedgerStore, LedgerStore, SQLiteLedgerStore, create_storage
from stoneledger.verify.verifier import LedgerVerifier, verify

__all__ = [
    "canonicalize",
    "SigningKey",
    "KeyRegistry",
    "LedgerIssuer",
    "Signer",
    "LedgerStore",
    "FileLedgerStore",
    "SQLiteLedgerStore",
    "create_storage",
    "LedgerVerifier",
    "verify",
]
