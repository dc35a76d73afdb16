# stoneledger/storage/__init__.py
"""
Storage backends for the append-only ledger.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List

from stoneledger.core.types import AppendReceipt, ConsistencyIssue


class LedgerStore(ABC):
    """
    Abstract base for all persistent ledger implementations.

    A store commits sealed entries exactly once per entry_id and never
    rewrites a committed entry.
    """

    @abstractmethod
    def append(self, entry: Dict[str, Any]) -> AppendReceipt:
        """Commit a sealed entry. Raises DuplicateEntryIdError if the id exists."""

    @abstractmethod
    def get(self, entry_id: str) -> Dict[str, Any]:
        """Return the sealed entry. Raises EntryNotFoundError."""

    @abstractmethod
    def lookup_by_subject_ref(self, subject_ref: str) -> List[str]:
        """Entry ids recorded for `subject_ref`, in append order; [] if none."""

    @abstractmethod
    def iter_entries(self) -> Iterator[Dict[str, Any]]:
        pass

    @abstractmethod
    def rebuild_index(self) -> int:
        """Rebuild the subject index from committed entries; returns subjects indexed."""

    @abstractmethod
    def check_consistency(self) -> List[ConsistencyIssue]:
        """Committed entries whose log line or index membership is missing."""

    @abstractmethod
    def reconcile(self) -> List[ConsistencyIssue]:
        """Repair what check_consistency reports by replaying committed entries."""

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


def create_storage(uri: str) -> LedgerStore:
    """
    Open a store from a URI:
      sqlite://<path>   SQLite database file
      file://<dir>      filesystem layout rooted at <dir>
      <path>            plain path; SQLite if it ends in .db/.sqlite, else a directory
    """
    uri = uri.strip()
    if not uri:
        raise ValueError("Empty storage URI")

    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteLedgerStore
        return SQLiteLedgerStore(Path(uri[len("sqlite://"):]).expanduser())

    if uri.startswith("file://"):
        from .filesystem import FileLedgerStore
        return FileLedgerStore(Path(uri[len("file://"):]).expanduser())

    if "://" in uri:
        raise ValueError(f"Unsupported storage URI: {uri}")

    path = Path(uri).expanduser()
    if path.suffix.lower() in SQLITE_SUFFIXES:
        from .sqlite import SQLiteLedgerStore
        return SQLiteLedgerStore(path)

    from .filesystem import FileLedgerStore
    return FileLedgerStore(path)


from .filesystem import FileLedgerStore
from .sqlite import SQLiteLedgerStore

__all__ = ["LedgerStore", "create_storage", "FileLedgerStore", "SQLiteLedgerStore"]
