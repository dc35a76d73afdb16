# stoneledger/storage/sqlite.py
import json
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from stoneledger.core.canon import serialize_sealed
from stoneledger.core.types import AppendReceipt, ConsistencyIssue
from stoneledger.crypto.hashing import subject_ref_hash
from stoneledger.errors import DuplicateEntryIdError, EntryNotFoundError, StorageError
from . import LedgerStore
from .records import append_keys

logger = logging.getLogger(__name__)


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite ledger store.

    Each append is one IMMEDIATE transaction covering the entry row, the
    daily log line and the index membership, so the three writes land
    together or not at all.
    """

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("STONE_LEDGER_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "stone-ledger.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        # One connection shared by threads; every use goes through this lock.
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        self._conn = sqlite3.connect(
            str(self.db_path), isolation_level=None, check_same_thread=False, timeout=30.0
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                entry_id        TEXT    PRIMARY KEY,
                issued_at       TEXT    NOT NULL,
                day             TEXT    NOT NULL,
                subject_ref     TEXT    NOT NULL,
                subject_hash    TEXT    NOT NULL,
                sealed_json     TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger_lines (
                line_no         INTEGER PRIMARY KEY AUTOINCREMENT,
                day             TEXT    NOT NULL,
                entry_id        TEXT    NOT NULL,
                line            TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS subject_index (
                subject_hash    TEXT    NOT NULL,
                subject_ref     TEXT    NOT NULL,
                entry_id        TEXT    NOT NULL,
                position        INTEGER NOT NULL,
                PRIMARY KEY (subject_hash, entry_id)
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_lines_day ON ledger_lines(day, line_no)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def _fetchall(self, sql: str, params: tuple = ()) -> List[tuple]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _index_insert(self, subject_hash: str, subject_ref: str, entry_id: str) -> None:
        self.conn.execute("""
            INSERT OR IGNORE INTO subject_index (subject_hash, subject_ref, entry_id, position)
            VALUES (?, ?, ?, (SELECT COALESCE(MAX(position), -1) + 1
                              FROM subject_index WHERE subject_hash = ?))
        """, (subject_hash, subject_ref, entry_id, subject_hash))

    def append(self, entry: Dict[str, Any]) -> AppendReceipt:
        keys = append_keys(entry)
        line = serialize_sealed(entry).decode("utf-8")

        with self._lock:
            conn = self.conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute("""
                        INSERT INTO entries (entry_id, issued_at, day, subject_ref, subject_hash, sealed_json)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (keys.entry_id, entry["issued_at"], keys.day, keys.subject_ref, keys.subject_hash, line))
                except sqlite3.IntegrityError:
                    conn.execute("ROLLBACK")
                    logger.info("Rejected duplicate entry %s", keys.entry_id)
                    raise DuplicateEntryIdError(keys.entry_id) from None
                conn.execute(
                    "INSERT INTO ledger_lines (day, entry_id, line) VALUES (?, ?, ?)",
                    (keys.day, keys.entry_id, line),
                )
                self._index_insert(keys.subject_hash, keys.subject_ref, keys.entry_id)
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Failed to append entry '{keys.entry_id}': {exc}") from exc

        logger.info("Committed entry %s to %s", keys.entry_id, keys.day)
        return AppendReceipt(entry_id=keys.entry_id, day=keys.day, subject_hash=keys.subject_hash,
                             locations=(str(self.db_path),))

    def get(self, entry_id: str) -> Dict[str, Any]:
        rows = self._fetchall("SELECT sealed_json FROM entries WHERE entry_id = ?", (entry_id,))
        if not rows:
            raise EntryNotFoundError(entry_id)
        return json.loads(rows[0][0])

    def iter_entries(self) -> Iterator[Dict[str, Any]]:
        for (sealed_json,) in self._fetchall("SELECT sealed_json FROM entries ORDER BY entry_id ASC"):
            yield json.loads(sealed_json)

    def lookup_by_subject_ref(self, subject_ref: str) -> List[str]:
        rows = self._fetchall("""
            SELECT entry_id FROM subject_index
            WHERE subject_hash = ? ORDER BY position ASC
        """, (subject_ref_hash(subject_ref),))
        return [row[0] for row in rows]

    def days(self) -> List[str]:
        return [row[0] for row in self._fetchall("SELECT DISTINCT day FROM ledger_lines ORDER BY day ASC")]

    def iter_day(self, day: str) -> Iterator[Dict[str, Any]]:
        rows = self._fetchall("SELECT line FROM ledger_lines WHERE day = ? ORDER BY line_no ASC", (day,))
        for (line,) in rows:
            yield json.loads(line)

    def get_entry_count(self) -> int:
        return self._fetchall("SELECT COUNT(*) FROM entries")[0][0]

    def rebuild_index(self) -> int:
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute("DELETE FROM subject_index")
                rows = conn.execute(
                    "SELECT subject_hash, subject_ref, entry_id FROM entries ORDER BY issued_at, entry_id"
                ).fetchall()
                for subject_hash, subject_ref, entry_id in rows:
                    self._index_insert(subject_hash, subject_ref, entry_id)
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                conn.execute("ROLLBACK")
                raise StorageError(f"Failed to rebuild index: {exc}") from exc
        subjects = len({row[0] for row in rows})
        logger.info("Rebuilt subject index: %d subjects", subjects)
        return subjects

    def check_consistency(self) -> List[ConsistencyIssue]:
        issues = []
        for entry_id, day in self._fetchall("""
            SELECT e.entry_id, e.day FROM entries e
            WHERE NOT EXISTS (SELECT 1 FROM ledger_lines l WHERE l.entry_id = e.entry_id)
        """):
            issues.append(ConsistencyIssue(entry_id, "missing_log_line", day))
        for entry_id, subject_ref in self._fetchall("""
            SELECT e.entry_id, e.subject_ref FROM entries e
            WHERE NOT EXISTS (SELECT 1 FROM subject_index s
                              WHERE s.subject_hash = e.subject_hash AND s.entry_id = e.entry_id)
        """):
            issues.append(ConsistencyIssue(entry_id, "missing_index", subject_ref))
        return issues

    def reconcile(self) -> List[ConsistencyIssue]:
        repaired = []
        for issue in self.check_consistency():
            with self._lock:
                day, subject_ref, subject_hash, sealed_json = self.conn.execute(
                    "SELECT day, subject_ref, subject_hash, sealed_json FROM entries WHERE entry_id = ?",
                    (issue.entry_id,),
                ).fetchone()
                if issue.kind == "missing_log_line":
                    self.conn.execute(
                        "INSERT INTO ledger_lines (day, entry_id, line) VALUES (?, ?, ?)",
                        (day, issue.entry_id, sealed_json),
                    )
                else:
                    self._index_insert(subject_hash, subject_ref, issue.entry_id)
            logger.info("Repaired %s for entry %s", issue.kind, issue.entry_id)
            repaired.append(issue)
        return repaired

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
