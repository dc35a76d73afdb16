# stoneledger/storage/filesystem.py
"""
Filesystem ledger store.

Layout under the root directory:

    entries/<entry_id>.json                      one record per entry (commit point)
    ledger/<YYYY-MM-DD>.ndjson                   append-only daily log, UTC day of issued_at
    index/subject_ref/<h[:2]>/<h>.json           {subject_ref, entry_ids}, h = sha256(subject_ref)

The record write is the commit point. The log line and index membership
that follow are derived data: if either fails the store reports a
PartialAppendError and reconcile() replays records to repair them.
"""

from __future__ import annotations

import json
import logging
import os
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from stoneledger.core.canon import ordered_sealed, serialize_sealed
from stoneledger.core.types import AppendReceipt, ConsistencyIssue
from stoneledger.crypto.hashing import index_bucket, subject_ref_hash
from stoneledger.errors import (
    DuplicateEntryIdError,
    EntryNotFoundError,
    IndexCorruptionError,
    PartialAppendError,
    StorageError,
    StructuralError,
)
from . import LedgerStore
from .locking import append_line, atomic_replace, create_exclusive, exclusive_lock
from .records import append_keys, check_entry_id, entry_day

logger = logging.getLogger(__name__)

DAILY_LOG = "daily_log"
SUBJECT_INDEX = "subject_index"


class FileLedgerStore(LedgerStore):
    """Append-only ledger persisted as plain JSON files."""

    def __init__(self, root: str | Path | None = None):
        if root is None:
            env_root = os.environ.get("STONE_LEDGER_ROOT")
            root = env_root if env_root else Path.cwd()

        self.root = Path(root).resolve()
        self.entries_dir = self.root / "entries"
        self.ledger_dir = self.root / "ledger"
        self.index_dir = self.root / "index" / "subject_ref"

    # ── paths

    def record_path(self, entry_id: str) -> Path:
        return self.entries_dir / f"{check_entry_id(entry_id)}.json"

    def log_path(self, day: str) -> Path:
        return self.ledger_dir / f"{day}.ndjson"

    def index_path(self, subject_hash: str) -> Path:
        return self.index_dir / index_bucket(subject_hash) / f"{subject_hash}.json"

    # ── append

    def append(self, entry: Dict[str, Any]) -> AppendReceipt:
        keys = append_keys(entry)
        record = (json.dumps(ordered_sealed(entry), indent=2, ensure_ascii=False) + "\n").encode("utf-8")
        line = serialize_sealed(entry)
        record_path = self.record_path(keys.entry_id)

        try:
            create_exclusive(record_path, record)
        except FileExistsError:
            logger.info("Rejected duplicate entry %s", keys.entry_id)
            raise DuplicateEntryIdError(keys.entry_id) from None
        except OSError as exc:
            raise StorageError(f"Failed to write record for entry '{keys.entry_id}': {exc}") from exc

        pending = [DAILY_LOG, SUBJECT_INDEX]
        try:
            append_line(self.log_path(keys.day), line)
            pending.remove(DAILY_LOG)
            self._add_to_index(keys.subject_ref, keys.subject_hash, keys.entry_id)
            pending.remove(SUBJECT_INDEX)
        except (OSError, StorageError) as exc:
            logger.error("Entry %s committed with pending writes %s: %s", keys.entry_id, pending, exc)
            raise PartialAppendError(keys.entry_id, pending, exc) from exc

        logger.info("Committed entry %s to %s", keys.entry_id, keys.day)
        return AppendReceipt(
            entry_id=keys.entry_id,
            day=keys.day,
            subject_hash=keys.subject_hash,
            locations=(
                str(record_path),
                str(self.log_path(keys.day)),
                str(self.index_path(keys.subject_hash)),
            ),
        )

    # ── reads

    def get(self, entry_id: str) -> Dict[str, Any]:
        try:
            path = self.record_path(entry_id)
        except StructuralError:
            raise EntryNotFoundError(str(entry_id)) from None
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise EntryNotFoundError(entry_id) from None
        except OSError as exc:
            raise StorageError(f"Failed to read entry '{entry_id}': {exc}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Record for entry '{entry_id}' is not valid JSON: {exc}") from exc

    def entry_ids(self) -> List[str]:
        if not self.entries_dir.exists():
            return []
        return sorted(p.stem for p in self.entries_dir.glob("*.json"))

    def iter_entries(self) -> Iterator[Dict[str, Any]]:
        for entry_id in self.entry_ids():
            yield self.get(entry_id)

    def __contains__(self, entry_id: object) -> bool:
        try:
            return self.record_path(entry_id).exists()
        except StructuralError:
            return False

    def lookup_by_subject_ref(self, subject_ref: str) -> List[str]:
        data = self._read_bucket(self.index_path(subject_ref_hash(subject_ref)))
        return list(data["entry_ids"]) if data else []

    def days(self) -> List[str]:
        if not self.ledger_dir.exists():
            return []
        return sorted(p.stem for p in self.ledger_dir.glob("*.ndjson"))

    def iter_day(self, day: str) -> Iterator[Dict[str, Any]]:
        """Entries in a day's log, in append order. Torn lines are logged and skipped."""
        path = self.log_path(day)
        if not path.exists():
            return
        with path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Unreadable line %d in %s", lineno, path)

    # ── index

    def _read_bucket(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise IndexCorruptionError(f"Index bucket {path} is corrupt: {exc}. Run rebuild-index.") from exc
        if not isinstance(data, dict) or not isinstance(data.get("entry_ids"), list):
            raise IndexCorruptionError(f"Index bucket {path} has no entry_ids list. Run rebuild-index.")
        return data

    @staticmethod
    def _dump_bucket(subject_ref: str, entry_ids: List[str]) -> bytes:
        data = {"subject_ref": subject_ref, "entry_ids": entry_ids}
        return (json.dumps(data, indent=2, ensure_ascii=False) + "\n").encode("utf-8")

    def _add_to_index(self, subject_ref: str, subject_hash: str, entry_id: str) -> bool:
        path = self.index_path(subject_hash)
        with exclusive_lock(path):
            data = self._read_bucket(path) or {"subject_ref": subject_ref, "entry_ids": []}
            if entry_id in data["entry_ids"]:
                return False
            entry_ids = data["entry_ids"] + [entry_id]
            atomic_replace(path, self._dump_bucket(subject_ref, entry_ids))
        return True

    def rebuild_index(self) -> int:
        """Discard the subject index and replay it from committed records."""
        members: Dict[str, List[tuple]] = defaultdict(list)
        refs: Dict[str, str] = {}
        for entry in self.iter_entries():
            subject_ref = entry.get("subject_ref")
            if not isinstance(subject_ref, str) or not subject_ref:
                logger.warning("Entry %s has no subject_ref; not indexed", entry.get("entry_id"))
                continue
            h = subject_ref_hash(subject_ref)
            refs[h] = subject_ref
            members[h].append((entry.get("issued_at", ""), entry["entry_id"]))

        for h, items in members.items():
            path = self.index_path(h)
            with exclusive_lock(path):
                atomic_replace(path, self._dump_bucket(refs[h], [eid for _, eid in sorted(items)]))

        if self.index_dir.exists():
            for stale in self.index_dir.glob("*/*.json"):
                if stale.stem not in members:
                    with exclusive_lock(stale):
                        stale.unlink(missing_ok=True)

        logger.info("Rebuilt subject index: %d subjects", len(members))
        return len(members)

    # ── consistency

    def _log_ids(self) -> Dict[str, List[str]]:
        ids: Dict[str, List[str]] = {}
        for day in self.days():
            ids[day] = [e.get("entry_id") for e in self.iter_day(day) if isinstance(e, dict)]
        return ids

    def check_consistency(self) -> List[ConsistencyIssue]:
        """Find partial states left by interrupted appends or manual edits."""
        issues: List[ConsistencyIssue] = []
        log_ids = self._log_ids()
        committed = set()

        for entry_id in self.entry_ids():
            try:
                entry = self.get(entry_id)
                day = entry_day(entry.get("issued_at"))
            except (StorageError, StructuralError) as exc:
                issues.append(ConsistencyIssue(entry_id, "unreadable_record", str(exc)))
                continue
            committed.add(entry_id)

            occurrences = log_ids.get(day, []).count(entry_id)
            if occurrences == 0:
                issues.append(ConsistencyIssue(entry_id, "missing_log_line", day))
            elif occurrences > 1:
                issues.append(ConsistencyIssue(entry_id, "duplicate_log_line", day))

            subject_ref = entry.get("subject_ref", "")
            try:
                indexed = entry_id in self.lookup_by_subject_ref(subject_ref)
            except IndexCorruptionError as exc:
                issues.append(ConsistencyIssue(entry_id, "corrupt_index", str(exc)))
                continue
            if not indexed:
                issues.append(ConsistencyIssue(entry_id, "missing_index", subject_ref))

        for day, ids in log_ids.items():
            for entry_id in ids:
                if entry_id not in committed and entry_id not in self:
                    issues.append(ConsistencyIssue(str(entry_id), "orphan_log_line", day))
        return issues

    def reconcile(self) -> List[ConsistencyIssue]:
        """
        Replay per-entry records into the daily log and index where they
        are missing. Returns the issues that were repaired; issues that need
        an operator (unreadable records, orphan or duplicate lines) are left.
        """
        repaired: List[ConsistencyIssue] = []
        issues = self.check_consistency()

        if any(issue.kind == "corrupt_index" for issue in issues):
            self.rebuild_index()
            repaired.extend(i for i in issues if i.kind in ("corrupt_index", "missing_index"))
            issues = [i for i in issues if i.kind not in ("corrupt_index", "missing_index")]

        for issue in issues:
            if issue.kind == "missing_log_line":
                entry = self.get(issue.entry_id)
                append_line(self.log_path(issue.detail), serialize_sealed(entry))
            elif issue.kind == "missing_index":
                entry = self.get(issue.entry_id)
                subject_ref = entry["subject_ref"]
                self._add_to_index(subject_ref, subject_ref_hash(subject_ref), issue.entry_id)
            else:
                logger.warning("Cannot repair %s for entry %s automatically", issue.kind, issue.entry_id)
                continue
            logger.info("Repaired %s for entry %s", issue.kind, issue.entry_id)
            repaired.append(issue)
        return repaired

    def close(self) -> None:
        # No handles are held between calls.
        pass
