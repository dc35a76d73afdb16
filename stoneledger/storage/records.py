# stoneledger/storage/records.py
"""Checks and derived keys shared by every ledger store backend."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from stoneledger.core.canon import SIGNATURE_FIELD
from stoneledger.core.schema import ENTRY_ID_PATTERN
from stoneledger.crypto.hashing import subject_ref_hash
from stoneledger.errors import StructuralError

_ENTRY_ID_RE = re.compile(ENTRY_ID_PATTERN)


def check_entry_id(entry_id: Any) -> str:
    if not isinstance(entry_id, str) or not _ENTRY_ID_RE.fullmatch(entry_id):
        raise StructuralError(f"Invalid entry_id: {entry_id!r}")
    return entry_id


def entry_day(issued_at: Any) -> str:
    """UTC calendar date (YYYY-MM-DD) of `issued_at`: the daily log bucket."""
    if not isinstance(issued_at, str):
        raise StructuralError(f"Invalid issued_at: {issued_at!r}")
    try:
        parsed = datetime.fromisoformat(issued_at.replace("Z", "+00:00"))
    except ValueError as exc:
        raise StructuralError(f"Invalid issued_at: {issued_at!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date().isoformat()


@dataclass(frozen=True)
class AppendKeys:
    entry_id: str
    day: str
    subject_ref: str
    subject_hash: str


def append_keys(entry: Mapping[str, Any]) -> AppendKeys:
    """Validate what a store needs before its first write; nothing is written on failure."""
    if not entry.get(SIGNATURE_FIELD):
        raise StructuralError("Cannot persist unsigned entry")
    entry_id = check_entry_id(entry.get("entry_id"))
    subject_ref = entry.get("subject_ref")
    if not isinstance(subject_ref, str) or not subject_ref:
        raise StructuralError("Cannot persist entry without subject_ref")
    return AppendKeys(
        entry_id=entry_id,
        day=entry_day(entry.get("issued_at")),
        subject_ref=subject_ref,
        subject_hash=subject_ref_hash(subject_ref),
    )
