# stoneledger/crypto/registry.py
"""
Key registry: every public key ever used to sign entries, plus the key
currently used for new signatures.

Rotation only ever adds records. Entries name their key by id, so old
entries stay verifiable after the active pointer moves on.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from stoneledger.core.encoding import b64_decode, b64_encode
from stoneledger.core.types import ED25519, KeyRecord, utc_iso_now
from stoneledger.errors import ConfigurationError, KeyRotationError, UnknownKeyError
from stoneledger.storage.locking import atomic_replace, exclusive_lock

logger = logging.getLogger(__name__)

KEY_ID_PREFIX = "stone-verified-ed25519"


@dataclass(frozen=True)
class KeyRegistry:
    active: Optional[str] = None
    keys: Mapping[str, KeyRecord] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "keys", MappingProxyType(dict(self.keys)))

    def __contains__(self, key_id: object) -> bool:
        return key_id in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def key_ids(self) -> list[str]:
        return list(self.keys)

    def active_key(self) -> KeyRecord:
        if not self.active:
            raise ConfigurationError("Key registry has no active key")
        record = self.keys.get(self.active)
        if record is None:
            raise ConfigurationError(f"Active key '{self.active}' not found in the key registry")
        return record

    def resolve(self, key_id: str) -> KeyRecord:
        record = self.keys.get(key_id)
        if record is None:
            raise UnknownKeyError(key_id)
        return record

    def rotate(self, key_id: str, record: KeyRecord) -> "KeyRegistry":
        """Return a new registry with `record` added under `key_id` and made active."""
        if not key_id:
            raise KeyRotationError("Key id must be non-empty")
        if key_id in self.keys:
            raise KeyRotationError(f"Key '{key_id}' already exists; rotation never replaces records")
        keys = dict(self.keys)
        keys[key_id] = record
        logger.info("Rotated active key %s -> %s", self.active, key_id)
        return KeyRegistry(active=key_id, keys=keys)

    # ── (de)serialization of the registry file

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "keys": {
                key_id: {
                    "type": rec.type,
                    "publicKeyBase64": b64_encode(rec.public_key),
                    "createdAt": rec.created_at,
                }
                for key_id, rec in self.keys.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeyRegistry":
        if not isinstance(data, Mapping) or not isinstance(data.get("keys", {}), Mapping):
            raise ConfigurationError("Key registry must be an object with a 'keys' mapping")
        keys = {}
        for key_id, info in data.get("keys", {}).items():
            if not isinstance(info, Mapping):
                raise ConfigurationError(f"Key '{key_id}' must be an object")
            encoded = info.get("publicKeyBase64", info.get("publicKey"))
            if not isinstance(encoded, str):
                raise ConfigurationError(f"Key '{key_id}' has no public key")
            try:
                public_key = b64_decode(encoded)
            except ValueError as exc:
                raise ConfigurationError(f"Key '{key_id}': {exc}") from exc
            keys[key_id] = KeyRecord(
                public_key=public_key,
                created_at=info.get("createdAt", ""),
                type=info.get("type", ED25519),
            )
        return cls(active=data.get("active"), keys=keys)


def load_registry(path: Path) -> KeyRegistry:
    """Read the registry file. A missing file is an empty registry."""
    path = Path(path)
    if not path.exists():
        logger.debug("No key registry at %s", path)
        return KeyRegistry()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Key registry {path} is not valid JSON: {exc}") from exc
    return KeyRegistry.from_dict(data)


def _dump(registry: KeyRegistry) -> bytes:
    return (json.dumps(registry.to_dict(), indent=2) + "\n").encode("utf-8")


def save_registry(registry: KeyRegistry, path: Path) -> None:
    path = Path(path)
    with exclusive_lock(path):
        atomic_replace(path, _dump(registry))


def rotate_registry_file(path: Path, key_id: str, record: KeyRecord) -> KeyRegistry:
    """Load, rotate and save under one lock so concurrent rotations never drop a key."""
    path = Path(path)
    with exclusive_lock(path):
        registry = load_registry(path).rotate(key_id, record)
        atomic_replace(path, _dump(registry))
    return registry


def new_key_id(existing: Iterable[str] = (), now: Optional[datetime] = None) -> str:
    """Key ids look like ``stone-verified-ed25519-2026-02``; suffixed on collision."""
    now = now or datetime.now(timezone.utc)
    base = f"{KEY_ID_PREFIX}-{now:%Y-%m}"
    taken = set(existing)
    if base not in taken:
        return base
    pattern = re.compile(re.escape(base) + r"-(\d+)$")
    n = max([int(m.group(1)) for m in map(pattern.match, taken) if m] + [1])
    return f"{base}-{n + 1}"


def new_key_record(public_key: bytes) -> KeyRecord:
    return KeyRecord(public_key=public_key, created_at=utc_iso_now())
