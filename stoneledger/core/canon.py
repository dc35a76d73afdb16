# stoneledger/core/canon.py
"""
Canonical byte form of a ledger entry.

The signed payload is a JSON object whose members follow FIELD_ORDER, not
the insertion order of the input. Each member value is serialized with
RFC 8785 (JSON Canonicalization Scheme) value rules, which match ECMAScript
JSON.stringify for strings and integers, so entries signed by other
tooling canonicalize to the same bytes.
"""

from typing import Any, Dict, Iterable, List, Mapping

import jcs

from stoneledger.errors import StructuralError

SIGNATURE_FIELD = "signature"

CORE_FIELDS = (
    "entry_id",
    "issued_at",
    "subject_type",
    "subject_ref",
    "subject_locator",
    "policy_version",
    "result",
    "scores",
    "report_hash",
    "key_id",
)

# Optional business / app metadata. Appended after key_id so the core
# layout never shifts when these are present.
EXTENDED_FIELDS = (
    "business_legal_name",
    "business_dba",
    "business_ein",
    "business_address",
    "business_country",
    "business_state",
    "business_industry",
    "business_website",
    "business_contact_email",
    "app_name",
    "app_version",
    "app_platform",
    "app_language",
    "app_framework",
    "repository_url",
    "license_type",
    "artifact_hash",
    "verification_date",
    "verification_method",
    "verified_by",
    "compliance_standards",
    "verification_scope",
    "risk_level",
    "expires_at",
    "related_entry_ids",
    "tags",
    "certificate_ids",
    "dependencies",
    "ai_models_used",
    "notes",
)

FIELD_ORDER = CORE_FIELDS + EXTENDED_FIELDS
KNOWN_FIELDS = frozenset(FIELD_ORDER)

# Sequences whose element order carries no meaning; sorted before signing.
UNORDERED_SEQUENCE_FIELDS = frozenset({
    "ai_models_used",
    "compliance_standards",
    "related_entry_ids",
    "tags",
    "certificate_ids",
    "dependencies",
})


def utf16_key(value: str) -> bytes:
    """Sort key ordering strings by UTF-16 code units, as JCS and JavaScript do."""
    return value.encode("utf-16-be", "surrogatepass")


def _sorted_mapping(field: str, value: Any) -> Dict[str, Any]:
    if not isinstance(value, Mapping):
        raise StructuralError(f"'{field}' must be a mapping, got {type(value).__name__}")
    for key in value:
        if not isinstance(key, str):
            raise StructuralError(f"'{field}' keys must be strings")
    return {key: value[key] for key in sorted(value, key=utf16_key)}


def _sorted_sequence(field: str, value: Any) -> List[str]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise StructuralError(f"'{field}' must be a list of strings")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise StructuralError(f"'{field}' must be a list of strings")
    return sorted(items, key=utf16_key)


def unknown_fields(entry: Mapping[str, Any]) -> List[str]:
    """Fields outside the signable set, excluding `signature`."""
    return sorted(str(k) for k in entry if k not in KNOWN_FIELDS and k != SIGNATURE_FIELD)


def canonical_fields(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Signable members of `entry` in canonical order with canonical values.

    Absent and None fields are dropped; `signature` is ignored. Unknown
    fields raise StructuralError: they would be stored on the sealed entry
    without being covered by its signature.
    """
    unknown = unknown_fields(entry)
    if unknown:
        raise StructuralError(f"Unknown entry fields: {', '.join(unknown)}")

    out: Dict[str, Any] = {}
    for field in FIELD_ORDER:
        value = entry.get(field)
        if value is None:
            continue
        if field == "scores":
            value = _sorted_mapping(field, value)
        elif field in UNORDERED_SEQUENCE_FIELDS:
            value = _sorted_sequence(field, value)
        out[field] = value
    return out


def _encode_members(members: Mapping[str, Any]) -> bytes:
    parts = [jcs.canonicalize(name) + b":" + jcs.canonicalize(value) for name, value in members.items()]
    return b"{" + b",".join(parts) + b"}"


def canonicalize(entry: Mapping[str, Any]) -> bytes:
    """
    Produce the deterministic UTF-8 bytes that get signed.
    Same logical entry → same bytes, whatever the input field or key order.
    """
    return _encode_members(canonical_fields(entry))


def canonical_str(entry: Mapping[str, Any]) -> str:
    """Same as above, but returns string (mostly for debugging)."""
    return canonicalize(entry).decode("utf-8")


def strip_signature(entry: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if k != SIGNATURE_FIELD}


def ordered_sealed(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """Sealed entry as a dict in canonical order with `signature` last."""
    if SIGNATURE_FIELD not in entry:
        raise StructuralError("Entry is not sealed (no signature)")
    out = canonical_fields(entry)
    out[SIGNATURE_FIELD] = entry[SIGNATURE_FIELD]
    return out


def serialize_sealed(entry: Mapping[str, Any]) -> bytes:
    """Canonical form plus the signature member: one daily-log line, no newline."""
    return _encode_members(ordered_sealed(entry))
