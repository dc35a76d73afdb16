# stoneledger/core/schema.py
"""
Field-shape validation for candidate entries, run before signing.

The signer only needs structural completeness; this is the stricter check
the issuing workflow applies to what callers submit.
"""

from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from stoneledger.errors import StructuralError

SubjectType = Literal["code", "app", "business", "model", "dataset", "artifact"]
Result = Literal["pass", "fail", "partial"]

# Entry ids double as record file names.
ENTRY_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$"
ISSUED_AT_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"
REPORT_HASH_PATTERN = r"^sha256:[0-9a-f]{64}$"


class LedgerEntryModel(BaseModel):
    """Schema of a ledger entry. `signature` is only required once sealed."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    entry_id: str = Field(..., pattern=ENTRY_ID_PATTERN)
    issued_at: str = Field(..., pattern=ISSUED_AT_PATTERN)
    subject_type: SubjectType
    subject_ref: str = Field(..., min_length=1)
    subject_locator: Optional[str] = None
    policy_version: str = Field(..., min_length=1)
    result: Result
    scores: Optional[Dict[str, StrictInt]] = None
    report_hash: str = Field(..., pattern=REPORT_HASH_PATTERN)
    key_id: Optional[str] = Field(default=None, min_length=1)

    business_legal_name: Optional[str] = None
    business_dba: Optional[str] = None
    business_ein: Optional[str] = None
    business_address: Optional[Union[str, Dict[str, str]]] = None
    business_country: Optional[str] = None
    business_state: Optional[str] = None
    business_industry: Optional[str] = None
    business_website: Optional[str] = None
    business_contact_email: Optional[str] = None
    app_name: Optional[str] = None
    app_version: Optional[str] = None
    app_platform: Optional[str] = None
    app_language: Optional[str] = None
    app_framework: Optional[str] = None
    repository_url: Optional[str] = None
    license_type: Optional[str] = None
    artifact_hash: Optional[str] = None
    verification_date: Optional[str] = None
    verification_method: Optional[str] = None
    verified_by: Optional[str] = None
    compliance_standards: Optional[List[str]] = None
    verification_scope: Optional[str] = None
    risk_level: Optional[str] = None
    expires_at: Optional[str] = None
    related_entry_ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    certificate_ids: Optional[List[str]] = None
    dependencies: Optional[List[str]] = None
    ai_models_used: Optional[List[str]] = None
    notes: Optional[str] = None

    signature: Optional[str] = Field(default=None, min_length=1)


def _format_errors(exc: ValidationError) -> List[str]:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "root"
        lines.append(f"{loc}: {err['msg']}")
    return lines


def validate_entry(payload: Mapping[str, Any], sealed: bool = False) -> Dict[str, Any]:
    """
    Validate `payload` and return it unchanged as a plain dict.

    Raises StructuralError listing every problem found.
    """
    if not isinstance(payload, Mapping):
        raise StructuralError("Entry must be a JSON object")
    try:
        LedgerEntryModel.model_validate(dict(payload))
    except ValidationError as exc:
        raise StructuralError("Entry failed validation:\n  - " + "\n  - ".join(_format_errors(exc))) from exc

    if sealed and payload.get("signature") is None:
        raise StructuralError("Entry failed validation:\n  - signature: Field required")
    if not sealed and "signature" in payload:
        raise StructuralError("Entry is already sealed; submit it without a signature")
    return dict(payload)
