# stoneledger/crypto/hashing.py
import hashlib

INDEX_PREFIX_LENGTH = 2


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def subject_ref_hash(subject_ref: str) -> str:
    """One-way hash used to address a subject in the index."""
    return sha256_hex(subject_ref.encode("utf-8"))


def index_bucket(subject_hash: str) -> str:
    """Short prefix that bounds index directory fan-out."""
    return subject_hash[:INDEX_PREFIX_LENGTH]


def report_hash_of(report: bytes) -> str:
    return "sha256:" + sha256_hex(report)


def default_report_hash(entry_id: str) -> str:
    """Deterministic placeholder for simple verifications that ship no full report."""
    return report_hash_of(f"simple-verification-no-report-{entry_id}".encode("utf-8"))
