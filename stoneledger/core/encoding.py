# stoneledger/core/encoding.py
import base64
import binascii


def b64_encode(data: bytes) -> str:
    """Encode bytes to standard, padded base64."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(s: str) -> bytes:
    """Decode standard base64, rejecting stray characters. Raises ValueError."""
    try:
        return base64.b64decode(s.strip(), validate=True)
    except (binascii.Error, AttributeError) as exc:
        raise ValueError(f"Invalid base64: {exc}") from exc
