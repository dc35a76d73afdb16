# stoneledger/crypto/keys.py
"""
Ed25519 signing key material.

Private keys arrive either as a 32-byte seed or as the 64-byte expanded
form (seed followed by the public key) that NaCl-style tooling emits.
Both load into the same SigningKey.
"""

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from stoneledger.core.encoding import b64_decode, b64_encode
from stoneledger.errors import ConfigurationError

SEED_SIZE = 32
EXPANDED_SIZE = 64
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64


def _raw_public(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass(frozen=True)
class SigningKey:
    """Private Ed25519 key plus its public half."""
    seed: bytes
    public_key: bytes

    @classmethod
    def generate(cls) -> "SigningKey":
        private = Ed25519PrivateKey.generate()
        seed = private.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return cls(seed=seed, public_key=_raw_public(private.public_key()))

    @classmethod
    def from_bytes(cls, key_bytes: bytes) -> "SigningKey":
        """Detect seed vs expanded keypair by length and derive the rest."""
        if len(key_bytes) == SEED_SIZE:
            seed = bytes(key_bytes)
        elif len(key_bytes) == EXPANDED_SIZE:
            seed = bytes(key_bytes[:SEED_SIZE])
        else:
            raise ConfigurationError(
                f"Private key is {len(key_bytes)} bytes; expected "
                f"{SEED_SIZE} (seed) or {EXPANDED_SIZE} (expanded keypair)"
            )

        public_key = _raw_public(Ed25519PrivateKey.from_private_bytes(seed).public_key())
        if len(key_bytes) == EXPANDED_SIZE and key_bytes[SEED_SIZE:] != public_key:
            raise ConfigurationError("Expanded private key: public half does not match the seed")
        return cls(seed=seed, public_key=public_key)

    @classmethod
    def from_b64(cls, encoded: str) -> "SigningKey":
        try:
            raw = b64_decode(encoded)
        except ValueError as exc:
            raise ConfigurationError(f"Private key is not valid base64: {exc}") from exc
        return cls.from_bytes(raw)

    @property
    def expanded(self) -> bytes:
        return self.seed + self.public_key

    def expanded_b64(self) -> str:
        return b64_encode(self.expanded)

    def public_key_b64(self) -> str:
        return b64_encode(self.public_key)

    def sign_bytes(self, data: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(self.seed).sign(data)

    def __repr__(self):
        return f"SigningKey(public_key={self.public_key_b64()!r})"


def verify_bytes(public_key: bytes, signature: bytes, data: bytes) -> bool:
    """Check a detached Ed25519 signature. Malformed keys raise ValueError."""
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise ValueError(f"Invalid public key length: expected {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}")
    if len(signature) != SIGNATURE_SIZE:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, data)
    except InvalidSignature:
        return False
    return True
