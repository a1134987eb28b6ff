"""Ed25519 identities for peers on the overlay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32


@dataclass(frozen=True)
class KeyPair:
    """A public key plus the seed it was derived from."""

    public_key: bytes
    seed: bytes = field(repr=False)

    @classmethod
    def generate(cls, seed: bytes | None = None) -> KeyPair:
        """Derive a key pair from *seed*, or from a fresh random seed."""
        if seed is None:
            seed = os.urandom(SEED_SIZE)
        if len(seed) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")
        private = Ed25519PrivateKey.from_private_bytes(seed)
        public = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return cls(public_key=public, seed=seed)

    @classmethod
    def from_hex_seed(cls, seed_hex: str) -> KeyPair:
        if len(seed_hex) != SEED_SIZE * 2:
            raise ValueError(f"Seed must be {SEED_SIZE * 2} hex characters")
        return cls.generate(bytes.fromhex(seed_hex))

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()


def as_public_key(value: bytes | bytearray | str) -> bytes:
    """Normalise a public key given as bytes or a hex string."""
    if isinstance(value, (bytes, bytearray)):
        key = bytes(value)
    elif isinstance(value, str):
        try:
            key = bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError(f"Invalid hex public key: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported public key type: {type(value).__name__}")
    if not key:
        raise ValueError("Empty public key")
    return key
