"""SHA-256 digests used by the echo protocol."""

from __future__ import annotations

import hashlib

DIGEST_SIZE = 32


def digest(buf: bytes) -> bytes:
    """Return the 32-byte SHA-256 digest of *buf*."""
    h = hashlib.sha256()
    h.update(buf)
    return h.digest()
