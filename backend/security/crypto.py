"""
Content digests for transferred files.

The sender hashes each payload as it streams chunks and puts the hex
digest in the `done` frame; the receiver hashes the reassembled bytes
and compares. Peers that omit the digest are still accepted.
"""

import hmac
import logging

from cryptography.hazmat.primitives import hashes

logger = logging.getLogger(__name__)

DIGEST_NAME = "sha256"


class ContentDigest:
    """Incremental SHA-256 over a file's chunks."""

    def __init__(self) -> None:
        self._hash = hashes.Hash(hashes.SHA256())
        self._final: str | None = None

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)

    def hexdigest(self) -> str:
        # Hash objects cannot be finalized twice.
        if self._final is None:
            self._final = self._hash.finalize().hex()
        return self._final


def digest_hex(data: bytes) -> str:
    """SHA-256 of a complete buffer, hex encoded."""
    digest = ContentDigest()
    digest.update(data)
    return digest.hexdigest()


def verify_digest(data: bytes, expected_hex: str | None) -> bool | None:
    """
    Compare data against a digest announced by the peer.

    Returns None when the peer sent no digest, otherwise whether it matches.
    """
    if not expected_hex:
        return None
    return hmac.compare_digest(digest_hex(data), expected_hex.lower())
