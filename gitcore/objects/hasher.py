"""Content hashing for blobs, trees, and commits (SHA-1 hex digests)."""

from __future__ import annotations

import hashlib
from pathlib import Path

from gitcore.config import DIGEST_CHARSET, DIGEST_LENGTH

Digest = str


class Hasher:
    """The single hashing primitive behind every object digest."""

    @staticmethod
    def hash_bytes(data: bytes) -> Digest:
        """Return the hex digest of *data*."""
        return hashlib.sha1(data).hexdigest()

    @staticmethod
    def hash_string(text: str) -> Digest:
        """Return the hex digest of *text* encoded as UTF-8."""
        return Hasher.hash_bytes(text.encode("utf-8"))

    @staticmethod
    def hash_file(path: str | Path) -> Digest:
        """Return the hex digest of the file at *path*."""
        h = hashlib.sha1()
        p = Path(path)
        with p.open("rb") as f:
            while True:
                chunk = f.read(65536)
                if not chunk:
                    break
                h.update(chunk)
        return h.hexdigest()


def is_digest(value: object) -> bool:
    """Return True if *value* looks like a digest produced by :class:`Hasher`."""
    return (
        isinstance(value, str)
        and len(value) == DIGEST_LENGTH
        and all(c in DIGEST_CHARSET for c in value)
    )
