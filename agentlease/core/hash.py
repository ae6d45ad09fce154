from __future__ import annotations

import hashlib


SHORT_HASH_LEN = 7


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8", errors="surrogateescape"))


def short_sha256(text: str, *, length: int = SHORT_HASH_LEN) -> str:
    """Return the leading hex digits of sha256(text), used to name archived output."""

    return sha256_text(text)[:length]
