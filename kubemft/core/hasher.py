"""Canonical hashing helpers for content addressing.

Digests are written ``algorithm:hex``.  Only sha256 is produced; reading
accepts sha256 and sha512 so layouts written by other tools still parse.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, BinaryIO, Iterator

_DIGEST_RE = re.compile(r"^(?P<algorithm>sha256|sha512):(?P<hex>[a-f0-9]+)$")
_HEX_LENGTHS = {"sha256": 64, "sha512": 128}

CHUNK_SIZE = 64 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def digest_of(data: bytes) -> str:
    """Return the ``sha256:<hex>`` digest of raw bytes."""
    return f"sha256:{sha256_hex(data)}"


def parse_digest(digest: str) -> tuple[str, str]:
    """Split ``algorithm:hex`` into its parts.

    Raises
    ------
    ValueError
        If the digest is malformed or uses an unsupported algorithm.
    """
    match = _DIGEST_RE.match(digest or "")
    if match is None:
        raise ValueError(f"invalid digest {digest!r}")
    algorithm, hex_part = match.group("algorithm"), match.group("hex")
    if len(hex_part) != _HEX_LENGTHS[algorithm]:
        raise ValueError(f"invalid {algorithm} digest length in {digest!r}")
    return algorithm, hex_part


def is_digest(text: str) -> bool:
    """Whether *text* looks like a well-formed digest."""
    try:
        parse_digest(text)
    except ValueError:
        return False
    return True


def iter_chunks(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive chunks from a binary stream until EOF."""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


def hash_stream(stream: BinaryIO) -> tuple[str, int]:
    """Hash a stream to EOF, returning ``(digest, size)``."""
    hasher = hashlib.sha256()
    size = 0
    for chunk in iter_chunks(stream):
        hasher.update(chunk)
        size += len(chunk)
    return f"sha256:{hasher.hexdigest()}", size
