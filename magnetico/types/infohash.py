"""20-byte SHA-1 info hashes as used by the DHT and trackers."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

SIZE = 20

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


@dataclass(frozen=True)
class InfoHash:
    """A 20-byte info hash; formats as lower-case hex."""

    digest: bytes = bytes(SIZE)

    def __post_init__(self) -> None:
        digest = bytes(self.digest)
        if len(digest) != SIZE:
            raise ValueError(f"info hash must be {SIZE} bytes, got {len(digest)}")
        object.__setattr__(self, "digest", digest)

    def __bytes__(self) -> bytes:
        return self.digest

    def __str__(self) -> str:
        return self.hex_string()

    def __format__(self, spec: str) -> str:
        return self.hex_string()

    def hex_string(self) -> str:
        """Return the hash as lower-case hex."""
        return self.digest.hex()

    def is_zero(self) -> bool:
        """Return True when every byte of the hash is zero."""
        return not any(self.digest)

    @classmethod
    def parse_hex(cls, s: str) -> InfoHash:
        """Parse a 40-character hex string; raise ValueError otherwise."""
        if len(s) != 2 * SIZE:
            raise ValueError(f"hash hex string has bad length: {len(s)}")
        if not _HEX_RE.fullmatch(s):
            raise ValueError(f"hash hex string is not hexadecimal: {s!r}")
        return cls(bytes.fromhex(s))


def from_hex_string(s: str) -> InfoHash:
    """Parse a hex string, returning the zero hash when it is invalid."""
    try:
        return InfoHash.parse_hex(s)
    except ValueError:
        return InfoHash()


def hash_bytes(b: bytes) -> InfoHash:
    """SHA-1 of the given bytes."""
    return InfoHash(hashlib.sha1(b).digest())


def hash_bytes_v2(b: bytes) -> InfoHash:
    """SHA-256 of the given bytes, truncated to 20 bytes."""
    return InfoHash(hashlib.sha256(b).digest()[:SIZE])