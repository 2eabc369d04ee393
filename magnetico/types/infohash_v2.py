"""32-byte SHA-256 info hashes (BEP 52)."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from magnetico.types.infohash import SIZE as SHORT_SIZE
from magnetico.types.infohash import InfoHash

SIZE = 32

_SHA2_256_CODE = 0x12
_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_HEX_RE = re.compile(r"[0-9a-fA-F]*")


@dataclass(frozen=True)
class InfoHashV2:
    """A 32-byte SHA-256 info hash; formats as lower-case hex."""

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
    def parse_hex(cls, s: str) -> InfoHashV2:
        """Parse a 64-character hex string; raise ValueError otherwise."""
        if len(s) != 2 * SIZE:
            raise ValueError(f"hash hex string has bad length: {len(s)}")
        if not _HEX_RE.fullmatch(s):
            raise ValueError(f"hash hex string is not hexadecimal: {s!r}")
        return cls(bytes.fromhex(s))

    def to_short(self) -> InfoHash:
        """Truncate to 20 bytes for the DHT and trackers."""
        return InfoHash(self.digest[:SHORT_SIZE])


def from_hex_string(s: str) -> InfoHashV2:
    """Parse a hex string, returning the zero hash when it is invalid."""
    try:
        return InfoHashV2.parse_hex(s)
    except ValueError:
        return InfoHashV2()


def hash_bytes(b: bytes) -> InfoHashV2:
    """SHA-256 of the given bytes."""
    return InfoHashV2(hashlib.sha256(b).digest())


def to_multihash(h: InfoHashV2) -> bytes:
    """Encode the hash as a sha2-256 multihash."""
    return bytes([_SHA2_256_CODE, SIZE]) + h.digest


def b58encode(data: bytes) -> str:
    """Base58 (Bitcoin alphabet) encoding."""
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_B58_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return _B58_ALPHABET[0] * leading_zeros + "".join(reversed(digits))