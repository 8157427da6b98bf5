"""FNV-1a checksums used to seal program blobs and encoded payloads."""

import struct

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF


def fnv1a32(data: bytes) -> int:
    """Return the 32-bit FNV-1a hash of ``data``."""
    value = _FNV_OFFSET
    for byte in data:
        value = ((value ^ byte) * _FNV_PRIME) & _MASK32
    return value


def seal_metadata(header: bytes, payload: bytes, feature_flags: int) -> int:
    """Hash the header, the payload and the little-endian feature flags together."""
    return fnv1a32(bytes(header) + bytes(payload) + struct.pack("<I", feature_flags & _MASK32))