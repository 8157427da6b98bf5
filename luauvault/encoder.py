"""Keyed, reversible text encoding of binary payloads over a custom alphabet."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from luauvault.checksum import fnv1a32
from luauvault.errors import ConfigError, DecodeError, IntegrityError

_MASK32 = 0xFFFFFFFF
_SEPARATOR = ":"

_PERMUTATION_SALT = 0xA17C91E3
_STREAM_SALT = 0xC0DE7705
_SUBSTITUTION_SALT = 0x55AA10F1
_ROUND_SALT = 0x9E3779B9

DEFAULT_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


@dataclass(frozen=True)
class EncoderKey:
    """Seed and nonce from which every round's transforms are derived."""

    seed: int
    nonce: int


@dataclass
class EncoderConfig:
    """Settings controlling how payloads are framed and encoded."""

    rounds: int = 3
    alphabet: str = DEFAULT_ALPHABET
    chunk_size: int = 32
    include_checksum: bool = True
    interleave: bool = True


class _Lcg:
    """32-bit linear congruential generator."""

    def __init__(self, seed: int) -> None:
        self.state = max(seed & _MASK32, 1)

    def next_u32(self) -> int:
        self.state = (self.state * 1664525 + 1013904223) & _MASK32
        return self.state

    def next_u8(self) -> int:
        return self.next_u32() >> 24

    def bounded(self, bound: int) -> int:
        return 0 if bound == 0 else self.next_u32() % bound


def encode(data: bytes, key: EncoderKey, cfg: EncoderConfig | None = None) -> str:
    """Encode ``data`` into text using ``key`` and ``cfg``."""
    cfg = cfg or EncoderConfig()
    _validate_config(cfg)
    payload = _frame_payload(bytes(data), cfg.include_checksum)
    if cfg.interleave:
        payload = _interleave(payload)
    for round_index in range(cfg.rounds):
        seed = _round_seed(key, round_index)
        permutation = _build_permutation(len(payload), seed ^ _PERMUTATION_SALT)
        payload = bytes(payload[index] for index in permutation)
        payload = _stream_transform(payload, seed ^ _STREAM_SALT, forward=True)
        payload = payload.translate(_build_substitution_table(seed ^ _SUBSTITUTION_SALT))
    return _encode_text(payload, cfg)


def decode(text: str, key: EncoderKey, cfg: EncoderConfig | None = None) -> bytes:
    """Reverse :func:`encode`, verifying framing and the checksum if enabled."""
    cfg = cfg or EncoderConfig()
    _validate_config(cfg)
    payload = _decode_text(text, cfg)
    for round_index in reversed(range(cfg.rounds)):
        seed = _round_seed(key, round_index)
        table = _build_substitution_table(seed ^ _SUBSTITUTION_SALT)
        payload = payload.translate(_inverse_table(table))
        payload = _stream_transform(payload, seed ^ _STREAM_SALT, forward=False)
        permutation = _build_permutation(len(payload), seed ^ _PERMUTATION_SALT)
        payload = _invert_permutation(payload, permutation)
    if cfg.interleave:
        payload = _deinterleave(payload)
    return _deframe_payload(payload, cfg.include_checksum)


def _validate_config(cfg: EncoderConfig) -> None:
    alphabet_len = len(cfg.alphabet)
    if alphabet_len < 16:
        raise ConfigError("Encoder alphabet must contain at least 16 unique symbols")
    if alphabet_len * alphabet_len <= 255:
        raise ConfigError("Encoder alphabet is too small for the custom radix packing")
    if len(set(cfg.alphabet)) != alphabet_len:
        raise ConfigError("Encoder alphabet must not contain duplicate characters")
    if _SEPARATOR in cfg.alphabet:
        raise ConfigError("Encoder alphabet must not contain the chunk separator ':'")


def _frame_payload(data: bytes, include_checksum: bool) -> bytes:
    header = struct.pack("<I", len(data) & _MASK32)
    if include_checksum:
        header += struct.pack("<I", fnv1a32(data))
    return header + data


def _deframe_payload(data: bytes, include_checksum: bool) -> bytes:
    header_len = 8 if include_checksum else 4
    if len(data) < header_len:
        raise DecodeError("Encoded payload was shorter than the framing header")
    (length,) = struct.unpack_from("<I", data, 0)
    if header_len + length > len(data):
        raise DecodeError("Encoded payload length was truncated")
    if len(data) != header_len + length:
        raise DecodeError("Encoded payload had trailing or missing bytes")
    payload = data[header_len:]
    if include_checksum:
        (expected,) = struct.unpack_from("<I", data, 4)
        if expected != fnv1a32(payload):
            raise IntegrityError("Custom encoder checksum verification failed")
    return bytes(payload)


def _rotate_left32(value: int, amount: int) -> int:
    value &= _MASK32
    return ((value << amount) | (value >> (32 - amount))) & _MASK32


def _round_seed(key: EncoderKey, round_index: int) -> int:
    total = key.seed + _rotate_left32(key.nonce, 5) + round_index * 977
    return (total & _MASK32) ^ _ROUND_SALT


def _shuffle(items: list[int], seed: int) -> list[int]:
    prng = _Lcg(seed)
    for index in range(len(items) - 1, 0, -1):
        target = prng.bounded(index + 1)
        items[index], items[target] = items[target], items[index]
    return items


def _build_permutation(length: int, seed: int) -> list[int]:
    return _shuffle(list(range(length)), seed)


def _invert_permutation(data: bytes, permutation: list[int]) -> bytes:
    restored = bytearray(len(data))
    for output_index, source_index in enumerate(permutation):
        restored[source_index] = data[output_index]
    return bytes(restored)


def _stream_transform(data: bytes, seed: int, *, forward: bool) -> bytes:
    prng = _Lcg(seed)
    out = bytearray()
    for byte in data:
        add = prng.next_u8()
        mask = prng.next_u8()
        if forward:
            out.append(((byte + add) & 0xFF) ^ mask)
        else:
            out.append(((byte ^ mask) - add) & 0xFF)
    return bytes(out)


def _build_substitution_table(seed: int) -> bytes:
    return bytes(_shuffle(list(range(256)), seed))


def _inverse_table(table: bytes) -> bytes:
    inverse = bytearray(256)
    for index, value in enumerate(table):
        inverse[value] = index
    return bytes(inverse)


def _encode_text(data: bytes, cfg: EncoderConfig) -> str:
    alphabet = cfg.alphabet
    radix = len(alphabet)
    parts: list[str] = []
    total = len(data)
    for position, byte in enumerate(data, start=1):
        high, low = divmod(byte, radix)
        parts.append(alphabet[high])
        parts.append(alphabet[low])
        if cfg.chunk_size > 0 and position % cfg.chunk_size == 0 and position != total:
            parts.append(_SEPARATOR)
    return "".join(parts)


def _decode_text(text: str, cfg: EncoderConfig) -> bytes:
    radix = len(cfg.alphabet)
    reverse = {ch: index for index, ch in enumerate(cfg.alphabet)}
    digits: list[int] = []
    for ch in text:
        if ch == _SEPARATOR:
            continue
        try:
            digits.append(reverse[ch])
        except KeyError:
            raise DecodeError(
                f"Character `{ch}` is not present in the custom alphabet"
            ) from None
    if len(digits) % 2:
        raise DecodeError("Custom alphabet payload had an uneven number of digits")
    out = bytearray()
    for high, low in zip(digits[0::2], digits[1::2]):
        value = high * radix + low
        if value > 0xFF:
            raise DecodeError("Custom radix pair decoded outside the byte range")
        out.append(value)
    return bytes(out)


def _interleave(data: bytes) -> bytes:
    return data[0::2] + data[1::2]


def _deinterleave(data: bytes) -> bytes:
    left_len = (len(data) + 1) // 2
    out = bytearray(len(data))
    out[0::2] = data[:left_len]
    out[1::2] = data[left_len:]
    return bytes(out)