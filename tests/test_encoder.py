from dataclasses import replace

import pytest

from luauvault.encoder import EncoderConfig, EncoderKey, decode, encode
from luauvault.errors import CompileError, ConfigError, DecodeError, IntegrityError


def test_custom_encoder_roundtrips():
    cfg = EncoderConfig()
    key = EncoderKey(seed=0x12345678, nonce=0x87654321)
    payload = b"local value = 1337"
    encoded = encode(payload, key, cfg)
    assert decode(encoded, key, cfg) == payload


def test_encoder_seed_changes_output():
    cfg = EncoderConfig()
    payload = b"same payload"
    first = encode(payload, EncoderKey(seed=1, nonce=2), cfg)
    second = encode(payload, EncoderKey(seed=3, nonce=4), cfg)
    assert first != second


def test_encoder_checksum_detects_tampering():
    cfg = EncoderConfig()
    key = EncoderKey(seed=99, nonce=42)
    encoded = encode(b"tamper me", key, cfg)
    replacement = "7" if encoded[0] == "q" else "q"
    tampered = replacement + encoded[1:]
    with pytest.raises((IntegrityError, DecodeError)):
        decode(tampered, key, cfg)


def test_encoding_is_deterministic():
    cfg = EncoderConfig()
    key = EncoderKey(seed=5, nonce=6)
    first = encode(b"stable", key, cfg)
    second = encode(b"stable", key, cfg)
    assert len(first) > 0
    assert second == first
    assert decode(second, key, cfg) == b"stable"


@pytest.mark.parametrize(
    "cfg",
    [
        EncoderConfig(),
        EncoderConfig(rounds=0),
        EncoderConfig(interleave=False),
        EncoderConfig(include_checksum=False),
        EncoderConfig(chunk_size=0),
        EncoderConfig(rounds=5, chunk_size=3, interleave=False, include_checksum=False),
        EncoderConfig(alphabet="0123456789abcdef"),
    ],
)
@pytest.mark.parametrize("payload", [b"", b"x", b"hello world", bytes(range(256))])
def test_roundtrip_across_configs(cfg, payload):
    key = EncoderKey(seed=0xDEADBEEF, nonce=0xFFFFFFFF)
    assert decode(encode(payload, key, cfg), key, cfg) == payload


def test_output_only_uses_alphabet_and_separator():
    cfg = EncoderConfig()
    text = encode(b"some bytes to encode", EncoderKey(seed=7, nonce=8), cfg)
    assert set(text) <= set(cfg.alphabet) | {":"}


def test_plain_framing_length_without_chunks():
    cfg = EncoderConfig(rounds=0, interleave=False, include_checksum=True, chunk_size=0)
    text = encode(b"abc", EncoderKey(seed=1, nonce=1), cfg)
    assert len(text) == 22
    assert ":" not in text


def test_length_only_framing_is_shorter():
    cfg = EncoderConfig(rounds=0, interleave=False, include_checksum=False, chunk_size=0)
    text = encode(b"abc", EncoderKey(seed=1, nonce=1), cfg)
    assert len(text) == 14


def test_zero_rounds_length_header_is_visible():
    cfg = EncoderConfig(
        rounds=0,
        interleave=False,
        include_checksum=False,
        chunk_size=0,
        alphabet="0123456789abcdef",
    )
    text = encode(b"\x01\xff", EncoderKey(seed=1, nonce=1), cfg)
    assert text == "0200000001ff"


def test_chunk_separator_placement():
    cfg = EncoderConfig(chunk_size=4, include_checksum=True)
    text = encode(b"", EncoderKey(seed=2, nonce=3), cfg)
    assert len(text) == 17
    assert text[8] == ":"
    assert text.count(":") == 1


def test_separators_are_ignored_when_decoding():
    cfg = EncoderConfig(chunk_size=0)
    key = EncoderKey(seed=11, nonce=12)
    text = encode(b"separators", key, cfg)
    spaced = ":".join(text[i : i + 2] for i in range(0, len(text), 2))
    assert decode(spaced, key, cfg) == b"separators"


def test_wrong_key_fails_to_decode():
    cfg = EncoderConfig()
    text = encode(b"secret payload bytes", EncoderKey(seed=1, nonce=2), cfg)
    with pytest.raises(CompileError):
        decode(text, EncoderKey(seed=2, nonce=1), cfg)


def test_checksum_mismatch_raises_integrity_error():
    cfg = EncoderConfig(rounds=0, interleave=False, include_checksum=True, chunk_size=0)
    key = EncoderKey(seed=1, nonce=1)
    original = encode(b"abc", key, cfg)
    other = encode(b"abd", key, cfg)
    spliced = original[:-2] + other[-2:]
    with pytest.raises(IntegrityError):
        decode(spliced, key, cfg)


def test_trailing_bytes_raise_decode_error():
    cfg = EncoderConfig(rounds=0, interleave=False, include_checksum=False, chunk_size=0)
    key = EncoderKey(seed=1, nonce=1)
    text = encode(b"abc", key, cfg) + "AA"
    with pytest.raises(DecodeError, match="trailing"):
        decode(text, key, cfg)


def test_truncated_payload_raises_decode_error():
    cfg = EncoderConfig(rounds=0, interleave=False, include_checksum=False, chunk_size=0)
    key = EncoderKey(seed=1, nonce=1)
    text = encode(b"abc", key, cfg)[:-2]
    with pytest.raises(DecodeError, match="truncated"):
        decode(text, key, cfg)


def test_empty_text_is_shorter_than_header():
    with pytest.raises(DecodeError, match="shorter"):
        decode("", EncoderKey(seed=1, nonce=1), EncoderConfig())


def test_unknown_character_raises_decode_error():
    with pytest.raises(DecodeError, match="not present"):
        decode("!!", EncoderKey(seed=1, nonce=1), EncoderConfig())


def test_uneven_digit_count_raises_decode_error():
    with pytest.raises(DecodeError, match="uneven"):
        decode("AAA", EncoderKey(seed=1, nonce=1), EncoderConfig())


def test_pair_outside_byte_range_raises_decode_error():
    with pytest.raises(DecodeError, match="byte range"):
        decode("zz", EncoderKey(seed=1, nonce=1), EncoderConfig())


@pytest.mark.parametrize(
    ("alphabet", "message"),
    [
        ("abcdef", "at least 16"),
        ("abcdefghijklmnoa", "duplicate"),
        ("abcdefghijklmno:", "separator"),
    ],
)
def test_invalid_alphabets_are_rejected(alphabet, message):
    cfg = replace(EncoderConfig(), alphabet=alphabet)
    key = EncoderKey(seed=1, nonce=1)
    with pytest.raises(ConfigError, match=message):
        encode(b"data", key, cfg)
    with pytest.raises(ConfigError, match=message):
        decode("AAAA", key, cfg)


def test_default_config_values():
    cfg = EncoderConfig()
    assert cfg.include_checksum is True
    assert cfg.interleave is True
    assert len(cfg.alphabet) == 64
    assert ":" not in cfg.alphabet