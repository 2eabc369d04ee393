import pytest

from magnetico.types.infohash import (
    InfoHash,
    from_hex_string,
    hash_bytes,
    hash_bytes_v2,
)

NON_EMPTY = InfoHash(bytes(range(1, 21)))
NON_EMPTY_HEX = "0102030405060708090a0b0c0d0e0f1011121314"


@pytest.mark.parametrize(
    "value, expected",
    [
        (InfoHash(), "0000000000000000000000000000000000000000"),
        (NON_EMPTY, NON_EMPTY_HEX),
    ],
)
def test_format(value, expected):
    assert f"{value}" == expected
    assert str(value) == expected


@pytest.mark.parametrize("value", [InfoHash(), NON_EMPTY])
def test_string_round_trip(value):
    assert InfoHash.parse_hex(str(value)) == value


@pytest.mark.parametrize("value, expected", [(InfoHash(), True), (NON_EMPTY, False)])
def test_is_zero(value, expected):
    assert value.is_zero() is expected


def test_parse_empty_string_fails():
    with pytest.raises(ValueError, match="bad length: 0"):
        InfoHash.parse_hex("")


def test_parse_valid():
    assert InfoHash.parse_hex(NON_EMPTY_HEX) == NON_EMPTY


def test_parse_upper_case():
    assert InfoHash.parse_hex(NON_EMPTY_HEX.upper()) == NON_EMPTY


def test_parse_non_hex_fails():
    with pytest.raises(ValueError):
        InfoHash.parse_hex("zz" * 20)


@pytest.mark.parametrize(
    "value, expected",
    [
        (InfoHash(), "0000000000000000000000000000000000000000"),
        (NON_EMPTY, NON_EMPTY_HEX),
    ],
)
def test_hex_string(value, expected):
    assert value.hex_string() == expected


@pytest.mark.parametrize(
    "text, expected",
    [("", InfoHash()), (NON_EMPTY_HEX, NON_EMPTY), ("notahex", InfoHash())],
)
def test_from_hex_string(text, expected):
    assert from_hex_string(text) == expected


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"", "da39a3ee5e6b4b0d3255bfef95601890afd80709"),
        (b"test", "a94a8fe5ccb19ba61c4c0873d391e987982fbbd3"),
    ],
)
def test_hash_bytes(data, expected):
    assert hash_bytes(data) == InfoHash(bytes.fromhex(expected))


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"", "e3b0c44298fc1c149afbf4c8996fb92427ae41e4"),
        (b"test", "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b"),
    ],
)
def test_hash_bytes_v2(data, expected):
    assert hash_bytes_v2(data) == InfoHash(bytes.fromhex(expected))


def test_wrong_length_rejected():
    with pytest.raises(ValueError):
        InfoHash(b"\x00" * 19)


def test_bytes_conversion():
    assert bytes(NON_EMPTY) == bytes(range(1, 21))