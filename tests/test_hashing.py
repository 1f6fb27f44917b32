import pytest

from amssdk.hashing import hash_value, validate_hash


def test_hash_length_and_encoding():
    password = "password"
    hashed = hash_value(password)
    assert len(hashed) == 192
    assert len(bytes.fromhex(hashed)) == 96


def test_hash_empty_value_unchanged():
    assert hash_value("") == ""


def test_hash_uses_random_salt():
    password = "password"
    first = hash_value(password)
    second = hash_value(password)
    assert first != second
    assert first[:64] != second[:64]


def test_validate_round_trip_and_mismatch():
    password = "password"
    hashed = hash_value(password)
    assert validate_hash(hashed, password) is None
    with pytest.raises(ValueError, match="Bad password provided"):
        validate_hash(hashed, "secret")


def test_validate_detects_tampered_hash():
    password = "password"
    hashed = hash_value(password)
    last = "0" if hashed[-1] != "0" else "1"
    with pytest.raises(ValueError, match="Bad password provided"):
        validate_hash(hashed[:-1] + last, password)


def test_validate_empty_hash():
    with pytest.raises(ValueError, match="No password is set"):
        validate_hash("", "secret")


def test_validate_invalid_hex():
    with pytest.raises(ValueError):
        validate_hash("zz" * 96, "secret")


def test_validate_odd_length_hex():
    with pytest.raises(ValueError):
        validate_hash("abc", "secret")


def test_validate_too_short():
    with pytest.raises(ValueError, match="too short"):
        validate_hash("00" * 10, "secret")