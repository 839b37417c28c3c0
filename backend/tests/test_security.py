from datetime import timedelta

import pytest
from jose import jwt

from ember_society.core.config import get_settings
from ember_society.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
    InvalidTokenError,
)


def test_password_hash_roundtrip():
    hashed = get_password_hash("s3cret-leaf")

    assert hashed != "s3cret-leaf"
    assert verify_password("s3cret-leaf", hashed)
    assert not verify_password("wrong", hashed)


def test_verify_password_with_garbage_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_token_carries_user_identity():
    token = create_access_token(42, "cohiba")

    assert decode_access_token(token) == (42, "cohiba")


def test_expired_token_is_rejected():
    token = create_access_token(1, "old", expires_delta=timedelta(minutes=-1))

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


def test_forged_token_is_rejected():
    token = jwt.encode({"sub": "1", "username": "x"}, "other-secret", algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


@pytest.mark.parametrize(
    "claims",
    [
        {"username": "nosub"},
        {"sub": "5"},
        {"sub": "abc", "username": "bad"},
    ],
)
def test_token_with_bad_claims_is_rejected(claims):
    settings = get_settings()
    token = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)
