from dataclasses import replace

import jwt
import pytest

from auth import (
    Principal,
    create_access_token,
    decode_access_token,
    hash_password,
    require_admin,
    verify_password,
)
from conftest import make_user
from errors import Forbidden, Unauthorized
from user import Role


def test_password_round_trip(test_settings):
    hashed = hash_password("open sesame", test_settings)
    assert hashed.startswith("$2")
    assert verify_password("open sesame", hashed)
    assert not verify_password("open sesame!", hashed)


def test_verify_against_malformed_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_token_claims(test_settings):
    user = make_user("A001", role=Role.ADMIN.value)
    claims = decode_access_token(create_access_token(user, test_settings), test_settings)
    assert claims["registration"] == "A001"
    assert claims["email"] == "a001@library.test"
    assert claims["role"] == "admin"
    assert "exp" in claims


def test_expired_token(test_settings):
    expired = replace(test_settings, jwt_expiration_minutes=-1)
    token = create_access_token(make_user(), expired)
    with pytest.raises(Unauthorized, match="expired"):
        decode_access_token(token, test_settings)


def test_token_signed_with_other_key(test_settings):
    token = jwt.encode({"registration": "U001"}, "some-other-signing-key-of-enough-length", algorithm="HS256")
    with pytest.raises(Unauthorized):
        decode_access_token(token, test_settings)


def test_require_admin():
    admin = Principal("A001", Role.ADMIN.value)
    assert require_admin(admin) is admin
    with pytest.raises(Forbidden):
        require_admin(Principal("U001", Role.USER.value))
    with pytest.raises(Unauthorized):
        require_admin(None)
