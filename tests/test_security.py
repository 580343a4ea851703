from types import SimpleNamespace

import jwt
import pytest

from car_rental.config import Config
from car_rental.errors import AuthenticationError, ForbiddenError, InvalidTokenError, TokenExpiredError
from car_rental.security import (
    Principal, authenticate, create_access_token, hash_password, require_admin, require_owner_or_admin,
    verify_password,
)

ALICE = Principal(id=1, username="alice", email="alice@example.com", role="customer")
ADMIN = Principal(id=9, username="admin", email="admin@example.com", role="admin")


def _user(**overrides):
    fields = {"id": 1, "username": "alice", "email": "alice@example.com", "role": "customer"}
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_password_hash_round_trip():
    hashed = hash_password("secret123", rounds=4)
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("secret124", hashed)


def test_malformed_hash_does_not_verify():
    assert not verify_password("secret123", "plain-text")


def test_token_carries_identity(config):
    principal = authenticate(create_access_token(_user(role="admin"), config), config)
    assert principal == Principal(id=1, username="alice", email="alice@example.com", role="admin")
    assert principal.is_admin


def test_expired_token(config):
    expired = Config(JWT_SECRET=config.JWT_SECRET, TOKEN_TTL_HOURS=-1)
    token = create_access_token(_user(), expired)

    with pytest.raises(TokenExpiredError) as exc_info:
        authenticate(token, config)
    assert exc_info.value.status_code == 401


def test_token_signed_with_other_secret(config):
    token = create_access_token(_user(), Config(JWT_SECRET="another-secret-that-is-long-enough-for-hs256"))
    with pytest.raises(InvalidTokenError) as exc_info:
        authenticate(token, config)
    assert exc_info.value.status_code == 403


def test_token_missing_claims(config):
    token = jwt.encode({"id": 1}, config.JWT_SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        authenticate(token, config)


def test_owner_or_admin_rule():
    require_owner_or_admin(ALICE, 1)
    require_owner_or_admin(ADMIN, 1)
    with pytest.raises(ForbiddenError):
        require_owner_or_admin(ALICE, 2)


def test_admin_rule():
    require_admin(ADMIN)
    with pytest.raises(ForbiddenError) as exc_info:
        require_admin(ALICE)
    assert isinstance(exc_info.value, AuthenticationError)
    assert exc_info.value.status_code == 403


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/rentals")
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "message": "Access token required",
        "error": "No token provided",
    }


def test_malformed_header_is_unauthorized(client):
    assert client.get("/api/rentals", headers={"Authorization": "Token abc"}).status_code == 401


def test_garbage_token_is_forbidden(client):
    response = client.get("/api/rentals", headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 403
    assert response.json()["message"] == "Invalid token"


def test_expired_token_over_http(client, config):
    expired = Config(JWT_SECRET=config.JWT_SECRET, TOKEN_TTL_HOURS=-1)
    token = create_access_token(_user(id=1), expired)

    response = client.get("/api/users/1", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Token expired"
