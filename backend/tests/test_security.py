from datetime import datetime, timedelta, timezone

import jwt
import pytest

from refurbmart import security
from refurbmart.config import Settings, parse_duration
from refurbmart.errors import ForbiddenError, UnauthorizedError
from refurbmart.models import Role
from refurbmart.security import Principal


@pytest.fixture
def settings():
    return Settings(jwt_secret="unit-secret", bcrypt_rounds=10)


def test_password_hash_is_salted_and_verifiable():
    first = security.hash_password("hunter22", rounds=10)
    second = security.hash_password("hunter22", rounds=10)

    assert first != second
    assert "hunter22" not in first
    assert first.startswith("$2b$10$")
    assert security.verify_password("hunter22", first)
    assert not security.verify_password("hunter23", first)


def test_token_round_trip(settings):
    token = security.create_access_token(42, Role.SELLER, settings)
    assert security.authenticate(token, settings) == Principal(id=42, role=Role.SELLER)


def test_token_signed_with_other_secret_fails(settings):
    token = security.create_access_token(42, Role.SELLER, Settings(jwt_secret="other", bcrypt_rounds=10))
    with pytest.raises(UnauthorizedError):
        security.authenticate(token, settings)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
def test_malformed_tokens_fail(settings, token):
    with pytest.raises(UnauthorizedError):
        security.authenticate(token, settings)


def _signed(settings, **claims):
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def _in_an_hour():
    return datetime.now(timezone.utc) + timedelta(hours=1)


def test_token_with_unknown_role_fails(settings):
    token = _signed(settings, id=1, role="superuser", exp=_in_an_hour())
    with pytest.raises(UnauthorizedError):
        security.authenticate(token, settings)


@pytest.mark.parametrize("missing", ["exp", "id", "role"])
def test_token_missing_required_claim_fails(settings, missing):
    claims = {"id": 1, "role": "buyer", "exp": _in_an_hour()}
    del claims[missing]
    with pytest.raises(UnauthorizedError) as excinfo:
        security.authenticate(_signed(settings, **claims), settings)
    assert excinfo.value.message == "Not authorized, token failed"


@pytest.mark.parametrize(
    "role, required, allowed",
    [
        (Role.ADMIN, Role.SELLER, True),
        (Role.ADMIN, Role.BUYER, True),
        (Role.SELLER, Role.SELLER, True),
        (Role.SELLER, Role.BUYER, False),
        (Role.SELLER, Role.ADMIN, False),
        (Role.BUYER, Role.SELLER, False),
        (Role.BUYER, Role.ADMIN, False),
    ],
)
def test_authorize(role, required, allowed):
    principal = Principal(id=1, role=role)
    if allowed:
        security.authorize(principal, required)
    else:
        with pytest.raises(ForbiddenError):
            security.authorize(principal, required)


def test_settings_reject_weak_bcrypt_rounds():
    with pytest.raises(ValueError):
        Settings(bcrypt_rounds=4)


def test_parse_duration():
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("12h") == timedelta(hours=12)
    assert parse_duration("30m") == timedelta(minutes=30)
    assert parse_duration("90") == timedelta(seconds=90)
    with pytest.raises(ValueError):
        parse_duration("soon")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
    monkeypatch.setenv("JWT_EXPIRES_IN", "2h")
    monkeypatch.setenv("BCRYPT_ROUNDS", "11")
    monkeypatch.setenv("JWT_SECRET", "prod-secret-from-vault")
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("CORS_ORIGINS", "https://shop.example.com, https://admin.example.com")

    settings = Settings.from_env()
    assert settings.database_url == "sqlite:///./other.db"
    assert settings.jwt_expires_in == timedelta(hours=2)
    assert settings.bcrypt_rounds == 11
    assert settings.is_production
    assert settings.cors_origins == ["https://shop.example.com", "https://admin.example.com"]


def test_production_refuses_default_jwt_secret():
    with pytest.raises(ValueError):
        Settings(environment="production")
    assert Settings(environment="production", jwt_secret="prod-secret-from-vault").is_production


def test_from_env_in_production_requires_jwt_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.setenv("APP_ENV", "production")
    with pytest.raises(ValueError):
        Settings.from_env()
