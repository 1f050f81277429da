"""
Application Settings
====================

Every tunable of the service lives here and is read from the environment.

Env vars:
- DATABASE_URL:     SQLAlchemy URL (default: local SQLite file)
- JWT_SECRET:       HMAC secret used to sign bearer tokens (required in production)
- JWT_EXPIRES_IN:   token lifetime, e.g. "7d", "12h", "30m", "45s"
- BCRYPT_ROUNDS:    bcrypt work factor (>= 10)
- APP_ENV:          "production" hides exception details from 500 responses
- LOG_LEVEL:        root log level
- CORS_ORIGINS:     comma separated list of allowed origins
- ADMIN_EMAIL / ADMIN_PASSWORD / ADMIN_NAME:
                    bootstrap admin account created at startup if missing
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

MIN_BCRYPT_ROUNDS = 10
DEFAULT_JWT_SECRET = "change-me"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([dhms]?)\s*$")
_DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds", "": "seconds"}


def parse_duration(value: str) -> timedelta:
    """
    Parse a short duration string such as "7d" or "12h".

    A bare number is read as seconds.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    database_url: str = "sqlite:///./refurbmart.db"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_in: timedelta = timedelta(days=7)
    bcrypt_rounds: int = 12
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Administrator"

    def __post_init__(self):
        if isinstance(self.jwt_expires_in, str):
            self.jwt_expires_in = parse_duration(self.jwt_expires_in)
        if self.jwt_expires_in <= timedelta(0):
            raise ValueError("JWT_EXPIRES_IN must be positive")
        if self.bcrypt_rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}")
        if self.is_production and self.jwt_secret in ("", DEFAULT_JWT_SECRET):
            raise ValueError("JWT_SECRET must be set in production")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expires_in=os.getenv("JWT_EXPIRES_IN", "7d"),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", str(cls.bcrypt_rounds))),
            environment=os.getenv("APP_ENV", cls.environment),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "*")),
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            admin_name=os.getenv("ADMIN_NAME", cls.admin_name),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
