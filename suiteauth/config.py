from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from suiteauth.logging import get_logger

logger = get_logger(__name__)

THIRTY_DAYS_SECONDS = 30 * 24 * 60 * 60
MIN_JWT_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process settings read from the environment and an optional ``.env`` file."""

    environment: str = env_field("development", "ENVIRONMENT")
    app_version: str = env_field("0.3.0", "APP_VERSION")
    database_url: str = env_field(
        "postgresql://localhost:5432/suiteauth", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    state_dir: str = env_field("/srv/suiteauth", "STATE_DIR")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviours for CI; exposes magic-link dev tokens.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    token_ttl_seconds: int = env_field(
        THIRTY_DAYS_SECONDS,
        "TOKEN_TTL_SECONDS",
        description="Lifetime of signed bearer tokens",
    )
    session_ttl_seconds: int = env_field(
        THIRTY_DAYS_SECONDS,
        "SESSION_TTL_SECONDS",
        description="TTL applied to session records in the key/value store",
    )
    magic_link_ttl_minutes: int = env_field(15, "MAGIC_LINK_TTL_MINUTES")
    pbkdf2_iterations: int = env_field(100_000, "PBKDF2_ITERATIONS")
    auth_cookie_name: str = env_field("auth_token", "AUTH_COOKIE_NAME")
    cookie_secure: bool = env_field(True, "COOKIE_SECURE")
    cors_allow_origin: str = env_field("*", "CORS_ALLOW_ORIGIN")
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Suite", "EMAIL_FROM_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "token_ttl_seconds",
        "session_ttl_seconds",
        "magic_link_ttl_minutes",
        "pbkdf2_iterations",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("jwt_secret")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < MIN_JWT_SECRET_LENGTH:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
                )
            return value
        return _load_or_create_jwt_secret(Path(os.getenv("STATE_DIR", "/srv/suiteauth")))


def _load_or_create_jwt_secret(state_dir: Path) -> str:
    """Persist a generated signing secret so tokens survive restarts."""
    secret_path = state_dir / ".jwt_secret"
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(state_dir, 0o700)
    except PermissionError:
        pass

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
        except OSError as exc:
            logger.error("jwt_secret_read_failed", error=str(exc), path=str(secret_path))
        else:
            if len(persisted) >= MIN_JWT_SECRET_LENGTH:
                return persisted

    generated = secrets.token_urlsafe(64)
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(state_dir), prefix=".jwt_secret_", suffix=".tmp"
        )
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.replace(tmp_path, secret_path)
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error("jwt_secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            "Unable to persist JWT secret; set JWT_SECRET or make STATE_DIR writable"
        ) from exc
    logger.info("jwt_secret_generated", path=str(secret_path))
    return generated


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
