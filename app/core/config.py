from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    paystack_secret_key: str | None = None
    paystack_base_url: str = "https://api.paystack.co"
    payment_timeout_seconds: int = 10
    access_code_prefix: str = "ACE"
    access_code_validity_days: int = 365
    code_generation_attempts: int = 3
    min_payment_amount: int = 150_000  # kobo
    exam_session_ttl_minutes: int = 180
    bootstrap_admin_email: str = "admin@example.com"
    bootstrap_admin_password: str = "admin"
    bootstrap_admin_grace_logins: int = 3
    jwt_private_key_path: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    prefix = _getenv("ACCESS_CODE_PREFIX", "ACE").upper()
    if not prefix.isalnum():
        raise ValueError(f"ACCESS_CODE_PREFIX must be alphanumeric (got {prefix!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=_getenv_int("PORT", 8000),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        paystack_secret_key=_getenv("PAYSTACK_SECRET_KEY", "") or None,
        paystack_base_url=_getenv("PAYSTACK_BASE_URL", "https://api.paystack.co"),
        payment_timeout_seconds=_getenv_int("PAYMENT_TIMEOUT_SECONDS", 10, minimum=1),
        access_code_prefix=prefix,
        access_code_validity_days=_getenv_int(
            "ACCESS_CODE_VALIDITY_DAYS", 365, minimum=1
        ),
        code_generation_attempts=_getenv_int(
            "CODE_GENERATION_ATTEMPTS", 3, minimum=1
        ),
        min_payment_amount=_getenv_int("MIN_PAYMENT_AMOUNT", 150_000),
        exam_session_ttl_minutes=_getenv_int(
            "EXAM_SESSION_TTL_MINUTES", 180, minimum=1
        ),
        bootstrap_admin_email=_getenv(
            "BOOTSTRAP_ADMIN_EMAIL", "admin@example.com"
        ).lower(),
        bootstrap_admin_password=_getenv("BOOTSTRAP_ADMIN_PASSWORD", "admin"),
        bootstrap_admin_grace_logins=_getenv_int("BOOTSTRAP_ADMIN_GRACE_LOGINS", 3),
        jwt_private_key_path=_getenv("JWT_PRIVATE_KEY_PATH", "") or None,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
