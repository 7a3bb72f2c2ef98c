"""Configuration helpers reused by the reservation engine and its workers."""

from __future__ import annotations

from dataclasses import dataclass
import os
import warnings
from typing import Dict, Optional

# Development-only fallbacks. Production must set every variable explicitly.
_DEFAULT_DATABASE_URLS: Dict[str, str] = {
    "reservation": "postgresql://user:password@db_reservation:5432/reservationdb",
}

_DEFAULT_REDIS_URL = "redis://redis:6379/0"
_DEFAULT_EVENT_STREAM = "reservation-events"
_DEFAULT_NOTIFICATION_STREAM = "notification-events"
_DEFAULT_SCHEDULER_STREAM = "scheduler-events"
_DEFAULT_HOST = "0.0.0.0"
_DEFAULT_PORT = 8000

_INSECURE_PASSWORDS = {"password", "123456", "admin", "root", "test", ""}
_INSECURE_SECRET_KEYS = {"secret", "changeme", "default", "dev-secret-change-me"}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DatabaseConfig:
    url: str


@dataclass(frozen=True)
class RedisConfig:
    url: str
    stream: str
    notification_stream: str
    scheduler_stream: str


@dataclass(frozen=True)
class ReservationSettings:
    waitlist_hold_hours: int
    next_available_horizon_days: int
    default_slot_minutes: int
    default_subscription_tier: str
    strict_instrument_exclusivity: bool
    deposit_currency: str


@dataclass(frozen=True)
class ServiceConfig:
    name: str
    host: str
    port: int
    database: DatabaseConfig
    redis: RedisConfig
    reservation: ReservationSettings


def _is_production() -> bool:
    env = os.getenv("ENVIRONMENT", os.getenv("ENV", "development")).lower()
    return env in ("production", "prod")


def _lookup_database_url(service_name: str) -> str:
    """Resolve the database URL, falling back to the development default.

    The fallback carries known credentials, so it is refused in production.
    """
    service_env = f"{service_name.upper()}_DATABASE_URL"
    db_url = (
        os.getenv(service_env)
        or os.getenv("DATABASE_URL")
        or _DEFAULT_DATABASE_URLS.get(service_name, "")
    )

    if db_url and db_url in _DEFAULT_DATABASE_URLS.values():
        if _is_production():
            raise ValueError(
                "Default database credentials cannot be used in production. "
                f"Set {service_env} or DATABASE_URL."
            )
        warnings.warn(
            f"Using the default database URL for {service_name}. "
            f"Set {service_env} or DATABASE_URL outside development.",
            UserWarning,
            stacklevel=2,
        )

    return db_url


def _validate_no_insecure_password(password: Optional[str], context: str = "") -> None:
    if password and password.lower() in _INSECURE_PASSWORDS:
        if _is_production():
            raise ValueError(f"Insecure password detected in {context}.")
        warnings.warn(f"Insecure password detected in {context}.", UserWarning, stacklevel=3)


def _validate_secret_key(secret_key: Optional[str]) -> None:
    if not secret_key:
        return

    if secret_key in _INSECURE_SECRET_KEYS:
        if _is_production():
            raise ValueError(
                "SECRET_KEY cannot be a well-known value in production. "
                "Generate one with: openssl rand -hex 64"
            )
        warnings.warn("SECRET_KEY looks like a well-known default value.", UserWarning, stacklevel=3)

    if len(secret_key) < 32:
        warnings.warn(
            f"SECRET_KEY is short ({len(secret_key)} characters); use at least 32.",
            UserWarning,
            stacklevel=3,
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def load_reservation_settings() -> ReservationSettings:
    """Business knobs of the reservation engine."""
    hold_hours = _env_int("WAITLIST_HOLD_HOURS", 4)
    horizon = _env_int("NEXT_AVAILABLE_HORIZON_DAYS", 30)
    slot_minutes = _env_int("DEFAULT_SLOT_MINUTES", 30)
    if hold_hours <= 0 or horizon <= 0 or slot_minutes <= 0:
        raise ValueError(
            "WAITLIST_HOLD_HOURS, NEXT_AVAILABLE_HORIZON_DAYS and DEFAULT_SLOT_MINUTES must be positive"
        )

    return ReservationSettings(
        waitlist_hold_hours=hold_hours,
        next_available_horizon_days=horizon,
        default_slot_minutes=slot_minutes,
        default_subscription_tier=os.getenv("DEFAULT_SUBSCRIPTION_TIER", "free"),
        strict_instrument_exclusivity=_env_bool("STRICT_INSTRUMENT_EXCLUSIVITY", True),
        deposit_currency=os.getenv("DEPOSIT_CURRENCY", "gbp").lower(),
    )


def load_service_config(service_name: str) -> ServiceConfig:
    """Aggregate configuration for a service from environment variables.

    Args:
        service_name: Service name, used to look up ``<NAME>_DATABASE_URL``.

    Returns:
        ServiceConfig: the resolved configuration.

    Raises:
        ValueError: when no database URL is available, or when insecure
            defaults are detected in production.
    """

    normalized_name = service_name.lower()
    db_url = _lookup_database_url(normalized_name)
    if not db_url:
        raise ValueError(
            f"DATABASE_URL not configured for service '{normalized_name}'. "
            f"Set DATABASE_URL or {normalized_name.upper()}_DATABASE_URL."
        )

    if ":" in db_url and "@" in db_url:
        try:
            auth_part = db_url.split("@")[0].split("://")[1]
            if ":" in auth_part:
                password = auth_part.split(":")[1]
                _validate_no_insecure_password(password, f"DATABASE_URL for {service_name}")
        except IndexError:
            pass

    host = os.getenv("APP_HOST", _DEFAULT_HOST)
    port = _env_int("APP_PORT", _DEFAULT_PORT)

    redis = RedisConfig(
        url=os.getenv("REDIS_URL", _DEFAULT_REDIS_URL),
        stream=os.getenv("EVENT_STREAM", _DEFAULT_EVENT_STREAM),
        notification_stream=os.getenv("NOTIFICATION_STREAM", _DEFAULT_NOTIFICATION_STREAM),
        scheduler_stream=os.getenv("SCHEDULER_STREAM", _DEFAULT_SCHEDULER_STREAM),
    )

    secret_key = os.getenv("SECRET_KEY")
    if secret_key:
        _validate_secret_key(secret_key)

    return ServiceConfig(
        name=normalized_name,
        host=host,
        port=port,
        database=DatabaseConfig(url=db_url),
        redis=redis,
        reservation=load_reservation_settings(),
    )
