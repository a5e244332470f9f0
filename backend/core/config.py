import os
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./appointments.db")
APPOINTMENT_STORE = os.getenv("APPOINTMENT_STORE", "database").strip().lower()

BUSINESS_HOURS_START = os.getenv("BUSINESS_HOURS_START", "07:00")
BUSINESS_HOURS_END = os.getenv("BUSINESS_HOURS_END", "19:00")
SLOT_DURATION_MINUTES = _get_int(os.getenv("SLOT_DURATION_MINUTES"), 30)
CANCELLATION_BUFFER_MINUTES = _get_int(os.getenv("CANCELLATION_BUFFER_MINUTES"), 30)
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "UTC")
ANONYMIZE_BOOKED_BY = _get_bool(os.getenv("ANONYMIZE_BOOKED_BY"), default=True)

RETENTION_ENABLED = _get_bool(os.getenv("RETENTION_ENABLED"), default=True)
RETENTION_DAYS = _get_int(os.getenv("RETENTION_DAYS"), 365)
RETENTION_PURGE_INTERVAL_MINUTES = _get_int(os.getenv("RETENTION_PURGE_INTERVAL_MINUTES"), 1440)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:5173"])

SUPPORTED_STORES = {"database", "memory"}


_CLOCK_PATTERN = re.compile(r"\A([0-9]{1,2}):([0-9]{2})\Z")


def _clock_minutes(value: str) -> int:
    match = _CLOCK_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid clock time {value!r}.")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid clock time {value!r}.")
    return hours * 60 + minutes


def validate_runtime_config() -> None:
    if APPOINTMENT_STORE not in SUPPORTED_STORES:
        raise RuntimeError(f"APPOINTMENT_STORE must be one of {sorted(SUPPORTED_STORES)}.")

    try:
        start = _clock_minutes(BUSINESS_HOURS_START)
        end = _clock_minutes(BUSINESS_HOURS_END)
    except ValueError as exc:
        raise RuntimeError("BUSINESS_HOURS_START and BUSINESS_HOURS_END must be HH:MM.") from exc

    if not 0 <= start < end < 24 * 60:
        raise RuntimeError("Business hours must start before they end, within a single day.")

    if SLOT_DURATION_MINUTES <= 0 or (end - start) % SLOT_DURATION_MINUTES != 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must evenly divide the business hours window.")

    if CANCELLATION_BUFFER_MINUTES < 0:
        raise RuntimeError("CANCELLATION_BUFFER_MINUTES cannot be negative.")

    if RETENTION_ENABLED and (RETENTION_DAYS <= 0 or RETENTION_PURGE_INTERVAL_MINUTES <= 0):
        raise RuntimeError("RETENTION_DAYS and RETENTION_PURGE_INTERVAL_MINUTES must be positive.")

    try:
        ZoneInfo(BUSINESS_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RuntimeError(f"Unknown BUSINESS_TIMEZONE {BUSINESS_TIMEZONE!r}.") from exc
