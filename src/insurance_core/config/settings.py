"""Centralized configuration from environment variables with defaults."""

import os

from dotenv import load_dotenv

load_dotenv()


def _float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_db_path() -> str:
    """Return path to SQLite database from INSURANCE_DB_PATH env or default data/insurance.db."""
    return os.environ.get("INSURANCE_DB_PATH", "data/insurance.db")


def get_db_timeout() -> float:
    """Seconds a connection waits on a locked database before failing."""
    return _float("DB_TIMEOUT_SECONDS", 5.0)


# ---------------------------------------------------------------------------
# Payment fees and taxes
# ---------------------------------------------------------------------------

def get_payment_config() -> dict:
    """Fee and tax rates applied when a payment is created."""
    return {
        "gateway_fee_rate": _float("PAYMENT_GATEWAY_FEE_RATE", 0.02),
        "gst_rate": _float("PAYMENT_GST_RATE", 0.18),
        "default_currency": os.environ.get("DEFAULT_CURRENCY", "INR"),
    }


# ---------------------------------------------------------------------------
# Optimistic concurrency retry
# ---------------------------------------------------------------------------

def get_concurrency_config() -> dict:
    """Bounded retry applied to ConcurrentModification."""
    return {
        "max_attempts": max(1, _int("CONCURRENCY_MAX_ATTEMPTS", 3)),
        "min_wait": _float("CONCURRENCY_MIN_WAIT", 0.05),
        "max_wait": _float("CONCURRENCY_MAX_WAIT", 1.0),
    }


# ---------------------------------------------------------------------------
# Free-text limits
# ---------------------------------------------------------------------------

MAX_DESCRIPTION_LENGTH = _int("MAX_DESCRIPTION_LENGTH", 1000)
MAX_COMMENT_LENGTH = _int("MAX_COMMENT_LENGTH", 2000)
