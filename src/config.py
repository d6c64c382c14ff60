"""
Project configuration file for the Whale Deep-Dive Agent.

This module centralises all user-modifiable settings such as API keys,
provider models, timeouts, retry policy, data-source endpoints and job store
options.  You can edit these values directly or set environment variables to
override them.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _parse_float(name: str, default: str, *, low: float = 0.0, high: float = 1.0) -> float:
    """Parse an env var as a float and validate it within [low, high]."""
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.error("Invalid value for %s: %r – using default %s", name, raw, default)
        value = float(default)
    if not (low <= value <= high):
        logger.warning("%s=%.4f is outside [%.1f, %.1f] – clamped", name, value, low, high)
        value = max(low, min(value, high))
    return value


def _parse_int(name: str, default: str, *, minimum: int = 1) -> int:
    """Parse an env var as an int and enforce a minimum."""
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.error("Invalid value for %s: %r – using default %s", name, raw, default)
        value = int(default)
    if value < minimum:
        logger.warning("%s=%d is below minimum %d – clamped", name, value, minimum)
        value = minimum
    return value


def _parse_list(name: str, default: str) -> list[str]:
    """Parse a comma-separated env var into a list of lower-cased tokens."""
    return [
        item.strip().lower()
        for item in os.getenv(name, default).split(",")
        if item.strip()
    ]


# ---------------------------------------------------------------------------
# Analysis providers
# ---------------------------------------------------------------------------
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_FAST_MODEL: str = os.getenv("ANTHROPIC_FAST_MODEL", "claude-haiku-4-5-20251001")
ANTHROPIC_DEEP_MODEL: str = os.getenv("ANTHROPIC_DEEP_MODEL", "claude-sonnet-4-5-20250929")

OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_FAST_MODEL: str = os.getenv("OPENAI_FAST_MODEL", "gpt-4o-mini")
OPENAI_DEEP_MODEL: str = os.getenv("OPENAI_DEEP_MODEL", "gpt-4o")

GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
GEMINI_BASE_URL: str = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_FAST_MODEL: str = os.getenv("GEMINI_FAST_MODEL", "gemini-2.5-flash")
GEMINI_DEEP_MODEL: str = os.getenv("GEMINI_DEEP_MODEL", "gemini-2.5-pro")

# Preferred provider order inside a tier (first = tried first)
PROVIDER_ORDER: list[str] = _parse_list("PROVIDER_ORDER", "anthropic,openai,gemini")

# Per-call timeouts: fast models answer in seconds, deep models can take minutes
FAST_TIMEOUT_SECONDS: float = _parse_float("FAST_TIMEOUT_SECONDS", "30", low=1.0, high=600.0)
DEEP_TIMEOUT_SECONDS: float = _parse_float("DEEP_TIMEOUT_SECONDS", "120", low=1.0, high=900.0)
FAST_MAX_OUTPUT_TOKENS: int = _parse_int("FAST_MAX_OUTPUT_TOKENS", "2000", minimum=256)
DEEP_MAX_OUTPUT_TOKENS: int = _parse_int("DEEP_MAX_OUTPUT_TOKENS", "6000", minimum=256)
PROVIDER_TEMPERATURE: float = _parse_float("PROVIDER_TEMPERATURE", "0.3", low=0.0, high=2.0)

# ---------------------------------------------------------------------------
# Retry / backoff (per provider)
# ---------------------------------------------------------------------------
# Attempts per provider, first call included
PROVIDER_MAX_RETRIES: int = _parse_int("PROVIDER_MAX_RETRIES", "3", minimum=1)
BACKOFF_BASE_SECONDS: float = _parse_float("BACKOFF_BASE_SECONDS", "1.0", low=0.0, high=60.0)
BACKOFF_CAP_SECONDS: float = _parse_float("BACKOFF_CAP_SECONDS", "8.0", low=0.0, high=300.0)
RETRY_AFTER_CAP_SECONDS: float = _parse_float(
    "RETRY_AFTER_CAP_SECONDS", "60", low=0.0, high=600.0
)

# ---------------------------------------------------------------------------
# Provider selection thresholds
# ---------------------------------------------------------------------------
DEEP_THRESHOLD_BTC: float = _parse_float("DEEP_THRESHOLD_BTC", "100", low=0.0, high=1e9)
HIGH_ACTIVITY_TX_COUNT: int = _parse_int("HIGH_ACTIVITY_TX_COUNT", "5000", minimum=1)

# ---------------------------------------------------------------------------
# Context data sources
# ---------------------------------------------------------------------------
BLOCKCHAIN_INFO_BASE_URL: str = os.getenv(
    "BLOCKCHAIN_INFO_BASE_URL", "https://blockchain.info"
)
COINGECKO_BASE_URL: str = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com")
COINMARKETCAP_BASE_URL: str = os.getenv(
    "COINMARKETCAP_BASE_URL", "https://pro-api.coinmarketcap.com"
)
COINMARKETCAP_API_KEY: str = os.getenv("COINMARKETCAP_API_KEY", "")
ARKHAM_BASE_URL: str = os.getenv("ARKHAM_BASE_URL", "https://api.arkhamintelligence.com")
ARKHAM_API_KEY: str = os.getenv("ARKHAM_API_KEY", "")

CONTEXT_LOOKUP_TIMEOUT_SECONDS: float = _parse_float(
    "CONTEXT_LOOKUP_TIMEOUT_SECONDS", "5", low=0.5, high=9.0
)
ADDRESS_HISTORY_LIMIT: int = _parse_int("ADDRESS_HISTORY_LIMIT", "3", minimum=1)
REQUEST_TIMEOUT: int = _parse_int("REQUEST_TIMEOUT", "5", minimum=1)
PRICE_CACHE_TTL_SECONDS: int = _parse_int("PRICE_CACHE_TTL_SECONDS", "60", minimum=1)
# Documented last-resort price used when every price source fails
FALLBACK_BTC_PRICE_USD: float = _parse_float(
    "FALLBACK_BTC_PRICE_USD", "95000", low=1.0, high=1e7
)

# ---------------------------------------------------------------------------
# Job store
# ---------------------------------------------------------------------------
JOB_STORE_BACKEND: str = os.getenv("JOB_STORE_BACKEND", "sqlite")  # "memory" or "sqlite"
JOB_STORE_PATH: str = os.getenv("JOB_STORE_PATH", "data/jobs.db")
JOB_REUSE_WINDOW_SECONDS: int = _parse_int("JOB_REUSE_WINDOW_SECONDS", "3600", minimum=0)
JOB_STALE_MULTIPLIER: float = _parse_float("JOB_STALE_MULTIPLIER", "3", low=1.0, high=100.0)
JOB_RETENTION_DAYS: int = _parse_int("JOB_RETENTION_DAYS", "30", minimum=1)
MAINTENANCE_INTERVAL_SECONDS: int = _parse_int(
    "MAINTENANCE_INTERVAL_SECONDS", "900", minimum=10
)

# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------
CB_FAILURE_THRESHOLD: int = _parse_int("CB_FAILURE_THRESHOLD", "8", minimum=1)
CB_RECOVERY_TIMEOUT: float = _parse_float("CB_RECOVERY_TIMEOUT", "60", low=1.0, high=3600.0)

# ---------------------------------------------------------------------------
# Rate limiting (slowapi format, e.g. "10/minute")
# ---------------------------------------------------------------------------
RATE_LIMIT_SUBMIT: str = os.getenv("RATE_LIMIT_SUBMIT", "10/minute")
RATE_LIMIT_STATUS: str = os.getenv("RATE_LIMIT_STATUS", "120/minute")

# ---------------------------------------------------------------------------
# Sentry (error tracking)
# ---------------------------------------------------------------------------
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", "production")
SENTRY_TRACES_SAMPLE_RATE: float = _parse_float(
    "SENTRY_TRACES_SAMPLE_RATE", "0.1", low=0.0, high=1.0
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# ---------------------------------------------------------------------------
# API server
# ---------------------------------------------------------------------------
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = _parse_int("API_PORT", "8000", minimum=1)
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]
