"""Startup configuration.

Checks that required environment variables are set before the server
accepts connections. Called from bot.py at import time so that a missing
catalog URL causes a clear startup failure rather than every call silently
routing to video quotes.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "CATALOG_URL",
]

OPTIONAL_VARS = [
    "OPENAI_API_KEY",
    "CATALOG_API_KEY",
    "CATALOG_TTL_SECONDS",
    "ANALYSIS_DEBOUNCE_MS",
    "TIER2_DEBOUNCE_MS",
    "SPLIT_WINDOW_CHARS",
    "DEEPGRAM_API_KEY",
    "LOG_LEVEL",
]


@dataclass(frozen=True)
class Settings:
    catalog_url: str = ""
    catalog_api_key: str = ""
    catalog_ttl_seconds: float = 300.0
    openai_api_key: str = ""
    analysis_debounce_ms: int = 300
    tier2_debounce_ms: int = 800
    split_window_chars: int = 4000
    deepgram_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    log_level: str = "INFO"

    @property
    def analysis_debounce_s(self) -> float:
        return self.analysis_debounce_ms / 1000

    @property
    def tier2_debounce_s(self) -> float:
        return self.tier2_debounce_ms / 1000

    @property
    def language_model_enabled(self) -> bool:
        return bool(self.openai_api_key)


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


def load_settings() -> Settings:
    return Settings(
        catalog_url=os.getenv("CATALOG_URL", ""),
        catalog_api_key=os.getenv("CATALOG_API_KEY", ""),
        catalog_ttl_seconds=_env_number("CATALOG_TTL_SECONDS", 300.0, float),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        analysis_debounce_ms=_env_number("ANALYSIS_DEBOUNCE_MS", 300, int),
        tier2_debounce_ms=_env_number("TIER2_DEBOUNCE_MS", 800, int),
        split_window_chars=_env_number("SPLIT_WINDOW_CHARS", 4000, int),
        deepgram_api_key=os.getenv("DEEPGRAM_API_KEY", ""),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty. Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or your deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY not set: detection runs keyword-only")
