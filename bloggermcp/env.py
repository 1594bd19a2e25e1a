from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from auth.errors import ConfigurationError
from auth.token_store import default_token_path

from .constants import (
    CONSENT_TIMEOUT_SECONDS,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_SCOPES,
    HTTP_MAX_RETRIES,
    HTTP_TIMEOUT_SECONDS,
    LOGGER,
    REFRESH_MARGIN_SECONDS,
)


@dataclass
class Settings:
    client_id: str = ""
    client_secret: str = ""
    api_key: str = ""
    token_path: Path = field(default_factory=default_token_path)
    callback_host: str = DEFAULT_CALLBACK_HOST
    callback_port: int = DEFAULT_CALLBACK_PORT
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    consent_timeout: float = CONSENT_TIMEOUT_SECONDS
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    http_max_retries: int = HTTP_MAX_RETRIES
    refresh_margin: float = REFRESH_MARGIN_SECONDS

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def load_settings() -> Settings:
    token_path = os.getenv("BLOGGER_TOKEN_PATH", "").strip()
    scopes = os.getenv("BLOGGER_OAUTH_SCOPES", "").split()
    return Settings(
        client_id=os.getenv("GOOGLE_CLIENT_ID", "").strip(),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET", "").strip(),
        api_key=os.getenv("BLOGGER_API_KEY", "").strip(),
        token_path=Path(token_path).expanduser() if token_path else default_token_path(),
        callback_host=os.getenv("BLOGGER_OAUTH_HOST", "").strip() or DEFAULT_CALLBACK_HOST,
        callback_port=_get_env_int("BLOGGER_OAUTH_PORT", DEFAULT_CALLBACK_PORT),
        scopes=scopes or list(DEFAULT_SCOPES),
        consent_timeout=_get_env_float("BLOGGER_CONSENT_TIMEOUT", CONSENT_TIMEOUT_SECONDS),
        http_timeout=_get_env_float("BLOGGER_HTTP_TIMEOUT", HTTP_TIMEOUT_SECONDS),
        http_max_retries=_get_env_int("BLOGGER_HTTP_MAX_RETRIES", HTTP_MAX_RETRIES),
        refresh_margin=_get_env_float("BLOGGER_REFRESH_MARGIN", REFRESH_MARGIN_SECONDS),
    )


def validate_settings(settings: Settings) -> None:
    if bool(settings.client_id) != bool(settings.client_secret):
        missing = "GOOGLE_CLIENT_SECRET" if settings.client_id else "GOOGLE_CLIENT_ID"
        raise ConfigurationError(f"Missing required environment variable: {missing}")

    if not settings.oauth_enabled and not settings.api_key:
        raise ConfigurationError(
            "Either BLOGGER_API_KEY or OAuth credentials "
            "(GOOGLE_CLIENT_ID + GOOGLE_CLIENT_SECRET) are required."
        )

    if not settings.oauth_enabled:
        LOGGER.warning(
            "OAuth credentials missing; write operations are disabled and only "
            "BLOGGER_API_KEY read access is available."
        )

    if not 0 < settings.callback_port < 65536:
        raise ConfigurationError("BLOGGER_OAUTH_PORT must be between 1 and 65535.")
    if settings.consent_timeout <= 0:
        raise ConfigurationError("BLOGGER_CONSENT_TIMEOUT must be positive.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("BLOGGER_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
