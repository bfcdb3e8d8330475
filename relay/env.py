from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from handshake.google_oauth2 import DEFAULT_SCOPES

from .constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    LOGGER,
    PROVIDER_LOGGER,
)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


@dataclass
class RelaySettings:
    google_client_id: str = ""
    google_client_secret: str = ""
    public_base_url: str | None = None
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    cors_origins: set[str] = field(default_factory=set)

    @property
    def demo_mode(self) -> bool:
        return not (self.google_client_id and self.google_client_secret)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def _get_public_base_url() -> str | None:
    raw = os.getenv("PUBLIC_BASE_URL", "").strip()
    if not raw:
        return None
    try:
        _HTTP_URL.validate_python(raw)
    except ValidationError:
        raise RuntimeError(
            "PUBLIC_BASE_URL must be an http(s) URL (for example: https://relay.example.com)."
        )
    return raw.rstrip("/")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def load_settings() -> RelaySettings:
    scopes = os.getenv("AUTH_SCOPES", "").split() or list(DEFAULT_SCOPES)
    settings = RelaySettings(
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", "").strip(),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", "").strip(),
        public_base_url=_get_public_base_url(),
        scopes=scopes,
        session_ttl_seconds=_get_env_int(
            "AUTH_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS
        ),
        sweep_interval_seconds=_get_env_int(
            "AUTH_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
        ),
        http_timeout_seconds=_get_env_float("AUTH_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
        cors_origins=parse_csv_env("RELAY_CORS_ORIGINS"),
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: RelaySettings) -> None:
    if settings.session_ttl_seconds <= 0 or settings.sweep_interval_seconds <= 0:
        raise RuntimeError(
            "AUTH_SESSION_TTL_SECONDS and AUTH_SWEEP_INTERVAL_SECONDS must be positive."
        )
    if settings.session_ttl_seconds < settings.sweep_interval_seconds:
        raise RuntimeError(
            "AUTH_SESSION_TTL_SECONDS must be at least AUTH_SWEEP_INTERVAL_SECONDS, "
            "otherwise sessions created just before a sweep are evicted early."
        )
    if settings.google_client_id and not settings.google_client_secret:
        LOGGER.warning("GOOGLE_CLIENT_ID is set without GOOGLE_CLIENT_SECRET.")
    if settings.public_base_url is None:
        LOGGER.warning(
            "PUBLIC_BASE_URL is not set; redirect URIs are derived from the request host."
        )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("RELAY_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        PROVIDER_LOGGER.setLevel(logging.INFO)
    return debug_enabled
