from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping
from urllib.parse import urlparse

from dotenv import load_dotenv

from auth.errors import ConfigurationError
from auth.models import ClientConfig
from auth.token_store import CLIENT_ID_KEY, CLIENT_SECRET_KEY
from auth.urls import is_allowed_redirect_uri

from .constants import DEFAULT_REDIRECT_URI, DEFAULT_SCOPES, LOGGER


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_scopes(raw: str | None) -> frozenset[str]:
    if raw is None or not raw.strip():
        return frozenset(DEFAULT_SCOPES)
    return frozenset(raw.split())


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
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number.")
    if value <= 0:
        raise ConfigurationError(f"{key} must be greater than zero.")
    return value


def get_mcp_port() -> int:
    return _get_env_int("MCP_PORT", 8000)


def get_auth_timeout() -> float:
    return _get_env_float("MINIPLAYER_AUTH_TIMEOUT", 300.0)


def get_api_timeout() -> float:
    return _get_env_float("SPOTIFY_API_TIMEOUT", 30.0)


def get_max_retries() -> int:
    return max(0, _get_env_int("SPOTIFY_API_MAX_RETRIES", 2))


def get_redirect_uri() -> str:
    return os.getenv("SPOTIFY_REDIRECT_URI", "").strip() or DEFAULT_REDIRECT_URI


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    redirect_uri = get_redirect_uri()
    if not is_allowed_redirect_uri(redirect_uri):
        raise ConfigurationError(
            "SPOTIFY_REDIRECT_URI must be an http loopback URI with a port and the "
            "/callback path (for example: http://127.0.0.1:8000/callback)."
        )

    port = get_mcp_port()
    redirect_port = urlparse(redirect_uri).port
    if redirect_port != port:
        raise ConfigurationError(
            f"SPOTIFY_REDIRECT_URI port {redirect_port} does not match MCP_PORT {port}; "
            "the provider would redirect to a port nobody listens on."
        )

    if not parse_scopes(os.getenv("SPOTIFY_SCOPES")):
        raise ConfigurationError("SPOTIFY_SCOPES must name at least one scope.")

    get_max_retries()
    get_api_timeout()
    get_auth_timeout()


def load_client_config(stored_secrets: Mapping[str, str] | None = None) -> ClientConfig:
    """Build the client config; ``clientId``/``clientSecret`` secrets win over env."""
    stored_secrets = stored_secrets or {}
    client_id = stored_secrets.get(CLIENT_ID_KEY) or os.getenv("SPOTIFY_CLIENT_ID", "")
    client_secret = stored_secrets.get(CLIENT_SECRET_KEY) or os.getenv(
        "SPOTIFY_CLIENT_SECRET", ""
    )

    config = ClientConfig(
        client_id=client_id.strip(),
        client_secret=client_secret.strip(),
        redirect_uri=get_redirect_uri(),
        scopes=parse_scopes(os.getenv("SPOTIFY_SCOPES")),
    )
    return config.validate()


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("MINIPLAYER_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        logging.getLogger("miniplayer.auth").setLevel(logging.INFO)
    return debug_enabled
