from __future__ import annotations

import logging

LOGGER = logging.getLogger("miniplayer.spotify_api")
APP_VERSION = "0.1.0"
AUTH_MODE = "authorization-code"

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8000/callback"
DEFAULT_SCOPES = (
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
)

NO_DEVICES_MESSAGE = "No Spotify devices found. Please open Spotify on any device"
NO_ACTIVE_DEVICE_NAME = "No active device"
OPEN_SPOTIFY_HINT = "Please open Spotify on any device"
