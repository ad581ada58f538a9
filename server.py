from __future__ import annotations

import os
from typing import TYPE_CHECKING

from auth.callback import CallbackRegistry, mount_callback_route
from auth.session import AuthSession
from auth.token_store import CredentialStore, FileSecretStore
from miniplayer.constants import AUTH_MODE, LOGGER, SPOTIFY_API_BASE_URL
from miniplayer.env import (
    get_api_timeout,
    get_auth_timeout,
    get_max_retries,
    get_mcp_port,
    load_client_config,
    load_env,
    setup_logging,
    validate_env,
)
from miniplayer.http import build_api_client
from miniplayer.mcp_app import mount_health_route, register_player_tools, register_session_tools
from miniplayer.player import MiniPlayer
from miniplayer.spotify_api import SpotifyApi

if TYPE_CHECKING:
    from fastmcp import FastMCP


def build_session(secrets: FileSecretStore) -> AuthSession:
    config = load_client_config(secrets.snapshot())
    return AuthSession(
        config=config,
        credential_store=CredentialStore(secrets),
        callbacks=CallbackRegistry(),
        authorization_timeout=get_auth_timeout(),
    )


def create_mcp() -> "FastMCP":
    from fastmcp import FastMCP

    load_env()
    debug_enabled = setup_logging()
    validate_env()

    secrets = FileSecretStore(os.getenv("MINIPLAYER_SECRETS_PATH", ".secrets.json"))
    session = build_session(secrets)

    client = build_api_client(
        session,
        base_url=os.getenv("SPOTIFY_API_BASE_URL", SPOTIFY_API_BASE_URL),
        timeout=get_api_timeout(),
        max_retries=get_max_retries(),
        debug_enabled=debug_enabled,
    )
    player = MiniPlayer(session, SpotifyApi(client))

    mcp = FastMCP(name="Spotify Mini Player")
    register_session_tools(mcp, session)
    register_player_tools(mcp, player)
    mount_callback_route(mcp, session.callbacks)
    mount_health_route(mcp, session)
    setattr(mcp, "_auth_session", session)
    setattr(mcp, "_spotify_client", client)
    LOGGER.info("Spotify mini player ready (%s, redirect %s)", AUTH_MODE, session.config.redirect_uri)
    return mcp


def main() -> None:
    host = os.getenv("MCP_HOST", "127.0.0.1")
    port = get_mcp_port()
    mcp = create_mcp()
    mcp.run(transport="streamable-http", host=host, port=port)


if __name__ == "__main__":
    main()
