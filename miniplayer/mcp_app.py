from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Awaitable, TypeVar

from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

from auth.errors import AuthError, UpstreamError
from auth.session import AuthSession

from .constants import APP_VERSION, AUTH_MODE, NO_DEVICES_MESSAGE
from .player import MiniPlayer

if TYPE_CHECKING:
    from fastmcp import FastMCP

T = TypeVar("T")

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=True)
PLAYER_CONTROL = ToolAnnotations(readOnlyHint=False, destructiveHint=False, openWorldHint=True)


async def run_tool(awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except (AuthError, UpstreamError) as error:
        raise ToolError(str(error)) from error


def register_player_tools(mcp: "FastMCP", player: MiniPlayer) -> None:
    @mcp.tool(annotations=READ_ONLY)
    async def now_playing() -> dict:
        """Show the track currently playing on Spotify."""
        return asdict(await run_tool(player.now_playing()))

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def play_pause() -> dict:
        """Pause playback if music is playing, otherwise resume it."""
        is_playing = await run_tool(player.toggle_playback())
        return {"is_playing": is_playing}

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def next_track() -> dict:
        """Skip to the next track."""
        await run_tool(player.next_track())
        return asdict(await run_tool(player.now_playing()))

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def previous_track() -> dict:
        """Go back to the previous track."""
        await run_tool(player.previous_track())
        return asdict(await run_tool(player.now_playing()))

    @mcp.tool(annotations=READ_ONLY)
    async def search_tracks(query: str, limit: int = 10) -> list[dict]:
        """Search Spotify tracks by free text."""
        tracks = await run_tool(player.search(query, limit=limit))
        return [asdict(track) for track in tracks]

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def play_track(uri: str) -> dict:
        """Play a track by its spotify:track URI on the active device."""
        started = await run_tool(player.play_track(uri))
        if not started:
            raise ToolError(NO_DEVICES_MESSAGE)
        return {"is_playing": True, "uri": uri}

    @mcp.tool(annotations=READ_ONLY)
    async def list_devices() -> list[dict]:
        """List the Spotify Connect devices of the user."""
        devices = await run_tool(player.list_devices())
        return [asdict(device) for device in devices]

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def select_device(device_id: str) -> dict:
        """Transfer playback to the given device."""
        devices = await run_tool(player.list_devices())
        if not any(device.id == device_id for device in devices):
            raise ToolError(f"Unknown Spotify device {device_id!r}.")
        await run_tool(player.select_device(device_id))
        return {"device_id": device_id}


def register_session_tools(mcp: "FastMCP", session: AuthSession) -> None:
    @mcp.tool(annotations=PLAYER_CONTROL)
    async def sign_in() -> dict:
        """Connect to Spotify, opening the browser if no tokens are stored."""
        await run_tool(session.restore_or_authenticate())
        return {"session": session.state.value}

    @mcp.tool(annotations=PLAYER_CONTROL)
    async def cancel_sign_in() -> dict:
        """Abandon a Spotify sign-in that is waiting for the browser."""
        return {"cancelled": session.cancel_authorization()}

    @mcp.tool(annotations=ToolAnnotations(destructiveHint=True, openWorldHint=False))
    async def sign_out() -> dict:
        """Forget the stored Spotify tokens."""
        await session.sign_out()
        return {"session": session.state.value}


def mount_health_route(mcp: "FastMCP", session: AuthSession) -> None:
    from starlette.requests import Request
    from starlette.responses import JSONResponse, Response

    @mcp.custom_route("/health", methods=["GET"])
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "auth_mode": AUTH_MODE,
                "session": session.state.value,
            }
        )
