from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from .http import raise_for_upstream_status


@dataclass
class Device:
    id: str
    name: str
    type: str
    is_active: bool = False
    volume_percent: int | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "Device":
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            type=str(payload.get("type") or ""),
            is_active=bool(payload.get("is_active")),
            volume_percent=payload.get("volume_percent"),
        )


@dataclass
class TrackInfo:
    name: str
    artists: list[str] = field(default_factory=list)
    album: str = ""
    album_art: str = ""
    duration_ms: int = 0
    progress_ms: int = 0
    is_playing: bool = False
    uri: str = ""

    @classmethod
    def from_item(
        cls,
        item: dict,
        *,
        progress_ms: int | None = None,
        is_playing: bool = False,
    ) -> "TrackInfo":
        album = item.get("album") or {}
        images = album.get("images") or []
        return cls(
            name=str(item.get("name") or ""),
            artists=[
                artist.get("name", "")
                for artist in item.get("artists") or []
                if isinstance(artist, dict)
            ],
            album=str(album.get("name") or ""),
            album_art=str(images[0].get("url") or "") if images else "",
            duration_ms=int(item.get("duration_ms") or 0),
            progress_ms=int(progress_ms or 0),
            is_playing=is_playing,
            uri=str(item.get("uri") or ""),
        )


class SpotifyApi:
    """Player endpoints of the Spotify Web API.

    Every method raises ``UpstreamAuthorizationError`` on 401 and
    ``UpstreamError`` on any other failure status.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict | None:
        response = await self._client.request(method, path, **kwargs)
        await raise_for_upstream_status(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_playback_state(self) -> dict | None:
        return await self._request("GET", "/me/player")

    async def play(self, *, device_id: str | None = None, uris: list[str] | None = None) -> None:
        params = {"device_id": device_id} if device_id else None
        payload = {"uris": uris} if uris else None
        await self._request("PUT", "/me/player/play", params=params, json=payload)

    async def pause(self) -> None:
        await self._request("PUT", "/me/player/pause")

    async def skip_to_next(self) -> None:
        await self._request("POST", "/me/player/next")

    async def skip_to_previous(self) -> None:
        await self._request("POST", "/me/player/previous")

    async def search_tracks(self, query: str, *, limit: int = 10) -> list[TrackInfo]:
        payload = await self._request(
            "GET",
            "/search",
            params={"q": query, "type": "track", "limit": limit},
        )
        items = ((payload or {}).get("tracks") or {}).get("items") or []
        return [TrackInfo.from_item(item) for item in items if isinstance(item, dict)]

    async def get_devices(self) -> list[Device]:
        payload = await self._request("GET", "/me/player/devices")
        devices = (payload or {}).get("devices") or []
        return [Device.from_payload(device) for device in devices if isinstance(device, dict)]

    async def transfer_playback(self, device_id: str, *, play: bool = False) -> None:
        await self._request("PUT", "/me/player", json={"device_ids": [device_id], "play": play})
