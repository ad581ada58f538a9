from __future__ import annotations

from typing import Awaitable, Callable

import httpx

from auth.authorized_call import AuthorizedCall
from auth.errors import UpstreamAuthorizationError, UpstreamError
from auth.session import AuthSession

from .constants import LOGGER, NO_ACTIVE_DEVICE_NAME, NO_DEVICES_MESSAGE, OPEN_SPOTIFY_HINT
from .spotify_api import Device, SpotifyApi, TrackInfo

NOTHING_PLAYING_NAME = "Nothing playing"

DeviceChooser = Callable[[list[Device]], Awaitable[Device | None]]


async def choose_first_device(devices: list[Device]) -> Device | None:
    return devices[0] if devices else None


def no_active_device_track() -> TrackInfo:
    return TrackInfo(name=NO_ACTIVE_DEVICE_NAME, artists=[OPEN_SPOTIFY_HINT])


class MiniPlayer:
    """Playback controls for one authenticated Spotify user.

    Each control first makes sure the session holds tokens, then sends its
    API calls through ``AuthorizedCall`` so an expired token is refreshed
    (or re-authorized) once and the call retried.
    """

    def __init__(
        self,
        session: AuthSession,
        api: SpotifyApi,
        *,
        notify: Callable[[str], None] | None = None,
        choose_device: DeviceChooser = choose_first_device,
    ) -> None:
        self.session = session
        self.api = api
        self._call = AuthorizedCall(session)
        self._notify = notify or LOGGER.warning
        self._choose_device = choose_device

    async def connect(self) -> SpotifyApi:
        await self.session.restore_or_authenticate()
        return self.api

    async def now_playing(self) -> TrackInfo:
        await self.connect()
        playback = await self._call(self.api.get_playback_state)
        if not playback:
            return no_active_device_track()

        item = playback.get("item")
        if not item:
            return TrackInfo(name=NOTHING_PLAYING_NAME)
        return TrackInfo.from_item(
            item,
            progress_ms=playback.get("progress_ms"),
            is_playing=bool(playback.get("is_playing")),
        )

    async def toggle_playback(self) -> bool:
        """Pause when playing, play otherwise; returns whether music now plays."""
        await self.connect()
        playback = await self._call(self.api.get_playback_state)
        if playback and playback.get("is_playing"):
            await self._call(self.api.pause)
            return False

        if not playback and not await self.ensure_active_device():
            return False
        await self._call(self.api.play)
        return True

    async def next_track(self) -> None:
        await self.connect()
        await self._call(self.api.skip_to_next)

    async def previous_track(self) -> None:
        await self.connect()
        await self._call(self.api.skip_to_previous)

    async def search(self, query: str, *, limit: int = 10) -> list[TrackInfo]:
        query = query.strip()
        if not query:
            return []
        await self.connect()
        return await self._call(lambda: self.api.search_tracks(query, limit=limit))

    async def play_track(self, uri: str) -> bool:
        await self.connect()
        if not await self.ensure_active_device():
            return False
        await self._call(lambda: self.api.play(uris=[uri]))
        return True

    async def list_devices(self) -> list[Device]:
        await self.connect()
        return await self._call(self.api.get_devices)

    async def select_device(self, device_id: str) -> None:
        await self.connect()
        await self._call(lambda: self.api.transfer_playback(device_id))

    async def ensure_active_device(self, choose_device: DeviceChooser | None = None) -> bool:
        await self.connect()
        try:
            devices = await self._call(self.api.get_devices)
            if not devices:
                self._notify(NO_DEVICES_MESSAGE)
                return False
            if any(device.is_active for device in devices):
                return True

            selected = await (choose_device or self._choose_device)(devices)
            if selected is None:
                return False
            await self._call(lambda: self.api.transfer_playback(selected.id))
        except UpstreamAuthorizationError:
            raise
        except (UpstreamError, httpx.HTTPError) as error:
            LOGGER.error("Device activation error: %s", error)
            return False

        LOGGER.info("Transferred playback to %s (%s)", selected.name, selected.type)
        return True
