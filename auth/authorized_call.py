from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from auth.errors import UpstreamAuthorizationError
from auth.session import AuthSession

LOGGER = logging.getLogger("miniplayer.auth")

T = TypeVar("T")


class AuthorizedCall:
    """Runs Spotify API operations with one recovery on 401.

    The operation is invoked at most twice: once with the current token and,
    after the session refreshed or re-authorized, once more. Whatever the
    retry raises reaches the caller untouched.
    """

    def __init__(self, session: AuthSession) -> None:
        self._session = session

    @property
    def session(self) -> AuthSession:
        return self._session

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        used_access_token = self._session.access_token
        try:
            return await operation()
        except UpstreamAuthorizationError:
            LOGGER.info("Spotify rejected the access token; recovering session.")

        await self._session.recover(stale_access_token=used_access_token)
        return await operation()

    __call__ = execute


async def authorized_call(session: AuthSession, operation: Callable[[], Awaitable[T]]) -> T:
    return await AuthorizedCall(session).execute(operation)
