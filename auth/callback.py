from __future__ import annotations

import logging
from typing import Callable

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from auth.errors import AuthorizationInProgress
from auth.urls import CALLBACK_PATH

LOGGER = logging.getLogger("miniplayer.auth")

CallbackHandler = Callable[[str], None]

_CLOSE_WINDOW_PAGE = (
    "<html><body><h1>Spotify authorization received</h1>"
    "<p>You can close this window and return to the mini player.</p>"
    "</body></html>"
)


class Registration:
    def __init__(self, registry: "CallbackRegistry", handler: CallbackHandler) -> None:
        self._registry = registry
        self._handler = handler
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._registry._release(self)

    def __call__(self, uri: str) -> None:
        self._handler(uri)


class CallbackRegistry:
    """Holds at most one one-shot handler for incoming authorization redirects."""

    def __init__(self) -> None:
        self._active: Registration | None = None

    @property
    def pending(self) -> bool:
        return self._active is not None

    def register(self, handler: CallbackHandler) -> Registration:
        if self._active is not None:
            raise AuthorizationInProgress()
        registration = Registration(self, handler)
        self._active = registration
        return registration

    def dispatch(self, uri: str) -> bool:
        registration = self._active
        if registration is None:
            LOGGER.warning("Ignoring authorization callback; no authorization is pending.")
            return False
        # one-shot: the first delivery consumes the registration
        registration.dispose()
        registration(uri)
        return True

    def _release(self, registration: Registration) -> None:
        if self._active is registration:
            self._active = None


def mount_callback_route(mcp, registry: CallbackRegistry, path: str = CALLBACK_PATH) -> None:
    @mcp.custom_route(path, methods=["GET"])
    async def callback_route(request: Request) -> Response:
        if not registry.dispatch(str(request.url)):
            return JSONResponse(
                {
                    "error": "no_pending_authorization",
                    "error_description": "No Spotify authorization is in progress.",
                },
                status_code=409,
            )
        return HTMLResponse(_CLOSE_WINDOW_PAGE)
