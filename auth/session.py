from __future__ import annotations

import asyncio
import enum
import logging
import secrets
import webbrowser
from typing import Callable

from auth import spotify_oauth
from auth.callback import CallbackRegistry, Registration
from auth.errors import (
    AuthorizationCancelled,
    AuthorizationTimeout,
    CallbackValidationError,
    TokenExchangeError,
)
from auth.models import (
    AuthorizationFailure,
    AuthorizationResult,
    AuthorizationSuccess,
    ClientConfig,
    Credentials,
    PendingAuthorization,
)
from auth.token_store import CredentialStore
from auth.urls import parse_callback_query

LOGGER = logging.getLogger("miniplayer.auth")

AUTHORIZATION_TIMEOUT_SECONDS = 300.0


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESTORING = "restoring"
    READY = "ready"
    REFRESHING = "refreshing"
    AWAITING_AUTHORIZATION = "awaiting_authorization"


class AuthSession:
    """Owns the Spotify token pair for one user and every way of obtaining it.

    Tokens are restored from the credential store, refreshed when a caller
    reports an authorization failure, and re-acquired through the interactive
    authorization-code flow when the refresh token has been revoked. Refreshes
    and interactive flows are single-flight: concurrent callers await the one
    already running.
    """

    def __init__(
        self,
        *,
        config: ClientConfig,
        credential_store: CredentialStore,
        callbacks: CallbackRegistry,
        open_url: Callable[[str], bool] = webbrowser.open,
        authorization_timeout: float = AUTHORIZATION_TIMEOUT_SECONDS,
        exchange_code_fn=spotify_oauth.exchange_code,
        refresh_token_fn=spotify_oauth.refresh_token,
        state_factory: Callable[[], str] = spotify_oauth.generate_state,
        verifier_factory: Callable[[], str] = spotify_oauth.generate_code_verifier,
    ) -> None:
        self.config = config
        self.credential_store = credential_store
        self.callbacks = callbacks
        self.authorization_timeout = authorization_timeout

        self._open_url = open_url
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._state_factory = state_factory
        self._verifier_factory = verifier_factory

        self._state = SessionState.UNAUTHENTICATED
        self._credentials: Credentials | None = None
        self._pending: PendingAuthorization | None = None
        self._restore_lock = asyncio.Lock()
        self._refresh_task: asyncio.Future[Credentials] | None = None
        self._authorization_task: asyncio.Future[Credentials] | None = None
        self._generation = 0

    # -- accessors -------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def access_token(self) -> str | None:
        if self._credentials is None:
            return None
        return self._credentials.access_token

    @property
    def pending_authorization(self) -> PendingAuthorization | None:
        return self._pending

    # -- entry points ----------------------------------------------------------

    async def restore_or_authenticate(self) -> Credentials:
        if self._state is SessionState.READY and self._credentials is not None:
            return self._credentials
        if self._refresh_task is not None:
            return await self._refresh_or_reauthorize()
        if self._authorization_task is not None:
            return await self.authenticate()

        async with self._restore_lock:
            if self._state is SessionState.READY and self._credentials is not None:
                return self._credentials

            self._transition(SessionState.RESTORING)
            try:
                stored = await self.credential_store.load()
            except Exception:
                self._transition(SessionState.UNAUTHENTICATED)
                raise

            if stored is not None:
                # validity is discovered on first use, not probed here
                self._credentials = stored
                self._transition(SessionState.READY)
                return stored

            self._transition(SessionState.AWAITING_AUTHORIZATION)

        return await self.authenticate()

    async def authenticate(self) -> Credentials:
        if self._authorization_task is None:
            self._authorization_task = asyncio.ensure_future(self._run_authorization())
        return await asyncio.shield(self._authorization_task)

    async def refresh(self) -> Credentials:
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._run_refresh())
        return await asyncio.shield(self._refresh_task)

    async def recover(self, stale_access_token: str | None = None) -> Credentials:
        """Replace credentials that a caller saw rejected with 401.

        When another caller already replaced ``stale_access_token`` the newer
        pair is returned without touching the provider.
        """
        current = self._credentials
        if (
            self._state is SessionState.READY
            and current is not None
            and current.access_token != stale_access_token
        ):
            return current
        if self._authorization_task is not None:
            return await self.authenticate()
        return await self._refresh_or_reauthorize()

    def cancel_authorization(self) -> bool:
        pending = self._pending
        if pending is None:
            return False
        return pending.resolve(AuthorizationFailure(AuthorizationCancelled()))

    async def sign_out(self) -> None:
        # refreshes and exchanges started before this point must not persist
        self._generation += 1
        self._refresh_task = None
        self._authorization_task = None
        self.cancel_authorization()
        self._credentials = None
        self._transition(SessionState.UNAUTHENTICATED)
        await self.credential_store.clear()

    def dispose(self) -> None:
        self.cancel_authorization()

    # -- refresh ---------------------------------------------------------------

    async def _refresh_or_reauthorize(self) -> Credentials:
        try:
            return await self.refresh()
        except TokenExchangeError as error:
            if not error.revoked:
                raise
            LOGGER.info("Refresh token rejected; starting interactive authorization.")
        return await self.authenticate()

    async def _run_refresh(self) -> Credentials:
        generation = self._generation
        self._transition(SessionState.REFRESHING)
        try:
            # the persisted pair survives restarts; the in-memory one may not
            stored = await self.credential_store.load()
            if stored is None:
                raise TokenExchangeError(
                    "No persisted Spotify refresh token.", error="invalid_grant"
                )
            token = await self._refresh_token_fn(
                client_id=self.config.client_id,
                client_secret=self.config.client_secret,
                refresh_token=stored.refresh_token,
            )
            credentials = Credentials(
                access_token=token.access_token,
                refresh_token=token.refresh_token or stored.refresh_token,
            )
            self._check_generation(generation)
            await self.credential_store.save(credentials)
            self._check_generation(generation)
        except Exception as error:
            if generation != self._generation:
                raise
            if isinstance(error, TokenExchangeError) and error.revoked:
                LOGGER.warning("Spotify refresh token is invalid or revoked; clearing stored tokens.")
                await self.credential_store.clear()
                self._credentials = None
                self._transition(SessionState.AWAITING_AUTHORIZATION)
            else:
                LOGGER.warning("Spotify token refresh failed: %s", error)
                self._transition(
                    SessionState.READY if self._credentials else SessionState.UNAUTHENTICATED
                )
            raise
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

        self._credentials = credentials
        self._transition(SessionState.READY)
        LOGGER.info("Spotify access token refreshed.")
        return credentials

    # -- interactive authorization ---------------------------------------------

    async def _run_authorization(self) -> Credentials:
        generation = self._generation
        self._credentials = None
        self._transition(SessionState.AWAITING_AUTHORIZATION)

        loop = asyncio.get_running_loop()
        code_verifier = self._verifier_factory()
        pending = PendingAuthorization(
            expected_state=self._state_factory(),
            code_verifier=code_verifier,
            deadline=loop.time() + self.authorization_timeout,
            resolution=loop.create_future(),
        )
        authorize_url = spotify_oauth.build_authorization_url(
            client_id=self.config.client_id,
            redirect_uri=self.config.redirect_uri,
            scopes=self.config.sorted_scopes(),
            state=pending.expected_state,
            code_challenge=spotify_oauth.generate_code_challenge(code_verifier),
        )

        registration = None
        timer = None
        try:
            registration = self.callbacks.register(
                lambda uri: self._accept_callback(pending, uri)
            )
            self._pending = pending
            timer = loop.call_at(pending.deadline, self._expire, pending, registration)

            if self._open_url(authorize_url):
                LOGGER.info(
                    "Opened Spotify authorization page; waiting up to %gs for the callback.",
                    self.authorization_timeout,
                )
            else:
                LOGGER.warning(
                    "Could not open a browser. Visit this URL to authorize: %s",
                    authorize_url,
                )

            result = await pending.resolution
            if isinstance(result, AuthorizationFailure):
                raise result.reason

            token = await self._exchange_code_fn(
                client_id=self.config.client_id,
                client_secret=self.config.client_secret,
                code=result.code,
                redirect_uri=self.config.redirect_uri,
                code_verifier=code_verifier,
            )
            credentials = Credentials(
                access_token=token.access_token,
                refresh_token=token.refresh_token,
            )
            self._check_generation(generation)
            await self.credential_store.save(credentials)
            self._check_generation(generation)
        finally:
            if timer is not None:
                timer.cancel()
            if registration is not None:
                registration.dispose()
            if self._pending is pending:
                self._pending = None
            if self._authorization_task is asyncio.current_task():
                self._authorization_task = None

        self._credentials = credentials
        self._transition(SessionState.READY)
        LOGGER.info("Spotify authorization completed.")
        return credentials

    def _accept_callback(self, pending: PendingAuthorization, uri: str) -> None:
        result = self._validate_callback(pending, parse_callback_query(uri))
        if not pending.resolve(result):
            LOGGER.info("Ignoring authorization callback for a finished attempt.")

    def _validate_callback(
        self,
        pending: PendingAuthorization,
        params: dict[str, str],
    ) -> AuthorizationResult:
        state = params.get("state")
        if not state:
            LOGGER.warning("Rejected authorization callback without state.")
            return AuthorizationFailure(
                CallbackValidationError("Authorization callback is missing state.")
            )
        if not secrets.compare_digest(
            state.encode("utf-8"), pending.expected_state.encode("utf-8")
        ):
            LOGGER.warning("Rejected authorization callback with mismatched state.")
            return AuthorizationFailure(
                CallbackValidationError("Authorization callback state does not match.")
            )

        error = params.get("error")
        if error:
            return AuthorizationFailure(
                AuthorizationCancelled(f"Spotify authorization was denied: {error}")
            )

        code = params.get("code")
        if not code:
            return AuthorizationFailure(
                CallbackValidationError("Authorization callback is missing code.")
            )
        return AuthorizationSuccess(code=code)

    def _expire(self, pending: PendingAuthorization, registration: Registration) -> None:
        registration.dispose()
        if pending.resolve(AuthorizationFailure(AuthorizationTimeout(self.authorization_timeout))):
            LOGGER.warning(
                "Spotify authorization timed out after %gs.", self.authorization_timeout
            )

    # -- helpers ---------------------------------------------------------------

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise AuthorizationCancelled("Signed out of Spotify before the tokens were stored.")

    def _transition(self, new_state: SessionState) -> None:
        if new_state is self._state:
            return
        LOGGER.debug("Auth session %s -> %s", self._state.value, new_state.value)
        self._state = new_state
