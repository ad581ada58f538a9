from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for failures of the Spotify authorization flow."""


class ConfigurationError(AuthError):
    pass


class AuthorizationCancelled(AuthError):
    def __init__(self, message: str = "Spotify authorization was cancelled.") -> None:
        super().__init__(message)


class AuthorizationTimeout(AuthError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"No Spotify authorization callback received within {timeout_seconds:g} seconds."
        )
        self.timeout_seconds = timeout_seconds


class AuthorizationInProgress(AuthError):
    def __init__(self) -> None:
        super().__init__("A callback handler is already registered for this session.")


class CallbackValidationError(AuthError):
    pass


class TokenExchangeError(AuthError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error

    @property
    def revoked(self) -> bool:
        return self.error == "invalid_grant"


class UpstreamError(RuntimeError):
    def __init__(self, message: str, *, status_code: int, detail=None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class UpstreamAuthorizationError(UpstreamError):
    def __init__(
        self,
        message: str = "Authentication failed. Your Spotify token may have expired.",
        *,
        detail=None,
    ) -> None:
        super().__init__(message, status_code=401, detail=detail)
