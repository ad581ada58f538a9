from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Union

from auth.errors import AuthError, ConfigurationError
from auth.urls import is_allowed_redirect_uri


@dataclass(frozen=True)
class Credentials:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class ClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: frozenset[str] = field(default_factory=frozenset)

    def validate(self) -> "ClientConfig":
        if not self.client_id.strip():
            raise ConfigurationError("Spotify client id is missing.")
        if not self.client_secret.strip():
            raise ConfigurationError("Spotify client secret is missing.")
        if not self.scopes:
            raise ConfigurationError("At least one Spotify scope must be requested.")
        if not is_allowed_redirect_uri(self.redirect_uri):
            raise ConfigurationError(
                f"Redirect URI {self.redirect_uri!r} must be an http loopback URI "
                "with an explicit port and the /callback path."
            )
        return self

    def sorted_scopes(self) -> list[str]:
        return sorted(self.scopes)


@dataclass(frozen=True)
class AuthorizationSuccess:
    code: str


@dataclass(frozen=True)
class AuthorizationFailure:
    reason: AuthError


AuthorizationResult = Union[AuthorizationSuccess, AuthorizationFailure]


@dataclass
class PendingAuthorization:
    expected_state: str
    code_verifier: str
    deadline: float
    resolution: "asyncio.Future[AuthorizationResult]"

    def resolve(self, result: AuthorizationResult) -> bool:
        if self.resolution.done():
            return False
        self.resolution.set_result(result)
        return True
