from __future__ import annotations

import base64
import hashlib
import secrets
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import TokenExchangeError

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    scope: str

    @classmethod
    def from_payload(cls, payload: dict, *, require_refresh_token: bool = True) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise TokenExchangeError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenExchangeError("Token response refresh_token must be a string.")
        if require_refresh_token and not refresh_token:
            raise TokenExchangeError("Token response missing refresh_token.")
        if not isinstance(expires_in, int):
            raise TokenExchangeError("Token response missing expires_in.")
        if not isinstance(scope, str):
            raise TokenExchangeError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            scope=scope,
        )


def generate_state() -> str:
    # 24 random bytes -> 192 bits
    return secrets.token_urlsafe(24)


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if 43 <= len(verifier) <= 128:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
        "scope": " ".join(scopes),
    }
    return f"{SPOTIFY_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def _basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


def _error_code(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None


async def _token_request(
    payload: dict[str, str],
    *,
    client_id: str,
    client_secret: str,
    require_refresh_token: bool,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            SPOTIFY_TOKEN_URL,
            data=payload,
            headers={"Authorization": _basic_auth_header(client_id, client_secret)},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise TokenExchangeError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
            error=_error_code(error.response),
        ) from error
    except httpx.HTTPError as error:
        raise TokenExchangeError(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        body = response.json()
    except ValueError as error:
        raise TokenExchangeError("Token response is not valid JSON.") from error
    if not isinstance(body, dict):
        raise TokenExchangeError("Token response must be a JSON object.")
    return TokenResponse.from_payload(body, require_refresh_token=require_refresh_token)


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        client_id=client_id,
        client_secret=client_secret,
        require_refresh_token=True,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    """Exchange a refresh token; Spotify may omit ``refresh_token`` in the reply."""
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        client_id=client_id,
        client_secret=client_secret,
        require_refresh_token=False,
        client=client,
    )
