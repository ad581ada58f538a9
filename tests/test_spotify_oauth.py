import base64
import string
import urllib.parse

import pytest

from auth.errors import TokenExchangeError
from auth.spotify_oauth import (
    SPOTIFY_AUTHORIZE_URL,
    SPOTIFY_TOKEN_URL,
    build_authorization_url,
    exchange_code,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    refresh_token,
)


def test_state_is_url_safe_and_long() -> None:
    state = generate_state()
    allowed = set(string.ascii_letters + string.digits + "-_")

    assert len(state) >= 22
    assert all(char in allowed for char in state)


def test_state_is_fresh_per_call() -> None:
    assert len({generate_state() for _ in range(50)}) == 50


def test_code_verifier_length() -> None:
    verifier = generate_code_verifier()

    assert 43 <= len(verifier) <= 128


def test_code_challenge_is_s256() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_build_authorization_url_contains_required_params() -> None:
    url = build_authorization_url(
        client_id="client123",
        redirect_uri="http://127.0.0.1:8000/callback",
        scopes=["user-read-playback-state", "user-modify-playback-state"],
        state="state123",
        code_challenge="challenge123",
    )

    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qs(parsed.query)

    assert url.startswith(SPOTIFY_AUTHORIZE_URL)
    assert query["client_id"] == ["client123"]
    assert query["redirect_uri"] == ["http://127.0.0.1:8000/callback"]
    assert query["response_type"] == ["code"]
    assert query["code_challenge"] == ["challenge123"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state123"]
    assert query["scope"] == ["user-read-playback-state user-modify-playback-state"]


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-1",
            "token_type": "Bearer",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": "user-read-playback-state",
        },
    )

    token = await exchange_code(
        client_id="id",
        client_secret="secret",
        code="code123",
        redirect_uri="http://127.0.0.1:8000/callback",
        code_verifier="verifier123",
    )

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.expires_in == 3600

    request = httpx_mock.get_request()
    expected_auth = base64.b64encode(b"id:secret").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected_auth}"
    form = urllib.parse.parse_qs(request.content.decode("utf-8"))
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["code123"]
    assert form["code_verifier"] == ["verifier123"]


@pytest.mark.asyncio
async def test_exchange_code_requires_refresh_token(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        json={"access_token": "access-1", "expires_in": 3600},
    )

    with pytest.raises(TokenExchangeError, match="missing refresh_token"):
        await exchange_code(
            client_id="id",
            client_secret="secret",
            code="code123",
            redirect_uri="http://127.0.0.1:8000/callback",
            code_verifier="verifier123",
        )


@pytest.mark.asyncio
async def test_exchange_code_error(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Invalid authorization code"},
    )

    with pytest.raises(TokenExchangeError, match="Token request failed") as excinfo:
        await exchange_code(
            client_id="id",
            client_secret="secret",
            code="bad-code",
            redirect_uri="http://127.0.0.1:8000/callback",
            code_verifier="verifier123",
        )

    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_refresh_token_without_rotation(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        json={"access_token": "access-2", "expires_in": 3600, "scope": ""},
    )

    token = await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")

    assert token.access_token == "access-2"
    assert token.refresh_token is None
    form = urllib.parse.parse_qs(httpx_mock.get_request().content.decode("utf-8"))
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-1"]}


@pytest.mark.asyncio
async def test_refresh_token_revoked(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Refresh token revoked"},
    )

    with pytest.raises(TokenExchangeError) as excinfo:
        await refresh_token(client_id="id", client_secret="secret", refresh_token="revoked")

    assert excinfo.value.error == "invalid_grant"
    assert excinfo.value.revoked is True


@pytest.mark.asyncio
async def test_refresh_token_server_error_is_not_revocation(httpx_mock) -> None:
    httpx_mock.add_response(url=SPOTIFY_TOKEN_URL, method="POST", status_code=503, text="down")

    with pytest.raises(TokenExchangeError) as excinfo:
        await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")

    assert excinfo.value.revoked is False
    assert excinfo.value.status_code == 503

