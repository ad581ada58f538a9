from __future__ import annotations

import urllib.parse

LOOPBACK_HOSTS = {"127.0.0.1", "localhost"}
CALLBACK_PATH = "/callback"


def is_allowed_redirect_uri(uri: str) -> bool:
    parsed = urllib.parse.urlparse(uri)
    if parsed.scheme != "http":
        return False
    if parsed.hostname not in LOOPBACK_HOSTS:
        return False
    try:
        port = parsed.port
    except ValueError:
        return False
    if not port:
        return False
    return parsed.path == CALLBACK_PATH and not parsed.query and not parsed.fragment


def parse_callback_query(uri: str) -> dict[str, str]:
    """Return the query parameters of a callback URI, percent-decoded once.

    ``parse_qsl`` decodes each key and value exactly one time, so ``%2B``
    stays ``+`` and ``%2541`` becomes ``%41``. When a parameter repeats,
    the first occurrence wins.
    """
    query = urllib.parse.urlsplit(uri).query
    params: dict[str, str] = {}
    for key, value in urllib.parse.parse_qsl(query, keep_blank_values=True):
        params.setdefault(key, value)
    return params
