from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from auth.models import Credentials

ACCESS_TOKEN_KEY = "spotifyAccessToken"
REFRESH_TOKEN_KEY = "spotifyRefreshToken"
CLIENT_ID_KEY = "clientId"
CLIENT_SECRET_KEY = "clientSecret"


class SecretStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def store(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def store_many(self, values: dict[str, str]) -> None:
        for key, value in values.items():
            await self.store(key, value)

    async def delete_many(self, keys: list[str]) -> None:
        for key in keys:
            await self.delete(key)


class MemorySecretStore(SecretStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})

    def snapshot(self) -> dict[str, str]:
        return dict(self._secrets)

    async def get(self, key: str) -> str | None:
        return self._secrets.get(key)

    async def store(self, key: str, value: str) -> None:
        self._secrets[key] = value

    async def delete(self, key: str) -> None:
        self._secrets.pop(key, None)


class FileSecretStore(SecretStore):
    def __init__(self, path: str | Path = ".secrets.json") -> None:
        self._path = Path(path)

    async def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise RuntimeError(f"Secret {key!r} in {self._path} is not a string.")
        return value

    async def store(self, key: str, value: str) -> None:
        all_secrets = self._read_all()
        all_secrets[key] = value
        self._write_all(all_secrets)

    async def delete(self, key: str) -> None:
        all_secrets = self._read_all()
        if all_secrets.pop(key, None) is not None:
            self._write_all(all_secrets)

    async def store_many(self, values: dict[str, str]) -> None:
        # one os.replace, so a crash never leaves half of the batch on disk
        all_secrets = self._read_all()
        all_secrets.update(values)
        self._write_all(all_secrets)

    async def delete_many(self, keys: list[str]) -> None:
        all_secrets = self._read_all()
        removed = [all_secrets.pop(key) for key in keys if key in all_secrets]
        if removed:
            self._write_all(all_secrets)

    def snapshot(self) -> dict[str, str]:
        return dict(self._read_all())

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Secret store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class CredentialStore:
    """The access/refresh pair as one logical record over two secret keys.

    Every read and write of the pair holds the same lock, so an interleaved
    reader never sees a new access token next to an old refresh token.
    """

    def __init__(self, secrets: SecretStore) -> None:
        self._secrets = secrets
        self._lock = asyncio.Lock()

    @property
    def secrets(self) -> SecretStore:
        return self._secrets

    async def load(self) -> Credentials | None:
        async with self._lock:
            access_token = await self._secrets.get(ACCESS_TOKEN_KEY)
            refresh_token = await self._secrets.get(REFRESH_TOKEN_KEY)
        if not access_token or not refresh_token:
            return None
        return Credentials(access_token=access_token, refresh_token=refresh_token)

    async def save(self, credentials: Credentials) -> None:
        async with self._lock:
            await self._secrets.store_many(
                {
                    ACCESS_TOKEN_KEY: credentials.access_token,
                    REFRESH_TOKEN_KEY: credentials.refresh_token,
                }
            )

    async def clear(self) -> None:
        async with self._lock:
            await self._secrets.delete_many([ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY])
