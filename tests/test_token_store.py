import asyncio
import json

import pytest

from auth.models import Credentials
from auth.token_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    CredentialStore,
    FileSecretStore,
    MemorySecretStore,
)


class SlowSecretStore(MemorySecretStore):
    async def store(self, key: str, value: str) -> None:
        await asyncio.sleep(0.01)
        await super().store(key, value)


@pytest.mark.asyncio
async def test_memory_store_set_get() -> None:
    store = MemorySecretStore()

    await store.store("clientId", "abc")

    assert await store.get("clientId") == "abc"


@pytest.mark.asyncio
async def test_memory_store_delete_missing_is_noop() -> None:
    store = MemorySecretStore()

    await store.delete("missing")

    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "secrets.json"
    await FileSecretStore(path).store(ACCESS_TOKEN_KEY, "access")

    second_store = FileSecretStore(path)
    assert await second_store.get(ACCESS_TOKEN_KEY) == "access"
    assert json.loads(path.read_text(encoding="utf-8")) == {ACCESS_TOKEN_KEY: "access"}


@pytest.mark.asyncio
async def test_file_store_delete(tmp_path) -> None:
    store = FileSecretStore(tmp_path / "secrets.json")
    await store.store(ACCESS_TOKEN_KEY, "access")
    await store.store(REFRESH_TOKEN_KEY, "refresh")

    await store.delete(ACCESS_TOKEN_KEY)

    assert store.snapshot() == {REFRESH_TOKEN_KEY: "refresh"}


@pytest.mark.asyncio
async def test_file_store_missing_file(tmp_path) -> None:
    store = FileSecretStore(tmp_path / "missing.json")

    assert await store.get(ACCESS_TOKEN_KEY) is None
    assert store.snapshot() == {}


@pytest.mark.asyncio
async def test_file_store_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "secrets.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(RuntimeError, match="expected top-level JSON object"):
        await FileSecretStore(path).get(ACCESS_TOKEN_KEY)


@pytest.mark.asyncio
async def test_credential_store_round_trip() -> None:
    secrets = MemorySecretStore()
    store = CredentialStore(secrets)

    await store.save(Credentials("access", "refresh"))

    assert await store.load() == Credentials("access", "refresh")
    assert secrets.snapshot() == {ACCESS_TOKEN_KEY: "access", REFRESH_TOKEN_KEY: "refresh"}


@pytest.mark.asyncio
async def test_credential_store_needs_both_tokens() -> None:
    store = CredentialStore(MemorySecretStore({REFRESH_TOKEN_KEY: "refresh"}))

    assert await store.load() is None


@pytest.mark.asyncio
async def test_credential_store_clear_removes_both_keys() -> None:
    secrets = MemorySecretStore(
        {ACCESS_TOKEN_KEY: "access", REFRESH_TOKEN_KEY: "refresh", "clientId": "id"}
    )

    await CredentialStore(secrets).clear()

    assert secrets.snapshot() == {"clientId": "id"}


@pytest.mark.asyncio
async def test_reader_never_sees_half_written_pair() -> None:
    secrets = SlowSecretStore({ACCESS_TOKEN_KEY: "old-access", REFRESH_TOKEN_KEY: "old-refresh"})
    store = CredentialStore(secrets)

    writer = asyncio.ensure_future(store.save(Credentials("new-access", "new-refresh")))
    await asyncio.sleep(0.015)
    seen = await store.load()
    await writer

    assert seen in (
        Credentials("old-access", "old-refresh"),
        Credentials("new-access", "new-refresh"),
    )
    assert await store.load() == Credentials("new-access", "new-refresh")


class CountingFileSecretStore(FileSecretStore):
    def __init__(self, path) -> None:
        super().__init__(path)
        self.writes: list[dict[str, str]] = []

    def _write_all(self, payload: dict[str, str]) -> None:
        self.writes.append(dict(payload))
        super()._write_all(payload)


@pytest.mark.asyncio
async def test_file_store_writes_pair_in_one_replace(tmp_path) -> None:
    secrets = CountingFileSecretStore(tmp_path / "secrets.json")
    await secrets.store("clientId", "id")
    secrets.writes.clear()
    store = CredentialStore(secrets)

    await store.save(Credentials("access", "refresh"))

    assert secrets.writes == [
        {"clientId": "id", ACCESS_TOKEN_KEY: "access", REFRESH_TOKEN_KEY: "refresh"}
    ]


@pytest.mark.asyncio
async def test_file_store_clears_pair_in_one_replace(tmp_path) -> None:
    secrets = CountingFileSecretStore(tmp_path / "secrets.json")
    store = CredentialStore(secrets)
    await store.save(Credentials("access", "refresh"))
    secrets.writes.clear()

    await store.clear()
    await store.clear()

    assert secrets.writes == [{}]
    assert await store.load() is None
