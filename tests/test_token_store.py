import json
import stat

import pytest

from auth.token_store import (
    CredentialRecord,
    FileTokenStore,
    MemoryTokenStore,
    default_token_path,
)


def _record(**overrides) -> CredentialRecord:
    values = {
        "access_token": "access",
        "expires_at": 1_700_000_000_123,
        "refresh_token": "refresh",
        "scope": ["https://www.googleapis.com/auth/blogger"],
    }
    values.update(overrides)
    return CredentialRecord(**values)


@pytest.mark.asyncio
async def test_memory_store_save_load() -> None:
    store = MemoryTokenStore()
    record = _record()

    await store.save(record)

    assert await store.load() == record


@pytest.mark.asyncio
async def test_memory_store_clear() -> None:
    store = MemoryTokenStore(_record())

    await store.clear()

    assert await store.load() is None


@pytest.mark.asyncio
async def test_file_store_round_trip(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    record = _record()

    await store.save(record)

    assert await FileTokenStore(tmp_path / "tokens.json").load() == record


@pytest.mark.asyncio
async def test_file_store_round_trip_without_refresh_token(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    record = _record(refresh_token=None, scope=[])

    await store.save(record)

    assert await store.load() == record


@pytest.mark.asyncio
async def test_file_store_writes_camel_case_json(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    await FileTokenStore(path).save(_record())

    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload == {
        "accessToken": "access",
        "refreshToken": "refresh",
        "expiresAt": 1_700_000_000_123,
        "scope": ["https://www.googleapis.com/auth/blogger"],
    }


@pytest.mark.asyncio
async def test_file_store_creates_parent_and_restricts_permissions(tmp_path) -> None:
    path = tmp_path / "nested" / "dir" / "tokens.json"

    await FileTokenStore(path).save(_record())

    assert path.exists()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert [item.name for item in path.parent.iterdir()] == ["tokens.json"]


@pytest.mark.asyncio
async def test_file_store_replaces_previous_record(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "tokens.json")
    await store.save(_record(access_token="old"))

    await store.save(_record(access_token="new"))

    loaded = await store.load()
    assert loaded is not None
    assert loaded.access_token == "new"


@pytest.mark.asyncio
async def test_file_store_missing_file(tmp_path) -> None:
    store = FileTokenStore(tmp_path / "missing.json")

    assert await store.load() is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"refreshToken": "r", "expiresAt": 1}),
        json.dumps({"accessToken": "a"}),
        json.dumps({"accessToken": "a", "expiresAt": "tomorrow"}),
        "",
    ],
)
async def test_file_store_corrupt_file_loads_as_absent(tmp_path, content) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(content, encoding="utf-8")

    assert await FileTokenStore(path).load() is None


@pytest.mark.asyncio
async def test_file_store_accepts_iso_expiry(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(
        json.dumps(
            {
                "accessToken": "a",
                "expiresAt": "2023-11-14T22:13:20Z",
                "scope": ["blogger"],
            }
        ),
        encoding="utf-8",
    )

    record = await FileTokenStore(path).load()

    assert record == CredentialRecord(
        access_token="a",
        expires_at=1_700_000_000_000,
        refresh_token=None,
        scope=["blogger"],
    )


@pytest.mark.asyncio
async def test_file_store_clear(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path)
    await store.save(_record())

    await store.clear()
    await store.clear()

    assert not path.exists()
    assert await store.load() is None


def test_record_expiry_margin() -> None:
    record = _record(expires_at=100_000)

    assert record.is_expired(now=99.0) is False
    assert record.is_expired(now=99.0, margin_seconds=60) is True
    assert record.is_expired(now=100.0) is True


def test_default_token_path_uses_xdg_config_home(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

    assert default_token_path() == tmp_path / "blogger-mcp" / "tokens.json"
