from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from bloggermcp.constants import APP_NAME

LOGGER = logging.getLogger("bloggermcp.auth")


@dataclass
class CredentialRecord:
    access_token: str
    expires_at: int  # epoch milliseconds
    refresh_token: str | None = None
    scope: list[str] = field(default_factory=list)

    def is_expired(self, *, now: float | None = None, margin_seconds: float = 0) -> bool:
        current = time.time() if now is None else now
        return (current + margin_seconds) * 1000 >= self.expires_at

    def expires_at_iso(self) -> str:
        moment = datetime.fromtimestamp(self.expires_at / 1000, tz=timezone.utc)
        return moment.isoformat()

    def to_payload(self) -> dict:
        payload: dict = {
            "accessToken": self.access_token,
            "expiresAt": self.expires_at,
            "scope": list(self.scope),
        }
        if self.refresh_token:
            payload["refreshToken"] = self.refresh_token
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "CredentialRecord":
        access_token = payload.get("accessToken")
        refresh_token = payload.get("refreshToken")
        scope = payload.get("scope", [])

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Credential record missing accessToken.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Credential record refreshToken must be a string.")
        if isinstance(scope, str):
            scope = scope.split()
        if not isinstance(scope, list) or not all(isinstance(item, str) for item in scope):
            raise ValueError("Credential record scope must be a list of strings.")

        return cls(
            access_token=access_token,
            expires_at=_parse_expires_at(payload.get("expiresAt")),
            refresh_token=refresh_token or None,
            scope=scope,
        )


def _parse_expires_at(raw) -> int:
    if isinstance(raw, bool):
        raise ValueError("Credential record expiresAt must be a timestamp.")
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    raise ValueError("Credential record missing expiresAt.")


def default_token_path() -> Path:
    config_home = os.getenv("XDG_CONFIG_HOME", "").strip()
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / APP_NAME / "tokens.json"


class TokenStore(ABC):
    @abstractmethod
    async def load(self) -> CredentialRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def save(self, record: CredentialRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, record: CredentialRecord | None = None) -> None:
        self._record = record

    async def load(self) -> CredentialRecord | None:
        return self._record

    async def save(self, record: CredentialRecord) -> None:
        self._record = record

    async def clear(self) -> None:
        self._record = None


class FileTokenStore(TokenStore):
    """Single credential record kept as a JSON file readable only by its owner.

    A missing, unreadable or corrupt file loads as ``None`` so callers fall
    back to a fresh consent flow instead of crashing.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else default_token_path()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> CredentialRecord | None:
        if not self._path.exists():
            return None

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            LOGGER.warning("Ignoring unreadable credential file %s: %s", self._path, error)
            return None

        if not isinstance(raw, dict):
            LOGGER.warning("Ignoring credential file %s; expected a JSON object.", self._path)
            return None

        try:
            return CredentialRecord.from_payload(raw)
        except ValueError as error:
            LOGGER.warning("Ignoring incomplete credential file %s: %s", self._path, error)
            return None

    async def save(self, record: CredentialRecord) -> None:
        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(record.to_payload(), handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        LOGGER.info("Saved credential to %s", self._path)

    async def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        LOGGER.info("Removed credential file %s", self._path)
