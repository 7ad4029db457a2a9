# =============================================================================
# FishCrew Client -- Credential Storage
# =============================================================================
#
# Token and serialized user persisted under fixed keys and cleared
# wholesale on sign-out or failed refresh.
# =============================================================================

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

from ._logging import logger
from .constants import STORAGE_KEY_TOKEN, STORAGE_KEY_USER


class CredentialStore(Protocol):
    """Persistence for the session token and user payload."""

    def load(self) -> tuple[str | None, dict[str, Any] | None]:
        """Return ``(token, user)``; either may be ``None``."""

    def save_token(self, token: str) -> None:
        """Persist the token, keeping the stored user."""

    def save(self, token: str, user: dict[str, Any]) -> None:
        """Persist token and user together."""

    def clear(self) -> None:
        """Remove every persisted credential."""


class MemoryCredentialStore:
    """Process-local store, used by default and in tests."""

    def __init__(self, token: str | None = None, user: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {}
        if token is not None:
            self._data[STORAGE_KEY_TOKEN] = token
        if user is not None:
            self._data[STORAGE_KEY_USER] = dict(user)
        self.clear_count = 0

    def load(self) -> tuple[str | None, dict[str, Any] | None]:
        return self._data.get(STORAGE_KEY_TOKEN), self._data.get(STORAGE_KEY_USER)

    def save_token(self, token: str) -> None:
        self._data[STORAGE_KEY_TOKEN] = token

    def save(self, token: str, user: dict[str, Any]) -> None:
        self._data[STORAGE_KEY_TOKEN] = token
        self._data[STORAGE_KEY_USER] = dict(user)

    def clear(self) -> None:
        self._data.clear()
        self.clear_count += 1


class FileCredentialStore:
    """JSON file holding ``{"token": ..., "user": {...}}``.

    The file is written with owner-only permissions.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> tuple[str | None, dict[str, Any] | None]:
        data = self._read()
        token = data.get(STORAGE_KEY_TOKEN)
        user = data.get(STORAGE_KEY_USER)
        return (
            token if isinstance(token, str) else None,
            user if isinstance(user, dict) else None,
        )

    def save_token(self, token: str) -> None:
        data = self._read()
        data[STORAGE_KEY_TOKEN] = token
        self._write(data)

    def save(self, token: str, user: dict[str, Any]) -> None:
        self._write({STORAGE_KEY_TOKEN: token, STORAGE_KEY_USER: user})

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.chmod(tmp, 0o600)
        os.replace(tmp, self._path)
