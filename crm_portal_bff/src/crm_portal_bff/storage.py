# src/crm_portal_bff/storage.py

import json
import logging
import os
import tempfile
import typing
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from .session_data import StorageTier

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
REFRESH_TOKEN_KEY = "refreshToken"
TOKEN_EXPIRES_KEY = "tokenExpires"
SESSION_TIER_KEY = "sessionTier"
PRIMARY_LICENSE_TYPE_KEY = "primaryLicenseType"

TOKEN_KEYS = (TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRES_KEY, SESSION_TIER_KEY)


# --- Key-value storage tiers ---

class KeyValueStorage(ABC):
    """String keys, JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> typing.Any:
        ...

    @abstractmethod
    def update(self, values: typing.Mapping[str, typing.Any]) -> None:
        ...

    @abstractmethod
    def discard(self, keys: typing.Iterable[str]) -> None:
        ...

    def set(self, key: str, value: typing.Any) -> None:
        self.update({key: value})

    def remove(self, key: str) -> None:
        self.discard([key])


class MemoryStorage(KeyValueStorage):
    def __init__(self):
        self._data: typing.Dict[str, typing.Any] = {}

    def get(self, key):
        return self._data.get(key)

    def update(self, values):
        self._data.update(values)

    def discard(self, keys):
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> dict:
        return dict(self._data)


class JsonFileStorage(KeyValueStorage):
    """A single JSON object on disk. Writes replace the file atomically."""

    def __init__(self, path: typing.Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> dict:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable storage file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        if not data:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key):
        return self._read().get(key)

    def update(self, values):
        data = self._read()
        data.update(values)
        self._write(data)

    def discard(self, keys):
        data = self._read()
        if any(key in data for key in keys):
            for key in keys:
                data.pop(key, None)
            self._write(data)

    def snapshot(self) -> dict:
        return self._read()


# --- Token triple across the two tiers ---

@dataclass(frozen=True)
class StoredTokens:
    access_token: str
    refresh_token: str
    token_expires: int  # ms since epoch
    tier: StorageTier


class TokenStore:
    """
    Keeps the token triple in exactly one tier.

    The tier that holds the tokens also holds a `sessionTier` tag naming itself;
    `load()` only trusts a tier whose tag matches, so a stale copy left in the
    other tier is never picked up.
    """

    def __init__(self, persistent: KeyValueStorage, ephemeral: KeyValueStorage):
        self.persistent = persistent
        self.ephemeral = ephemeral

    def storage_for(self, tier: StorageTier) -> KeyValueStorage:
        return self.persistent if tier is StorageTier.PERSISTENT else self.ephemeral

    def save(self, tier: StorageTier, access_token: str, refresh_token: str, token_expires: int) -> None:
        # Clear-then-write; a crash in between leaves the user logged out, never duplicated.
        self.clear()
        self.storage_for(tier).update({
            TOKEN_KEY: access_token,
            REFRESH_TOKEN_KEY: refresh_token,
            TOKEN_EXPIRES_KEY: int(token_expires),
            SESSION_TIER_KEY: tier.value,
        })

    def load(self) -> typing.Optional[StoredTokens]:
        for tier in (StorageTier.PERSISTENT, StorageTier.EPHEMERAL):
            storage = self.storage_for(tier)
            if storage.get(SESSION_TIER_KEY) != tier.value:
                continue
            access_token = storage.get(TOKEN_KEY)
            refresh_token = storage.get(REFRESH_TOKEN_KEY)
            if not access_token or not refresh_token:
                continue
            try:
                token_expires = int(storage.get(TOKEN_EXPIRES_KEY))
            except (TypeError, ValueError):
                token_expires = 0  # unknown expiry is treated as expired
            return StoredTokens(access_token, refresh_token, token_expires, tier)
        return None

    def clear(self) -> None:
        """Remove the token keys from both tiers. Other keys are left alone."""
        self.persistent.discard(TOKEN_KEYS)
        self.ephemeral.discard(TOKEN_KEYS)

    def tiers_holding_tokens(self) -> typing.List[StorageTier]:
        return [
            tier for tier in (StorageTier.PERSISTENT, StorageTier.EPHEMERAL)
            if self.storage_for(tier).get(TOKEN_KEY)
        ]

    # --- signup -> onboarding bridge ---

    def save_primary_license_type(self, value: str) -> None:
        self.persistent.set(PRIMARY_LICENSE_TYPE_KEY, value)

    def primary_license_type(self) -> typing.Optional[str]:
        return self.persistent.get(PRIMARY_LICENSE_TYPE_KEY) or None
