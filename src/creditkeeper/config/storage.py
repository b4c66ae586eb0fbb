"""Where the two SQLite stores live.

``DATABASE_URI`` points at the canonical profile store, ``LOCAL_CACHE_URI`` at the
device-local cache. Either defaults to a file in the per-user data directory,
which ``CREDITKEEPER_DATA_DIR`` overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env

APP_DIR_NAME: Final[str] = "creditkeeper"
DATA_DIR_ENV: Final[str] = "CREDITKEEPER_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"
LOCAL_CACHE_URI_ENV: Final[str] = "LOCAL_CACHE_URI"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = "creditkeeper.db"
    local_cache_filename: str = "local_cache.db"

    def _file(self, filename: str, *, ensure: bool) -> Path:
        directory = self.data_dir.expanduser().resolve()
        if ensure:
            directory.mkdir(parents=True, exist_ok=True)
        return directory / filename

    def database_path(self, *, ensure: bool = True) -> Path:
        return self._file(self.database_filename, ensure=ensure)

    def local_cache_path(self, *, ensure: bool = True) -> Path:
        return self._file(self.local_cache_filename, ensure=ensure)


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


@dataclass(frozen=True, slots=True)
class LocalCacheConfig:
    uri: str


def _platform_data_home() -> Path:
    if os.name == "nt":
        local_app_data = optional_env("LOCALAPPDATA")
        return Path(local_app_data) if local_app_data else Path.home() / "AppData" / "Local"
    xdg_data_home = optional_env("XDG_DATA_HOME")
    return Path(xdg_data_home) if xdg_data_home else Path.home() / ".local" / "share"


def _sqlite_uri(path: Path) -> str:
    return f"sqlite+pysqlite:///{path}"


def get_storage_config() -> StorageConfig:
    data_dir = optional_env(DATA_DIR_ENV)
    return StorageConfig(
        data_dir=Path(data_dir) if data_dir else _platform_data_home() / APP_DIR_NAME
    )


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    uri = optional_env(DATABASE_URI_ENV)
    if uri is None:
        uri = _sqlite_uri((storage or get_storage_config()).database_path())
    return DatabaseConfig(uri=uri)


def get_local_cache_config(*, storage: StorageConfig | None = None) -> LocalCacheConfig:
    uri = optional_env(LOCAL_CACHE_URI_ENV)
    if uri is None:
        uri = _sqlite_uri((storage or get_storage_config()).local_cache_path())
    return LocalCacheConfig(uri=uri)
