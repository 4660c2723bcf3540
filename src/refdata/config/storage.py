"""Where the reference store and the HTTP cache live on disk."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import env_bool, env_str

APP_DIR_NAME: Final[str] = "refdata"
DEFAULT_DB_FILENAME: Final[str] = "refdata.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"
DATABASE_URI_VARS: Final[tuple[str, ...]] = ("REFDATA_DATABASE_URI", "DATABASE_URI")


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Local data directory holding the default sqlite store and the download cache."""

    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME
    http_cache_filename: str = HTTP_CACHE_FILENAME

    def ensure_data_dir(self) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_path(self) -> Path:
        return self.ensure_data_dir() / self.database_filename

    def http_cache_path(self) -> Path:
        return self.ensure_data_dir() / self.http_cache_filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False


def _default_data_dir() -> Path:
    base = os.getenv("XDG_DATA_HOME")
    base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return base_path / APP_DIR_NAME


def get_storage_config() -> StorageConfig:
    env_dir = env_str("REFDATA_DATA_DIR")
    return StorageConfig(
        data_dir=Path(env_dir) if env_dir else _default_data_dir(),
        database_filename=env_str("REFDATA_DB_FILENAME", DEFAULT_DB_FILENAME)
        or DEFAULT_DB_FILENAME,
    )


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """Resolve the store: an explicit URI wins, otherwise sqlite in the data directory."""

    echo = env_bool("REFDATA_SQL_ECHO", False)
    for name in DATABASE_URI_VARS:
        uri = env_str(name)
        if uri:
            return DatabaseConfig(uri=uri, echo=echo)
    storage_config = storage or get_storage_config()
    return DatabaseConfig(uri=storage_config.database_uri(), echo=echo)


def get_database_uri() -> str:
    return get_database_config().uri


def get_http_cache_path() -> Path:
    return get_storage_config().http_cache_path()
