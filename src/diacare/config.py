"""Configuracion: archivo .diacare.yaml, variables de entorno y armado del servicio.

Search order for the file:
1. Explicit path if provided
2. .diacare.yaml in the current directory or its parents
3. ~/.diacare.yaml

Environment variables override file values:
``DIACARE_BACKEND``, ``DIACARE_DATA_DIR``, ``DIACARE_DB_PATH``,
``DIACARE_JSON_PATH``, ``DIACARE_SUPABASE_URL``,
``DIACARE_SUPABASE_ANON_KEY`` and ``DIACARE_TIMEOUT``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from diacare.backends.base import Backend
from diacare.backends.json_asset import JsonAssetBackend
from diacare.backends.sqlite import SQLiteBackend
from diacare.backends.supabase import DEFAULT_RETRIES, DEFAULT_TIMEOUT, SupabaseBackend
from diacare.errors import InvalidInput
from diacare.log import get_logger
from diacare.preferences import PreferenceStore
from diacare.service import DataService

logger = get_logger(__name__)

CONFIG_NAME = ".diacare.yaml"
BACKENDS: tuple[str, ...] = ("sqlite", "json", "supabase")


@dataclass
class SupabaseConfig:
    url: str = ""
    anon_key: str = ""
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES


@dataclass
class Config:
    """Loaded configuration."""

    backend: str = "sqlite"
    data_dir: Path = field(default_factory=lambda: Path.home() / ".diacare")
    db_path: Path | None = None
    json_path: Path | None = None
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    source_path: Path | None = None

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / "preferences.db"

    @property
    def sqlite_path(self) -> Path:
        return self.db_path or self.data_dir / "diacare.db"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source_path: Path | None = None) -> Config:
        """Create Config from a parsed YAML mapping."""
        config = cls(source_path=source_path)
        config.backend = str(data.get("backend", config.backend))
        if data.get("data_dir"):
            config.data_dir = Path(str(data["data_dir"])).expanduser()

        sqlite = data.get("sqlite")
        if isinstance(sqlite, dict) and sqlite.get("path"):
            config.db_path = Path(str(sqlite["path"])).expanduser()

        json_cfg = data.get("json")
        if isinstance(json_cfg, dict) and json_cfg.get("path"):
            config.json_path = Path(str(json_cfg["path"])).expanduser()

        remote = data.get("supabase")
        if isinstance(remote, dict):
            config.supabase.url = str(remote.get("url", "") or "")
            config.supabase.anon_key = str(remote.get("anon_key", "") or "")
            config.supabase.timeout = float(remote.get("timeout", config.supabase.timeout))
            config.supabase.retries = int(remote.get("retries", config.supabase.retries))
        return config

    def apply_env(self, environ: Mapping[str, str]) -> Config:
        """Override values from ``DIACARE_*`` environment variables."""
        if environ.get("DIACARE_BACKEND"):
            self.backend = environ["DIACARE_BACKEND"]
        if environ.get("DIACARE_DATA_DIR"):
            self.data_dir = Path(environ["DIACARE_DATA_DIR"]).expanduser()
        if environ.get("DIACARE_DB_PATH"):
            self.db_path = Path(environ["DIACARE_DB_PATH"]).expanduser()
        if environ.get("DIACARE_JSON_PATH"):
            self.json_path = Path(environ["DIACARE_JSON_PATH"]).expanduser()
        if environ.get("DIACARE_SUPABASE_URL"):
            self.supabase.url = environ["DIACARE_SUPABASE_URL"]
        if environ.get("DIACARE_SUPABASE_ANON_KEY"):
            self.supabase.anon_key = environ["DIACARE_SUPABASE_ANON_KEY"]
        if environ.get("DIACARE_TIMEOUT"):
            try:
                self.supabase.timeout = float(environ["DIACARE_TIMEOUT"])
            except ValueError:
                raise InvalidInput(
                    "DIACARE_TIMEOUT", environ["DIACARE_TIMEOUT"], "not a number"
                ) from None
        return self


def find_config_file(path: Path | None = None) -> Path | None:
    if path is not None:
        return path if path.exists() else None
    search_dir = Path.cwd()
    while True:
        candidate = search_dir / CONFIG_NAME
        if candidate.exists():
            return candidate
        if (search_dir / ".git").exists() or search_dir == search_dir.parent:
            break
        search_dir = search_dir.parent
    home_config = Path.home() / CONFIG_NAME
    return home_config if home_config.exists() else None


def load_config(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> Config:
    """Load configuration from file and environment.

    Args:
        path: Explicit path to a config file.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Loaded Config, or defaults plus environment if no file is found.
    """
    config_path = find_config_file(path)
    config = Config()
    if config_path is not None:
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            logger.warning("Failed to load config from %s: %s", config_path, exc)
        else:
            if data is not None and not isinstance(data, dict):
                logger.warning("Ignoring %s: top level must be a mapping", config_path)
            else:
                config = Config.from_dict(data or {}, source_path=config_path)
                logger.debug("Loaded config from %s", config_path)
    return config.apply_env(os.environ if environ is None else environ)


def build_backend(config: Config, preferences: PreferenceStore) -> Backend:
    """Instantiate the configured backend.

    Raises:
        InvalidInput: For an unknown backend name or missing remote settings.
    """
    if config.backend == "sqlite":
        return SQLiteBackend(config.sqlite_path, preferences)
    if config.backend == "json":
        return JsonAssetBackend(config.json_path, preferences)
    if config.backend == "supabase":
        return SupabaseBackend(
            config.supabase.url,
            config.supabase.anon_key,
            timeout=config.supabase.timeout,
            retries=config.supabase.retries,
            preferences=preferences,
        )
    raise InvalidInput("backend", config.backend, f"expected one of {', '.join(BACKENDS)}")


def build_service(config: Config) -> DataService:
    """Wire preference store, backend and data service from ``config``."""
    preferences = PreferenceStore(config.preferences_path)
    backend = build_backend(config, preferences)
    logger.info("Using %s backend", backend.name)
    return DataService(backend, preferences)
