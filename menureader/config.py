"""TOML configuration loader for the menu reader."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

from .exceptions import ConfigurationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
DEFAULT_DB_PATH = "~/.config/menureader/menureader.db"
DEFAULT_STORAGE_LIMIT = 100 * 1024 * 1024

SUPPORTED_LANGUAGES = ("en", "zh", "ja", "ko", "fr", "es", "de", "it")


@dataclass
class GeminiConfig:
    api_key: str = ""
    model: str = DEFAULT_GEMINI_MODEL
    base_url: str = DEFAULT_GEMINI_URL
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 2048


@dataclass
class SearchConfig:
    api_key: str = ""
    engine_id: str = ""
    base_url: str = DEFAULT_SEARCH_URL
    results_per_dish: int = 3


@dataclass
class NetworkConfig:
    timeout: float = 30.0
    max_retries: int = 3
    base_delay: float = 1.0


@dataclass
class AnalysisConfig:
    target_language: str = ""  # empty: follow the system locale
    max_dimension: int = 1024
    concurrency: int = 3
    request_interval: float = 0.3


@dataclass
class StorageConfig:
    db_path: str = DEFAULT_DB_PATH
    max_items: int | None = None
    quota_bytes: int = DEFAULT_STORAGE_LIMIT
    retention_days: int = 30
    cleanup_schedule: str = "0 3 * * *"
    image_cache_days: int = 7


@dataclass
class SyncConfig:
    upload_url: str = ""
    flush_schedule: str = "*/15 * * * *"


@dataclass
class MenuReaderConfig:
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    debug_logging: bool = False

    def missing_keys(self) -> list[str]:
        """Return the environment names of required values that are unset."""
        missing = []
        if not self.gemini.api_key:
            missing.append("GEMINI_API_KEY")
        if not self.search.api_key:
            missing.append("GOOGLE_SEARCH_API_KEY")
        if not self.search.engine_id:
            missing.append("GOOGLE_SEARCH_ENGINE_ID")
        return missing

    @property
    def is_configured(self) -> bool:
        return not self.missing_keys()

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` listing every missing key."""
        missing = self.missing_keys()
        if missing:
            raise ConfigurationError(missing=missing)


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(
    path: str | Path | None = None, env_file: str | Path | None = ".env"
) -> MenuReaderConfig:
    """Load configuration from a TOML file.

    Each value resolves in order: process environment → TOML file →
    ``env_file`` (read without touching ``os.environ``) → default.
    Missing files are ignored.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path).expanduser()
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    dotenv: dict[str, str | None] = {}
    if env_file is not None and Path(env_file).expanduser().is_file():
        dotenv = dotenv_values(Path(env_file).expanduser())

    def resolve(section: dict, key: str, env: str | None, default):
        if env is not None and os.environ.get(env):
            return os.environ[env]
        value = section.get(key)
        if value not in (None, ""):
            return value
        if env is not None and dotenv.get(env):
            return dotenv[env]
        return default

    gem = raw.get("gemini", {})
    sch = raw.get("search", {})
    net = raw.get("network", {})
    ana = raw.get("analysis", {})
    sto = raw.get("storage", {})
    syn = raw.get("sync", {})

    return MenuReaderConfig(
        gemini=GeminiConfig(
            api_key=resolve(gem, "api_key", "GEMINI_API_KEY", ""),
            model=resolve(gem, "model", "GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            base_url=resolve(gem, "base_url", "GEMINI_API_URL", DEFAULT_GEMINI_URL),
            temperature=float(gem.get("temperature", 0.7)),
            top_k=int(gem.get("top_k", 40)),
            top_p=float(gem.get("top_p", 0.95)),
            max_output_tokens=int(gem.get("max_output_tokens", 2048)),
        ),
        search=SearchConfig(
            api_key=resolve(sch, "api_key", "GOOGLE_SEARCH_API_KEY", ""),
            engine_id=resolve(sch, "engine_id", "GOOGLE_SEARCH_ENGINE_ID", ""),
            base_url=resolve(sch, "base_url", "GOOGLE_SEARCH_URL", DEFAULT_SEARCH_URL),
            results_per_dish=int(sch.get("results_per_dish", 3)),
        ),
        network=NetworkConfig(
            timeout=float(net.get("timeout", 30.0)),
            max_retries=int(net.get("max_retries", 3)),
            base_delay=float(net.get("base_delay", 1.0)),
        ),
        analysis=AnalysisConfig(
            target_language=ana.get("target_language", ""),
            max_dimension=int(ana.get("max_dimension", 1024)),
            concurrency=int(ana.get("concurrency", 3)),
            request_interval=float(ana.get("request_interval", 0.3)),
        ),
        storage=StorageConfig(
            db_path=sto.get("db_path", DEFAULT_DB_PATH),
            max_items=sto.get("max_items"),
            quota_bytes=int(sto.get("quota_bytes", DEFAULT_STORAGE_LIMIT)),
            retention_days=int(sto.get("retention_days", 30)),
            cleanup_schedule=sto.get("cleanup_schedule", "0 3 * * *"),
            image_cache_days=int(sto.get("image_cache_days", 7)),
        ),
        sync=SyncConfig(
            upload_url=resolve(syn, "upload_url", "MENUREADER_UPLOAD_URL", ""),
            flush_schedule=syn.get("flush_schedule", "*/15 * * * *"),
        ),
        debug_logging=_as_bool(
            resolve(raw, "debug_logging", "ENABLE_DEBUG_LOGGING", False)
        ),
    )
