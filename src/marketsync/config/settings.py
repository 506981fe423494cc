"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    cwd_config = Path.cwd() / "config"
    if cwd_config.exists():
        return cwd_config
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        sync: dict[str, Any] | None = None,
        storage: dict[str, Any] | None = None,
        polymarket: dict[str, Any] | None = None,
        backend: dict[str, Any] | None = None,
        proxy: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.sync = sync or {}
        self.storage = storage or {}
        self.polymarket = polymarket or {}
        self.backend = backend or {}
        self.proxy = proxy or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            sync=raw.get("sync"),
            storage=raw.get("storage"),
            polymarket=raw.get("polymarket"),
            backend=raw.get("backend"),
            proxy=raw.get("proxy"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/marketsync.duckdb")

    @property
    def poll_interval_sec(self) -> float:
        return float(self.sync.get("poll_interval_sec", 60.0))

    @property
    def stale_after_sec(self) -> float:
        return float(self.sync.get("stale_after_sec", 5.0))

    @property
    def highlight_sec(self) -> float:
        return float(self.sync.get("highlight_sec", 3.0))

    @property
    def active_threshold_pct(self) -> float:
        return float(self.sync.get("active_threshold_pct", 0.5))

    @property
    def history_window(self) -> int:
        return int(self.sync.get("history_window", 10))

    @property
    def transactions_market_count(self) -> int:
        return int(self.sync.get("transactions_market_count", 10))

    @property
    def reconnect_base_delay_sec(self) -> float:
        return float(self.sync.get("reconnect_base_delay_sec", 1.0))

    @property
    def reconnect_max_delay_sec(self) -> float:
        return float(self.sync.get("reconnect_max_delay_sec", 60.0))

    @property
    def gamma_api_base(self) -> str:
        return self.polymarket.get("gamma_api_base", "https://gamma-api.polymarket.com")

    @property
    def data_api_base(self) -> str:
        return self.polymarket.get("data_api_base", "https://data-api.polymarket.com")

    @property
    def markets_fetch_limit(self) -> int:
        return int(self.polymarket.get("markets_fetch_limit", 200))

    @property
    def backend_url(self) -> str:
        return self.backend.get("url", "http://127.0.0.1:8000")

    @property
    def proxy_allowed_hosts(self) -> list[str]:
        return list(self.proxy.get("allowed_hosts") or ["polymarket.com"])

    @property
    def proxy_cache_max_age(self) -> int:
        return int(self.proxy.get("cache_max_age", 30))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
