"""
Configuration management for clipboard history stores.

The configuration is stored as a TOML file in the store directory.
It holds the paging, sizing, ordering and selection preferences the
history cache reads. The cache never writes it.
"""

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "clipstack.toml"
CONFIG_VERSION = 1

PIN_POSITIONS = ("top", "bottom")
SEARCH_MODES = ("exact", "fuzzy", "regexp", "mixed")


def get_default_store_path() -> Path:
    """Store directory: CLIPSTACK_STORE_PATH, else ~/.clipstack."""
    env = os.environ.get("CLIPSTACK_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".clipstack"


@dataclass
class HistoryConfig:
    """Complete history configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Paging and size
    page_size: int = 50
    max_size: int = 200

    # Presentation order and behaviour
    pin_to: str = "top"
    search_mode: str = "exact"
    search_debounce: float = 0.2
    refresh_interval: float = 30.0
    show_special_symbols: bool = True

    # Selection
    paste_by_default: bool = False
    remove_formatting_by_default: bool = False

    def __post_init__(self):
        validate_config(self)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        """Path to the SQLite record store."""
        return self.path / "history.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def with_changes(self, **changes: Any) -> "HistoryConfig":
        return replace(self, **changes)


# Keys persisted under [history]
HISTORY_KEYS = (
    "page_size",
    "max_size",
    "pin_to",
    "search_mode",
    "search_debounce",
    "refresh_interval",
    "show_special_symbols",
    "paste_by_default",
    "remove_formatting_by_default",
)


def validate_config(config: HistoryConfig) -> None:
    """Raise ValueError for out-of-range settings."""
    if config.page_size < 1:
        raise ValueError(f"page_size must be at least 1 (got {config.page_size})")
    if config.max_size < 1:
        raise ValueError(f"max_size must be at least 1 (got {config.max_size})")
    if config.pin_to not in PIN_POSITIONS:
        raise ValueError(f"pin_to must be one of {PIN_POSITIONS} (got {config.pin_to!r})")
    if config.search_mode not in SEARCH_MODES:
        raise ValueError(f"search_mode must be one of {SEARCH_MODES} (got {config.search_mode!r})")
    if config.search_debounce < 0:
        raise ValueError("search_debounce must not be negative")
    if config.refresh_interval <= 0:
        raise ValueError("refresh_interval must be positive")


def load_config(store_path: Path) -> HistoryConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    section = data.get("history", {})
    unknown = set(section) - set(HISTORY_KEYS)
    if unknown:
        raise ValueError(f"Unknown [history] settings: {sorted(unknown)}")

    defaults = {f.name: f.default for f in fields(HistoryConfig) if f.name in HISTORY_KEYS}
    values = {key: section.get(key, defaults[key]) for key in HISTORY_KEYS}

    return HistoryConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        **values,
    )


def save_config(config: HistoryConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "history": {key: getattr(config, key) for key in HISTORY_KEYS},
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> HistoryConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    store_path = store_path or get_default_store_path()
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = HistoryConfig(path=store_path)
        save_config(config)
        return config
