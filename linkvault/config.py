from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .log import get_logger

log = get_logger(__name__)

DEFAULT_DATA_PATH = "~/.local/share/linkvault/origin.sqlite"


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r", name, v)
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


@dataclass
class Settings:
    # Storage
    data_path: str = DEFAULT_DATA_PATH
    quota_bytes: int = 5 * 1024 * 1024  # same order as a browser's localStorage

    # Folder rules
    max_sub_folders: int = 10
    max_folder_name_len: int = 30

    # Metadata lookups
    fetch_timeout_s: int = 10
    fetch_user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    fetch_max_bytes: int = 500_000

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    @property
    def resolved_data_path(self) -> Path:
        return Path(self.data_path).expanduser()

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.data_path = _env_str("LINKVAULT_DATA_PATH", s.data_path)
        s.quota_bytes = _env_int("LINKVAULT_QUOTA_BYTES", s.quota_bytes)

        s.max_sub_folders = _env_int("LINKVAULT_MAX_SUB_FOLDERS", s.max_sub_folders)
        s.max_folder_name_len = _env_int("LINKVAULT_MAX_FOLDER_NAME_LEN", s.max_folder_name_len)

        s.fetch_timeout_s = _env_int("LINKVAULT_FETCH_TIMEOUT_S", s.fetch_timeout_s)
        s.fetch_user_agent = _env_str("LINKVAULT_FETCH_UA", s.fetch_user_agent)
        s.fetch_max_bytes = _env_int("LINKVAULT_FETCH_MAX_BYTES", s.fetch_max_bytes)

        s.log_level = _env_str("LINKVAULT_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("LINKVAULT_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"config file {path} must contain a mapping, got {type(data).__name__}")
        s = Settings.from_env()
        known = {f.name for f in fields(Settings)}
        for k, v in data.items():
            if k in known:
                setattr(s, k, v)
            else:
                log.warning("Unknown config key in %s: %s", path, k)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
