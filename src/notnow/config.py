# src/notnow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing touches the filesystem at import time.
- Every path of the database layout derives from the config root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "NOTNOW"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _xdg_dir(var: str, fallback: str) -> Path:
    return _env_path(var, Path.home() / fallback)


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    log_level: str
    log_dir: Path

    # ---- Database ----
    config_dir: Path
    force: bool
    undo_depth: int
    read_only_files: bool

    @staticmethod
    def from_env() -> "Settings":
        log_level = _env(_k("LOG_LEVEL"), "INFO").strip().upper() or "INFO"

        config_dir = _env_path(_k("CONFIG_DIR"), _xdg_dir("XDG_CONFIG_HOME", ".config") / "notnow")
        log_dir = _env_path(_k("LOG_DIR"), _xdg_dir("XDG_CACHE_HOME", ".cache") / "notnow")

        force = _env_bool(_k("FORCE"), False)
        # 0 = unbounded
        undo_depth = max(0, _env_int(_k("UNDO_DEPTH"), 0))
        read_only_files = _env_bool(_k("READ_ONLY_FILES"), True)

        return Settings(
            log_level=log_level,
            log_dir=log_dir,
            config_dir=config_dir,
            force=force,
            undo_depth=undo_depth,
            read_only_files=read_only_files,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
