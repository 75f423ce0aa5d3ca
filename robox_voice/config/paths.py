"""Filesystem helpers for the ROBO-X voice console."""

from __future__ import annotations

import os
from pathlib import Path


def home_dir() -> Path:
    """Return the root folder for local configuration, logs and models."""
    override = os.environ.get("ROBOX_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".robox"


def config_dir() -> Path:
    """Directory storing the persisted settings file."""
    root = home_dir() / "config"
    root.mkdir(parents=True, exist_ok=True)
    return root


def settings_file() -> Path:
    """Path of the JSON settings file."""
    return config_dir() / "voice_settings.json"


def resolve(path: str | Path) -> Path:
    """Resolve a settings path relative to the home folder."""
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return home_dir() / candidate
