"""Persistence helpers for voice settings."""

from __future__ import annotations

import json
from typing import Any

from .paths import settings_file
from .settings import VoiceSettings, get_settings


def load_overrides() -> dict[str, Any]:
    """Return the raw overrides stored on disk (empty when missing)."""
    path = settings_file()
    if not path.exists():
        return {}
    raw_text = path.read_text(encoding="utf-8").lstrip("﻿")
    try:
        data = json.loads(raw_text)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def save_setting(key: str, value: str) -> VoiceSettings:
    """Validate and persist one setting, returning the refreshed settings."""
    if key not in VoiceSettings.model_fields:
        raise KeyError(key)
    overrides = load_overrides()
    # Validation coerces strings ("0.8", "false") and applies clamping.
    validated = VoiceSettings.model_validate({**overrides, key: value})
    overrides[key] = getattr(validated, key)

    path = settings_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(overrides, indent=2), encoding="utf-8")
    get_settings.cache_clear()
    return get_settings()
