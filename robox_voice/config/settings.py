"""Unified configuration for the voice orchestrator."""

from __future__ import annotations

import json
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .paths import settings_file


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class VoiceSettings(BaseSettings):
    """Settings recognized by the orchestrator and its engines."""

    model_config = SettingsConfigDict(
        env_prefix="ROBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Speech output
    rate: float = 1.0
    pitch: float = 1.0
    voice_id: str = ""
    auto_speak: bool = True
    output_enabled: bool = True
    retry_backoff_ms: int = 250
    max_interrupt_retries: int = 3

    # Speech input
    silence_window_ms: int = 600
    min_final_chars: int = 2
    asr_model: str = "tiny"
    asr_device: str = "cpu"
    asr_compute_type: str = "int8"
    asr_language: str = "en"
    vad_aggressiveness: int = 2
    input_device: str | None = None
    output_device: str | None = None

    # Reply channel
    base_url: str = "http://127.0.0.1:3000"
    chat_path: str = "/api/chat"
    request_timeout: float = 30.0

    # TTS voices
    tts_model_dir: str = "models/tts"

    # Logs
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_rotate_mb: int = 5
    log_retention_days: int = 7

    @field_validator("rate")
    @classmethod
    def _clamp_rate(cls, value: float) -> float:
        return _clamp(value, 0.5, 2.0)

    @field_validator("pitch")
    @classmethod
    def _clamp_pitch(cls, value: float) -> float:
        return _clamp(value, 0.2, 2.0)

    @field_validator("vad_aggressiveness")
    @classmethod
    def _clamp_vad(cls, value: int) -> int:
        return int(_clamp(value, 0, 3))

    @field_validator("silence_window_ms", "retry_backoff_ms", "min_final_chars", "max_interrupt_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load the persisted JSON settings file if present."""
        path = settings_file()
        if path.is_file():
            try:
                data = json.loads(path.read_text(encoding="utf-8").lstrip("﻿"))
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}
        return {}

    @property
    def silence_window(self) -> float:
        """Finalize debounce in seconds."""
        return self.silence_window_ms / 1000.0

    @property
    def retry_backoff(self) -> float:
        """Interrupted-retry delay in seconds."""
        return self.retry_backoff_ms / 1000.0


@lru_cache()
def get_settings() -> VoiceSettings:
    """Return a cached VoiceSettings instance."""
    return VoiceSettings()
