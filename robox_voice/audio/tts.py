"""Text-to-speech helpers using Piper."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path

from piper import PiperVoice, SynthesisConfig

from .pitch import shift_pitch


@dataclass(slots=True)
class PiperConfig:
    """Piper model configuration."""

    model_path: Path
    config_path: Path
    speaker_id: int | None = None


def find_voice(root: Path, voice_id: str = "") -> PiperConfig:
    """Locate the model and config of ``voice_id`` (first voice when empty)."""
    base = root / voice_id if voice_id else root
    for model_path in sorted(base.rglob("*.onnx")):
        config_path = model_path.with_name(model_path.name + ".json")
        if config_path.exists():
            return PiperConfig(model_path=model_path, config_path=config_path)
    raise FileNotFoundError(f"No Piper voice found under {base}")


class PiperTTS:
    """Thin wrapper around PiperVoice."""

    def __init__(self, config: PiperConfig) -> None:
        self.config = config
        self._voice = self._load_voice(config)

    def synthesize(self, text: str, *, rate: float = 1.0, pitch: float = 1.0) -> tuple[bytes, int, int]:
        """Generate PCM audio (bytes, sample_rate, channels) for the given text."""
        text = self._sanitize_text(text)
        if not text:
            return b"", 0, 1
        pitch = pitch if pitch > 0 else 1.0
        # Synthesize slower by the pitch factor; resampling restores the duration.
        kwargs: dict[str, object] = {"length_scale": pitch / max(rate, 0.1)}
        if self.config.speaker_id is not None:
            kwargs["speaker_id"] = self.config.speaker_id
        pcm = bytearray()
        sample_rate = 0
        channels = 1
        for chunk in self._voice.synthesize(text, syn_config=SynthesisConfig(**kwargs)):
            pcm += chunk.audio_int16_bytes
            sample_rate = chunk.sample_rate
            channels = chunk.sample_channels or 1
        return shift_pitch(bytes(pcm), channels, pitch), sample_rate, channels

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    @staticmethod
    def _load_voice(config: PiperConfig) -> PiperVoice:
        if not config.model_path.exists():
            raise FileNotFoundError(f"Piper model not found: {config.model_path}")
        if not config.config_path.exists():
            raise FileNotFoundError(f"Piper config not found: {config.config_path}")
        return PiperVoice.load(str(config.model_path), str(config.config_path))

    @staticmethod
    def _sanitize_text(text: str) -> str:
        """Strip markdown marks and characters Piper has no phonemes for."""
        cleaned = re.sub(r"[*_`#<>]", " ", text)
        normalized = unicodedata.normalize("NFKC", cleaned)
        normalized = normalized.replace("˜", "").replace("~", "")
        return re.sub(r"\s+", " ", normalized).strip()
