"""Blocking PCM playback for synthesized speech."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import sounddevice as sd


@dataclass(slots=True)
class PlaybackConfig:
    """Playback configuration."""

    device_name: str | None = None
    chunk_ms: int = 100


class SpeechPlayback:
    """Play one PCM buffer at a time on the output device."""

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()

    def play(self, pcm_data: bytes, sample_rate: int, channels: int, cancel: threading.Event) -> bool:
        """Play ``pcm_data`` until done; returns False when ``cancel`` interrupted it."""
        if not pcm_data or sample_rate <= 0:
            return True
        channels = max(1, channels)
        bytes_per_frame = 2 * channels  # pcm_s16le
        chunk = max(bytes_per_frame, sample_rate * self.config.chunk_ms // 1000 * bytes_per_frame)
        stream = sd.RawOutputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="int16",
            device=self.config.device_name,
        )
        stream.start()
        try:
            for offset in range(0, len(pcm_data), chunk):
                if cancel.is_set():
                    stream.abort()
                    return False
                stream.write(pcm_data[offset : offset + chunk])
            return not cancel.is_set()
        finally:
            stream.close(ignore_errors=True)

    @staticmethod
    def has_output_device(device_name: str | None = None) -> bool:
        """Return True when an output device is usable."""
        try:
            sd.query_devices(device_name, kind="output")
        except (sd.PortAudioError, ValueError):
            return False
        return True
