"""Voice activity detection utilities."""

from __future__ import annotations

import webrtcvad


_VALID_SAMPLE_RATES = (8000, 16_000, 32_000, 48_000)
_VALID_FRAME_DURATIONS_MS = (10, 20, 30)


class VoiceActivityDetector:
    """Wrapper around the WebRTC VAD implementation."""

    def __init__(self, aggressiveness: int = 2, sample_rate: int = 16_000) -> None:
        if sample_rate not in _VALID_SAMPLE_RATES:
            raise ValueError(f"Unsupported VAD sample rate: {sample_rate}")
        self.sample_rate = sample_rate
        self.aggressiveness = max(0, min(3, aggressiveness))
        self._vad = webrtcvad.Vad(self.aggressiveness)

    def is_speech(self, frame: bytes) -> bool:
        """Return True when the mono pcm_s16le frame contains speech."""
        normalized = self._normalize_frame(frame)
        if not normalized:
            return False
        return self._vad.is_speech(normalized, self.sample_rate)

    def _normalize_frame(self, frame: bytes) -> bytes:
        """Pad or trim frames to the nearest length WebRTC VAD accepts."""
        frame_samples = len(frame) // 2
        if frame_samples == 0:
            return b""
        expected = [self.sample_rate * duration // 1000 for duration in _VALID_FRAME_DURATIONS_MS]
        target_bytes = min(expected, key=lambda samples: abs(samples - frame_samples)) * 2
        if len(frame) >= target_bytes:
            return frame[:target_bytes]
        return frame + bytes(target_bytes - len(frame))
