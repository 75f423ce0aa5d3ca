"""Microphone input delivering fixed-size 16-bit PCM frames."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Callable

import sounddevice as sd

from ..core.logger import get_logger

logger = get_logger("voice.engine")

FrameConsumer = Callable[[bytes], None]


@dataclass(slots=True)
class CaptureConfig:
    """Input stream shape; WebRTC VAD accepts 10, 20 or 30 ms frames."""

    sample_rate: int = 16_000
    frame_ms: int = 20
    device_name: str | None = None

    @property
    def frame_samples(self) -> int:
        return self.sample_rate * self.frame_ms // 1000

    @property
    def frame_bytes(self) -> int:
        return self.frame_samples * 2


class MicrophoneStream:
    """Mono microphone stream; the consumer runs on the PortAudio thread."""

    def __init__(self, config: CaptureConfig | None = None) -> None:
        self.config = config or CaptureConfig()
        self._stream: sd.RawInputStream | None = None
        self._consumer: FrameConsumer | None = None
        self._lock = Lock()
        self.overflows = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def probe(self) -> bool:
        """Return True when the configured input device can be opened."""
        try:
            sd.check_input_settings(
                device=self.config.device_name,
                channels=1,
                dtype="int16",
                samplerate=self.config.sample_rate,
            )
        except (sd.PortAudioError, ValueError) as exc:
            logger.info("No usable input device: %s", exc)
            return False
        return True

    def open(self, consumer: FrameConsumer) -> None:
        """Start delivering frames to ``consumer``; reopening is a no-op."""
        with self._lock:
            if self._stream is not None:
                return
            stream = sd.RawInputStream(
                samplerate=self.config.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=self.config.frame_samples,
                callback=self._callback,
                device=self.config.device_name,
            )
            self._consumer = consumer
            self.overflows = 0
            stream.start()
            self._stream = stream
        logger.debug("Microphone opened (%d Hz, %d ms frames)", self.config.sample_rate, self.config.frame_ms)

    def close(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            self._consumer = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        if self.overflows:
            logger.warning("Microphone overflowed %d times", self.overflows)
        logger.debug("Microphone closed")

    def _callback(self, indata, frames: int, time, status) -> None:  # noqa: ANN001
        if status.input_overflow:
            self.overflows += 1
        consumer = self._consumer
        if consumer is None:
            return
        frame = bytes(indata)
        if len(frame) != self.config.frame_bytes:
            return
        consumer(frame)
