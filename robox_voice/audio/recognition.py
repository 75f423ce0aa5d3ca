"""Local recognition engine: microphone, WebRTC VAD segmentation, faster-whisper."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from ..config.settings import VoiceSettings
from ..core.logger import get_logger
from ..services.schemas import RecognitionEvent
from .base import RecognitionSink
from .capture import CaptureConfig, MicrophoneStream
from .segmenter import SegmenterConfig, SpeechSegmenter
from .transcriber import FasterWhisperEngine, WhisperConfig
from .vad import VoiceActivityDetector

logger = get_logger("voice.engine")

FRAME_MS = 20
INTERIM_EVERY_FRAMES = 50  # one interim hypothesis per second of speech


class WhisperRecognitionEngine:
    """Emits interim and final hypotheses for the whole spoken turn.

    Every final re-transcribes all speech captured since the session opened,
    so consecutive finals carry the complete hypothesis, never a fragment.
    """

    def __init__(self, settings: VoiceSettings, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.settings = settings
        self._loop = loop
        self.microphone = MicrophoneStream(CaptureConfig(frame_ms=FRAME_MS, device_name=settings.input_device))
        self._vad = VoiceActivityDetector(settings.vad_aggressiveness, self.microphone.config.sample_rate)
        self._segmenter = SpeechSegmenter(SegmenterConfig())
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="robox-asr")
        self._model: FasterWhisperEngine | None = None
        self._model_lock = threading.Lock()
        self._lock = threading.Lock()
        self._emit: RecognitionSink | None = None
        self._turn_audio = bytearray()
        self._preroll: deque[bytes] = deque(maxlen=SegmenterConfig().onset_frames)
        self._frames_since_interim = 0
        self._available: bool | None = None

    @property
    def available(self) -> bool:
        if self._available is None:
            self._available = self.microphone.probe()
        return self._available

    def start(self, emit: RecognitionSink) -> None:
        self._loop = self._loop or asyncio.get_running_loop()
        with self._lock:
            self._emit = emit
            self._turn_audio = bytearray()
            self._preroll.clear()
            self._segmenter.reset()
            self._frames_since_interim = 0
        self.microphone.open(self._on_frame)

    def stop(self) -> None:
        """Stop capturing, flush the pending speech as a final, then end."""
        self.microphone.close()
        with self._lock:
            emit = self._emit
            self._emit = None
            audio = bytes(self._turn_audio) if self._segmenter.in_speech else b""
            self._segmenter.reset()
        if emit is None:
            return
        self._executor.submit(self._finish, emit, audio)

    def abort(self) -> None:
        self.microphone.close()
        with self._lock:
            self._emit = None
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------ #
    # Audio thread
    # ------------------------------------------------------------------ #
    def _on_frame(self, frame: bytes) -> None:
        try:
            voiced = self._vad.is_speech(frame)
        except Exception:  # pragma: no cover - malformed frame
            voiced = False
        with self._lock:
            emit = self._emit
            if emit is None:
                return
            boundary = self._segmenter.push(voiced)
            if boundary == "start":
                self._turn_audio.extend(b"".join(self._preroll))
                self._preroll.clear()
            if self._segmenter.in_speech or boundary == "end":
                self._turn_audio.extend(frame)
                self._frames_since_interim += 1
            else:
                self._preroll.append(frame)
            if boundary == "end":
                self._frames_since_interim = 0
                self._executor.submit(self._transcribe, emit, bytes(self._turn_audio), True)
            elif self._segmenter.in_speech and self._frames_since_interim >= INTERIM_EVERY_FRAMES:
                self._frames_since_interim = 0
                self._executor.submit(self._transcribe, emit, bytes(self._turn_audio), False)

    # ------------------------------------------------------------------ #
    # Worker thread
    # ------------------------------------------------------------------ #
    def _transcribe(self, emit: RecognitionSink, audio: bytes, final: bool) -> None:
        try:
            text = self._ensure_model().transcribe(audio)
        except Exception:
            logger.exception("Transcription failed")
            self._post(emit, RecognitionEvent("error", code="transcription-failed"))
            return
        if text:
            self._post(emit, RecognitionEvent("result", text=text, final=final))

    def _finish(self, emit: RecognitionSink, audio: bytes) -> None:
        if audio:
            self._transcribe(emit, audio, True)
        self._post(emit, RecognitionEvent("end"))

    def _ensure_model(self) -> FasterWhisperEngine:
        with self._model_lock:
            if self._model is None:
                self._model = FasterWhisperEngine(
                    WhisperConfig(
                        model=self.settings.asr_model,
                        device=self.settings.asr_device,
                        compute_type=self.settings.asr_compute_type,
                        language=self.settings.asr_language,
                    )
                )
            return self._model

    def _post(self, emit: RecognitionSink, event: RecognitionEvent) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(emit, event)
        except RuntimeError:  # pragma: no cover - loop already closed
            logger.debug("Dropping recognition %s, loop closed", event.kind)
