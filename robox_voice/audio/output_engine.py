"""Speech-output engine playing Piper voices through sounddevice."""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import sounddevice as sd

from ..config.paths import resolve
from ..config.settings import VoiceSettings
from ..core.logger import get_logger
from ..services.schemas import OutputEvent, Utterance, VoiceParams
from .base import OutputSink
from .playback import PlaybackConfig, SpeechPlayback
from .tts import PiperTTS, find_voice

logger = get_logger("voice.engine")


class PiperOutputEngine:
    """Synthesizes and plays one utterance at a time on a worker thread."""

    def __init__(self, settings: VoiceSettings, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.settings = settings
        self._loop = loop
        self._voices: dict[str, PiperTTS] = {}
        self._voices_lock = threading.Lock()
        self._playback = SpeechPlayback(PlaybackConfig(device_name=settings.output_device))
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="robox-tts")
        self._cancel = threading.Event()
        self._available: bool | None = None

    @property
    def available(self) -> bool:
        if self._available is None:
            try:
                find_voice(resolve(self.settings.tts_model_dir), self.settings.voice_id)
            except FileNotFoundError:
                logger.warning("No Piper voice under %s", self.settings.tts_model_dir)
                self._available = False
            else:
                self._available = self._playback.has_output_device(self.settings.output_device)
        return self._available

    def speak(self, utterance: Utterance, params: VoiceParams, emit: OutputSink) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._cancel = threading.Event()
        cancel = self._cancel

        def post(kind: str, code: str | None = None, detail: str | None = None) -> None:
            event = OutputEvent(kind, utterance, code=code, detail=detail)  # type: ignore[arg-type]
            try:
                loop.call_soon_threadsafe(emit, event)
            except RuntimeError:  # pragma: no cover - loop already closed
                logger.debug("Dropping %s event, loop closed", kind)

        def work() -> None:
            if cancel.is_set():
                return
            try:
                tts = self._voice(params.voice_id)
                pcm, sample_rate, channels = tts.synthesize(utterance.text, rate=params.rate, pitch=params.pitch)
                if cancel.is_set():
                    return
                post("start")
                if self._playback.play(pcm, sample_rate, channels, cancel):
                    post("end")
            except FileNotFoundError as exc:
                post("error", "synthesis-failed", str(exc))
            except sd.PortAudioError as exc:
                post("error", "audio-busy", str(exc))
            except Exception as exc:
                logger.exception("Speech synthesis failed")
                post("error", "engine-error", repr(exc))

        self._executor.submit(work)

    def cancel(self) -> None:
        self._cancel.set()

    def close(self) -> None:
        self._cancel.set()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _voice(self, voice_id: str) -> PiperTTS:
        with self._voices_lock:
            tts = self._voices.get(voice_id)
            if tts is None:
                tts = PiperTTS(find_voice(resolve(self.settings.tts_model_dir), voice_id))
                self._voices[voice_id] = tts
            return tts
