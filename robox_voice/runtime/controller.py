"""Orchestrates speech input, the reply channel and speech output."""

from __future__ import annotations

from typing import Callable, Optional

from ..audio.base import RecognitionEngine, SpeechOutputEngine
from ..config.settings import VoiceSettings
from ..core.errors import CHANNEL_ERROR, Notice
from ..core.logger import get_logger
from ..core.trace import new_turn_id
from ..services.channel import ReplyChannel
from ..services.schemas import ChannelStatus, ConversationStatus, Utterance, UtteranceEvent, UtterancePhase, VoiceParams
from ..state.app_state import AppState
from .scheduling import LoopScheduler, Scheduler
from .speech_input import SpeechInputSession
from .speech_queue import SpeechOutputQueue
from .status import StatusCoordinator

logger = get_logger("voice.controller")

StatusCallback = Callable[[ConversationStatus], None]
TranscriptCallback = Callable[[str], None]
UtteranceCallback = Callable[[UtteranceEvent], None]
NoticeCallback = Callable[[Notice], None]


class VoiceController:
    """High-level coordinator exposed to the display layer."""

    def __init__(
        self,
        state: AppState,
        *,
        channel: ReplyChannel,
        output_engine: SpeechOutputEngine,
        recognition_engine: RecognitionEngine,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.state = state
        self.channel = channel
        self.scheduler = scheduler or LoopScheduler()
        self.coordinator = StatusCoordinator()

        settings = state.settings
        self.output = SpeechOutputQueue(
            output_engine,
            self.scheduler,
            params=self._voice_params(settings),
            retry_backoff=settings.retry_backoff,
            max_interrupt_retries=settings.max_interrupt_retries,
        )
        self.input = SpeechInputSession(
            recognition_engine,
            self.scheduler,
            silence_window=settings.silence_window,
            min_final_chars=settings.min_final_chars,
        )

        self._status_callback: Optional[StatusCallback] = None
        self._transcript_callback: Optional[TranscriptCallback] = None
        self._utterance_callback: Optional[UtteranceCallback] = None
        self._notice_callback: Optional[NoticeCallback] = None
        self._last_spoken_text: str | None = None
        self._closed = False

        self.input.set_before_start(self.output.cancel_all)
        self.input.set_commit_scope(self.coordinator.batch)
        self.input.set_utterance_handler(self._handle_utterance)
        self.input.set_active_callback(self.coordinator.set_listening)
        self.input.set_transcript_callback(self._handle_transcript)
        self.input.set_notice_callback(self._handle_notice)
        self.output.set_busy_callback(self.coordinator.set_output_busy)
        self.output.set_event_callback(self._handle_utterance_event)
        self.output.set_notice_callback(self._handle_notice)

        self._unsubscribe_status = self.coordinator.subscribe(self._handle_status)
        self._unsubscribe_channel = channel.subscribe(self._handle_channel_status)
        self.coordinator.set_channel_status(channel.status)
        self.set_output_enabled(settings.output_enabled)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        """Register a callback receiving every status change."""
        self._status_callback = callback

    def set_transcript_callback(self, callback: Optional[TranscriptCallback]) -> None:
        """Register a callback receiving the live interim transcript."""
        self._transcript_callback = callback

    def set_utterance_callback(self, callback: Optional[UtteranceCallback]) -> None:
        """Register a callback receiving per-utterance output events."""
        self._utterance_callback = callback

    def set_notice_callback(self, callback: Optional[NoticeCallback]) -> None:
        """Register a callback receiving user-visible notices."""
        self._notice_callback = callback

    @property
    def status(self) -> ConversationStatus:
        return self.coordinator.status

    @property
    def interim_transcript(self) -> str:
        return self.input.interim_text if self.input.is_active else ""

    def toggle_listening(self) -> bool:
        """Start or stop the microphone; returns True while listening."""
        with self.coordinator.batch():
            return self.input.toggle()

    def speak(self, text: str, id: str | None = None) -> Utterance | None:
        """Read text aloud on explicit user request."""
        return self.output.enqueue(text, id, user_initiated=True)

    def stop_speaking(self) -> None:
        """Cancel the active utterance and everything queued behind it."""
        self.output.cancel_all()

    def set_output_enabled(self, enabled: bool) -> None:
        """Globally enable or disable speech output."""
        self.output.set_enabled(enabled)
        self.state.output_enabled = self.output.enabled

    def submit_text(self, text: str) -> bool:
        """Send typed text as a new turn."""
        with self.coordinator.batch():
            return self._submit(text)

    def apply_settings(self, settings: VoiceSettings) -> None:
        """Refresh tunables after the settings changed."""
        self.state.settings = settings
        self.output.params = self._voice_params(settings)
        self.output.retry_backoff = settings.retry_backoff
        self.output.max_interrupt_retries = settings.max_interrupt_retries
        self.input.silence_window = settings.silence_window
        self.input.min_final_chars = settings.min_final_chars
        if settings.output_enabled != self.output.enabled:
            self.set_output_enabled(settings.output_enabled)

    def close(self) -> None:
        """Release timers, engine leases and subscriptions."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_channel()
        self.input.close()
        self.output.close()
        self._unsubscribe_status()
        self.coordinator.clear()
        self._status_callback = None
        self._transcript_callback = None
        self._utterance_callback = None
        self._notice_callback = None

    # ------------------------------------------------------------------ #
    # Signal handlers
    # ------------------------------------------------------------------ #
    def _submit(self, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        turn = new_turn_id()
        logger.info("Submitting turn %s", turn)
        # A new turn interrupts whatever is still being read aloud.
        self.output.cancel_all()
        self._last_spoken_text = None
        return self.channel.send(text) is not None

    def _handle_utterance(self, utterance: Utterance) -> None:
        self._submit(utterance.text)

    def _handle_channel_status(self, status: ChannelStatus) -> None:
        with self.coordinator.batch():
            if status is ChannelStatus.READY and self.state.settings.auto_speak:
                self._speak_latest_reply()
            elif status is ChannelStatus.ERROR:
                self._handle_notice(Notice(CHANNEL_ERROR, "The reply could not be retrieved."))
            self.coordinator.set_channel_status(status)

    def _speak_latest_reply(self) -> None:
        # Only a reply newer than the latest user message belongs to this turn.
        for message in reversed(self.channel.messages):
            if message.role == "user":
                return
            text = message.text.strip()
            if not text or text == self._last_spoken_text:
                return
            if self.output.enqueue(text, message.id) is not None:
                self._last_spoken_text = text
            return

    def _handle_status(self, status: ConversationStatus) -> None:
        self.state.status = status
        if self._status_callback:
            try:
                self._status_callback(status)
            except Exception:
                logger.exception("Status callback failed")

    def _handle_transcript(self, text: str) -> None:
        self.state.interim_transcript = text
        if self._transcript_callback:
            try:
                self._transcript_callback(text)
            except Exception:
                logger.exception("Transcript callback failed")

    def _handle_utterance_event(self, event: UtteranceEvent) -> None:
        self.state.last_event = event
        self.state.speaking_id = event.utterance_id if event.phase is UtterancePhase.START else None
        if self._utterance_callback:
            try:
                self._utterance_callback(event)
            except Exception:
                logger.exception("Utterance callback failed")

    def _handle_notice(self, notice: Notice) -> None:
        self.state.notices.append(notice)
        if self._notice_callback:
            try:
                self._notice_callback(notice)
            except Exception:
                logger.exception("Notice callback failed")

    @staticmethod
    def _voice_params(settings: VoiceSettings) -> VoiceParams:
        return VoiceParams(rate=settings.rate, pitch=settings.pitch, voice_id=settings.voice_id)
