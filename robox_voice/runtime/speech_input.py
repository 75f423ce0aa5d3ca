"""Speech recognition session with a finalize debounce."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import Callable, ContextManager, Optional

from ..audio.base import RECOGNITION_NOTICE_CODES, RecognitionEngine
from ..core.errors import INPUT_ERROR, INPUT_UNAVAILABLE, Notice
from ..core.logger import get_logger
from ..services.schemas import RecognitionEvent, Utterance
from .scheduling import Scheduler, TimerHandle, cancel_timer

logger = get_logger("voice.input")

UtteranceHandler = Callable[[Utterance], None]
ActiveCallback = Callable[[bool], None]
TranscriptCallback = Callable[[str], None]
NoticeCallback = Callable[[Notice], None]


@dataclass(frozen=True, slots=True)
class RecognitionState:
    """Read-only snapshot of the recognition session."""

    is_active: bool = False
    interim_text: str = ""
    pending_final: str | None = None
    silence_deadline: bool = False


class SpeechInputSession:
    """Owns at most one recognition session and commits one utterance per turn.

    Engines emit several ``final`` results for one spoken sentence, so a final
    only arms a silence timer; the most recent final hypothesis is committed
    once the timer fires.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        scheduler: Scheduler,
        *,
        silence_window: float = 0.6,
        min_final_chars: int = 2,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.silence_window = silence_window
        self.min_final_chars = min_final_chars

        self._active = False
        self._interim = ""
        self._pending_final: str | None = None
        self._timer: TimerHandle | None = None
        self._session = 0
        self._engine_ended = False
        self._unavailable_noticed = False

        self._before_start: Optional[Callable[[], None]] = None
        self._commit_scope: Callable[[], ContextManager[object]] = contextlib.nullcontext
        self._utterance_handler: Optional[UtteranceHandler] = None
        self._active_callback: Optional[ActiveCallback] = None
        self._transcript_callback: Optional[TranscriptCallback] = None
        self._notice_callback: Optional[NoticeCallback] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_before_start(self, hook: Optional[Callable[[], None]]) -> None:
        """Hook run right before a session opens (used to silence speech output)."""
        self._before_start = hook

    def set_commit_scope(self, factory: Optional[Callable[[], ContextManager[object]]]) -> None:
        """Context entered around teardown and hand-off of a committed utterance."""
        self._commit_scope = factory or contextlib.nullcontext

    def set_utterance_handler(self, handler: Optional[UtteranceHandler]) -> None:
        """Register the receiver of finalized utterances."""
        self._utterance_handler = handler

    def set_active_callback(self, callback: Optional[ActiveCallback]) -> None:
        """Register a callback triggered when listening starts or stops."""
        self._active_callback = callback

    def set_transcript_callback(self, callback: Optional[TranscriptCallback]) -> None:
        """Register a callback receiving the live transcript."""
        self._transcript_callback = callback

    def set_notice_callback(self, callback: Optional[NoticeCallback]) -> None:
        """Register a callback receiving user-visible diagnostics."""
        self._notice_callback = callback

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def interim_text(self) -> str:
        return self._interim

    @property
    def state(self) -> RecognitionState:
        return RecognitionState(
            is_active=self._active,
            interim_text=self._interim,
            pending_final=self._pending_final,
            silence_deadline=self._timer is not None,
        )

    def start(self) -> bool:
        """Open a recognition session; returns False when refused."""
        if not self.engine.available:
            if not self._unavailable_noticed:
                self._unavailable_noticed = True
                self._emit_notice(Notice(INPUT_UNAVAILABLE, "Speech recognition is not available on this device."))
            return False
        if self._active:
            logger.debug("Recognition already active, start rejected")
            return False

        if self._before_start:
            try:
                self._before_start()
            except Exception:
                logger.exception("Pre-start hook failed")

        self._session += 1
        session = self._session
        self._active = True
        self._engine_ended = False
        self._interim = ""
        self._pending_final = None
        logger.info("Recognition session %d started", session)
        self._notify_active(True)
        try:
            self.engine.start(lambda event: self.handle_engine_event(session, event))
        except Exception as exc:
            logger.exception("Recognition engine failed to start")
            self._teardown()
            self._emit_notice(Notice(INPUT_ERROR, "The microphone could not be opened.", details=repr(exc)))
            return False
        return True

    def stop(self) -> None:
        """End the session without committing; safe to call at any time."""
        if not self._active:
            return
        logger.info("Recognition session %d stopped", self._session)
        self._teardown(stop_engine=True)

    def toggle(self) -> bool:
        """Stop when listening, start otherwise; returns the new listening flag."""
        if self._active:
            self.stop()
            return False
        return self.start()

    def close(self) -> None:
        """Tear down the session and release the engine."""
        self.stop()
        try:
            self.engine.abort()
        except Exception:
            logger.exception("Recognition abort failed")
        self._before_start = None
        self._utterance_handler = None
        self._active_callback = None
        self._transcript_callback = None
        self._notice_callback = None

    # ------------------------------------------------------------------ #
    # Engine callbacks
    # ------------------------------------------------------------------ #
    def handle_engine_event(self, session: int, event: RecognitionEvent) -> None:
        """Apply one engine event for ``session``; never raises."""
        if session != self._session or not self._active:
            logger.debug("Ignoring %s from stale recognition session %d", event.kind, session)
            return
        try:
            if event.kind == "result":
                self._on_result(event)
            elif event.kind == "error":
                self._on_error(event)
            elif event.kind == "end":
                self._on_end()
        except Exception:
            logger.exception("Recognition event %s failed", event.kind)
            self._teardown(stop_engine=True)

    def _on_result(self, event: RecognitionEvent) -> None:
        text = (event.text or "").strip()
        self._set_interim(text)
        if not event.final:
            return
        if len(text) < self.min_final_chars:
            logger.debug("Ignoring short final %r", text)
            return
        self._pending_final = text
        cancel_timer(self._timer)
        self._timer = self.scheduler.call_later(self.silence_window, self._finalize)

    def _on_error(self, event: RecognitionEvent) -> None:
        code = (event.code or "").lower()
        logger.warning("Recognition error: %s", code or "unknown")
        self._engine_ended = True
        self._teardown()
        if code in RECOGNITION_NOTICE_CODES:
            self._emit_notice(Notice(INPUT_ERROR, "Speech recognition stopped.", details={"code": code}))

    def _on_end(self) -> None:
        self._engine_ended = True
        if self._pending_final is not None:
            # The finalize timer decides whether an utterance was produced.
            logger.debug("Engine ended with a pending final, waiting for the silence window")
            return
        logger.info("Recognition session %d ended by the engine", self._session)
        self._teardown()

    def _finalize(self) -> None:
        self._timer = None
        text = self._pending_final
        if not self._active or not text:
            return
        logger.info("Committing utterance (%d chars)", len(text))
        utterance = Utterance(text=text)
        with self._commit_scope():
            self._teardown(stop_engine=not self._engine_ended)
            if self._utterance_handler:
                try:
                    self._utterance_handler(utterance)
                except Exception:
                    logger.exception("Utterance handler failed")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _teardown(self, *, stop_engine: bool = False) -> None:
        cancel_timer(self._timer)
        self._timer = None
        self._pending_final = None
        was_active = self._active
        self._active = False
        if stop_engine and not self._engine_ended:
            self._engine_ended = True
            try:
                self.engine.stop()
            except Exception:
                logger.exception("Recognition engine stop failed")
        self._set_interim("")
        if was_active:
            self._notify_active(False)

    def _set_interim(self, text: str) -> None:
        if text == self._interim:
            return
        self._interim = text
        if self._transcript_callback:
            try:
                self._transcript_callback(text)
            except Exception:
                logger.exception("Transcript callback failed")

    def _notify_active(self, active: bool) -> None:
        if self._active_callback:
            try:
                self._active_callback(active)
            except Exception:
                logger.exception("Listening callback failed")

    def _emit_notice(self, notice: Notice) -> None:
        logger.info("Notice %s: %s", notice.code, notice.message)
        if self._notice_callback:
            try:
                self._notice_callback(notice)
            except Exception:
                logger.exception("Notice callback failed")
