"""Ordered speech output with retry and error policy."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from ..audio.base import SpeechOutputEngine, normalize_output_error
from ..core.errors import OUTPUT_BLOCKED, OUTPUT_DROPPED, OUTPUT_UNAVAILABLE, Notice
from ..core.logger import get_logger
from ..services.schemas import (
    OutputErrorKind,
    OutputEvent,
    Utterance,
    UtteranceEvent,
    UtterancePhase,
    VoiceParams,
)
from .scheduling import Scheduler, TimerHandle, cancel_timer

logger = get_logger("voice.output")

UtteranceCallback = Callable[[UtteranceEvent], None]
BusyCallback = Callable[[bool], None]
NoticeCallback = Callable[[Notice], None]


@dataclass(frozen=True, slots=True)
class SpeechOutputState:
    """Read-only snapshot of the queue."""

    queue: tuple[Utterance, ...]
    active: Utterance | None
    is_draining: bool
    retry_pending: bool


def _same(a: Utterance | None, b: Utterance | None) -> bool:
    return a is not None and b is not None and a.created_at == b.created_at


class SpeechOutputQueue:
    """FIFO of utterances played one at a time through a speech-output engine.

    The drain lock is held from the moment an utterance is popped until its
    terminal engine callback (``end`` or ``error``) or a ``cancel_all``.
    Release is tied to the utterance holding the lock, so a stale or
    duplicated callback cannot release it twice or release a newer holder.
    """

    def __init__(
        self,
        engine: SpeechOutputEngine,
        scheduler: Scheduler,
        *,
        params: VoiceParams | None = None,
        retry_backoff: float = 0.25,
        max_interrupt_retries: int = 3,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.params = params or VoiceParams()
        self.retry_backoff = retry_backoff
        self.max_interrupt_retries = max_interrupt_retries

        self._queue: deque[Utterance] = deque()
        self._active: Utterance | None = None
        self._draining = False
        self._pumping = False
        self._retry_handle: TimerHandle | None = None
        self._interruptions: dict[int, int] = {}

        self._enabled = True
        self._blocked = False
        self._blocked_notice_armed = True
        self._unavailable_noticed = False
        self._last_busy = False

        self._event_callback: Optional[UtteranceCallback] = None
        self._busy_callback: Optional[BusyCallback] = None
        self._notice_callback: Optional[NoticeCallback] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_event_callback(self, callback: Optional[UtteranceCallback]) -> None:
        """Register a callback receiving per-utterance start/end/error/cancel events."""
        self._event_callback = callback

    def set_busy_callback(self, callback: Optional[BusyCallback]) -> None:
        """Register a callback triggered when the queue becomes busy or quiescent."""
        self._busy_callback = callback

    def set_notice_callback(self, callback: Optional[NoticeCallback]) -> None:
        """Register a callback receiving user-visible diagnostics."""
        self._notice_callback = callback

    @property
    def active(self) -> Utterance | None:
        return self._active

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def busy(self) -> bool:
        """True while an utterance plays, waits in the queue or waits for a retry."""
        return self._active is not None or bool(self._queue) or self._retry_handle is not None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def blocked(self) -> bool:
        """True after a permission-denied failure until a user-initiated request."""
        return self._blocked

    @property
    def state(self) -> SpeechOutputState:
        return SpeechOutputState(
            queue=tuple(self._queue),
            active=self._active,
            is_draining=self._draining,
            retry_pending=self._retry_handle is not None,
        )

    def enqueue(self, text: str, id: str | None = None, *, user_initiated: bool = False) -> Utterance | None:
        """Append an utterance and start playback if idle.

        Returns the queued utterance, or None when the request was ignored.
        """
        text = (text or "").strip()
        if not text or not self._enabled:
            return None
        if not self.engine.available:
            if not self._unavailable_noticed:
                self._unavailable_noticed = True
                self._emit_notice(Notice(OUTPUT_UNAVAILABLE, "Speech output is not available on this device."))
            return None
        if self._blocked:
            if not user_initiated:
                logger.debug("Output blocked, dropping automatic utterance")
                return None
            logger.info("User-initiated speech request lifts the output block")
            self._blocked = False

        utterance = Utterance(text=text, id=id)
        self._queue.append(utterance)
        logger.debug("Utterance %s queued (%d pending)", utterance.created_at, len(self._queue))
        self._notify_busy()
        self.drain()
        return utterance

    def drain(self) -> None:
        """Start the head utterance if nothing is playing; safe to call at any time."""
        if self._pumping:
            return
        self._pumping = True
        try:
            while self._can_start():
                utterance = self._queue.popleft()
                self._active = utterance
                self._draining = True
                self._request_speak(utterance)
        finally:
            self._pumping = False
        self._notify_busy()

    def cancel_all(self) -> None:
        """Drop every queued utterance and stop the active one."""
        cancel_timer(self._retry_handle)
        self._retry_handle = None
        self._queue.clear()
        self._interruptions.clear()

        active = self._active
        self._active = None
        self._draining = False
        if active is not None:
            logger.info("Cancelling utterance %s", active.created_at)
            try:
                self.engine.cancel()
            except Exception:
                logger.exception("Engine cancel failed")
            self._emit_event(UtteranceEvent(active.id, UtterancePhase.CANCEL))
        self._notify_busy()

    def set_enabled(self, enabled: bool) -> None:
        """Globally enable or disable speech output."""
        self._enabled = bool(enabled)
        if not self._enabled:
            self.cancel_all()

    def close(self) -> None:
        """Release timers and the engine; no callback fires afterwards."""
        self.cancel_all()
        self._event_callback = None
        self._busy_callback = None
        self._notice_callback = None
        try:
            self.engine.close()
        except Exception:
            logger.exception("Engine close failed")

    # ------------------------------------------------------------------ #
    # Engine callbacks
    # ------------------------------------------------------------------ #
    def handle_engine_event(self, event: OutputEvent) -> None:
        """Apply one engine event; never raises."""
        try:
            self._apply(event)
        except Exception:
            logger.exception("Output event %s failed", event.kind)
            if _same(self._active, event.utterance):
                self._release(event.utterance)
                self.drain()

    def _apply(self, event: OutputEvent) -> None:
        utterance = event.utterance
        if not _same(self._active, utterance):
            logger.debug("Ignoring stale %s for utterance %s", event.kind, utterance.created_at)
            return
        if event.kind == "start":
            self._blocked_notice_armed = True
            self._emit_event(UtteranceEvent(utterance.id, UtterancePhase.START))
        elif event.kind == "end":
            self._interruptions.pop(utterance.created_at, None)
            self._release(utterance)
            self._emit_event(UtteranceEvent(utterance.id, UtterancePhase.END))
            self.drain()
        elif event.kind == "error":
            self._fail(utterance, normalize_output_error(event.code), event.detail or event.code)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _can_start(self) -> bool:
        return (
            self._enabled
            and self._active is None
            and not self._draining
            and self._retry_handle is None
            and bool(self._queue)
        )

    def _request_speak(self, utterance: Utterance) -> None:
        try:
            self.engine.speak(utterance, self.params, self.handle_engine_event)
        except Exception as exc:
            logger.exception("Engine refused utterance %s", utterance.created_at)
            self._fail(utterance, OutputErrorKind.OTHER, repr(exc))

    def _release(self, utterance: Utterance) -> bool:
        """Clear the active slot and the drain lock if ``utterance`` holds them."""
        if not _same(self._active, utterance):
            logger.debug("Lock release by %s ignored, not the holder", utterance.created_at)
            return False
        self._active = None
        self._draining = False
        return True

    def _fail(self, utterance: Utterance, kind: OutputErrorKind, detail: str | None) -> None:
        if not self._release(utterance):
            return
        if kind is OutputErrorKind.PERMISSION_DENIED:
            dropped = len(self._queue)
            cancel_timer(self._retry_handle)
            self._retry_handle = None
            self._queue.clear()
            self._interruptions.clear()
            self._blocked = True
            logger.warning("Speech output not allowed (%s); dropped %d queued utterances", detail, dropped)
            self._emit_event(UtteranceEvent(utterance.id, UtterancePhase.ERROR, kind))
            if self._blocked_notice_armed:
                self._blocked_notice_armed = False
                self._emit_notice(
                    Notice(
                        OUTPUT_BLOCKED,
                        "Speech output is blocked until you interact with the device.",
                        details={"dropped": dropped + 1},
                    )
                )
            self._notify_busy()
            return

        if kind is OutputErrorKind.INTERRUPTED:
            count = self._interruptions.get(utterance.created_at, 0) + 1
            if count <= self.max_interrupt_retries:
                self._interruptions[utterance.created_at] = count
                self._queue.appendleft(utterance)
                logger.info("Utterance %s interrupted, retry %d", utterance.created_at, count)
                self._retry_handle = self.scheduler.call_later(self.retry_backoff, self._retry)
                self._notify_busy()
                return
            self._interruptions.pop(utterance.created_at, None)
            logger.warning("Utterance %s dropped after %d interruptions", utterance.created_at, count - 1)
            self._emit_event(UtteranceEvent(utterance.id, UtterancePhase.ERROR, kind))
            self._emit_notice(
                Notice(OUTPUT_DROPPED, "A reply could not be read aloud.", details={"utterance": utterance.id})
            )
            self.drain()
            return

        self._interruptions.pop(utterance.created_at, None)
        logger.error("Utterance %s failed: %s", utterance.created_at, detail)
        self._emit_event(UtteranceEvent(utterance.id, UtterancePhase.ERROR, kind))
        self.drain()

    def _retry(self) -> None:
        self._retry_handle = None
        try:
            self.drain()
        except Exception:  # pragma: no cover - drain guards the engine call itself
            logger.exception("Retry drain failed")

    def _notify_busy(self) -> None:
        busy = self.busy
        if busy == self._last_busy:
            return
        self._last_busy = busy
        if self._busy_callback:
            try:
                self._busy_callback(busy)
            except Exception:
                logger.exception("Busy callback failed")

    def _emit_event(self, event: UtteranceEvent) -> None:
        if self._event_callback:
            try:
                self._event_callback(event)
            except Exception:
                logger.exception("Utterance callback failed")

    def _emit_notice(self, notice: Notice) -> None:
        logger.info("Notice %s: %s", notice.code, notice.message)
        if self._notice_callback:
            try:
                self._notice_callback(notice)
            except Exception:
                logger.exception("Notice callback failed")
