"""Fuses listening, reply-channel and speech-output signals into one status."""

from __future__ import annotations

import contextlib
from typing import Callable, Iterator

from ..core.logger import get_logger
from ..services.schemas import ChannelStatus, ConversationStatus

logger = get_logger("voice.status")

StatusCallback = Callable[[ConversationStatus], None]


def derive_status(listening: bool, channel_status: ChannelStatus, output_busy: bool) -> ConversationStatus:
    """Apply the fixed precedence: listening, submitted, streaming or speaking, idle."""
    if listening:
        return ConversationStatus.LISTENING
    if channel_status is ChannelStatus.SUBMITTED:
        return ConversationStatus.PROCESSING
    if channel_status is ChannelStatus.STREAMING or output_busy:
        return ConversationStatus.SPEAKING
    return ConversationStatus.IDLE


class StatusCoordinator:
    """Single writer of the conversation status."""

    def __init__(self) -> None:
        self._listening = False
        self._channel = ChannelStatus.READY
        self._output_busy = False
        self._status = ConversationStatus.IDLE
        self._depth = 0
        self._subscribers: list[StatusCallback] = []

    @property
    def status(self) -> ConversationStatus:
        return self._status

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a status listener; returns a function removing it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    def set_listening(self, listening: bool) -> None:
        self._listening = bool(listening)
        self._recompute()

    def set_channel_status(self, status: ChannelStatus | str) -> None:
        self._channel = ChannelStatus(status)
        self._recompute()

    def set_output_busy(self, busy: bool) -> None:
        self._output_busy = bool(busy)
        self._recompute()

    @contextlib.contextmanager
    def batch(self) -> Iterator[None]:
        """Defer publication until every signal in the block has been applied."""
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._recompute()

    def clear(self) -> None:
        self._subscribers.clear()

    def _recompute(self) -> None:
        if self._depth:
            return
        status = derive_status(self._listening, self._channel, self._output_busy)
        if status is self._status:
            return
        logger.info("Status %s -> %s", self._status.value, status.value)
        self._status = status
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception:
                logger.exception("Status subscriber failed")
