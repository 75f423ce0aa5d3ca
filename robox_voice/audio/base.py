"""Ports implemented by platform speech engines."""

from __future__ import annotations

from typing import Callable, Protocol

from ..services.schemas import OutputErrorKind, OutputEvent, RecognitionEvent, Utterance, VoiceParams

OutputSink = Callable[[OutputEvent], None]
RecognitionSink = Callable[[RecognitionEvent], None]

_PERMISSION_CODES = frozenset({"not-allowed", "permission-denied", "audio-denied"})
_INTERRUPTED_CODES = frozenset({"interrupted", "canceled", "cancelled", "audio-busy"})

# Recognition codes that deserve a user-visible notice; the others end silently.
RECOGNITION_NOTICE_CODES = frozenset({"not-allowed", "audio-capture", "service-not-allowed", "network"})


def normalize_output_error(code: str | None) -> OutputErrorKind:
    """Map an engine-specific error code to one of the three output failure kinds."""
    normalized = (code or "").strip().lower()
    if normalized in _PERMISSION_CODES:
        return OutputErrorKind.PERMISSION_DENIED
    if normalized in _INTERRUPTED_CODES:
        return OutputErrorKind.INTERRUPTED
    return OutputErrorKind.OTHER


class SpeechOutputEngine(Protocol):
    """Exclusive lease on the platform speech-synthesis channel.

    ``speak`` plays one utterance and reports ``start`` then ``end`` or
    ``error`` through ``emit``, on the orchestrator's event loop. ``cancel``
    is best-effort and may or may not report anything for the cancelled
    utterance.
    """

    @property
    def available(self) -> bool: ...

    def speak(self, utterance: Utterance, params: VoiceParams, emit: OutputSink) -> None: ...

    def cancel(self) -> None: ...

    def close(self) -> None: ...


class RecognitionEngine(Protocol):
    """Exclusive lease on the platform speech-recognition channel.

    Each ``start`` opens one session whose events go to ``emit``; a session
    always finishes with an ``end`` event unless aborted.
    """

    @property
    def available(self) -> bool: ...

    def start(self, emit: RecognitionSink) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


class NullOutputEngine:
    """Stand-in used when the device has no speech output."""

    available = False

    def speak(self, utterance: Utterance, params: VoiceParams, emit: OutputSink) -> None:
        raise RuntimeError("speech output unavailable")

    def cancel(self) -> None:
        return None

    def close(self) -> None:
        return None


class NullRecognitionEngine:
    """Stand-in used when the device has no microphone."""

    available = False

    def start(self, emit: RecognitionSink) -> None:
        raise RuntimeError("speech recognition unavailable")

    def stop(self) -> None:
        return None

    def abort(self) -> None:
        return None
