"""Data schemas shared by the orchestrator, the engines and the reply channel."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional


class ConversationStatus(str, Enum):
    """Single authoritative conversation state shown to the visitor."""

    IDLE = "Idle"
    LISTENING = "Listening"
    PROCESSING = "Processing"
    SPEAKING = "Speaking"


class ChannelStatus(str, Enum):
    """Lifecycle of one request on the streaming reply channel."""

    SUBMITTED = "submitted"
    STREAMING = "streaming"
    READY = "ready"
    ERROR = "error"


class OutputErrorKind(str, Enum):
    """Normalized speech-output failure."""

    PERMISSION_DENIED = "permission-denied"
    INTERRUPTED = "interrupted"
    OTHER = "other"


class UtterancePhase(str, Enum):
    """Per-utterance lifecycle phase reported to the UI."""

    START = "start"
    END = "end"
    ERROR = "error"
    CANCEL = "cancel"


_ORDER = itertools.count(1)


def next_order_key() -> int:
    """Return a strictly increasing order key for new utterances."""
    return next(_ORDER)


@dataclass(frozen=True, slots=True)
class Utterance:
    """One unit of text scheduled for speech output."""

    text: str
    id: str | None = None
    created_at: int = field(default_factory=next_order_key)
    enqueued_at: float = field(default_factory=time.monotonic, compare=False)


@dataclass(slots=True)
class UtteranceEvent:
    """Output progress event used for UI highlighting."""

    utterance_id: str | None
    phase: UtterancePhase
    error: OutputErrorKind | None = None


@dataclass(slots=True)
class OutputEvent:
    """Raw event emitted by a speech-output engine for one utterance."""

    kind: Literal["start", "end", "error"]
    utterance: Utterance
    code: str | None = None
    detail: str | None = None


@dataclass(slots=True)
class RecognitionEvent:
    """Raw event emitted by a recognition engine during one session."""

    kind: Literal["result", "error", "end"]
    text: str = ""
    final: bool = False
    code: str | None = None
    confidence: Optional[float] = None


@dataclass(slots=True)
class VoiceParams:
    """Synthesis parameters forwarded to the output engine."""

    rate: float = 1.0
    pitch: float = 1.0
    voice_id: str = ""


@dataclass(slots=True)
class ChatMessage:
    """Conversation message exchanged with the reply channel."""

    id: str
    role: Literal["user", "assistant"]
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Serialize the message in the UI-message shape the chat route expects."""
        return {
            "id": self.id,
            "role": self.role,
            "parts": [{"type": "text", "text": self.text}],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChatMessage":
        """Construct a ChatMessage from a UI-message payload."""
        parts = payload.get("parts") or []
        text = "".join(
            str(part.get("text") or "")
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text"
        )
        if not text:
            text = str(payload.get("content") or "")
        role = payload.get("role")
        if role not in ("user", "assistant"):
            role = "assistant"
        return cls(id=str(payload.get("id") or ""), role=role, text=text)
