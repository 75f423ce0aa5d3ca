"""User-visible diagnostics raised by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .trace import get_turn_id

OUTPUT_UNAVAILABLE = "output-unavailable"
OUTPUT_BLOCKED = "output-blocked"
OUTPUT_DROPPED = "output-dropped"
INPUT_UNAVAILABLE = "input-unavailable"
INPUT_ERROR = "input-error"
CHANNEL_ERROR = "channel-error"


class ChannelError(RuntimeError):
    """The reply channel could not complete a request."""


@dataclass(slots=True, frozen=True)
class Notice:
    """One-shot diagnostic surfaced to the visitor."""

    code: str
    message: str
    details: Any | None = None

    def to_payload(self) -> Dict[str, Any]:
        return notice_payload(self.code, self.message, details=self.details, turn_id=get_turn_id())


def notice_payload(code: str, message: str, *, details: Any | None = None, turn_id: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    if turn_id is not None:
        payload["error"]["turn_id"] = turn_id
    return payload
