"""Shared state model observed by the display layer."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..config.settings import VoiceSettings
from ..core.errors import Notice
from ..services.schemas import ConversationStatus, UtteranceEvent


@dataclass(slots=True)
class AppState:
    """Reactive snapshot mirrored by the controller."""

    settings: VoiceSettings = field(default_factory=VoiceSettings)
    status: ConversationStatus = ConversationStatus.IDLE
    interim_transcript: str = ""
    output_enabled: bool = True
    speaking_id: str | None = None
    last_event: UtteranceEvent | None = None
    notices: list[Notice] = field(default_factory=list)

    @property
    def listening(self) -> bool:
        return self.status is ConversationStatus.LISTENING

    @property
    def speaking(self) -> bool:
        return self.status is ConversationStatus.SPEAKING
