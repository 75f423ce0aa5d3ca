"""Speech / silence segmentation over per-frame voice-activity decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Boundary = Literal["start", "end"]


@dataclass(slots=True)
class SegmenterConfig:
    """Frame counts deciding when speech starts and stops."""

    onset_frames: int = 3  # consecutive voiced frames to open a segment
    hangover_frames: int = 15  # consecutive silent frames to close it


class SpeechSegmenter:
    """Turns a stream of voiced/unvoiced flags into segment boundaries."""

    def __init__(self, config: SegmenterConfig | None = None) -> None:
        self.config = config or SegmenterConfig()
        self._in_speech = False
        self._voiced = 0
        self._silent = 0

    @property
    def in_speech(self) -> bool:
        return self._in_speech

    def push(self, voiced: bool) -> Optional[Boundary]:
        if voiced:
            self._silent = 0
            if self._in_speech:
                return None
            self._voiced += 1
            if self._voiced >= max(1, self.config.onset_frames):
                self._in_speech = True
                self._voiced = 0
                return "start"
            return None

        self._voiced = 0
        if not self._in_speech:
            return None
        self._silent += 1
        if self._silent >= max(1, self.config.hangover_frames):
            self._in_speech = False
            self._silent = 0
            return "end"
        return None

    def reset(self) -> None:
        self._in_speech = False
        self._voiced = 0
        self._silent = 0
