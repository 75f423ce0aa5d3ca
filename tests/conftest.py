from __future__ import annotations

import itertools
from typing import Callable

import pytest

from robox_voice.config.settings import get_settings
from robox_voice.services.schemas import (
    ChannelStatus,
    ChatMessage,
    OutputEvent,
    RecognitionEvent,
    Utterance,
    VoiceParams,
)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("ROBOX_HOME", str(tmp_path / "home"))
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


class ManualHandle:
    def __init__(self, due: float, seq: int, callback: Callable[[], None]) -> None:
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler driven by ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[ManualHandle] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, next(self._seq), callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._handles if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self._handles.remove(handle)
            self.now = handle.due
            handle.callback()
        self.now = target
        self._handles = [h for h in self._handles if not h.cancelled]


class FakeOutputEngine:
    """Records speak calls; tests drive the callbacks explicitly."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls: list[tuple[Utterance, VoiceParams, Callable[[OutputEvent], None]]] = []
        self.cancels = 0
        self.closed = False
        self.error_on_cancel: str | None = None

    @property
    def spoken(self) -> list[str]:
        return [utterance.text for utterance, _params, _emit in self.calls]

    @property
    def current(self) -> Utterance:
        return self.calls[-1][0]

    def speak(self, utterance: Utterance, params: VoiceParams, emit: Callable[[OutputEvent], None]) -> None:
        self.calls.append((utterance, params, emit))

    def cancel(self) -> None:
        self.cancels += 1
        if self.error_on_cancel and self.calls:
            utterance, _params, emit = self.calls[-1]
            emit(OutputEvent("error", utterance, code=self.error_on_cancel))

    def close(self) -> None:
        self.closed = True

    def emit(self, kind: str, code: str | None = None, index: int = -1) -> None:
        utterance, _params, emit = self.calls[index]
        emit(OutputEvent(kind, utterance, code=code))  # type: ignore[arg-type]

    def start(self) -> None:
        self.emit("start")

    def finish(self) -> None:
        self.emit("start")
        self.emit("end")

    def fail(self, code: str) -> None:
        self.emit("error", code)


class FakeRecognitionEngine:
    """Records sessions; tests push recognition events into the latest one."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.sinks: list[Callable[[RecognitionEvent], None]] = []
        self.stops = 0
        self.aborts = 0
        self.fail_start = False

    def start(self, emit: Callable[[RecognitionEvent], None]) -> None:
        if self.fail_start:
            raise OSError("device busy")
        self.sinks.append(emit)

    def stop(self) -> None:
        self.stops += 1

    def abort(self) -> None:
        self.aborts += 1

    def push(self, event: RecognitionEvent, session: int = -1) -> None:
        self.sinks[session](event)

    def interim(self, text: str) -> None:
        self.push(RecognitionEvent("result", text=text, final=False))

    def final(self, text: str) -> None:
        self.push(RecognitionEvent("result", text=text, final=True))

    def error(self, code: str) -> None:
        self.push(RecognitionEvent("error", code=code))

    def end(self) -> None:
        self.push(RecognitionEvent("end"))


class FakeChannel:
    """In-memory reply channel."""

    def __init__(self) -> None:
        self.status = ChannelStatus.READY
        self.messages: list[ChatMessage] = []
        self.sent: list[str] = []
        self._subscribers: list[Callable[[ChannelStatus], None]] = []
        self._ids = itertools.count(1)

    def subscribe(self, callback: Callable[[ChannelStatus], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def send(self, text: str) -> ChatMessage | None:
        text = text.strip()
        if not text:
            return None
        self.sent.append(text)
        message = ChatMessage(id=f"u{next(self._ids)}", role="user", text=text)
        self.messages.append(message)
        self._set(ChannelStatus.SUBMITTED)
        return message

    def stream(self, delta: str) -> None:
        last = self.messages[-1] if self.messages else None
        if last is None or last.role != "assistant" or self.status is not ChannelStatus.STREAMING:
            last = ChatMessage(id=f"a{next(self._ids)}", role="assistant", text="")
            self.messages.append(last)
        last.text += delta
        self._set(ChannelStatus.STREAMING)

    def finish(self) -> None:
        self._set(ChannelStatus.READY)

    def fail(self) -> None:
        self._set(ChannelStatus.ERROR)

    def _set(self, status: ChannelStatus) -> None:
        if status is self.status:
            return
        self.status = status
        for callback in list(self._subscribers):
            callback(status)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def output_engine() -> FakeOutputEngine:
    return FakeOutputEngine()


@pytest.fixture()
def recognition_engine() -> FakeRecognitionEngine:
    return FakeRecognitionEngine()


@pytest.fixture()
def channel() -> FakeChannel:
    return FakeChannel()
