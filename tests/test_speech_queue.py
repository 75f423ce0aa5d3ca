from __future__ import annotations

import pytest

from robox_voice.audio.base import normalize_output_error
from robox_voice.core.errors import OUTPUT_BLOCKED, OUTPUT_DROPPED, OUTPUT_UNAVAILABLE
from robox_voice.runtime.speech_queue import SpeechOutputQueue
from robox_voice.services.schemas import OutputErrorKind, OutputEvent, UtterancePhase


@pytest.fixture()
def queue(output_engine, scheduler) -> SpeechOutputQueue:
    return SpeechOutputQueue(output_engine, scheduler, retry_backoff=0.25, max_interrupt_retries=3)


def _record(queue: SpeechOutputQueue):
    events: list = []
    notices: list = []
    busy: list[bool] = []
    queue.set_event_callback(events.append)
    queue.set_notice_callback(notices.append)
    queue.set_busy_callback(busy.append)
    return events, notices, busy


def test_enqueue_plays_in_fifo_order(queue, output_engine) -> None:
    for text in ("A", "B", "C"):
        queue.enqueue(text)
    assert output_engine.spoken == ["A"]
    assert queue.pending == 2

    output_engine.finish()
    assert output_engine.spoken == ["A", "B"]
    output_engine.finish()
    output_engine.finish()
    assert output_engine.spoken == ["A", "B", "C"]
    assert queue.active is None
    assert not queue.busy


def test_empty_or_blank_text_is_ignored(queue, output_engine) -> None:
    assert queue.enqueue("") is None
    assert queue.enqueue("   ") is None
    assert output_engine.calls == []
    assert not queue.busy


def test_enqueue_strips_text_and_keeps_id(queue, output_engine) -> None:
    utterance = queue.enqueue("  hello  ", "msg-1")
    assert utterance is not None
    assert utterance.text == "hello"
    assert output_engine.current.id == "msg-1"


def test_single_active_across_interleavings(queue, output_engine) -> None:
    queue.enqueue("A")
    queue.enqueue("B")
    queue.drain()
    queue.drain()
    assert len(output_engine.calls) == 1
    output_engine.start()
    queue.enqueue("C")
    assert len(output_engine.calls) == 1
    assert queue.active is not None and queue.active.text == "A"
    output_engine.emit("end")
    assert len(output_engine.calls) == 2
    assert queue.active.text == "B"


def test_events_for_each_phase(queue, output_engine) -> None:
    events, _notices, _busy = _record(queue)
    queue.enqueue("hello", "m1")
    output_engine.finish()
    assert [(e.utterance_id, e.phase) for e in events] == [("m1", UtterancePhase.START), ("m1", UtterancePhase.END)]


def test_interrupted_retries_at_head_before_later_items(queue, output_engine, scheduler) -> None:
    for text in ("A", "B", "C"):
        queue.enqueue(text)
    output_engine.fail("interrupted")

    assert queue.active is None
    assert not queue.is_draining
    assert [u.text for u in queue.state.queue] == ["A", "B", "C"]
    assert queue.busy
    queue.enqueue("D")
    queue.drain()
    assert output_engine.spoken == ["A"]

    scheduler.advance(0.25)
    assert output_engine.spoken == ["A", "A"]
    for _ in range(4):
        output_engine.finish()
    assert output_engine.spoken == ["A", "A", "B", "C", "D"]


def test_interrupted_is_not_surfaced(queue, output_engine, scheduler) -> None:
    events, notices, _busy = _record(queue)
    queue.enqueue("A")
    output_engine.fail("interrupted")
    scheduler.advance(0.25)
    output_engine.finish()
    assert notices == []
    assert [e.phase for e in events] == [UtterancePhase.START, UtterancePhase.END]


def test_interrupted_retry_ceiling_drops_item(queue, output_engine, scheduler) -> None:
    events, notices, _busy = _record(queue)
    queue.enqueue("A")
    queue.enqueue("B")
    for _ in range(3):
        output_engine.fail("interrupted")
        scheduler.advance(0.25)
    assert output_engine.spoken == ["A", "A", "A", "A"]

    output_engine.fail("interrupted")
    assert output_engine.spoken[-1] == "B"
    assert events[-1].phase is UtterancePhase.ERROR
    assert events[-1].error is OutputErrorKind.INTERRUPTED
    assert [n.code for n in notices] == [OUTPUT_DROPPED]


def test_permission_denied_drains_queue(queue, output_engine) -> None:
    events, notices, busy = _record(queue)
    for text in ("A", "B", "C"):
        queue.enqueue(text)
    output_engine.fail("not-allowed")

    assert queue.pending == 0
    assert queue.active is None
    assert not queue.is_draining
    assert not queue.busy
    assert busy[-1] is False
    assert [n.code for n in notices] == [OUTPUT_BLOCKED]
    assert events[-1].error is OutputErrorKind.PERMISSION_DENIED

    assert queue.enqueue("D") is None
    assert output_engine.spoken == ["A"]


def test_permission_denied_resumes_after_user_request(queue, output_engine) -> None:
    _events, notices, _busy = _record(queue)
    queue.enqueue("A")
    output_engine.fail("not-allowed")
    queue.enqueue("auto")
    assert output_engine.spoken == ["A"]

    queue.enqueue("again", user_initiated=True)
    assert output_engine.spoken == ["A", "again"]
    output_engine.fail("not-allowed")
    assert len(notices) == 1

    queue.enqueue("third", user_initiated=True)
    output_engine.finish()
    queue.enqueue("fourth")
    assert output_engine.spoken[-1] == "fourth"
    output_engine.fail("not-allowed")
    assert len(notices) == 2


def test_other_error_drops_only_failing_item(queue, output_engine) -> None:
    events, notices, _busy = _record(queue)
    queue.enqueue("A")
    queue.enqueue("B")
    output_engine.fail("synthesis-failed")
    assert output_engine.spoken == ["A", "B"]
    assert events[-1].error is OutputErrorKind.OTHER
    assert notices == []


def test_engine_exception_on_speak_is_contained(queue, output_engine) -> None:
    def boom(*_args):
        raise RuntimeError("engine down")

    output_engine.speak = boom  # type: ignore[method-assign]
    queue.enqueue("A")
    queue.enqueue("B")
    assert queue.active is None
    assert not queue.is_draining
    assert queue.pending == 0


def test_drain_lock_released_exactly_once(queue, output_engine) -> None:
    queue.enqueue("A")
    first = output_engine.current
    output_engine.fail("synthesis-failed")
    queue.enqueue("B")
    assert queue.is_draining

    # duplicate terminal callback for A must not release B's lease
    queue.handle_engine_event(OutputEvent("error", first, code="synthesis-failed"))
    queue.handle_engine_event(OutputEvent("end", first))
    assert queue.is_draining
    assert queue.active is not None and queue.active.text == "B"
    assert queue._release(first) is False

    output_engine.finish()
    assert not queue.is_draining
    output_engine.emit("end")
    assert not queue.is_draining
    assert queue.active is None


def test_cancel_all_is_idempotent_and_ignores_late_callbacks(queue, output_engine) -> None:
    events, _notices, _busy = _record(queue)
    queue.enqueue("A", "a")
    queue.enqueue("B", "b")
    output_engine.start()

    queue.cancel_all()
    queue.cancel_all()
    assert output_engine.cancels == 1
    assert queue.pending == 0
    assert queue.active is None
    assert not queue.is_draining

    output_engine.emit("end")
    phases = [e.phase for e in events]
    assert phases == [UtterancePhase.START, UtterancePhase.CANCEL]


def test_cancel_callback_reported_by_engine_is_stale(queue, output_engine) -> None:
    output_engine.error_on_cancel = "interrupted"
    queue.enqueue("A")
    queue.cancel_all()
    assert queue.pending == 0
    assert not queue.busy


def test_cancel_during_retry_backoff(queue, output_engine, scheduler) -> None:
    queue.enqueue("A")
    output_engine.fail("interrupted")
    queue.cancel_all()
    scheduler.advance(1.0)
    assert output_engine.spoken == ["A"]
    assert not queue.busy


def test_disabled_output_ignores_enqueue(queue, output_engine) -> None:
    queue.enqueue("A")
    queue.set_enabled(False)
    assert output_engine.cancels == 1
    assert queue.enqueue("B") is None
    queue.set_enabled(True)
    queue.enqueue("C")
    assert output_engine.spoken == ["A", "C"]


def test_unavailable_engine_notice_is_one_shot(queue, output_engine) -> None:
    output_engine.available = False
    _events, notices, _busy = _record(queue)
    assert queue.enqueue("A") is None
    assert queue.enqueue("B") is None
    assert [n.code for n in notices] == [OUTPUT_UNAVAILABLE]
    assert output_engine.calls == []


def test_close_releases_engine(queue, output_engine) -> None:
    queue.enqueue("A")
    queue.close()
    assert output_engine.closed
    assert queue.active is None


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        ("not-allowed", OutputErrorKind.PERMISSION_DENIED),
        ("interrupted", OutputErrorKind.INTERRUPTED),
        ("canceled", OutputErrorKind.INTERRUPTED),
        ("audio-busy", OutputErrorKind.INTERRUPTED),
        ("synthesis-failed", OutputErrorKind.OTHER),
        (None, OutputErrorKind.OTHER),
    ],
)
def test_normalize_output_error(code, kind) -> None:
    assert normalize_output_error(code) is kind
