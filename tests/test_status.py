from __future__ import annotations

import pytest

from robox_voice.runtime.status import StatusCoordinator, derive_status
from robox_voice.services.schemas import ChannelStatus, ConversationStatus


@pytest.mark.parametrize(
    ("listening", "channel", "busy", "expected"),
    [
        (True, ChannelStatus.STREAMING, True, ConversationStatus.LISTENING),
        (True, ChannelStatus.SUBMITTED, False, ConversationStatus.LISTENING),
        (False, ChannelStatus.SUBMITTED, True, ConversationStatus.PROCESSING),
        (False, ChannelStatus.STREAMING, False, ConversationStatus.SPEAKING),
        (False, ChannelStatus.READY, True, ConversationStatus.SPEAKING),
        (False, ChannelStatus.ERROR, True, ConversationStatus.SPEAKING),
        (False, ChannelStatus.READY, False, ConversationStatus.IDLE),
        (False, ChannelStatus.ERROR, False, ConversationStatus.IDLE),
    ],
)
def test_derive_status_precedence(listening, channel, busy, expected) -> None:
    assert derive_status(listening, channel, busy) is expected


def test_notifies_only_on_change() -> None:
    coordinator = StatusCoordinator()
    seen: list[ConversationStatus] = []
    coordinator.subscribe(seen.append)
    coordinator.set_output_busy(False)
    coordinator.set_channel_status("submitted")
    coordinator.set_channel_status(ChannelStatus.SUBMITTED)
    coordinator.set_output_busy(True)
    assert seen == [ConversationStatus.PROCESSING]
    assert coordinator.status is ConversationStatus.PROCESSING


def test_batch_skips_intermediate_idle() -> None:
    coordinator = StatusCoordinator()
    seen: list[ConversationStatus] = []
    coordinator.subscribe(seen.append)
    coordinator.set_channel_status(ChannelStatus.STREAMING)
    with coordinator.batch():
        coordinator.set_channel_status(ChannelStatus.READY)
        with coordinator.batch():
            coordinator.set_output_busy(True)
        assert seen == [ConversationStatus.SPEAKING]
    assert seen == [ConversationStatus.SPEAKING]


def test_unsubscribe_and_failing_subscriber() -> None:
    coordinator = StatusCoordinator()
    seen: list[ConversationStatus] = []

    def broken(_status: ConversationStatus) -> None:
        raise RuntimeError("boom")

    coordinator.subscribe(broken)
    unsubscribe = coordinator.subscribe(seen.append)
    coordinator.set_listening(True)
    unsubscribe()
    unsubscribe()
    coordinator.set_listening(False)
    assert seen == [ConversationStatus.LISTENING]
    assert coordinator.status is ConversationStatus.IDLE
