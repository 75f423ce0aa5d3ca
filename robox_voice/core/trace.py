from __future__ import annotations

import uuid
from contextvars import ContextVar


_turn_id: ContextVar[str | None] = ContextVar("turn_id", default=None)


def new_turn_id() -> str:
    tid = uuid.uuid4().hex[:12]
    _turn_id.set(tid)
    return tid


def set_turn_id(tid: str | None) -> None:
    _turn_id.set(tid)


def get_turn_id() -> str | None:
    return _turn_id.get()
