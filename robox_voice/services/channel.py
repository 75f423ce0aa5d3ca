"""Streaming reply channel backed by the chat route."""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import Any, Callable, Optional, Protocol, Sequence

import httpx

from ..config.settings import VoiceSettings
from ..core.errors import ChannelError
from ..core.logger import get_logger
from .schemas import ChannelStatus, ChatMessage

logger = get_logger("voice.channel")

ChannelCallback = Callable[[ChannelStatus], None]
MessageCallback = Callable[[ChatMessage], None]


class ReplyChannel(Protocol):
    """Contract of the collaborator that streams model replies."""

    @property
    def status(self) -> ChannelStatus: ...

    @property
    def messages(self) -> Sequence[ChatMessage]: ...

    def send(self, text: str) -> ChatMessage | None: ...

    def subscribe(self, callback: ChannelCallback) -> Callable[[], None]: ...


def parse_stream_line(line: str) -> Optional[dict[str, Any]]:
    """Decode one server-sent-event line of the UI message stream."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data:
        return None
    if data == "[DONE]":
        return {"type": "[DONE]"}
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON stream line: %s", data[:80])
        return None
    return payload if isinstance(payload, dict) else None


class HttpReplyChannel:
    """Async client posting the conversation and streaming the assistant reply."""

    def __init__(self, settings: VoiceSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.chat_path = settings.chat_path
        if client is None:
            timeout = httpx.Timeout(
                connect=10.0,
                read=settings.request_timeout,
                write=10.0,
                pool=None,
            )
            client = httpx.AsyncClient(base_url=settings.base_url, timeout=timeout)
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client
        self._status = ChannelStatus.READY
        self._messages: list[ChatMessage] = []
        self._subscribers: list[ChannelCallback] = []
        self._message_callback: Optional[MessageCallback] = None
        self._task: asyncio.Task[None] | None = None
        self.last_error: Exception | None = None

    @property
    def status(self) -> ChannelStatus:
        return self._status

    @property
    def messages(self) -> Sequence[ChatMessage]:
        return tuple(self._messages)

    def subscribe(self, callback: ChannelCallback) -> Callable[[], None]:
        """Register a status listener; returns a function removing it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    def set_message_callback(self, callback: Optional[MessageCallback]) -> None:
        """Register a callback receiving the assistant message as it grows."""
        self._message_callback = callback

    def send(self, text: str) -> ChatMessage | None:
        """Append a user message and start streaming the reply.

        The status switches to ``submitted`` before this method returns.
        """
        text = (text or "").strip()
        if not text:
            return None
        self._abort()
        message = ChatMessage(id=uuid.uuid4().hex, role="user", text=text)
        self._messages.append(message)
        self.last_error = None
        self._set_status(ChannelStatus.SUBMITTED)
        history = list(self._messages)
        self._task = asyncio.get_running_loop().create_task(self._run(history))
        return message

    def stop(self) -> None:
        """Abort the in-flight request, if any."""
        if self._abort() and self._status in (ChannelStatus.SUBMITTED, ChannelStatus.STREAMING):
            self._set_status(ChannelStatus.READY)

    async def wait(self) -> None:
        """Wait for the in-flight request to finish."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def aclose(self) -> None:
        """Abort any request and close the HTTP client."""
        self._subscribers.clear()
        self._message_callback = None
        self._abort()
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(self, history: list[ChatMessage]) -> None:
        payload = {"messages": [message.to_payload() for message in history]}
        reply: ChatMessage | None = None
        reply_id: str | None = None
        try:
            async with self._client.stream("POST", self.chat_path, json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    event = parse_stream_line(line)
                    if event is None:
                        continue
                    kind = event.get("type")
                    if kind == "start":
                        reply_id = event.get("messageId") or reply_id
                    elif kind == "text-delta":
                        delta = str(event.get("delta") or "")
                        if reply is None:
                            reply = ChatMessage(id=reply_id or uuid.uuid4().hex, role="assistant", text="")
                            self._messages.append(reply)
                        reply.text += delta
                        if self._status is not ChannelStatus.STREAMING:
                            self._set_status(ChannelStatus.STREAMING)
                        self._emit_message(reply)
                    elif kind == "error":
                        raise ChannelError(str(event.get("errorText") or "stream error"))
                    elif kind == "[DONE]":
                        break
        except asyncio.CancelledError:
            logger.info("Reply stream aborted")
            raise
        except (httpx.HTTPError, ChannelError) as exc:
            logger.error("Reply stream failed: %s", exc)
            self.last_error = exc
            self._set_status(ChannelStatus.ERROR)
        except Exception as exc:
            logger.exception("Reply stream crashed")
            self.last_error = exc
            self._set_status(ChannelStatus.ERROR)
        else:
            logger.info("Reply stream finished (%d chars)", len(reply.text) if reply else 0)
            self._set_status(ChannelStatus.READY)

    def _abort(self) -> bool:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def _set_status(self, status: ChannelStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception:
                logger.exception("Channel subscriber failed")

    def _emit_message(self, message: ChatMessage) -> None:
        if self._message_callback:
            try:
                self._message_callback(message)
            except Exception:
                logger.exception("Message callback failed")
