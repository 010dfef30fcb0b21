"""Data channel adapter: readiness plus a single inbound-message handler slot."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from aiortc.exceptions import InvalidStateError


logger = logging.getLogger(__name__)


MessageHandler = Callable[[str], None]
ReadinessListener = Callable[["ChannelReadiness"], Awaitable[None]]


class ChannelReadiness(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ChannelAdapter:
    """Wraps one RTCDataChannel.

    The Host's channel is created before negotiation and starts CONNECTING;
    the Joiner's arrives through the ``datachannel`` event already open.
    """

    def __init__(
        self,
        channel: Any,
        session_id: str = "",
        listener: Optional[ReadinessListener] = None,
    ):
        self._channel = channel
        self._session_id = session_id
        self._listener = listener
        self._handler: Optional[MessageHandler] = None
        self.readiness = ChannelReadiness.CONNECTING

        if channel.readyState == "open":
            self.on_open()

        @channel.on("open")
        async def _handle_open() -> None:
            if self.on_open():
                await self._notify()

        @channel.on("close")
        async def _handle_close() -> None:
            if self.on_close():
                await self._notify()

        @channel.on("message")
        def _handle_message(message: Union[str, bytes]) -> None:
            self.deliver(message)

    @property
    def label(self) -> str:
        return str(getattr(self._channel, "label", ""))

    @property
    def is_open(self) -> bool:
        return self.readiness is ChannelReadiness.OPEN

    @property
    def handler(self) -> Optional[MessageHandler]:
        return self._handler

    def set_handler(self, handler: Optional[MessageHandler]) -> None:
        self._handler = handler

    def on_open(self) -> bool:
        if self.readiness is not ChannelReadiness.CONNECTING:
            return False
        self.readiness = ChannelReadiness.OPEN
        logger.info("Data channel open session=%s label=%s", self._session_id, self.label)
        return True

    def on_close(self) -> bool:
        if self.readiness is ChannelReadiness.CLOSED:
            return False
        self.readiness = ChannelReadiness.CLOSED
        logger.info("Data channel closed session=%s label=%s", self._session_id, self.label)
        return True

    def send(self, message: str) -> bool:
        if not self.is_open or self._channel.readyState != "open":
            logger.warning("Data channel is not open. session=%s readiness=%s", self._session_id, self.readiness.value)
            return False
        try:
            self._channel.send(message)
        except InvalidStateError:
            logger.warning("Data channel is not open. session=%s (engine refused send)", self._session_id)
            return False
        logger.debug("channel send session=%s len=%s", self._session_id, len(message))
        return True

    def deliver(self, message: Union[str, bytes]) -> None:
        if self.readiness is ChannelReadiness.CLOSED:
            return
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        handler = self._handler
        if handler is None:
            logger.debug("channel message dropped (no handler) session=%s len=%s", self._session_id, len(message))
            return
        try:
            handler(message)
        except Exception:
            logger.exception("channel message handler failed session=%s", self._session_id)

    def close(self) -> None:
        self.on_close()
        close = getattr(self._channel, "close", None)
        if callable(close):
            close()

    async def _notify(self) -> None:
        if self._listener:
            await self._listener(self.readiness)
