"""One peer connection, driven from the first description to an open channel."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterator, Optional, Set

from aiortc import RTCPeerConnection, RTCSessionDescription

from ..config import SessionConfig
from ..errors import (
    ChannelNotOpen,
    InvalidState,
    LanLinkError,
    NegotiationRejected,
    TransportFailed,
)
from ..net.protocol import DescriptionKind, decode_description
from .channel import ChannelAdapter, ChannelReadiness, MessageHandler
from .gathering import GatheringTracker, gathering_events


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]
PeerConnectionFactory = Callable[[], Any]


class Role(str, Enum):
    HOST = "host"
    JOINER = "joiner"


class ConnectionState(str, Enum):
    NEW = "new"
    DESCRIPTION_CREATED = "description-created"
    AWAITING_REMOTE = "awaiting-remote"
    DESCRIPTION_EXCHANGED = "description-exchanged"
    CHANNEL_OPEN = "channel-open"
    CLOSED = "closed"
    FAILED = "failed"


_ORDER: Dict[ConnectionState, int] = {
    ConnectionState.NEW: 0,
    ConnectionState.DESCRIPTION_CREATED: 1,
    ConnectionState.AWAITING_REMOTE: 2,
    ConnectionState.DESCRIPTION_EXCHANGED: 3,
    ConnectionState.CHANNEL_OPEN: 4,
}

TERMINAL_STATES = frozenset({ConnectionState.CLOSED, ConnectionState.FAILED})
NEGOTIATING_STATES = frozenset(
    {
        ConnectionState.DESCRIPTION_CREATED,
        ConnectionState.AWAITING_REMOTE,
        ConnectionState.DESCRIPTION_EXCHANGED,
    }
)


@dataclass
class SessionCallbacks:
    on_state: Optional[AsyncCallback] = None  # (session_id: str, state: ConnectionState)
    on_error: Optional[AsyncCallback] = None  # (error: LanLinkError)
    on_log: Optional[AsyncCallback] = None  # (msg: str)


class PeerConnectionMachine:
    """Owns one RTCPeerConnection and its ConnectionState.

    Host:   NEW -> DESCRIPTION_CREATED -> AWAITING_REMOTE -> DESCRIPTION_EXCHANGED -> CHANNEL_OPEN
    Joiner: NEW -> DESCRIPTION_CREATED -> DESCRIPTION_EXCHANGED -> CHANNEL_OPEN

    Forward moves only. CLOSED and FAILED are absorbing; once there every
    operation raises InvalidState.
    """

    def __init__(
        self,
        role: Role,
        config: Optional[SessionConfig] = None,
        callbacks: Optional[SessionCallbacks] = None,
        pc_factory: Optional[PeerConnectionFactory] = None,
    ):
        self._role = role
        self.session_id = uuid.uuid4().hex[:8]
        self._config = config or SessionConfig()
        self._callbacks = callbacks or SessionCallbacks()

        if pc_factory is None:
            rtc_config = self._config.rtc_configuration()
            pc_factory = lambda: RTCPeerConnection(configuration=rtc_config)  # noqa: E731
        self._pc = pc_factory()

        self._state = ConnectionState.NEW
        self._tracker = GatheringTracker(self.session_id)
        self._channel: Optional[ChannelAdapter] = None
        self._handler: Optional[MessageHandler] = None
        self._failure: Optional[LanLinkError] = None
        self._settled = asyncio.Event()
        self._gathering_task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[None]] = set()
        self._op: Optional[str] = None
        self._closed = False

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.debug("rtc pc[%s] connectionState=%s", self.session_id, state)
            if self._closed:
                return
            await self._log(f"pc[{self.session_id}] connectionState={state}")
            if state == "failed":
                await self._fail(TransportFailed("transport connection failed", {"session": self.session_id}))

    # ----------------------
    # State
    # ----------------------
    @property
    def role(self) -> Role:
        return self._role

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def is_negotiating(self) -> bool:
        return self._op is not None or self._state in NEGOTIATING_STATES

    @property
    def failure(self) -> Optional[LanLinkError]:
        return self._failure

    @property
    def channel(self) -> Optional[ChannelAdapter]:
        return self._channel

    @property
    def channel_open(self) -> bool:
        return self._channel is not None and self._channel.is_open

    @property
    def local_kind(self) -> Optional[DescriptionKind]:
        return self._tracker.kind

    def get_local_description(self) -> str:
        """Serialized local description, or "" until gathering has completed."""
        return self._tracker.local_text

    async def wait_local_description(self) -> str:
        """Suspend until gathering completes. No timeout is applied here."""

        if not self._tracker.begun:
            raise InvalidState("no local description is being created", self._details())
        await self._settled.wait()
        if self._failure is not None:
            raise self._failure
        if not self._tracker.complete:
            raise InvalidState("session closed before gathering completed", self._details())
        return self._tracker.local_text

    # ----------------------
    # Negotiation
    # ----------------------
    async def create_local_offer(self) -> None:
        self._require_role(Role.HOST, "create_local_offer")
        self._require_state("create_local_offer", ConnectionState.NEW)

        with self._operation("create_local_offer"):
            # Host opens the channel before the offer so the offer carries it.
            self._attach_channel(self._pc.createDataChannel(self._config.channel_label))
            try:
                offer = await self._pc.createOffer()
            except Exception as e:
                raise await self._engine_error("createOffer", e) from e
            self._check_current("create_local_offer")

            await self._log(f"Created offer for session {self.session_id}")
            await self._advance(ConnectionState.DESCRIPTION_CREATED)
            self._start_gathering(DescriptionKind.OFFER, offer)

    async def accept_remote_offer(self, text: str) -> None:
        self._require_role(Role.JOINER, "accept_remote_offer")
        self._require_state("accept_remote_offer", ConnectionState.NEW)
        remote = decode_description(text, DescriptionKind.OFFER)

        with self._operation("accept_remote_offer"):
            logger.info("rtc offer received session=%s sdp_len=%s", self.session_id, len(remote.payload))

            @self._pc.on("datachannel")
            def on_datachannel(channel: Any) -> None:
                if self._closed or self.is_terminal:
                    return
                if self._channel is not None:
                    logger.warning("rtc extra channel ignored session=%s label=%s", self.session_id, getattr(channel, "label", ""))
                    return
                adapter = self._attach_channel(channel)
                if adapter.is_open:
                    self._spawn(self._on_channel_readiness(ChannelReadiness.OPEN))

            try:
                await self._pc.setRemoteDescription(RTCSessionDescription(sdp=remote.payload, type=remote.kind.value))
                answer = await self._pc.createAnswer()
            except Exception as e:
                raise await self._engine_error("apply offer", e) from e
            self._check_current("accept_remote_offer")

            await self._log(f"Created answer for session {self.session_id}")
            await self._advance(ConnectionState.DESCRIPTION_CREATED)
            self._start_gathering(DescriptionKind.ANSWER, answer)

    async def accept_remote_answer(self, text: str) -> None:
        self._require_role(Role.HOST, "accept_remote_answer")
        if self._state is ConnectionState.NEW:
            raise InvalidState("accept_remote_answer: no local offer exists yet", self._details())
        self._require_state(
            "accept_remote_answer",
            ConnectionState.DESCRIPTION_CREATED,
            ConnectionState.AWAITING_REMOTE,
        )
        remote = decode_description(text, DescriptionKind.ANSWER)

        with self._operation("accept_remote_answer"):
            logger.info("rtc answer received session=%s sdp_len=%s", self.session_id, len(remote.payload))
            # The offer must be applied locally before an answer can be.
            task = self._gathering_task
            if task is not None and not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise
                self._check_current("accept_remote_answer")

            try:
                await self._pc.setRemoteDescription(RTCSessionDescription(sdp=remote.payload, type=remote.kind.value))
            except Exception as e:
                raise await self._engine_error("apply answer", e) from e
            self._check_current("accept_remote_answer")

            await self._advance(ConnectionState.DESCRIPTION_EXCHANGED)
            await self._sync_channel_state()

    # ----------------------
    # Messaging
    # ----------------------
    async def send_message(self, text: str) -> bool:
        """Send one message. Never raises; failures go to on_error."""

        if self.is_terminal:
            logger.warning("rtc send on %s session=%s", self._state.value, self.session_id)
            await self._report(InvalidState(f"send_message not allowed in state {self._state.value}", self._details()))
            return False

        if self._channel is None:
            logger.warning("Data channel is not open. session=%s (no channel yet)", self.session_id)
        elif self._channel.send(text):
            return True

        await self._report(ChannelNotOpen("Data channel is not open.", self._details()))
        return False

    def on_message_received(self, handler: Optional[MessageHandler]) -> None:
        self._handler = handler
        if self._channel is not None:
            self._channel.set_handler(handler)

    # ----------------------
    # Teardown
    # ----------------------
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self.is_terminal:
            await self._set_state(ConnectionState.CLOSED)
        self._settled.set()

        if self._gathering_task is not None and not self._gathering_task.done():
            self._gathering_task.cancel()
        for task in list(self._tasks):
            task.cancel()

        try:
            if self._channel is not None:
                self._channel.close()
        finally:
            await self._pc.close()
        logger.debug("rtc closed pc session=%s", self.session_id)

    # ----------------------
    # Internals
    # ----------------------
    def _attach_channel(self, channel: Any) -> ChannelAdapter:
        adapter = ChannelAdapter(channel, session_id=self.session_id, listener=self._on_channel_readiness)
        adapter.set_handler(self._handler)
        self._channel = adapter
        logger.debug("rtc channel attached session=%s label=%s", self.session_id, adapter.label)
        return adapter

    def _start_gathering(self, kind: DescriptionKind, description: RTCSessionDescription) -> None:
        self._tracker.begin(kind)
        self._gathering_task = asyncio.create_task(self._gather(description), name=f"gather-{self.session_id}")

    async def _gather(self, description: RTCSessionDescription) -> None:
        try:
            await self._pc.setLocalDescription(description)
        except Exception as e:
            if not self._closed:
                await self._fail(
                    NegotiationRejected("engine rejected local description", self._details(error=str(e)))
                )
            return

        if self._closed or self.is_terminal:
            return

        for event in gathering_events(self._pc.localDescription):
            self._tracker.feed(event, self._local_sdp)

        if self._role is Role.HOST:
            await self._advance(ConnectionState.AWAITING_REMOTE)
        else:
            await self._advance(ConnectionState.DESCRIPTION_EXCHANGED)
            await self._sync_channel_state()
        self._settled.set()

    def _local_sdp(self) -> str:
        return self._pc.localDescription.sdp

    async def _on_channel_readiness(self, readiness: ChannelReadiness) -> None:
        if self._closed or self.is_terminal:
            return
        if readiness is ChannelReadiness.OPEN:
            if _ORDER[self._state] < _ORDER[ConnectionState.DESCRIPTION_EXCHANGED]:
                logger.warning("rtc channel open before exchange session=%s state=%s", self.session_id, self._state.value)
                return
            await self._log("Data channel open")
            await self._advance(ConnectionState.CHANNEL_OPEN)
        elif readiness is ChannelReadiness.CLOSED:
            await self._log("Data channel closed")

    async def _sync_channel_state(self) -> None:
        if self.channel_open:
            await self._on_channel_readiness(ChannelReadiness.OPEN)

    async def _advance(self, state: ConnectionState) -> bool:
        if self.is_terminal or _ORDER[state] <= _ORDER[self._state]:
            return False
        await self._set_state(state)
        return True

    async def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        self._state = state
        logger.info("rtc state session=%s %s -> %s", self.session_id, old.value, state.value)
        if self._callbacks.on_state:
            try:
                await self._callbacks.on_state(self.session_id, state)
            except Exception:
                logger.exception("rtc on_state callback failed session=%s", self.session_id)

    async def _fail(self, error: LanLinkError) -> None:
        if self.is_terminal:
            return
        self._failure = error
        logger.error("rtc session failed session=%s error=%s", self.session_id, error)
        await self._set_state(ConnectionState.FAILED)
        self._settled.set()
        await self._report(error)

    async def _engine_error(self, step: str, exc: Exception) -> LanLinkError:
        if self._closed or self.is_terminal:
            return InvalidState(f"{step}: session is no longer current", self._details())
        error = NegotiationRejected(f"engine rejected {step}", self._details(error=str(exc)))
        await self._fail(error)
        return error

    async def _report(self, error: LanLinkError) -> None:
        if self._callbacks.on_error:
            try:
                await self._callbacks.on_error(error)
            except Exception:
                logger.exception("rtc on_error callback failed session=%s", self.session_id)

    async def _log(self, msg: str) -> None:
        if self._callbacks.on_log:
            try:
                await self._callbacks.on_log(msg)
            except Exception:
                logger.exception("rtc on_log callback failed session=%s", self.session_id)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _require_role(self, role: Role, op: str) -> None:
        if self._role is not role:
            raise InvalidState(f"{op} is a {role.value} operation", self._details())

    def _require_state(self, op: str, *allowed: ConnectionState) -> None:
        if self._op is not None:
            raise InvalidState(f"{op}: {self._op} already in progress", self._details())
        if self._state not in allowed:
            raise InvalidState(f"{op} not allowed in state {self._state.value}", self._details())

    def _check_current(self, op: str) -> None:
        if self._closed or self.is_terminal:
            raise InvalidState(f"{op}: session is no longer current", self._details())

    @contextlib.contextmanager
    def _operation(self, op: str) -> Iterator[None]:
        self._op = op
        try:
            yield
        finally:
            self._op = None

    def _details(self, **extra: Any) -> Dict[str, Any]:
        details: Dict[str, Any] = {"session": self.session_id, "role": self._role.value, "state": self._state.value}
        details.update(extra)
        return details
