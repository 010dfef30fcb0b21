"""Session facade: role-specific operations for one two-party link."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..config import REJECT, SessionConfig
from ..errors import ChannelNotOpen, InvalidState, LanLinkError
from ..net.protocol import DescriptionKind, decode_description
from .channel import MessageHandler
from .connection import (
    ConnectionState,
    PeerConnectionFactory,
    PeerConnectionMachine,
    Role,
    SessionCallbacks,
)


logger = logging.getLogger(__name__)


class LanSession:
    """Host or join a peer-to-peer link and exchange text messages over it.

    Each facade owns at most one live PeerConnectionMachine. Starting again
    (``start_host``/``join_host``) replaces it, or is refused while the current
    one is still negotiating when ``config.replace_policy`` is ``"reject"``.
    A malformed offer is rejected before the current machine is touched.
    The message handler belongs to the facade and carries over to every
    machine it creates.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        callbacks: Optional[SessionCallbacks] = None,
        pc_factory: Optional[PeerConnectionFactory] = None,
    ):
        self._config = config or SessionConfig()
        self._callbacks = callbacks or SessionCallbacks()
        self._pc_factory = pc_factory
        self._machine: Optional[PeerConnectionMachine] = None
        self._handler: Optional[MessageHandler] = None
        self._lock = asyncio.Lock()

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def machine(self) -> Optional[PeerConnectionMachine]:
        return self._machine

    @property
    def role(self) -> Optional[Role]:
        return self._machine.role if self._machine else None

    @property
    def state(self) -> ConnectionState:
        return self._machine.state if self._machine else ConnectionState.NEW

    @property
    def channel_open(self) -> bool:
        return self._machine is not None and self._machine.channel_open

    # ----------------------
    # Host
    # ----------------------
    async def create_local_offer(self) -> None:
        machine = await self._replace(Role.HOST)
        await machine.create_local_offer()

    def get_local_offer(self) -> str:
        return self._local_text(Role.HOST)

    async def start_host(self) -> str:
        """Create an offer and return its text once gathering has completed."""
        machine = await self._replace(Role.HOST)
        await machine.create_local_offer()
        return await self._wait_local(machine)

    async def accept_remote_answer(self, answer_text: str) -> None:
        machine = self._require_machine("accept_remote_answer")
        await machine.accept_remote_answer(answer_text)

    set_answer = accept_remote_answer

    # ----------------------
    # Joiner
    # ----------------------
    async def accept_remote_offer(self, offer_text: str) -> None:
        decode_description(offer_text, DescriptionKind.OFFER)
        machine = await self._replace(Role.JOINER)
        await machine.accept_remote_offer(offer_text)

    def get_local_answer(self) -> str:
        return self._local_text(Role.JOINER)

    async def join_host(self, offer_text: str) -> str:
        """Answer a host's offer and return the answer text once gathering has completed."""
        decode_description(offer_text, DescriptionKind.OFFER)
        machine = await self._replace(Role.JOINER)
        await machine.accept_remote_offer(offer_text)
        return await self._wait_local(machine)

    # ----------------------
    # Messaging
    # ----------------------
    async def send_message(self, text: str) -> bool:
        machine = self._machine
        if machine is None:
            logger.warning("Data channel is not open. (no session)")
            await self._report(ChannelNotOpen("Data channel is not open.", {"state": ConnectionState.NEW.value}))
            return False
        return await machine.send_message(text)

    send_data = send_message

    def on_message_received(self, handler: Optional[MessageHandler]) -> None:
        """Replace the inbound message handler. The previous one gets nothing further."""
        self._handler = handler
        if self._machine is not None:
            self._machine.on_message_received(handler)

    on_data_received = on_message_received

    async def close(self) -> None:
        async with self._lock:
            machine = self._machine
        if machine is not None:
            await machine.close()

    # ----------------------
    # Internals
    # ----------------------
    async def _replace(self, role: Role) -> PeerConnectionMachine:
        async with self._lock:
            old = self._machine
            if old is not None and self._config.replace_policy == REJECT and old.is_negotiating:
                raise InvalidState(
                    "a session is still negotiating",
                    {"session": old.session_id, "state": old.state.value},
                )

            machine = PeerConnectionMachine(
                role,
                config=self._config,
                callbacks=self._callbacks,
                pc_factory=self._pc_factory,
            )
            machine.on_message_received(self._handler)
            self._machine = machine

        if old is not None:
            logger.info(
                "session replaced old=%s old_state=%s new=%s role=%s",
                old.session_id,
                old.state.value,
                machine.session_id,
                role.value,
            )
            await old.close()
        else:
            logger.info("session created session=%s role=%s", machine.session_id, role.value)
        return machine

    async def _report(self, error: LanLinkError) -> None:
        if self._callbacks.on_error:
            try:
                await self._callbacks.on_error(error)
            except Exception:
                logger.exception("session on_error callback failed")

    async def _wait_local(self, machine: PeerConnectionMachine) -> str:
        timeout = self._config.gathering_timeout
        if timeout is None:
            return await machine.wait_local_description()
        return await asyncio.wait_for(machine.wait_local_description(), timeout)

    def _require_machine(self, op: str) -> PeerConnectionMachine:
        if self._machine is None:
            raise InvalidState(f"{op}: no session has been started", {"state": ConnectionState.NEW.value})
        return self._machine

    def _local_text(self, role: Role) -> str:
        machine = self._machine
        if machine is None or machine.role is not role:
            return ""
        return machine.get_local_description()
