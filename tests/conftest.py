"""Fakes standing in for aiortc's RTCPeerConnection / RTCDataChannel."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError


BASE_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\nm=application 9 UDP/DTLS/SCTP webrtc-datachannel\r\n"

CANDIDATE_LINES = [
    "a=candidate:1 1 udp 2130706431 192.168.1.10 50000 typ host",
    "a=candidate:2 1 udp 2130706175 10.0.0.7 50001 typ host",
]


class FakeEmitter:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}

    def on(self, event: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self._handlers.setdefault(event, []).append(func)
            return func

        return decorator

    async def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str = "gameChannel", ready_state: str = "connecting") -> None:
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent: List[str] = []

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise InvalidStateError
        self.sent.append(data)

    def close(self) -> None:
        self.readyState = "closed"

    async def open(self) -> None:
        self.readyState = "open"
        await self.emit("open")


class FakePeerConnection(FakeEmitter):
    """Just enough of RTCPeerConnection for the state machine.

    ``gather_gate`` holds setLocalDescription (i.e. gathering) until set.
    """

    def __init__(
        self,
        gather_gate: Optional[asyncio.Event] = None,
        reject_remote: bool = False,
        reject_local: bool = False,
        candidates: Optional[List[str]] = None,
    ) -> None:
        super().__init__()
        self.gather_gate = gather_gate
        self.reject_remote = reject_remote
        self.reject_local = reject_local
        self.candidates = list(CANDIDATE_LINES if candidates is None else candidates)
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.connectionState = "new"
        self.channels: List[FakeDataChannel] = []
        self.closed = False

    def createDataChannel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=BASE_SDP, type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=BASE_SDP, type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        if self.reject_local:
            raise ValueError("DTLS setup attribute must be 'active' or 'passive' for an answer")
        if self.gather_gate is not None:
            await self.gather_gate.wait()
        sdp = description.sdp + "".join(line + "\r\n" for line in self.candidates)
        self.localDescription = RTCSessionDescription(sdp=sdp, type=description.type)

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        if self.reject_remote:
            raise ValueError("Media sections in answer do not match offer")
        self.remoteDescription = description

    async def close(self) -> None:
        self.closed = True
        self.connectionState = "closed"


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def offer_text() -> str:
    return '{"type":"offer","sdp":"' + BASE_SDP.replace("\r\n", "\\r\\n") + '"}'


@pytest.fixture
def answer_text() -> str:
    return '{"type":"answer","sdp":"' + BASE_SDP.replace("\r\n", "\\r\\n") + '"}'
