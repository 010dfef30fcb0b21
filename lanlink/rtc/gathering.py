"""Candidate gathering: tagged events and the completion tracker.

aiortc gathers every local candidate inside ``setLocalDescription`` and embeds
them in the resulting description; it never trickles them out one by one. The
event stream here is derived from that finalized description, so the tracker
sees the same sequence a trickling engine would produce: some candidates, then
exactly one completion event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Union

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..errors import InvalidState
from ..net.protocol import DescriptionKind, SessionDescription, encode_description


logger = logging.getLogger(__name__)


CANDIDATE_PREFIX = "a=candidate:"


@dataclass(frozen=True)
class CandidateFound:
    candidate: RTCIceCandidate


@dataclass(frozen=True)
class GatheringComplete:
    pass


GatheringEvent = Union[CandidateFound, GatheringComplete]


def gathering_events(description: Optional[RTCSessionDescription]) -> Iterator[GatheringEvent]:
    """Yield one CandidateFound per candidate line, then a single GatheringComplete."""

    if description is not None:
        for line in description.sdp.splitlines():
            line = line.strip()
            if not line.startswith(CANDIDATE_PREFIX):
                continue
            try:
                cand = candidate_from_sdp(line[len(CANDIDATE_PREFIX):])
            except (AssertionError, IndexError, ValueError):
                logger.debug("gathering skipping unparsable candidate line=%r", line)
                continue
            yield CandidateFound(cand)
    yield GatheringComplete()


class GatheringTracker:
    """Freezes the local description exactly once, when gathering completes."""

    def __init__(self, session_id: str = ""):
        self._session_id = session_id
        self._kind: Optional[DescriptionKind] = None
        self._candidates: List[RTCIceCandidate] = []
        self._local_text = ""
        self._complete = False

    @property
    def kind(self) -> Optional[DescriptionKind]:
        return self._kind

    @property
    def begun(self) -> bool:
        return self._kind is not None

    @property
    def complete(self) -> bool:
        return self._complete

    @property
    def local_text(self) -> str:
        return self._local_text

    @property
    def candidates(self) -> List[RTCIceCandidate]:
        return list(self._candidates)

    def begin(self, kind: DescriptionKind) -> None:
        if self._kind is not None:
            raise InvalidState("gathering already started", {"session": self._session_id, "kind": self._kind.value})
        self._kind = kind
        logger.debug("gathering started session=%s kind=%s", self._session_id, kind.value)

    def feed(self, event: GatheringEvent, snapshot: Callable[[], str]) -> None:
        """Consume one gathering event.

        ``snapshot`` returns the engine's current local SDP; it is only called
        on completion.
        """

        if self._kind is None:
            raise InvalidState("gathering event before a local description exists", {"session": self._session_id})
        if self.complete:
            raise InvalidState("gathering already complete", {"session": self._session_id})

        if isinstance(event, CandidateFound):
            self._candidates.append(event.candidate)
            logger.debug(
                "gathering candidate session=%s %s",
                self._session_id,
                candidate_to_sdp(event.candidate),
            )
            return

        self._local_text = encode_description(SessionDescription(self._kind, snapshot()))
        self._complete = True
        logger.info(
            "gathering complete session=%s kind=%s candidates=%s",
            self._session_id,
            self._kind.value,
            len(self._candidates),
        )
