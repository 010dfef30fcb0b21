"""Tests for candidate gathering events and the completion tracker."""

from __future__ import annotations

import json

import pytest
from aiortc import RTCSessionDescription

from lanlink.errors import InvalidState
from lanlink.net.protocol import DescriptionKind
from lanlink.rtc.gathering import (
    CandidateFound,
    GatheringComplete,
    GatheringTracker,
    gathering_events,
)

from conftest import BASE_SDP, CANDIDATE_LINES


def _description(lines: list[str]) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=BASE_SDP + "".join(line + "\r\n" for line in lines), type="offer")


def test_events_end_with_single_completion() -> None:
    events = list(gathering_events(_description(CANDIDATE_LINES)))

    assert [type(e) for e in events] == [CandidateFound, CandidateFound, GatheringComplete]
    first = events[0]
    assert isinstance(first, CandidateFound)
    assert first.candidate.ip == "192.168.1.10"
    assert first.candidate.port == 50000
    assert first.candidate.type == "host"


def test_events_without_candidates() -> None:
    assert list(gathering_events(_description([]))) == [GatheringComplete()]
    assert list(gathering_events(None)) == [GatheringComplete()]


def test_events_skip_unparsable_candidate() -> None:
    events = list(gathering_events(_description(["a=candidate:broken", CANDIDATE_LINES[1]])))
    assert len(events) == 2
    assert isinstance(events[0], CandidateFound)
    assert events[0].candidate.ip == "10.0.0.7"


def test_events_are_lazy() -> None:
    it = gathering_events(_description(CANDIDATE_LINES))
    assert isinstance(next(it), CandidateFound)


def test_text_empty_until_completion_then_stable() -> None:
    tracker = GatheringTracker("t1")
    tracker.begin(DescriptionKind.OFFER)
    snapshots = iter(["v=0\r\nfirst", "v=0\r\nsecond"])

    events = list(gathering_events(_description(CANDIDATE_LINES)))
    for event in events[:-1]:
        tracker.feed(event, lambda: next(snapshots))
        assert tracker.local_text == ""
        assert not tracker.complete

    tracker.feed(events[-1], lambda: next(snapshots))
    text = tracker.local_text
    assert tracker.complete
    assert json.loads(text) == {"type": "offer", "sdp": "v=0\r\nfirst"}
    assert tracker.local_text == text
    assert len(tracker.candidates) == 2


def test_completion_before_begin_is_invalid() -> None:
    tracker = GatheringTracker()
    with pytest.raises(InvalidState):
        tracker.feed(GatheringComplete(), lambda: "v=0")
    assert tracker.local_text == ""


def test_completion_accepted_once() -> None:
    tracker = GatheringTracker()
    tracker.begin(DescriptionKind.ANSWER)
    tracker.feed(GatheringComplete(), lambda: "v=0")
    text = tracker.local_text

    with pytest.raises(InvalidState):
        tracker.feed(GatheringComplete(), lambda: "v=1")
    assert tracker.local_text == text


def test_begin_only_once() -> None:
    tracker = GatheringTracker()
    tracker.begin(DescriptionKind.OFFER)
    with pytest.raises(InvalidState):
        tracker.begin(DescriptionKind.OFFER)
