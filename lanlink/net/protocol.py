"""Session description codec.

Descriptions travel between the two parties as compact JSON objects of the form
``{"type": "offer", "sdp": "..."}``, which is what a browser produces for
``JSON.stringify(pc.localDescription)``. How the text gets to the other side is
up to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import DecodeError


# Type tags
OFFER = "offer"
ANSWER = "answer"


class DescriptionKind(str, Enum):
	OFFER = OFFER
	ANSWER = ANSWER


@dataclass(frozen=True)
class SessionDescription:
	kind: DescriptionKind
	payload: str

	def to_dict(self) -> Dict[str, Any]:
		return {"type": self.kind.value, "sdp": self.payload}


def make_offer(sdp: str) -> SessionDescription:
	return SessionDescription(DescriptionKind.OFFER, sdp)


def make_answer(sdp: str) -> SessionDescription:
	return SessionDescription(DescriptionKind.ANSWER, sdp)


def encode_description(description: SessionDescription) -> str:
	return json.dumps(description.to_dict(), separators=(",", ":"), ensure_ascii=False)


def decode_description(text: Any, expected_kind: Optional[DescriptionKind] = None) -> SessionDescription:
	"""Parse serialized description text.

	Raises DecodeError for anything that is not a JSON object with a known
	``type`` and a non-empty ``sdp`` string, and for a kind other than
	``expected_kind`` when one is given.
	"""

	if not isinstance(text, str):
		raise DecodeError("description must be text", {"got": type(text).__name__})

	try:
		msg = json.loads(text)
	except json.JSONDecodeError as e:
		raise DecodeError("invalid-json", {"error": str(e)}) from e

	if not isinstance(msg, dict):
		raise DecodeError("invalid-description", {"got": type(msg).__name__})

	mtype = msg.get("type")
	try:
		kind = DescriptionKind(mtype)
	except ValueError as e:
		raise DecodeError("unknown-type", {"type": mtype}) from e

	sdp = msg.get("sdp")
	if not isinstance(sdp, str) or not sdp:
		raise DecodeError("missing-sdp", {"type": kind.value})

	if expected_kind is not None and kind is not expected_kind:
		raise DecodeError("unexpected-type", {"expected": expected_kind.value, "got": kind.value})

	return SessionDescription(kind, sdp)
