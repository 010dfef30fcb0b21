"""Session configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from aiortc import RTCConfiguration, RTCIceServer


logger = logging.getLogger(__name__)


REPLACE = "replace"
REJECT = "reject"
REPLACE_POLICIES = (REPLACE, REJECT)


def _env_list(name: str, default: List[str]) -> List[str]:
    v = os.environ.get(name)
    if v is None:
        return list(default)
    return [item.strip() for item in v.split(",") if item.strip()]


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v)
    except Exception:
        logger.warning("config ignoring %s=%r (not a number)", name, v)
        return default


@dataclass
class SessionConfig:
    """Settings for one LanSession.

    ``ice_servers`` are optional rendezvous/relay hints (``stun:`` / ``turn:``
    URLs). On a LAN none are needed, and an empty list keeps the engine from
    adding its own default STUN server.
    """

    ice_servers: List[str] = field(default_factory=list)
    channel_label: str = "gameChannel"
    replace_policy: str = REPLACE
    gathering_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.replace_policy not in REPLACE_POLICIES:
            raise ValueError(f"replace_policy must be one of {REPLACE_POLICIES}, got {self.replace_policy!r}")

    @classmethod
    def from_env(cls) -> "SessionConfig":
        policy = os.environ.get("LANLINK_REPLACE_POLICY", REPLACE).strip().casefold()
        if policy not in REPLACE_POLICIES:
            logger.warning("config ignoring LANLINK_REPLACE_POLICY=%r", policy)
            policy = REPLACE
        return cls(
            ice_servers=_env_list("LANLINK_ICE_SERVERS", []),
            channel_label=os.environ.get("LANLINK_CHANNEL_LABEL", "").strip() or cls.channel_label,
            replace_policy=policy,
            gathering_timeout=_env_float("LANLINK_GATHERING_TIMEOUT", None),
        )

    def rtc_configuration(self) -> RTCConfiguration:
        return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self.ice_servers])
