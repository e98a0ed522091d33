from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from messaging_service.domain.value_objects.enums import (
    CallFailure,
    CallRole,
    CallState,
    CallType,
)


@dataclass(frozen=True, slots=True)
class SessionDescription:
    type: str  # "offer" | "answer"
    sdp: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SessionDescription:
        return cls(type=str(data["type"]), sdp=str(data["sdp"]))


@dataclass(frozen=True, slots=True)
class IceCandidate:
    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdp_mid": self.sdp_mid,
            "sdp_mline_index": self.sdp_mline_index,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> IceCandidate:
        index = data.get("sdp_mline_index")
        return cls(
            candidate=str(data["candidate"]),
            sdp_mid=data.get("sdp_mid"),
            sdp_mline_index=int(index) if index is not None else None,
        )


@dataclass(frozen=True, slots=True)
class CallSession:
    """Snapshot of one side of a two-party call; never persisted."""

    room: str
    self_id: str
    peer_id: str
    role: CallRole
    call_type: CallType
    state: CallState
    failure: CallFailure | None = None
