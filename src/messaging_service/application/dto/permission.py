from __future__ import annotations

from dataclasses import dataclass

from messaging_service.domain.value_objects.enums import DenyReason


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> PermissionDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> PermissionDecision:
        return cls(allowed=False, reason=reason)
