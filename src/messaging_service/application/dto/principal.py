from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from JWT."""

    user_id: str
    roles: list[str] = field(default_factory=list)

    @property
    def principal_key(self) -> str:
        """Unique key for WS connection registry."""
        return f"user:{self.user_id}"
