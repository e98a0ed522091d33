from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class UserProfile:
    id: str
    display_name: str
    handle: str | None
    avatar_url: str | None
    verified: bool
    show_profile: bool
    appear_in_search: bool
    allow_direct_messages: bool
    updated_at: datetime
