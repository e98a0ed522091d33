from __future__ import annotations

from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.domain.entities.user import UserProfile
from messaging_service.infrastructure.db.models.user import UserProfileModel, UserStatusModel


def profile_to_entity(model: UserProfileModel) -> UserProfile:
    return UserProfile(
        id=model.id,
        display_name=model.display_name,
        handle=model.handle,
        avatar_url=model.avatar_url,
        verified=model.verified,
        show_profile=model.show_profile,
        appear_in_search=model.appear_in_search,
        allow_direct_messages=(
            True if model.allow_direct_messages is None else model.allow_direct_messages
        ),
        updated_at=model.updated_at,
    )


def status_to_entity(model: UserStatusModel) -> PresenceRecord:
    if model.is_online:
        return PresenceRecord.online(model.user_id)
    # Rows written before last_seen existed fall back to the row timestamp.
    return PresenceRecord.offline(model.user_id, model.last_seen or model.updated_at)
