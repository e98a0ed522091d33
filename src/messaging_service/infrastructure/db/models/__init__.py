"""Import all models so Base.metadata knows every table."""
from messaging_service.infrastructure.db.models.conversation import ConversationModel
from messaging_service.infrastructure.db.models.message import MessageModel
from messaging_service.infrastructure.db.models.outbox import OutboxMessageModel
from messaging_service.infrastructure.db.models.participant import ParticipantModel
from messaging_service.infrastructure.db.models.user import (
    BlockedUserModel,
    BuddyMatchModel,
    UserProfileModel,
    UserStatusModel,
)

__all__ = [
    "BlockedUserModel",
    "BuddyMatchModel",
    "ConversationModel",
    "MessageModel",
    "OutboxMessageModel",
    "ParticipantModel",
    "UserProfileModel",
    "UserStatusModel",
]
