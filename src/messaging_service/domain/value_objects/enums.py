from __future__ import annotations

from enum import StrEnum


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VIDEO = "video"


class DenyReason(StrEnum):
    CANNOT_DM_SELF = "cannot_dm_self"
    BLOCKED = "blocked"
    DMS_DISABLED = "dms_disabled"


class CallType(StrEnum):
    VOICE = "voice"
    VIDEO = "video"


class CallRole(StrEnum):
    HOST = "host"
    CALLER = "caller"


class CallState(StrEnum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring_media"
    AWAITING_PEER = "awaiting_peer"
    DIALING = "dialing"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    ENDED = "ended"
    FAILED = "failed"


class CallFailure(StrEnum):
    MEDIA_UNAVAILABLE = "media_unavailable"
    NEGOTIATION_TIMEOUT = "negotiation_timeout"
    NEGOTIATION_FAILED = "negotiation_failed"


class SignalType(StrEnum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE = "ice"
    JOIN = "join"
    DECLINE = "decline"
    HANGUP = "hangup"


class ChatEvent(StrEnum):
    MESSAGE_INSERTED = "message.inserted"
    MESSAGES_READ = "messages.read"
    MESSAGES_DELETED = "messages.deleted"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_DELETED = "conversation.deleted"
    PRESENCE_UPDATED = "presence.updated"
