from __future__ import annotations

from datetime import datetime, timedelta

from messaging_service.application.ports.clock import Clock, SystemClock
from messaging_service.application.uow import UnitOfWork
from messaging_service.config import settings
from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.domain.entities.user import UserProfile
from messaging_service.domain.events.presence_updated import PresenceUpdated
from messaging_service.domain.value_objects.topics import (
    conversation_topic,
    user_status_topic,
)

_clock: Clock = SystemClock()


def stale_after() -> timedelta:
    return timedelta(seconds=settings.PRESENCE_STALE_SECONDS)


async def set_online(user_id: str, uow: UnitOfWork) -> PresenceRecord:
    record = PresenceRecord.online(user_id)
    await _store(record, uow)
    return record


async def set_offline(
    user_id: str,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> PresenceRecord:
    record = PresenceRecord.offline(user_id, clock.now())
    await _store(record, uow)
    return record


async def _store(record: PresenceRecord, uow: UnitOfWork) -> None:
    # Upserts are idempotent, so replaying the same status is harmless.
    await uow.presence_w.upsert(record)

    conversation_ids = await uow.participants.conversation_ids_for_user(record.user_id)
    event = PresenceUpdated(record=record)
    topics = [user_status_topic(record.user_id)]
    topics.extend(conversation_topic(cid) for cid in conversation_ids)
    await uow.outbox.add(event.event_type, event.to_payload(), topics)
    await uow.commit()


def effective_presence(
    profile: UserProfile | None,
    record: PresenceRecord | None,
    now: datetime,
    threshold: timedelta,
) -> PresenceRecord | None:
    """Explicit status wins; otherwise infer from the profile's ``updated_at``.

    The inference is a heuristic: a profile touched within ``threshold`` is
    reported online, anything older reports ``last_seen = updated_at``.
    """
    if record is not None:
        return record
    if profile is None:
        return None
    if now - profile.updated_at <= threshold:
        return PresenceRecord.online(profile.id)
    return PresenceRecord.offline(profile.id, profile.updated_at)


async def get_presence(
    user_id: str,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> PresenceRecord | None:
    record = await uow.presence.get(user_id)
    if record is not None:
        return record
    profile = await uow.users.get_profile(user_id)
    return effective_presence(profile, None, clock.now(), stale_after())


async def get_presence_many(
    user_ids: list[str],
    profiles: dict[str, UserProfile],
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> dict[str, PresenceRecord]:
    records = await uow.presence.get_many(user_ids) if user_ids else {}
    now = clock.now()
    threshold = stale_after()
    result: dict[str, PresenceRecord] = {}
    for uid in user_ids:
        resolved = effective_presence(profiles.get(uid), records.get(uid), now, threshold)
        if resolved is not None:
            result[uid] = resolved
    return result


def describe_presence(record: PresenceRecord | None, now: datetime) -> str:
    """Human label; approximate by nature, the UI should present it as such."""
    if record is None:
        return "Offline"
    if record.is_online:
        return "Online"
    assert record.last_seen is not None
    delta = max(0, int((now - record.last_seen).total_seconds()))
    if delta < 60:
        return "Last seen just now"
    if delta < 60 * 60:
        return f"Last seen {_plural(delta // 60, 'minute')} ago"
    if delta < 24 * 60 * 60:
        return f"Last seen {_plural(delta // 3600, 'hour')} ago"
    return f"Last seen {_plural(delta // 86400, 'day')} ago"


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"
