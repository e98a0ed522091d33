"""Create tables and seed development data: two users, a direct conversation and a few messages."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.principal import Principal
from messaging_service.infrastructure.db import models  # noqa: F401
from messaging_service.infrastructure.db.base import Base
from messaging_service.infrastructure.db.models.user import UserProfileModel
from messaging_service.infrastructure.db.session import AsyncSessionLocal, engine
from messaging_service.infrastructure.db.uow import SqlAlchemyUoW
from messaging_service.services import conversation_service, message_service

logger = logging.getLogger(__name__)

USERS = [
    ("a1", "Alex", "alex"),
    ("b2", "Blair", "blair"),
]


async def seed() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        now = datetime.now(timezone.utc)
        for user_id, name, handle in USERS:
            await session.merge(
                UserProfileModel(
                    id=user_id,
                    display_name=name,
                    handle=handle,
                    verified=False,
                    show_profile=True,
                    appear_in_search=True,
                    allow_direct_messages=True,
                    updated_at=now,
                )
            )
        await session.commit()

        uow = SqlAlchemyUoW(session)
        alex, blair = Principal(user_id="a1"), Principal(user_id="b2")
        conv, _created = await conversation_service.get_or_create_direct_conversation(
            alex, blair.user_id, uow,
        )

        messages_data = [
            (alex, "Hey! Are you going to the meetup on Friday?"),
            (blair, "Yes, see you there."),
            (alex, "Great, text me at 555-123-4567 if plans change."),
        ]
        for sender, content in messages_data:
            await message_service.send_message(
                conv.id, sender, SendMessageDTO(content=content), uow,
            )

        logger.info("Seeded conversation %s with %d messages", conv.id, len(messages_data))


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(seed())


if __name__ == "__main__":
    main()
