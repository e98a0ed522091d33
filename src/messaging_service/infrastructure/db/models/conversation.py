from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, String, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from messaging_service.infrastructure.db.base import Base


class ConversationModel(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    is_group: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )
    group_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    group_avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    # Bumped explicitly on each accepted message.
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )

    participants = relationship(
        "ParticipantModel",
        back_populates="conversation",
        lazy="selectin",
        order_by="ParticipantModel.position",
        cascade="all, delete-orphan",
    )
    messages = relationship("MessageModel", back_populates="conversation", lazy="noload")

    __table_args__ = (
        Index("ix_conversations_updated_at", updated_at.desc()),
    )
