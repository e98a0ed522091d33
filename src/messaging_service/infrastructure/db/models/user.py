from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Index, String, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from messaging_service.infrastructure.db.base import Base


class UserProfileModel(Base):
    """Profile rows owned by the identity backend; read-only here."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    handle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    show_profile: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    appear_in_search: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true"),
    )
    # NULL is treated as allowed.
    allow_direct_messages: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class BlockedUserModel(Base):
    __tablename__ = "blocked_users"

    blocker_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    blocked_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )

    __table_args__ = (
        Index("ix_blocked_users_blocked", "blocked_id", "blocker_id"),
    )


class BuddyMatchModel(Base):
    """Undirected edge stored once with ``user_low < user_high``."""

    __tablename__ = "buddy_matches"

    user_low: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_high: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class UserStatusModel(Base):
    __tablename__ = "user_status"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=text("now()"),
    )
