"""
Grouping Infrastructure Models
===============================

SQLAlchemy ORM models for the grouping module.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, DateTime, Boolean, Float, Text, Uuid, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import MessageCategory, TicketStatus


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[MessageCategory] = mapped_column(String(50), nullable=False)
    group_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    similarity_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")

    first_channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    first_user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)
    is_fixed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_tickets_status_created_at", "status", "created_at"),
    )


class MessageModel(Base):
    """
    Database model for Message entity.

    (channel_id, source_ts) is unique so repeat deliveries of a source
    event cannot create a second row.
    """
    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    ticket_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Source event
    source_ts: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    thread_ts: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Classification
    category: Mapped[MessageCategory] = mapped_column(String(50), nullable=False)
    is_relevant: Mapped[bool] = mapped_column(Boolean, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("channel_id", "source_ts", name="uq_messages_channel_ts"),
    )
