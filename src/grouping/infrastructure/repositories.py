"""
Grouping Infrastructure Repositories
=====================================

SQLAlchemy implementations of the ticket and message repositories.

Every operation runs inside a SAVEPOINT: a failed statement rolls back only
itself, so the caller can still store the message without a ticket in the
same unit of work.
"""

import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional, AsyncGenerator
from uuid import UUID, uuid4

from sqlalchemy import select, delete, func, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.grouping.application import ITicketRepository, IMessageRepository
from src.grouping.domain import (
    ClassificationResult, InboundMessage, Message, NewTicket, Ticket
)
from src.grouping.infrastructure.models import TicketModel, MessageModel
from src.config import TicketStatus, ACTIVE_STATUSES
from src.core import RepositoryException, DuplicateMessageException

_SEARCH_TERM = re.compile(r"[^\w]+")


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _to_ticket(
    model: TicketModel,
    message_count: Optional[int] = None,
    last_message_at: Optional[datetime] = None
) -> Ticket:
    return Ticket(
        id=str(model.id),
        title=model.title,
        category=model.category,
        group_key=model.group_key,
        similarity_summary=model.similarity_summary,
        first_channel_id=model.first_channel_id,
        first_user_id=model.first_user_id,
        status=model.status,
        is_fixed=model.is_fixed,
        created_at=model.created_at,
        updated_at=model.updated_at,
        message_count=message_count,
        last_message_at=last_message_at
    )


def _to_message(model: MessageModel) -> Message:
    return Message(
        id=str(model.id),
        ticket_id=str(model.ticket_id) if model.ticket_id else None,
        channel_id=model.channel_id,
        user_id=model.user_id,
        source_ts=model.source_ts,
        thread_ts=model.thread_ts,
        text=model.text,
        category=model.category,
        is_relevant=model.is_relevant,
        confidence=model.confidence,
        reasoning=model.reasoning,
        created_at=model.created_at
    )


class _SQLAlchemyRepository:
    """Shared session handling for the repositories below."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @asynccontextmanager
    async def _savepoint(self, operation: str) -> AsyncGenerator[None, None]:
        """Run a unit of repository work, translating database errors."""
        try:
            async with self._session.begin_nested():
                yield
        except RepositoryException:
            raise
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"{operation} failed: {e}", {"operation": operation}
            ) from e

    def _dialect(self) -> str:
        return self._session.get_bind().dialect.name


class SQLAlchemyTicketRepository(_SQLAlchemyRepository, ITicketRepository):
    """SQLAlchemy implementation for tickets."""

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._savepoint("get_ticket"):
            model = await self._session.get(TicketModel, ticket_uuid)
        return _to_ticket(model) if model else None

    async def find_active_by_group_key(self, group_key: str) -> Optional[Ticket]:
        """Most recently created open/in-progress ticket with this exact key."""
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.group_key == group_key,
                TicketModel.status.in_(ACTIVE_STATUSES)
            )
            .order_by(TicketModel.created_at.desc())
            .limit(1)
        )
        async with self._savepoint("find_ticket_by_group_key"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return _to_ticket(model) if model else None

    async def list_active(self, limit: int) -> List[Ticket]:
        """Open/in-progress tickets, most recently created first."""
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(ACTIVE_STATUSES))
            .order_by(TicketModel.created_at.desc())
            .limit(limit)
        )
        async with self._savepoint("list_active_tickets"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [_to_ticket(m) for m in models]

    async def search_active_by_summary(self, terms: List[str], limit: int) -> List[Ticket]:
        """
        Full-text search over ticket summaries; every term must match.

        PostgreSQL uses to_tsvector/to_tsquery. Other dialects (SQLite in
        local development) fall back to case-insensitive substring matching.
        """
        cleaned = [t for t in (_SEARCH_TERM.sub("", term) for term in terms) if t]
        if not cleaned:
            return []

        if self._dialect() == "postgresql":
            text_match = func.to_tsvector("english", TicketModel.similarity_summary).bool_op("@@")(
                func.to_tsquery("english", " & ".join(cleaned))
            )
        else:
            text_match = and_(*(TicketModel.similarity_summary.ilike(f"%{t}%") for t in cleaned))

        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(ACTIVE_STATUSES), text_match)
            .order_by(TicketModel.created_at.desc())
            .limit(limit)
        )
        async with self._savepoint("search_ticket_summaries"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [_to_ticket(m) for m in models]

    async def create(self, ticket: NewTicket) -> Ticket:
        """Create new ticket."""
        now = datetime.now(timezone.utc)
        model = TicketModel(
            id=uuid4(),
            title=ticket.title,
            category=ticket.category,
            group_key=ticket.group_key,
            similarity_summary=ticket.similarity_summary,
            first_channel_id=ticket.first_channel_id,
            first_user_id=ticket.first_user_id,
            status=ticket.status,
            is_fixed=ticket.is_fixed,
            created_at=now,
            updated_at=now
        )

        async with self._savepoint("create_ticket"):
            self._session.add(model)
            await self._session.flush()

        return _to_ticket(model)

    async def update_status(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        is_fixed: Optional[bool] = None
    ) -> Optional[Ticket]:
        """Update status and/or completion flag."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._savepoint("update_ticket_status"):
            model = await self._session.get(TicketModel, ticket_uuid)
            if model is None:
                return None
            if status is not None:
                model.status = status
            if is_fixed is not None:
                model.is_fixed = is_fixed
            model.updated_at = datetime.now(timezone.utc)
            await self._session.flush()

        return _to_ticket(model)

    async def delete(self, ticket_id: str) -> bool:
        """Delete ticket by ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        async with self._savepoint("delete_ticket"):
            result = await self._session.execute(
                delete(TicketModel).where(TicketModel.id == ticket_uuid)
            )
        return result.rowcount > 0

    async def list_with_counts(self) -> List[Ticket]:
        """All tickets with live message count and most recent message time."""
        message_count = func.count(MessageModel.id).label("message_count")
        last_message_at = func.max(MessageModel.created_at).label("last_message_at")

        stmt = (
            select(TicketModel, message_count, last_message_at)
            .outerjoin(MessageModel, MessageModel.ticket_id == TicketModel.id)
            .group_by(TicketModel.id)
            .order_by(last_message_at.desc().nulls_last(), TicketModel.created_at.desc())
        )
        async with self._savepoint("list_tickets_with_counts"):
            result = await self._session.execute(stmt)
            rows = result.all()

        return [
            _to_ticket(model, message_count=count, last_message_at=last)
            for model, count, last in rows
        ]


class SQLAlchemyMessageRepository(_SQLAlchemyRepository, IMessageRepository):
    """SQLAlchemy implementation for messages."""

    async def create(
        self,
        message: InboundMessage,
        classification: ClassificationResult,
        ticket_id: Optional[str] = None
    ) -> Message:
        """Store message; raises DuplicateMessageException on a repeat delivery."""
        ticket_uuid = None
        if ticket_id is not None:
            ticket_uuid = _parse_uuid(ticket_id)
            if ticket_uuid is None:
                raise RepositoryException(f"Invalid ticket ID: {ticket_id}")

        model = MessageModel(
            id=uuid4(),
            ticket_id=ticket_uuid,
            source_ts=message.source_ts,
            channel_id=message.channel_id,
            user_id=message.user_id,
            thread_ts=message.thread_ts,
            text=message.text,
            category=classification.category,
            is_relevant=classification.is_relevant,
            confidence=classification.confidence,
            reasoning=classification.reasoning,
            created_at=datetime.now(timezone.utc)
        )

        try:
            async with self._savepoint("create_message"):
                self._session.add(model)
                await self._session.flush()
        except RepositoryException as e:
            if isinstance(e.__cause__, IntegrityError) and self._is_duplicate(e.__cause__):
                raise DuplicateMessageException(message.channel_id, message.source_ts) from e
            raise

        return _to_message(model)

    @staticmethod
    def _is_duplicate(error: IntegrityError) -> bool:
        detail = str(error.orig)
        # PostgreSQL names the constraint; SQLite names the columns
        if "uq_messages_channel_ts" in detail:
            return True
        return "UNIQUE constraint failed" in detail and "messages.channel_id" in detail

    async def exists_by_source(self, channel_id: str, source_ts: str) -> bool:
        """Check if the source event was already stored."""
        stmt = select(MessageModel.id).where(
            MessageModel.channel_id == channel_id,
            MessageModel.source_ts == source_ts
        )
        async with self._savepoint("message_exists"):
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def list_by_ticket(self, ticket_id: str) -> List[Message]:
        """Messages of a ticket, oldest first."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []

        stmt = (
            select(MessageModel)
            .where(MessageModel.ticket_id == ticket_uuid)
            .order_by(MessageModel.created_at.asc())
        )
        async with self._savepoint("list_ticket_messages"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()
        return [_to_message(m) for m in models]

    async def delete_by_ticket(self, ticket_id: str) -> int:
        """Delete all messages of a ticket."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return 0

        async with self._savepoint("delete_ticket_messages"):
            result = await self._session.execute(
                delete(MessageModel).where(MessageModel.ticket_id == ticket_uuid)
            )
        return result.rowcount
