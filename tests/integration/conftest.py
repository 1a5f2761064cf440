"""Integration fixtures: the SQLAlchemy repositories on a real database.

Each test gets a fresh in-memory SQLite database on one connection,
wrapped in a transaction that is always rolled back.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import src.grouping.infrastructure.models  # noqa: F401  registers tables
from src.grouping.application import (
    GroupingService,
    TicketMatcher,
    TicketService,
    TopicExtractionService,
)
from src.grouping.infrastructure import (
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
)
from src.infrastructure.database import Base


@pytest_asyncio.fixture
async def db_session():
    """Session on an in-memory database; rolled back after the test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.connect() as conn:
        trans = await conn.begin()
        await conn.run_sync(Base.metadata.create_all)
        session = AsyncSession(bind=conn, expire_on_commit=False)
        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()

    await engine.dispose()


@pytest.fixture
def sql_tickets(db_session) -> SQLAlchemyTicketRepository:
    return SQLAlchemyTicketRepository(db_session)


@pytest.fixture
def sql_messages(db_session) -> SQLAlchemyMessageRepository:
    return SQLAlchemyMessageRepository(db_session)


@pytest.fixture
def sql_grouping_service(sql_tickets, sql_messages, llm) -> GroupingService:
    return GroupingService(
        ticket_repository=sql_tickets,
        message_repository=sql_messages,
        topic_extractor=TopicExtractionService(llm),
        matcher=TicketMatcher(sql_tickets, similarity_threshold=0.25, candidate_limit=50),
    )


@pytest.fixture
def sql_ticket_service(sql_tickets, sql_messages, publisher) -> TicketService:
    return TicketService(sql_tickets, sql_messages, publisher)
