"""Root conftest: shared fixtures for unit and API tests.

Everything runs against in-memory fakes; no database or network needed.
"""

from __future__ import annotations

import pytest

from src.grouping.application import (
    ClassificationService,
    GroupingService,
    MessageProcessor,
    TicketMatcher,
    TicketService,
    TopicExtractionService,
)
from tests.helpers.fakes import (
    FakeLLMClient,
    InMemoryMessageRepository,
    InMemoryTicketRepository,
    RecordingPublisher,
    make_store,
)


@pytest.fixture
def store() -> tuple[InMemoryTicketRepository, InMemoryMessageRepository]:
    return make_store()


@pytest.fixture
def ticket_repo(store) -> InMemoryTicketRepository:
    return store[0]


@pytest.fixture
def message_repo(store) -> InMemoryMessageRepository:
    return store[1]


@pytest.fixture
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def grouping_service(ticket_repo, message_repo, llm) -> GroupingService:
    return GroupingService(
        ticket_repository=ticket_repo,
        message_repository=message_repo,
        topic_extractor=TopicExtractionService(llm),
        matcher=TicketMatcher(ticket_repo, similarity_threshold=0.25, candidate_limit=50),
    )


@pytest.fixture
def ticket_service(ticket_repo, message_repo, publisher) -> TicketService:
    return TicketService(ticket_repo, message_repo, publisher)


@pytest.fixture
def processor(grouping_service, llm, publisher) -> MessageProcessor:
    return MessageProcessor(ClassificationService(llm), grouping_service, publisher)
