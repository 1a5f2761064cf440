"""
Grouping Infrastructure Layer
==============================

Infrastructure implementations for the message grouping module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- External: LLM adapter and live-update publisher
"""

from src.grouping.infrastructure.models import TicketModel, MessageModel
from src.grouping.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyMessageRepository
)
from src.grouping.infrastructure.external import (
    LLMClientAdapter,
    BroadcastTicketEventPublisher
)

__all__ = [
    "TicketModel",
    "MessageModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyMessageRepository",
    "LLMClientAdapter",
    "BroadcastTicketEventPublisher",
]
