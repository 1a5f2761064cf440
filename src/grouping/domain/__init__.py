"""
Grouping Domain Layer
=====================

Domain layer for the message grouping module.

Contains:
- Entities: Core business objects (Ticket, Message, ClassificationResult, TopicResult)
- Value Objects: Fixed taxonomies and key functions (GroupKeyNormalizer, GroupKeySimilarity)

This layer is framework-agnostic and contains pure business logic.
"""

from src.grouping.domain.entities import (
    ClassificationResult,
    TopicResult,
    InboundMessage,
    Message,
    NewTicket,
    Ticket,
    GroupingResult,
    TicketEvent,
    ClassificationPromptBuilder,
    TopicPromptBuilder,
)
from src.grouping.domain.value_objects import (
    GroupKeyNormalizer,
    GroupKeySimilarity,
    is_casual_message,
    CASUAL_ACKNOWLEDGEMENTS,
    PLACEHOLDER_SUMMARIES,
    SEMANTIC_CLUSTERS,
    UNCATEGORIZED_GROUP_KEY,
    UNTITLED_SUMMARY,
)

__all__ = [
    # Entities
    "ClassificationResult",
    "TopicResult",
    "InboundMessage",
    "Message",
    "NewTicket",
    "Ticket",
    "GroupingResult",
    "TicketEvent",
    "ClassificationPromptBuilder",
    "TopicPromptBuilder",
    # Value Objects
    "GroupKeyNormalizer",
    "GroupKeySimilarity",
    "is_casual_message",
    "CASUAL_ACKNOWLEDGEMENTS",
    "PLACEHOLDER_SUMMARIES",
    "SEMANTIC_CLUSTERS",
    "UNCATEGORIZED_GROUP_KEY",
    "UNTITLED_SUMMARY",
]
