"""
Grouping Application Layer
===========================

Application layer for the message grouping module.

Contains:
- Services: Classification, topic extraction, matching and grouping orchestration
- DTOs: Data transfer objects for API serialization
"""

from src.grouping.application.dto import (
    ProcessMessageRequest,
    ClassifyRequest,
    TicketUpdateRequest,
    SlackEventEnvelope,
    ClassificationInfo,
    TicketResponse,
    MessageResponse,
    ProcessMessageResponse,
    ClassifyResponse,
    TicketUpdateResponse,
    TicketDeleteResponse,
    TicketListResponse,
    MessageListResponse,
    TicketEventMessage,
)
from src.grouping.application.services import (
    ClassificationService,
    TopicExtractionService,
    TicketMatcher,
    GroupingService,
    TicketService,
    MessageProcessor,
    ITicketRepository,
    IMessageRepository,
    ILLMClient,
    ITicketEventPublisher,
    parse_json_response,
)

__all__ = [
    # DTOs
    "ProcessMessageRequest",
    "ClassifyRequest",
    "TicketUpdateRequest",
    "SlackEventEnvelope",
    "ClassificationInfo",
    "TicketResponse",
    "MessageResponse",
    "ProcessMessageResponse",
    "ClassifyResponse",
    "TicketUpdateResponse",
    "TicketDeleteResponse",
    "TicketListResponse",
    "MessageListResponse",
    "TicketEventMessage",
    # Services
    "ClassificationService",
    "TopicExtractionService",
    "TicketMatcher",
    "GroupingService",
    "TicketService",
    "MessageProcessor",
    "parse_json_response",
    # Ports
    "ITicketRepository",
    "IMessageRepository",
    "ILLMClient",
    "ITicketEventPublisher",
]
