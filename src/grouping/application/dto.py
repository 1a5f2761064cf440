"""
Grouping Application DTOs
==========================

Data Transfer Objects for the grouping API layer.

Pydantic models for request/response validation.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime

from src.grouping.domain import (
    ClassificationResult, GroupingResult, InboundMessage, Message, Ticket, TicketEvent
)


# ========== Type Aliases for Literals ==========
MessageCategoryStr = Literal["support", "bug", "feature_request", "question", "irrelevant"]
TicketStatusStr = Literal["open", "in_progress", "resolved", "closed"]
GroupingOutcomeStr = Literal[
    "stored_irrelevant", "grouped", "new_ticket",
    "stored_without_grouping", "already_processed"
]


# ========== Request DTOs ==========

class ProcessMessageRequest(BaseModel):
    """Request model for synchronous message processing."""
    channel_id: str = Field(..., min_length=1, description="Source channel ID")
    user_id: str = Field(..., min_length=1, description="Source user ID")
    source_ts: str = Field(..., min_length=1, description="Source timestamp, unique per channel")
    thread_ts: Optional[str] = Field(None, description="Parent thread timestamp")
    text: str = Field("", description="Raw message text")

    @field_validator("text")
    @classmethod
    def validate_text_length(cls, v: str) -> str:
        """Ensure text is not too long for LLM."""
        if len(v) > 10000:
            raise ValueError("Text too long (max 10000 characters)")
        return v

    def to_domain(self) -> InboundMessage:
        """Convert to domain entity."""
        return InboundMessage(
            channel_id=self.channel_id,
            user_id=self.user_id,
            source_ts=self.source_ts,
            thread_ts=self.thread_ts,
            text=self.text
        )


class ClassifyRequest(BaseModel):
    """Request model for classification only."""
    text: str = Field("", description="Message text")


class TicketUpdateRequest(BaseModel):
    """
    Request model for ticket status updates.

    Status values are checked by TicketService so an unknown status is a
    400 like any other invalid update.
    """
    status: Optional[str] = None
    is_fixed: Optional[bool] = None


class SlackEventEnvelope(BaseModel):
    """Outer Slack Events API payload."""
    type: str
    challenge: Optional[str] = None
    event: Optional[Dict[str, Any]] = None

    def inbound_message(self) -> Optional[InboundMessage]:
        """
        Extract a plain user message from the envelope.

        Edits, joins, bot posts and other subtypes are ignored.
        """
        event = self.event or {}
        if event.get("type") != "message" or event.get("subtype") or event.get("bot_id"):
            return None
        if not event.get("ts") or not event.get("channel"):
            return None

        return InboundMessage(
            channel_id=event["channel"],
            user_id=event.get("user", ""),
            source_ts=event["ts"],
            thread_ts=event.get("thread_ts"),
            text=event.get("text") or ""
        )


# ========== Response DTOs ==========

class ClassificationInfo(BaseModel):
    """Classification result information."""
    is_relevant: bool
    category: MessageCategoryStr
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str

    @classmethod
    def from_domain(cls, result: ClassificationResult) -> "ClassificationInfo":
        return cls(
            is_relevant=result.is_relevant,
            category=result.category,
            confidence=result.confidence,
            reasoning=result.reasoning
        )


class TicketResponse(BaseModel):
    """Ticket as returned by the API."""
    id: str
    title: str
    category: MessageCategoryStr
    group_key: str
    similarity_summary: str
    first_channel_id: str
    first_user_id: str
    status: TicketStatusStr
    is_fixed: bool
    created_at: datetime
    updated_at: datetime
    message_count: Optional[int] = None
    last_message_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            title=ticket.title,
            category=ticket.category,
            group_key=ticket.group_key,
            similarity_summary=ticket.similarity_summary,
            first_channel_id=ticket.first_channel_id,
            first_user_id=ticket.first_user_id,
            status=ticket.status,
            is_fixed=ticket.is_fixed,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            message_count=ticket.message_count,
            last_message_at=ticket.last_message_at
        )


class MessageResponse(BaseModel):
    """Stored message as returned by the API."""
    id: str
    ticket_id: Optional[str]
    channel_id: str
    user_id: str
    source_ts: str
    thread_ts: Optional[str]
    text: str
    category: MessageCategoryStr
    is_relevant: bool
    confidence: float
    reasoning: str
    created_at: datetime

    @classmethod
    def from_domain(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            ticket_id=message.ticket_id,
            channel_id=message.channel_id,
            user_id=message.user_id,
            source_ts=message.source_ts,
            thread_ts=message.thread_ts,
            text=message.text,
            category=message.category,
            is_relevant=message.is_relevant,
            confidence=message.confidence,
            reasoning=message.reasoning,
            created_at=message.created_at
        )


class ProcessMessageResponse(BaseModel):
    """Response model for message processing."""
    outcome: GroupingOutcomeStr
    classification: ClassificationInfo
    ticket: Optional[TicketResponse] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    processing_time_ms: int

    @classmethod
    def from_domain(
        cls,
        classification: ClassificationResult,
        result: GroupingResult,
        processing_time_ms: int
    ) -> "ProcessMessageResponse":
        return cls(
            outcome=result.outcome,
            classification=ClassificationInfo.from_domain(classification),
            ticket=TicketResponse.from_domain(result.ticket) if result.ticket else None,
            message_id=result.message.id if result.message else None,
            error=result.error,
            processing_time_ms=processing_time_ms
        )


class ClassifyResponse(BaseModel):
    """Response model for classification only."""
    classification: ClassificationInfo
    model_used: str
    used_fallback: bool
    processing_time_ms: int


class TicketUpdateResponse(BaseModel):
    """Response model for a ticket status update."""
    success: bool = True
    data: TicketResponse


class TicketDeleteResponse(BaseModel):
    """Response model for ticket deletion."""
    success: bool = True
    ticket_id: str
    messages_deleted: int


class TicketListResponse(BaseModel):
    """Response model for ticket listing."""
    success: bool = True
    data: List[TicketResponse]


class MessageListResponse(BaseModel):
    """Response model for ticket messages."""
    success: bool = True
    data: List[MessageResponse]


class TicketEventMessage(BaseModel):
    """Live-update payload pushed over the websocket."""
    action: str
    ticket_id: str
    ticket: Optional[TicketResponse] = None
    status: Optional[TicketStatusStr] = None
    is_fixed: Optional[bool] = None
    timestamp: datetime

    @classmethod
    def from_domain(cls, event: TicketEvent) -> "TicketEventMessage":
        return cls(
            action=event.action,
            ticket_id=event.ticket_id,
            ticket=TicketResponse.from_domain(event.ticket) if event.ticket else None,
            status=event.status,
            is_fixed=event.is_fixed,
            timestamp=event.timestamp
        )
