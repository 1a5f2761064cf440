"""
Grouping Domain Entities
=========================

Domain entities for the message grouping module.

Contains pure Python business objects for message classification,
topic extraction and ticket grouping.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from src.config import MessageCategory, TicketStatus, GroupingOutcome, ACTIVE_STATUSES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClassificationResult:
    """
    Result of message classification.

    Contains the intent category and relevance flag assigned to a message.
    """
    is_relevant: bool
    category: MessageCategory
    confidence: float  # 0.0 to 1.0
    reasoning: str
    model_used: str = "fallback"
    latency_ms: int = 0
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        """Validate classification result."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    @property
    def used_fallback(self) -> bool:
        """Check if the deterministic path produced this result."""
        return self.model_used == "fallback"


@dataclass(frozen=True)
class TopicResult:
    """Normalized topic key and title for a relevant message."""
    group_key: str
    summary: str
    used_fallback: bool = False


@dataclass(frozen=True)
class InboundMessage:
    """
    A chat message as delivered by the transport.

    (channel_id, source_ts) identifies the source event and is the
    de-duplication key.
    """
    channel_id: str
    user_id: str
    source_ts: str
    text: str
    thread_ts: Optional[str] = None


@dataclass(frozen=True)
class Message:
    """Stored message. Immutable once persisted."""
    id: str
    channel_id: str
    user_id: str
    source_ts: str
    text: str
    category: MessageCategory
    is_relevant: bool
    confidence: float
    reasoning: str
    ticket_id: Optional[str] = None
    thread_ts: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class NewTicket:
    """Values for a ticket about to be created."""
    title: str
    category: MessageCategory
    group_key: str
    similarity_summary: str
    first_channel_id: str
    first_user_id: str
    status: TicketStatus = TicketStatus.OPEN
    is_fixed: bool = False

    def __post_init__(self):
        """Validate ticket values."""
        if not self.title or not self.title.strip():
            raise ValueError("Ticket title cannot be empty")
        if not self.group_key:
            raise ValueError("Ticket group key cannot be empty")


@dataclass
class Ticket:
    """
    Ticket entity grouping related messages.

    Category and group key are fixed at creation; only status, the
    completion flag and updated_at change afterwards.
    """
    id: str
    title: str
    category: MessageCategory
    group_key: str
    similarity_summary: str
    first_channel_id: str
    first_user_id: str
    status: TicketStatus
    is_fixed: bool
    created_at: datetime
    updated_at: datetime

    # Read-view fields
    message_count: Optional[int] = None
    last_message_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Check if ticket still takes part in grouping."""
        return self.status in ACTIVE_STATUSES


@dataclass
class GroupingResult:
    """Outcome of processing one message through the grouping pipeline."""
    outcome: GroupingOutcome
    ticket: Optional[Ticket] = None
    message: Optional[Message] = None
    error: Optional[str] = None

    @property
    def grouped(self) -> bool:
        """Check if the message was attached to an existing ticket."""
        return self.outcome == GroupingOutcome.GROUPED


@dataclass(frozen=True)
class TicketEvent:
    """Live-update notification about a ticket."""
    action: str
    ticket_id: str
    ticket: Optional[Ticket] = None
    status: Optional[TicketStatus] = None
    is_fixed: Optional[bool] = None
    timestamp: datetime = field(default_factory=_utcnow)


class ClassificationPromptBuilder:
    """
    Builds prompts for message classification.

    All prompt logic in one place.
    """

    SYSTEM_PROMPT = """You triage messages posted in customer and engineering chat channels.

Decide whether a message needs attention from an engineer and classify its intent.

CATEGORIES:
- support: someone needs help using the product or is blocked
- bug: something is broken, crashing, erroring or behaving incorrectly
- feature_request: a request for new functionality or an improvement
- question: a substantive question about the product, its setup or its behavior
- irrelevant: greetings, thanks, acknowledgements, social chatter, anything not actionable

Respond ONLY in JSON format:
{
    "category": "category",
    "confidence": 0.95,
    "reasoning": "brief explanation"
}"""

    @classmethod
    def build_prompt(cls, text: str) -> str:
        """Build classification prompt from message text."""
        return f"""Message:
{text}

Classify this message (respond with JSON only):"""

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for classification."""
        return cls.SYSTEM_PROMPT


class TopicPromptBuilder:
    """Builds prompts for topic extraction."""

    SYSTEM_PROMPT = """You extract the core issue from a chat message so related messages can be grouped.

Return:
- group_key: the resource or topic the message is about, 1-2 words, lowercase kebab-case (e.g. "export-button", "login")
- summary: a 5-10 word title describing the issue

Respond ONLY in JSON format:
{"group_key": "short-kebab-case", "summary": "Five to ten word issue title"}"""

    @classmethod
    def build_prompt(cls, text: str, category: str) -> str:
        """Build topic prompt from message text and its category."""
        return f"""Category: {category}

Message:
{text}

Extract the topic (respond with JSON only):"""

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for topic extraction."""
        return cls.SYSTEM_PROMPT
