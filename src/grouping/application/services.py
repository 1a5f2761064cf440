"""
Grouping Application Services
==============================

Application services for message classification and ticket grouping.

Orchestrates business logic between domain entities and repositories:

    MessageProcessor
      -> ClassificationService.classify
      -> GroupingService.process
           -> TopicExtractionService.extract_topic
           -> TicketMatcher.find_match
           -> create-or-attach + message persistence
      -> ITicketEventPublisher.publish

Known race: two concurrent messages on the same new topic can both miss
each other's uncommitted ticket and create one each. Nothing here locks
around find-or-create.
"""

import math
import time
import json
from typing import Optional, List, Any
from abc import ABC, abstractmethod

from src.grouping.domain import (
    ClassificationResult, TopicResult, InboundMessage, Message, NewTicket,
    Ticket, GroupingResult, TicketEvent,
    ClassificationPromptBuilder, TopicPromptBuilder,
    GroupKeyNormalizer, GroupKeySimilarity, is_casual_message, UNTITLED_SUMMARY,
)
from src.config import (
    settings, MessageCategory, TicketStatus, GroupingOutcome, TicketEventAction,
    MESSAGE_CATEGORIES, VALID_STATUSES,
)
from src.core import (
    LLMException, DuplicateMessageException, ResourceNotFoundException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def find_active_by_group_key(self, group_key: str) -> Optional[Ticket]:
        """Most recently created open/in-progress ticket with this exact key."""

    @abstractmethod
    async def list_active(self, limit: int) -> List[Ticket]:
        """Open/in-progress tickets, most recently created first."""

    @abstractmethod
    async def search_active_by_summary(self, terms: List[str], limit: int) -> List[Ticket]:
        """Full-text search of open/in-progress ticket summaries (all terms must match)."""

    @abstractmethod
    async def create(self, ticket: NewTicket) -> Ticket:
        """Create new ticket."""

    @abstractmethod
    async def update_status(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        is_fixed: Optional[bool] = None
    ) -> Optional[Ticket]:
        """Update status and/or completion flag; None if ticket missing."""

    @abstractmethod
    async def delete(self, ticket_id: str) -> bool:
        """Delete ticket; False if it did not exist."""

    @abstractmethod
    async def list_with_counts(self) -> List[Ticket]:
        """All tickets with message count and last message time."""


class IMessageRepository(ABC):
    """Interface for message storage."""

    @abstractmethod
    async def create(
        self,
        message: InboundMessage,
        classification: ClassificationResult,
        ticket_id: Optional[str] = None
    ) -> Message:
        """Store message. Raises DuplicateMessageException on a repeat delivery."""

    @abstractmethod
    async def exists_by_source(self, channel_id: str, source_ts: str) -> bool:
        """Check if the source event was already stored."""

    @abstractmethod
    async def list_by_ticket(self, ticket_id: str) -> List[Message]:
        """Messages of a ticket, oldest first."""

    @abstractmethod
    async def delete_by_ticket(self, ticket_id: str) -> int:
        """Delete all messages of a ticket, returning how many were removed."""


class ILLMClient(ABC):
    """Interface for LLM operations."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float,
        max_tokens: int,
        operation: str = "chat_completion"
    ) -> Any:
        """Generate chat completion."""


class ITicketEventPublisher(ABC):
    """Interface for fire-and-forget live updates."""

    @abstractmethod
    async def publish(self, event: TicketEvent) -> None:
        """Announce a ticket event to listeners."""


# ========== Response Parsing ==========

def parse_json_response(content: str) -> dict:
    """
    Parse a JSON object from an LLM reply, unwrapping markdown code fences.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    text = (content or "").strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    data = json.loads(text)  # JSONDecodeError is a ValueError
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


# ========== Application Services ==========

class ClassificationService:
    """
    Service for message classification using LLM.

    Always returns a result: any LLM failure routes to a deterministic
    fallback.
    """

    def __init__(self, llm_client: Optional[ILLMClient]):
        self._llm = llm_client

    async def classify(self, text: str) -> ClassificationResult:
        """
        Classify a message by intent.

        Args:
            text: Raw message text

        Returns:
            ClassificationResult with category, relevance and confidence
        """
        if not text or not text.strip():
            return ClassificationResult(
                is_relevant=False,
                category=MessageCategory.IRRELEVANT,
                confidence=1.0,
                reasoning="Empty message"
            )

        if self._llm is None:
            return self.fallback(text)

        start_time = time.perf_counter()

        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ClassificationPromptBuilder.build_prompt(text)}
        ]

        try:
            response = await self._llm.chat_completion(
                messages=messages,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                operation="classification"
            )
            result_data = parse_json_response(response.content)
            category, confidence = self._validate(result_data)
        except (LLMException, ValueError) as e:
            logger.warning(
                "Classification fell back to heuristics",
                extra={"error": str(e)}
            )
            return self.fallback(text)

        return ClassificationResult(
            is_relevant=category != MessageCategory.IRRELEVANT,
            category=category,
            confidence=confidence,
            reasoning=str(result_data.get("reasoning") or ""),
            model_used=getattr(response, "model", "unknown"),
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )

    @staticmethod
    def _validate(result_data: dict) -> tuple[str, float]:
        """Check category and confidence of a parsed reply."""
        category = str(result_data.get("category", "")).strip().lower()
        if category not in MESSAGE_CATEGORIES:
            raise ValueError(f"Unknown category: {category!r}")

        try:
            confidence = float(result_data.get("confidence", 0.5))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid confidence: {result_data.get('confidence')!r}")
        # json.loads accepts NaN and Infinity
        if not math.isfinite(confidence):
            raise ValueError(f"Invalid confidence: {confidence!r}")

        return category, min(max(confidence, 0.0), 1.0)

    @staticmethod
    def fallback(text: str) -> ClassificationResult:
        """Deterministic classification used when the LLM is unavailable."""
        if is_casual_message(text):
            return ClassificationResult(
                is_relevant=False,
                category=MessageCategory.IRRELEVANT,
                confidence=0.8,
                reasoning="Fallback: short or casual message"
            )

        return ClassificationResult(
            is_relevant=True,
            category=MessageCategory.QUESTION,
            confidence=0.5,
            reasoning="Fallback: classification service unavailable, treated as a question"
        )


class TopicExtractionService:
    """
    Service deriving a group key and title for a relevant message.

    Never returns a blank key or summary.
    """

    def __init__(self, llm_client: Optional[ILLMClient]):
        self._llm = llm_client

    async def extract_topic(self, text: str, category: str) -> TopicResult:
        """
        Extract the topic of a message.

        Args:
            text: Raw message text
            category: Category already assigned by the classifier

        Returns:
            TopicResult with normalized group key and validated summary
        """
        if self._llm is None or not text or not text.strip():
            return self.fallback(text)

        messages = [
            {"role": "system", "content": TopicPromptBuilder.get_system_prompt()},
            {"role": "user", "content": TopicPromptBuilder.build_prompt(text, category)}
        ]

        try:
            response = await self._llm.chat_completion(
                messages=messages,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                operation="topic_extraction"
            )
            result_data = parse_json_response(response.content)
        except (LLMException, ValueError) as e:
            logger.warning(
                "Topic extraction fell back to keywords",
                extra={"error": str(e)}
            )
            return self.fallback(text)

        group_key = GroupKeyNormalizer.normalize(str(result_data.get("group_key") or ""))

        summary = result_data.get("summary")
        if GroupKeyNormalizer.is_valid_summary(summary):
            summary = summary.strip()
        else:
            summary = GroupKeyNormalizer.derive_title(text) or GroupKeyNormalizer.fallback_summary(text)

        return TopicResult(group_key=group_key, summary=summary)

    @staticmethod
    def fallback(text: str) -> TopicResult:
        """Keyword-based topic used when the LLM is unavailable."""
        return TopicResult(
            group_key=GroupKeyNormalizer.from_text(text),
            summary=GroupKeyNormalizer.fallback_summary(text),
            used_fallback=True
        )


class TicketMatcher:
    """
    Finds an open ticket for a topic.

    Tiers, first hit wins:
    1. exact group key
    2. fuzzy group-key similarity over a bounded candidate set
    3. full-text search over ticket summaries

    Category is deliberately not a filter: grouping spans categories about the
    same topic, and a matched ticket keeps its original category.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        similarity_threshold: Optional[float] = None,
        candidate_limit: Optional[int] = None
    ):
        self._tickets = ticket_repository
        self._threshold = (
            similarity_threshold if similarity_threshold is not None
            else settings.similarity_threshold
        )
        self._candidate_limit = candidate_limit or settings.fuzzy_candidate_limit

    async def find_match(
        self,
        group_key: str,
        category: str,
        summary: Optional[str] = None
    ) -> Optional[Ticket]:
        """
        Find the best matching open/in-progress ticket.

        Args:
            group_key: Normalized topic key
            category: Message category (logged only)
            summary: Topic summary for the full-text tier

        Returns:
            Matching ticket, or None to signal a new ticket is needed.
            Datastore errors are logged and reported as None.
        """
        try:
            exact = await self._tickets.find_active_by_group_key(group_key)
            if exact:
                logger.info(
                    "Exact ticket match",
                    extra={"ticket_id": exact.id, "group_key": group_key}
                )
                return exact

            fuzzy = await self._find_fuzzy(group_key)
            if fuzzy:
                return fuzzy

            textual = await self._find_by_summary(summary)
            if textual:
                return textual

        except Exception as e:
            logger.error(
                "Ticket matching failed, treating as no match",
                extra={"group_key": group_key, "category": category, "error": str(e)}
            )
            return None

        logger.info(
            "No matching ticket",
            extra={"group_key": group_key, "category": category}
        )
        return None

    async def _find_fuzzy(self, group_key: str) -> Optional[Ticket]:
        """Best-scoring candidate at or above the threshold; first wins ties."""
        candidates = await self._tickets.list_active(limit=self._candidate_limit)

        best_match: Optional[Ticket] = None
        best_score = 0.0
        for ticket in candidates:
            score = GroupKeySimilarity.score(group_key, ticket.group_key)
            if score >= self._threshold and score > best_score:
                best_match, best_score = ticket, score

        if best_match:
            logger.info(
                "Fuzzy ticket match",
                extra={
                    "ticket_id": best_match.id,
                    "group_key": group_key,
                    "matched_key": best_match.group_key,
                    "score": round(best_score, 3)
                }
            )
        return best_match

    async def _find_by_summary(self, summary: Optional[str]) -> Optional[Ticket]:
        """Full-text fallback using the leading words of the summary."""
        if not summary or len(summary) <= settings.summary_search_min_length:
            return None

        terms = summary.split()[:settings.summary_search_terms]
        hits = await self._tickets.search_active_by_summary(
            terms, limit=settings.summary_search_limit
        )
        if not hits:
            return None

        logger.info(
            "Summary ticket match",
            extra={"ticket_id": hits[0].id, "terms": terms}
        )
        return hits[0]


class GroupingService:
    """
    Decides where a classified message goes and stores it.

    Grouping is best-effort: any failure before the message is stored falls
    back to storing the message without a ticket.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        message_repository: IMessageRepository,
        topic_extractor: TopicExtractionService,
        matcher: TicketMatcher
    ):
        self._tickets = ticket_repository
        self._messages = message_repository
        self._topics = topic_extractor
        self._matcher = matcher

    async def process(
        self,
        message: InboundMessage,
        classification: ClassificationResult
    ) -> GroupingResult:
        """
        Group and store one message.

        Args:
            message: Inbound chat message
            classification: Result of ClassificationService.classify

        Returns:
            GroupingResult describing the outcome

        Raises:
            RepositoryException: Only if storing the message without a
                ticket also fails
        """
        if not classification.is_relevant:
            stored = await self._store_message(message, classification)
            if stored is None:
                return GroupingResult(outcome=GroupingOutcome.ALREADY_PROCESSED)
            return GroupingResult(outcome=GroupingOutcome.STORED_IRRELEVANT, message=stored)

        try:
            if await self._messages.exists_by_source(message.channel_id, message.source_ts):
                logger.info(
                    "Duplicate message ignored",
                    extra={"channel_id": message.channel_id, "source_ts": message.source_ts}
                )
                return GroupingResult(outcome=GroupingOutcome.ALREADY_PROCESSED)

            topic = await self._topics.extract_topic(message.text, classification.category)
            ticket = await self._matcher.find_match(
                topic.group_key, classification.category, topic.summary
            )

            if ticket:
                stored = await self._store_message(message, classification, ticket.id)
                if stored is None:
                    return GroupingResult(outcome=GroupingOutcome.ALREADY_PROCESSED)
                logger.info(
                    "Message grouped into existing ticket",
                    extra={"ticket_id": ticket.id, "group_key": ticket.group_key}
                )
                return GroupingResult(
                    outcome=GroupingOutcome.GROUPED, ticket=ticket, message=stored
                )

            ticket = await self._tickets.create(self._new_ticket(message, classification, topic))
            try:
                stored = await self._store_message(message, classification, ticket.id)
            except Exception:
                await self._discard_ticket(ticket.id)
                raise
            if stored is None:
                # Lost a redelivery race; a ticket must not exist without messages
                await self._discard_ticket(ticket.id)
                return GroupingResult(outcome=GroupingOutcome.ALREADY_PROCESSED)

            logger.info(
                "Created new ticket",
                extra={"ticket_id": ticket.id, "group_key": ticket.group_key, "title": ticket.title}
            )
            return GroupingResult(outcome=GroupingOutcome.NEW_TICKET, ticket=ticket, message=stored)

        except Exception as e:
            logger.error(
                "Grouping failed, storing message without ticket",
                extra={
                    "channel_id": message.channel_id,
                    "source_ts": message.source_ts,
                    "error": str(e)
                }
            )
            stored = await self._store_message(message, classification)
            if stored is None:
                return GroupingResult(outcome=GroupingOutcome.ALREADY_PROCESSED)
            return GroupingResult(
                outcome=GroupingOutcome.STORED_WITHOUT_GROUPING,
                message=stored,
                error=str(e)
            )

    async def _store_message(
        self,
        message: InboundMessage,
        classification: ClassificationResult,
        ticket_id: Optional[str] = None
    ) -> Optional[Message]:
        """Persist a message; a repeat delivery is a no-op returning None."""
        try:
            return await self._messages.create(message, classification, ticket_id)
        except DuplicateMessageException:
            logger.info(
                "Duplicate message ignored",
                extra={"channel_id": message.channel_id, "source_ts": message.source_ts}
            )
            return None

    async def _discard_ticket(self, ticket_id: str) -> None:
        """Remove a ticket created for a message that was not stored."""
        try:
            await self._tickets.delete(ticket_id)
        except Exception as e:
            logger.error(
                "Failed to discard empty ticket",
                extra={"ticket_id": ticket_id, "error": str(e)}
            )

    @staticmethod
    def _new_ticket(
        message: InboundMessage,
        classification: ClassificationResult,
        topic: TopicResult
    ) -> NewTicket:
        title = topic.summary.strip() or message.text.strip()[:100] or UNTITLED_SUMMARY
        return NewTicket(
            title=title,
            category=classification.category,
            group_key=topic.group_key,
            similarity_summary=topic.summary,
            first_channel_id=message.channel_id,
            first_user_id=message.user_id,
            status=TicketStatus.OPEN,
            is_fixed=False
        )


class TicketService:
    """Ticket reads and the few mutations allowed after creation."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        message_repository: IMessageRepository,
        publisher: Optional[ITicketEventPublisher] = None
    ):
        self._tickets = ticket_repository
        self._messages = message_repository
        self._publisher = publisher

    async def list_tickets(self) -> List[Ticket]:
        """All tickets with message counts, most recent activity first."""
        return await self._tickets.list_with_counts()

    async def get_ticket_messages(self, ticket_id: str) -> List[Message]:
        """Messages grouped into a ticket, oldest first."""
        return await self._messages.list_by_ticket(ticket_id)

    async def update_status(
        self,
        ticket_id: str,
        status: Optional[str] = None,
        is_fixed: Optional[bool] = None
    ) -> Ticket:
        """
        Update ticket status and/or completion flag.

        Raises:
            ValidationException: If nothing to update or status is unknown
            ResourceNotFoundException: If ticket does not exist
        """
        if status is None and is_fixed is None:
            raise ValidationException("Must provide status or is_fixed")
        if status is not None and status not in VALID_STATUSES:
            raise ValidationException(
                f"Invalid status '{status}'", {"allowed": VALID_STATUSES}
            )

        ticket = await self._tickets.update_status(ticket_id, status, is_fixed)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        await self._publish(TicketEvent(
            action=TicketEventAction.STATUS_CHANGED,
            ticket_id=ticket.id,
            ticket=ticket,
            status=ticket.status,
            is_fixed=ticket.is_fixed
        ))
        return ticket

    async def delete_ticket(self, ticket_id: str) -> int:
        """
        Delete a ticket and all its messages.

        Messages go first so no orphans remain if the ticket delete fails.

        Returns:
            Number of messages deleted

        Raises:
            ResourceNotFoundException: If ticket does not exist
        """
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        deleted_messages = await self._messages.delete_by_ticket(ticket_id)
        await self._tickets.delete(ticket_id)

        logger.info(
            "Deleted ticket",
            extra={"ticket_id": ticket_id, "messages_deleted": deleted_messages}
        )
        await self._publish(TicketEvent(action=TicketEventAction.DELETED, ticket_id=ticket_id))
        return deleted_messages

    async def _publish(self, event: TicketEvent) -> None:
        if self._publisher is not None:
            await self._publisher.publish(event)


class MessageProcessor:
    """
    Full pipeline for one inbound message: classify, group, announce.

    Used by the transport after it has acknowledged the source event.
    """

    def __init__(
        self,
        classifier: ClassificationService,
        grouping_service: GroupingService,
        publisher: Optional[ITicketEventPublisher] = None
    ):
        self._classifier = classifier
        self._grouping = grouping_service
        self._publisher = publisher

    async def handle(self, message: InboundMessage) -> tuple[ClassificationResult, GroupingResult]:
        """
        Process one message end to end.

        Returns:
            Tuple of (classification, grouping result)
        """
        classification = await self._classifier.classify(message.text)

        logger.info(
            "Message classified",
            extra={
                "channel_id": message.channel_id,
                "source_ts": message.source_ts,
                "category": classification.category,
                "is_relevant": classification.is_relevant,
                "confidence": classification.confidence,
                "model_used": classification.model_used
            }
        )

        result = await self._grouping.process(message, classification)

        if self._publisher is not None and result.ticket is not None:
            action = (
                TicketEventAction.CREATED
                if result.outcome == GroupingOutcome.NEW_TICKET
                else TicketEventAction.MESSAGE_ADDED
            )
            await self._publisher.publish(TicketEvent(
                action=action, ticket_id=result.ticket.id, ticket=result.ticket
            ))

        return classification, result
