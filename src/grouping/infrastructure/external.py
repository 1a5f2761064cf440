"""
Grouping External Service Adapters
===================================

Adapters for the LLM and the live-update channel used by the grouping
module. They implement the interfaces defined in the application layer.
"""

import asyncio
from typing import List, Any, Set

from src.grouping.application import ILLMClient, ITicketEventPublisher, TicketEventMessage
from src.grouping.domain import TicketEvent
from src.infrastructure.llm import ILLMClient as InfraLLMClient
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class LLMClientAdapter(ILLMClient):
    """
    Adapter that wraps an infrastructure LLM client.

    Implements the application layer ILLMClient interface using whichever
    provider client create_llm_client() selected.
    """

    def __init__(self, client: InfraLLMClient):
        self._client = client

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
        operation: str = "chat_completion"
    ) -> Any:
        """Generate chat completion."""
        return await self._client.chat_completion(messages, temperature, max_tokens, operation)


class BroadcastTicketEventPublisher(ITicketEventPublisher):
    """
    In-process fan-out of ticket events to websocket listeners.

    Each listener owns a bounded queue. Publishing never blocks: a listener
    whose queue is full misses the event.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        """Register a listener and return its queue of JSON-ready dicts."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    async def publish(self, event: TicketEvent) -> None:
        """Deliver an event to every current listener."""
        if not self._subscribers:
            return

        payload = TicketEventMessage.from_domain(event).model_dump(mode="json")
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropped ticket event for slow listener",
                    extra={"action": event.action, "ticket_id": event.ticket_id}
                )
