"""
Grouping Controllers (API Routes)
==================================

FastAPI routes for message intake, ticket management and live updates.

Controllers delegate to application services.
"""

import asyncio
import time
from functools import partial
from typing import Awaitable, Callable, Optional

from fastapi import (
    APIRouter, BackgroundTasks, Body, Depends, Request,
    WebSocket, WebSocketDisconnect, status
)
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import get_session, get_session_context
from src.grouping.application import (
    ClassificationService, TopicExtractionService, TicketMatcher,
    GroupingService, TicketService, MessageProcessor,
    ILLMClient, ITicketEventPublisher,
    ProcessMessageRequest, ProcessMessageResponse,
    ClassifyRequest, ClassifyResponse, ClassificationInfo,
    TicketUpdateRequest, TicketUpdateResponse, TicketDeleteResponse,
    TicketListResponse, MessageListResponse, TicketResponse, MessageResponse,
    SlackEventEnvelope,
)
from src.grouping.domain import InboundMessage
from src.grouping.infrastructure import (
    SQLAlchemyTicketRepository,
    SQLAlchemyMessageRepository,
)
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

slack_router = APIRouter(prefix="/slack", tags=["Slack"])
grouping_router = APIRouter(prefix="/grouping", tags=["Message Grouping"])
tickets_router = APIRouter(prefix="/tickets", tags=["Tickets"])
live_router = APIRouter(tags=["Live Updates"])

PipelineRunner = Callable[[InboundMessage], Awaitable[None]]


# ========== Example payloads for Swagger ==========

PROCESS_REQUEST_EXAMPLE = {
    "channel_id": "C024BE91L",
    "user_id": "U2147483697",
    "source_ts": "1718000000.000100",
    "text": "The CSV export crashes when I pick a date range"
}

PROCESS_RESPONSE_EXAMPLE = {
    "outcome": "new_ticket",
    "classification": {
        "is_relevant": True,
        "category": "bug",
        "confidence": 0.92,
        "reasoning": "User reports the export failing."
    },
    "ticket": {
        "id": "123e4567-e89b-12d3-a456-426614174000",
        "title": "CSV export crashes with date range",
        "category": "bug",
        "group_key": "export-crash",
        "status": "open",
        "is_fixed": False
    },
    "message_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
    "error": None,
    "processing_time_ms": 1400
}


# ========== Dependencies ==========

def get_llm_client(request: Request) -> Optional[ILLMClient]:
    """LLM adapter from app state; None means deterministic fallbacks."""
    return getattr(request.app.state, "llm_client", None)


def get_publisher(request: Request) -> Optional[ITicketEventPublisher]:
    """Live-update publisher from app state."""
    return getattr(request.app.state, "publisher", None)


def build_message_processor(
    session: AsyncSession,
    llm_client: Optional[ILLMClient],
    publisher: Optional[ITicketEventPublisher]
) -> MessageProcessor:
    """Wire the full pipeline on one database session."""
    ticket_repo = SQLAlchemyTicketRepository(session)
    message_repo = SQLAlchemyMessageRepository(session)

    grouping_service = GroupingService(
        ticket_repository=ticket_repo,
        message_repository=message_repo,
        topic_extractor=TopicExtractionService(llm_client),
        matcher=TicketMatcher(ticket_repo)
    )
    return MessageProcessor(ClassificationService(llm_client), grouping_service, publisher)


def get_message_processor(
    db: AsyncSession = Depends(get_session),
    llm_client: Optional[ILLMClient] = Depends(get_llm_client),
    publisher: Optional[ITicketEventPublisher] = Depends(get_publisher)
) -> MessageProcessor:
    return build_message_processor(db, llm_client, publisher)


def get_classification_service(
    llm_client: Optional[ILLMClient] = Depends(get_llm_client)
) -> ClassificationService:
    return ClassificationService(llm_client)


def get_ticket_service(
    db: AsyncSession = Depends(get_session),
    publisher: Optional[ITicketEventPublisher] = Depends(get_publisher)
) -> TicketService:
    return TicketService(
        SQLAlchemyTicketRepository(db),
        SQLAlchemyMessageRepository(db),
        publisher
    )


async def run_message_pipeline(
    llm_client: Optional[ILLMClient],
    publisher: Optional[ITicketEventPublisher],
    message: InboundMessage
) -> None:
    """
    Process one message after the source event was acknowledged.

    Runs outside the request, so it opens its own session. Failures are
    logged here because nobody is waiting for the result.
    """
    try:
        async with get_session_context() as session:
            processor = build_message_processor(session, llm_client, publisher)
            with log_latency(logger, "message_pipeline", channel_id=message.channel_id):
                _, result = await processor.handle(message)
    except Exception as e:
        logger.error(
            "Background message processing failed",
            extra={
                "channel_id": message.channel_id,
                "source_ts": message.source_ts,
                "error": str(e)
            }
        )
        return

    logger.info(
        "Message processed",
        extra={
            "channel_id": message.channel_id,
            "source_ts": message.source_ts,
            "outcome": result.outcome,
            "ticket_id": result.ticket.id if result.ticket else None
        }
    )


def get_pipeline_runner(
    llm_client: Optional[ILLMClient] = Depends(get_llm_client),
    publisher: Optional[ITicketEventPublisher] = Depends(get_publisher)
) -> PipelineRunner:
    return partial(run_message_pipeline, llm_client, publisher)


# ========== Slack Events ==========

@slack_router.post(
    "/events",
    summary="Slack Events API webhook",
    description="""
    Receives Slack Events API callbacks.

    - `url_verification` echoes the challenge.
    - `event_callback` with a plain user `message` event is acknowledged
      immediately and processed in the background. Edits, joins and bot
      posts are ignored.
    """
)
async def slack_events(
    envelope: SlackEventEnvelope,
    background_tasks: BackgroundTasks,
    runner: PipelineRunner = Depends(get_pipeline_runner)
):
    if envelope.type == "url_verification":
        return {"challenge": envelope.challenge}

    if envelope.type == "event_callback":
        message = envelope.inbound_message()
        if message is not None:
            background_tasks.add_task(runner, message)
            logger.info(
                "Queued Slack message",
                extra={"channel_id": message.channel_id, "source_ts": message.source_ts}
            )

    return {"ok": True}


# ========== Message Grouping ==========

@grouping_router.post(
    "/messages",
    response_model=ProcessMessageResponse,
    summary="Classify and group one message",
    description="""
    Runs the full pipeline synchronously: classification, topic extraction,
    ticket matching and storage.

    **Outcomes**:
    - `stored_irrelevant` - not actionable, stored without a ticket
    - `grouped` - attached to an existing open ticket
    - `new_ticket` - a ticket was created for this message
    - `stored_without_grouping` - grouping failed, message stored without a ticket
    - `already_processed` - this (channel_id, source_ts) was seen before
    """,
    responses={
        200: {
            "description": "Message processed",
            "content": {"application/json": {"example": PROCESS_RESPONSE_EXAMPLE}}
        }
    }
)
async def process_message(
    payload: ProcessMessageRequest = Body(..., examples=[PROCESS_REQUEST_EXAMPLE]),
    processor: MessageProcessor = Depends(get_message_processor)
):
    start_time = time.perf_counter()

    classification, result = await processor.handle(payload.to_domain())

    return ProcessMessageResponse.from_domain(
        classification,
        result,
        processing_time_ms=int((time.perf_counter() - start_time) * 1000)
    )


@grouping_router.post(
    "/classify",
    response_model=ClassifyResponse,
    summary="Classify a message without storing it"
)
async def classify_message(
    payload: ClassifyRequest,
    service: ClassificationService = Depends(get_classification_service)
):
    start_time = time.perf_counter()

    result = await service.classify(payload.text)

    return ClassifyResponse(
        classification=ClassificationInfo.from_domain(result),
        model_used=result.model_used,
        used_fallback=result.used_fallback,
        processing_time_ms=int((time.perf_counter() - start_time) * 1000)
    )


# ========== Tickets ==========

@tickets_router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets with message counts",
    description="All tickets, most recent message activity first."
)
async def list_tickets(service: TicketService = Depends(get_ticket_service)):
    tickets = await service.list_tickets()
    return TicketListResponse(data=[TicketResponse.from_domain(t) for t in tickets])


@tickets_router.get(
    "/{ticket_id}/messages",
    response_model=MessageListResponse,
    summary="List the messages of a ticket",
    description="Messages grouped into the ticket, oldest first."
)
async def get_ticket_messages(
    ticket_id: str,
    service: TicketService = Depends(get_ticket_service)
):
    messages = await service.get_ticket_messages(ticket_id)
    return MessageListResponse(data=[MessageResponse.from_domain(m) for m in messages])


@tickets_router.patch(
    "/{ticket_id}",
    response_model=TicketUpdateResponse,
    summary="Update ticket status",
    description="""
    Update `status` (open, in_progress, resolved, closed) and/or `is_fixed`.
    At least one of the two is required.
    """,
    responses={
        400: {"description": "Nothing to update or unknown status"},
        404: {"description": "Ticket not found"}
    }
)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketService = Depends(get_ticket_service)
):
    ticket = await service.update_status(ticket_id, payload.status, payload.is_fixed)
    return TicketUpdateResponse(data=TicketResponse.from_domain(ticket))


@tickets_router.delete(
    "/{ticket_id}",
    response_model=TicketDeleteResponse,
    summary="Delete a ticket and its messages",
    responses={404: {"description": "Ticket not found"}}
)
async def delete_ticket(
    ticket_id: str,
    service: TicketService = Depends(get_ticket_service)
):
    deleted = await service.delete_ticket(ticket_id)
    return TicketDeleteResponse(ticket_id=ticket_id, messages_deleted=deleted)


# ========== Live Updates ==========

@live_router.websocket("/ws/tickets")
async def ticket_updates(websocket: WebSocket):
    """Stream ticket events (created, message_added, status_changed, deleted)."""
    publisher = getattr(websocket.app.state, "publisher", None)
    if publisher is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    # Subscribe before the handshake completes so no event is missed
    queue = publisher.subscribe()

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    forward_task: Optional[asyncio.Task] = None
    try:
        await websocket.accept()
        logger.info("Live update listener connected", extra={"listeners": publisher.subscriber_count})
        forward_task = asyncio.create_task(forward())
        # Inbound frames are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if forward_task is not None:
            forward_task.cancel()
        publisher.unsubscribe(queue)
        logger.info("Live update listener disconnected", extra={"listeners": publisher.subscriber_count})
