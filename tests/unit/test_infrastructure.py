"""
Tests for infrastructure adapters.

Tests cover:
- Live-update broadcast publisher
- LLM client selection and the mock client
- Duplicate detection in the SQLAlchemy message repository
- Log redaction and Grafana payloads
"""

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.config import TicketEventAction, settings
from src.core import DuplicateMessageException, RepositoryException
from src.grouping.application import parse_json_response
from src.grouping.domain import TicketEvent
from src.grouping.infrastructure import (
    BroadcastTicketEventPublisher,
    LLMClientAdapter,
    SQLAlchemyMessageRepository,
)
from src.infrastructure.llm import MockLLMClient, OpenAILLMClient, create_llm_client
from src.shared.infrastructure.grafana import GrafanaOTLPExporter
from src.shared.infrastructure.logging import REDACTED, CustomJsonFormatter
from tests.helpers.factories import make_message, relevant


def make_session(flush_error: Exception | None = None) -> MagicMock:
    """AsyncSession double whose SAVEPOINT propagates errors."""
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.begin_nested.return_value = nested
    session.flush = AsyncMock(side_effect=flush_error)
    return session


class TestBroadcastPublisher:
    @pytest.mark.asyncio
    async def test_delivers_json_ready_payload(self) -> None:
        publisher = BroadcastTicketEventPublisher()
        queue = publisher.subscribe()

        await publisher.publish(TicketEvent(action=TicketEventAction.DELETED, ticket_id="t-1"))

        payload = queue.get_nowait()
        assert payload["action"] == "deleted"
        assert payload["ticket_id"] == "t-1"
        assert isinstance(payload["timestamp"], str)
        json.dumps(payload)

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self) -> None:
        publisher = BroadcastTicketEventPublisher(queue_size=1)
        queue = publisher.subscribe()

        await publisher.publish(TicketEvent(action=TicketEventAction.DELETED, ticket_id="t-1"))
        await publisher.publish(TicketEvent(action=TicketEventAction.DELETED, ticket_id="t-2"))

        assert queue.qsize() == 1
        assert queue.get_nowait()["ticket_id"] == "t-1"

    @pytest.mark.asyncio
    async def test_unsubscribed_listener_gets_nothing(self) -> None:
        publisher = BroadcastTicketEventPublisher()
        queue = publisher.subscribe()
        publisher.unsubscribe(queue)

        await publisher.publish(TicketEvent(action=TicketEventAction.DELETED, ticket_id="t-1"))

        assert queue.empty()
        assert publisher.subscriber_count == 0


class TestLLMClients:
    @pytest.mark.asyncio
    async def test_mock_client_replies_per_operation(self) -> None:
        adapter = LLMClientAdapter(MockLLMClient())

        classification = await adapter.chat_completion([], operation="classification")
        topic = await adapter.chat_completion([], operation="topic_extraction")

        assert parse_json_response(classification.content)["category"] == "question"
        assert parse_json_response(topic.content)["group_key"] == "mock-topic"

    def test_mock_flag_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "mock_llm", True)
        monkeypatch.setattr(settings, "llm_provider", "zai")

        assert isinstance(create_llm_client(), MockLLMClient)

    def test_missing_key_means_no_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "mock_llm", False)
        monkeypatch.setattr(settings, "llm_provider", "zai")
        monkeypatch.setattr(settings, "zai_api_key", None)

        assert create_llm_client() is None

    def test_openai_provider(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "mock_llm", False)
        monkeypatch.setattr(settings, "llm_provider", "openai")
        monkeypatch.setattr(settings, "openai_api_key", "sk-test")

        assert isinstance(create_llm_client(), OpenAILLMClient)


class TestMessageRepositoryErrors:
    @pytest.mark.asyncio
    async def test_unique_violation_is_duplicate(self) -> None:
        error = IntegrityError(
            "INSERT INTO messages", {},
            Exception('duplicate key value violates unique constraint "uq_messages_channel_ts"'),
        )
        repo = SQLAlchemyMessageRepository(make_session(error))

        with pytest.raises(DuplicateMessageException) as exc_info:
            await repo.create(make_message("export crashes", source_ts="42"), relevant())

        assert exc_info.value.source_ts == "42"

    @pytest.mark.asyncio
    async def test_sqlite_unique_violation_is_duplicate(self) -> None:
        error = IntegrityError(
            "INSERT INTO messages", {},
            Exception("UNIQUE constraint failed: messages.channel_id, messages.source_ts"),
        )
        repo = SQLAlchemyMessageRepository(make_session(error))

        with pytest.raises(DuplicateMessageException):
            await repo.create(make_message("export crashes"), relevant())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "detail",
        [
            'insert violates foreign key constraint "messages_ticket_id_fkey"',
            "NOT NULL constraint failed: messages.channel_id",
        ],
        ids=["foreign-key", "sqlite-not-null"],
    )
    async def test_other_integrity_error_is_not_duplicate(self, detail: str) -> None:
        error = IntegrityError("INSERT INTO messages", {}, Exception(detail))
        repo = SQLAlchemyMessageRepository(make_session(error))

        with pytest.raises(RepositoryException) as exc_info:
            await repo.create(make_message("export crashes"), relevant())

        assert not isinstance(exc_info.value, DuplicateMessageException)

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self) -> None:
        error = OperationalError("INSERT INTO messages", {}, Exception("connection reset"))
        repo = SQLAlchemyMessageRepository(make_session(error))

        with pytest.raises(RepositoryException) as exc_info:
            await repo.create(make_message("export crashes"), relevant())

        assert exc_info.value.details == {"operation": "create_message"}
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_invalid_ticket_id_is_rejected(self) -> None:
        repo = SQLAlchemyMessageRepository(make_session())

        with pytest.raises(RepositoryException, match="Invalid ticket ID"):
            await repo.create(make_message("export crashes"), relevant(), ticket_id="not-a-uuid")


class TestLogFormatting:
    def _format(self, **extra: object) -> dict:
        formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
        record = logging.LogRecord("grouping", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(formatter.format(record))

    def test_secrets_are_redacted(self) -> None:
        out = self._format(api_key="sk-123", slack_token="xoxb-1", password="hunter2")

        assert out["api_key"] == REDACTED
        assert out["slack_token"] == REDACTED
        assert out["password"] == REDACTED

    def test_token_counts_are_kept(self) -> None:
        out = self._format(prompt_tokens="12")

        assert out["prompt_tokens"] == "12"

    def test_message_text_is_truncated(self) -> None:
        out = self._format(text="x" * 500)

        assert out["text"] == "x" * 200 + "..."

    def test_context_fields(self) -> None:
        out = self._format(correlation_id="abc")

        assert out["correlation_id"] == "abc"
        assert out["environment"] == "test"
        assert out["timestamp"]


class TestGrafanaExporter:
    def test_disabled_without_credentials(self) -> None:
        exporter = GrafanaOTLPExporter(host="", api_key="", instance_id="")
        assert exporter.is_enabled() is False

    @pytest.mark.asyncio
    async def test_disabled_export_is_a_no_op(self) -> None:
        exporter = GrafanaOTLPExporter(host="", api_key="", instance_id="")
        assert await exporter.export_llm_metrics("m", 1, 2, 3) is False

    def test_payload_contains_llm_gauges(self) -> None:
        exporter = GrafanaOTLPExporter(host="https://otlp.example.com", api_key="k", instance_id="1")

        payload = exporter.build_llm_payload("glm-4.7", 10, 5, 120, "classification")

        metrics = payload["resourceMetrics"][0]["scopeMetrics"][0]["metrics"]
        values = {m["name"]: m["gauge"]["dataPoints"][0]["asInt"] for m in metrics}
        assert values == {
            "llm_tokens_total": 15,
            "llm_latency_ms": 120,
            "llm_prompt_tokens": 10,
            "llm_completion_tokens": 5,
        }
        attributes = metrics[0]["gauge"]["dataPoints"][0]["attributes"]
        assert {"key": "operation", "value": {"stringValue": "classification"}} in attributes
