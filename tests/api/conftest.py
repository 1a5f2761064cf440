"""API test fixtures: the FastAPI app wired to in-memory services.

Overrides the service dependencies so no database or LLM is touched.
The app lifespan is not run by ASGITransport.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.grouping.application import ClassificationService
from src.grouping.interfaces.controllers import (
    get_classification_service,
    get_message_processor,
    get_pipeline_runner,
    get_ticket_service,
)
from src.main import app


@pytest.fixture
def pipeline_runner() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def overrides(processor, ticket_service, llm, pipeline_runner):
    app.dependency_overrides[get_message_processor] = lambda: processor
    app.dependency_overrides[get_ticket_service] = lambda: ticket_service
    app.dependency_overrides[get_classification_service] = lambda: ClassificationService(llm)
    app.dependency_overrides[get_pipeline_runner] = lambda: pipeline_runner
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(overrides):
    """HTTP client against the app with in-memory services."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
