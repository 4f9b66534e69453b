"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- A fake OpenMRS remote API served through httpx.MockTransport
- A connected OpenMRSClient bound to that fake
- A LabResultsService with fresh caches per test
"""

import os

os.environ.setdefault("OPENMRS_BASE_URL", "http://openmrs.test/openmrs")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from labresults.services.lab_results import LabResultsService  # noqa: E402
from labresults.services.openmrs_client import OpenMRSClient  # noqa: E402
from tests.factories import BASE_URL, FakeOpenMRS  # noqa: E402


@pytest.fixture
def fake_openmrs() -> FakeOpenMRS:
    """Empty fake remote API; tests fill in observations and concepts."""
    return FakeOpenMRS()


@pytest_asyncio.fixture
async def openmrs_client(fake_openmrs):
    """OpenMRSClient whose HTTP transport is the fake remote API."""
    async with httpx.AsyncClient(transport=fake_openmrs.transport) as http:
        client = OpenMRSClient(base_url=BASE_URL, http=http)
        await client.connect()
        yield client
        await client.close()


@pytest_asyncio.fixture
async def lab_results_service(openmrs_client):
    """Service with fresh concept memo and results cache."""
    service = LabResultsService(openmrs_client, page_size=100, prefetch_pages=6, cache_size=3)
    yield service
    await service.close()


@pytest_asyncio.fixture
async def client():
    """Async HTTP client for the full FastAPI app (lifespan not run)."""
    from labresults.main import app

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
