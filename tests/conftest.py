"""
Pytest configuration and shared fixtures for the AEO query service tests
"""
import asyncio
import os
import sys
import json
import pytest
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment variables
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "test"
os.environ["GEMINI_API_KEY"] = "test-gemini-key-for-testing"


# ============================================================================
# Time Fixtures
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock whose sleep advances time instantly"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let other tasks run, like a real sleep would
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    """Provides a FakeClock usable as both clock and sleep"""
    return FakeClock()


@pytest.fixture
def no_sleep():
    """AsyncMock standing in for asyncio.sleep"""
    return AsyncMock(return_value=None)


# ============================================================================
# Gemini Fixtures
# ============================================================================

@pytest.fixture
def analysis_payload():
    """Well-formed analysis response text"""
    return json.dumps({
        "brand_mentions": ["HubSpot", "Salesforce"],
        "source": "Review sites",
        "query_type": "Service-Aligned",
        "query_category": "Competitor benchmarking"
    })


def make_generated_payload(count: int, start: int = 1) -> str:
    """JSON array of `count` distinct generated queries"""
    return json.dumps([
        {
            "query_text": f"What is the best way to handle case {n}?",
            "query_type": "Educational",
            "query_category": "Foundational understanding",
            "query_format": "Natural-language questions",
            "target_audience": "Marketing managers"
        }
        for n in range(start, start + count)
    ])


@pytest.fixture
def generated_payload_factory():
    """Factory for generation response text"""
    return make_generated_payload


@pytest.fixture
def mock_gemini_client():
    """Mock GeminiClient with an async generate_content"""
    client = MagicMock()
    client.generate_content = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def rate_limiter(fake_clock):
    """Rate limiter driven by the fake clock"""
    from backend.app.core.rate_limiter import GeminiRateLimiter

    return GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def invoker(mock_gemini_client, rate_limiter, no_sleep):
    """GeminiInvoker over the mock client with backoff sleeps stubbed out"""
    import random
    from backend.app.core.llm_orchestrator import GeminiInvoker

    return GeminiInvoker(
        client=mock_gemini_client,
        rate_limiter=rate_limiter,
        sleep=no_sleep,
        rng=random.Random(42)
    )


# ============================================================================
# Project / Store Fixtures
# ============================================================================

@pytest.fixture
def sample_project():
    """Sample project configuration"""
    from backend.app.models.schemas import Project

    return Project(
        id="project-1",
        company_url="https://acme-analytics.example",
        competitor_urls=["https://rival-one.example", "https://rival-two.example"],
        audience=["Marketing managers", "Growth leads"],
        themes="Attribution, reporting",
        total_queries=20,
        educational_ratio=60,
        service_ratio=40
    )


@pytest.fixture
def sample_queries(sample_project):
    """Seven pending query records for the sample project"""
    from backend.app.models.schemas import QueryRecord

    return [
        QueryRecord(
            id=f"q-{n}",
            project_id=sample_project.id,
            query_id=n,
            query_text=f"How do teams measure campaign {n} attribution?",
            query_type="Educational",
            query_category="Operational training",
            query_format="Natural-language questions",
            target_audience="Marketing managers"
        )
        for n in range(1, 8)
    ]


@pytest.fixture
def store(sample_project, sample_queries):
    """In-memory store seeded with the sample project and queries"""
    from backend.app.storage.memory import InMemoryQueryStore

    store = InMemoryQueryStore()
    store.add_project(sample_project)
    for record in sample_queries:
        store.add_query(record)
    return store


# ============================================================================
# Markers Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
    config.addinivalue_line("markers", "fast: Fast running tests")
