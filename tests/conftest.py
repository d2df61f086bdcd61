"""
Shared test fixtures
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from medsafety.services.drug_resolver_service import DrugResolverService, ResolutionCache
from medsafety.services.evaluation_service import EvaluationOrchestrator
from medsafety.services.reference_data_service import (
    ReferenceDataRegistry,
    ReferenceSnapshot,
    load_reference_data,
)
from medsafety.services.terminology_service import (
    TerminologyServiceError,
    TerminologyTimeoutError,
)


class FakeTerminology:
    """
    Stand-in for the RxNav client.

    ``responses`` maps a lowercase name to concept details, None (no match),
    or an exception instance to raise.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, delay: float = 0.0):
        self.responses = responses or {}
        self.delay = delay
        self.calls: List[str] = []
        self.cancelled: List[str] = []

    async def lookup(self, name: str, correlation_id: str = "") -> Optional[Dict[str, Any]]:
        self.calls.append(name)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled.append(name)
                raise
        response = self.responses.get(name.strip().lower())
        if isinstance(response, Exception):
            raise response
        return response


class FakeSharedCache:
    """In-memory replacement for the Redis cache manager."""

    def __init__(self, connected: bool = True):
        self.store: Dict[str, Any] = {}
        self._connected = connected

    @property
    def connected(self) -> bool:
        return self._connected

    async def get(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        self.store[key] = value
        return True


@pytest.fixture(scope="session")
def snapshot() -> ReferenceSnapshot:
    """Bundled reference dataset."""
    return load_reference_data()


@pytest.fixture
def dictionary(snapshot):
    return snapshot.dictionary


@pytest.fixture
def registry(snapshot) -> ReferenceDataRegistry:
    registry = ReferenceDataRegistry()
    registry.install(snapshot)
    return registry


@pytest.fixture
def resolver() -> DrugResolverService:
    """Dictionary-only resolver; no network access."""
    return DrugResolverService(terminology=None, cache=ResolutionCache(1000))


@pytest.fixture
def orchestrator(registry, resolver) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(registry=registry, resolver=resolver, default_timeout=5.0)


@pytest.fixture
def timeout_error():
    return TerminologyTimeoutError("timed out")


@pytest.fixture
def service_error():
    return TerminologyServiceError("Terminology API error: 503")
