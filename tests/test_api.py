"""
API Tests Module
Single Responsibility: Test API endpoints
"""
import json
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from medsafety.main import app
from medsafety.api.dependencies import get_history, get_orchestrator, get_registry
from medsafety.core.config import settings
from medsafety.services.history_service import InMemoryEvaluationHistory
from medsafety.services.reference_data_service import (
    DEFAULT_REFERENCE_DATA_PATH,
    reference_data_registry,
)


# ============================================================================
# FIXTURES - Dependency Inversion Principle
# ============================================================================

@pytest.fixture
def history() -> InMemoryEvaluationHistory:
    return InMemoryEvaluationHistory(max_entries=50)


@pytest.fixture
async def client(orchestrator, history, registry) -> AsyncGenerator[AsyncClient, None]:
    """
    Create test client.

    Dependency Inversion: Override engine dependencies with offline instances
    """
    if not reference_data_registry.loaded:
        reference_data_registry.load()

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_history] = lambda: history
    app.dependency_overrides[get_registry] = lambda: registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def url(path: str) -> str:
    return f"{settings.API_PREFIX}{path}"


# ============================================================================
# HEALTH CHECK TESTS
# ============================================================================

@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == settings.APP_VERSION
    assert data["reference_data_version"] == "2024.06-demo"
    assert "dictionary_hits" in data["resolver"]


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    """Test root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert data["name"] == settings.APP_NAME
    assert data["status"] == "running"


@pytest.mark.asyncio
async def test_correlation_id_echoed(client: AsyncClient):
    response = await client.get("/", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"


# ============================================================================
# EVALUATION TESTS
# ============================================================================

@pytest.mark.asyncio
async def test_evaluate_interaction(client: AsyncClient, history):
    """Test evaluation of a major interaction."""
    response = await client.post(
        url("/interactions/evaluate"),
        json={"medications": ["Coumadin", {"name": "aspirin", "dosage": "81mg"}]},
    )
    assert response.status_code == 200

    data = response.json()
    assert data["interactions"][0]["severity"] == "major"
    assert data["overall_risk"] == "high"
    assert data["requires_action"] is True
    assert data["medications"][1]["dosage"] == "81mg"
    assert data["reference_data_version"] == "2024.06-demo"
    assert len(history) == 1


@pytest.mark.asyncio
async def test_evaluate_with_profile(client: AsyncClient):
    response = await client.post(
        url("/interactions/evaluate"),
        json={
            "medications": ["amoxicillin", "metformin"],
            "allergies": ["penicillin"],
            "conditions": ["kidney disease"],
        },
    )
    assert response.status_code == 200

    data = response.json()
    assert [a["medication"] for a in data["allergies"]] == ["Amoxicillin"]
    assert [c["medication"] for c in data["contraindications"]] == ["Metformin"]
    assert data["overall_risk_score"] == 18
    assert data["overall_risk"] == "critical"
    assert data["recommendations"][0]["priority"] == "high"


@pytest.mark.asyncio
async def test_evaluate_unknown_drug_not_an_error(client: AsyncClient):
    response = await client.post(
        url("/interactions/evaluate"), json={"medications": ["totallyUnknownDrug123"]},
    )
    assert response.status_code == 200

    data = response.json()
    assert data["medications"][0]["resolved"] is False
    assert data["interactions"][0]["severity"] == "unknown"


@pytest.mark.asyncio
async def test_evaluate_empty_list(client: AsyncClient, history):
    """Empty medication list is rejected."""
    response = await client.post(url("/interactions/evaluate"), json={"medications": []})

    assert response.status_code == 422
    assert "at least one" in response.json()["detail"].lower()
    assert len(history) == 0


@pytest.mark.asyncio
async def test_evaluate_malformed_body(client: AsyncClient):
    response = await client.post(url("/interactions/evaluate"), json={"medications": "aspirin"})

    assert response.status_code == 422
    assert response.json()["error"] == "Validation Error"


@pytest.mark.asyncio
async def test_pair_check(client: AsyncClient):
    response = await client.post(
        url("/interactions/pair"), json={"drug_a": "Zocor", "drug_b": "clarithromycin"},
    )
    assert response.status_code == 200
    assert response.json()["interactions"][0]["severity"] == "contraindicated"


@pytest.mark.asyncio
async def test_history_listing(client: AsyncClient):
    for meds in (["aspirin"], ["ibuprofen", "naproxen"]):
        await client.post(url("/interactions/evaluate"), json={"medications": meds})

    response = await client.get(url("/interactions/history"), params={"limit": 1})
    assert response.status_code == 200

    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["medications"] == ["ibuprofen", "naproxen"]
    assert entries[0]["overall_risk"] == "moderate"


# ============================================================================
# DRUG TESTS
# ============================================================================

@pytest.mark.asyncio
async def test_get_drug_by_brand(client: AsyncClient):
    response = await client.get(url("/drugs/Lipitor"))
    assert response.status_code == 200

    identity = response.json()["identity"]
    assert identity["generic_name"] == "atorvastatin"
    assert identity["canonical_id"] == "83367"


@pytest.mark.asyncio
async def test_get_unknown_drug(client: AsyncClient):
    response = await client.get(url("/drugs/notadrug"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_alternatives(client: AsyncClient):
    response = await client.get(url("/drugs/ibuprofen/alternatives"))
    assert response.status_code == 200

    names = [alt["generic_name"] for alt in response.json()]
    assert "acetaminophen" in names
    assert "naproxen" not in names


# ============================================================================
# REFERENCE DATA TESTS
# ============================================================================

@pytest.fixture
def dataset(tmp_path):
    """Write a dataset variant to disk and return its path."""
    def write(name: str, **overrides):
        raw = json.loads(DEFAULT_REFERENCE_DATA_PATH.read_text(encoding="utf-8"))
        raw.update(overrides)
        path = tmp_path / name
        path.write_text(json.dumps(raw), encoding="utf-8")
        return path
    return write


@pytest.mark.asyncio
async def test_reload_reference_data(client: AsyncClient, registry, dataset, monkeypatch):
    """Reload reads the configured dataset path."""
    monkeypatch.setattr(
        settings, "REFERENCE_DATA_PATH", str(dataset("next.json", version="2024.07-demo"))
    )

    response = await client.post(url("/reference-data/reload"))
    assert response.status_code == 200
    assert response.json() == {"previous_version": "2024.06-demo", "version": "2024.07-demo"}
    assert registry.current.version == "2024.07-demo"


@pytest.mark.asyncio
async def test_reload_ignores_caller_supplied_path(client: AsyncClient, registry, dataset, monkeypatch):
    """A path in the request body is never read."""
    monkeypatch.setattr(
        settings, "REFERENCE_DATA_PATH", str(dataset("configured.json", version="2024.07-demo"))
    )
    other = dataset("other.json", version="caller-chosen")

    response = await client.post(url("/reference-data/reload"), json={"path": str(other)})
    assert response.status_code == 200
    assert response.json()["version"] == "2024.07-demo"
    assert registry.current.version == "2024.07-demo"


@pytest.mark.asyncio
async def test_failed_reload_keeps_data(client: AsyncClient, registry, dataset, monkeypatch):
    """Load errors are logged, not echoed back, and the old snapshot stays."""
    bad = dataset("bad.json", drugs=[{"generic_name": "secret-value-123"}])
    monkeypatch.setattr(settings, "REFERENCE_DATA_PATH", str(bad))

    response = await client.post(url("/reference-data/reload"))
    assert response.status_code == 400
    assert "secret-value-123" not in response.text
    assert str(bad) not in response.text
    assert registry.current.version == "2024.06-demo"


@pytest.mark.asyncio
async def test_missing_reference_data_not_echoed(client: AsyncClient, registry, tmp_path, monkeypatch):
    missing = tmp_path / "missing.json"
    monkeypatch.setattr(settings, "REFERENCE_DATA_PATH", str(missing))

    response = await client.post(url("/reference-data/reload"))
    assert response.status_code == 400
    assert str(missing) not in response.text
    assert registry.current.version == "2024.06-demo"
