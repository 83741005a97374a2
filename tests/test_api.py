from collections.abc import Generator
from unittest.mock import AsyncMock

import pytest
from conftest import rule
from fastapi.testclient import TestClient

from household_categorizer.app import app
from household_categorizer.manager import CategorizerRegistry
from household_categorizer.services.monitor import CategorizationMonitor

client = TestClient(app)

_STATE = ("backend", "monitor", "registry")


@pytest.fixture
def services(backend: AsyncMock) -> Generator[CategorizerRegistry, None, None]:
    originals = {name: getattr(app.state, name, None) for name in _STATE}
    had = {name: hasattr(app.state, name) for name in _STATE}
    monitor = CategorizationMonitor()
    registry = CategorizerRegistry(backend, monitor=monitor)
    app.state.backend = backend
    app.state.monitor = monitor
    app.state.registry = registry
    yield registry
    for name in _STATE:
        if had[name]:
            setattr(app.state, name, originals[name])
        else:
            delattr(app.state, name)


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_categorize_returns_one_result_per_transaction(
    backend: AsyncMock, services: CategorizerRegistry
) -> None:
    backend.get_system_rules.return_value = [rule("uber eats", "Food Delivery", 0.85)]

    response = client.post(
        "/users/u1/categorize",
        json={
            "transactions": [
                {"description": "UBER *EATS", "amount": "-23.50", "date": "2024-03-01"},
                {"description": "ATM WITHDRAWAL", "amount": "-100", "date": "2024-03-02"},
                {"description": "SOMETHING ODD", "amount": "5", "date": "2024-03-03"},
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert [r["source"] for r in data["results"]] == ["system_rule", "fallback", "uncategorized"]
    assert data["results"][0]["category"] == "Food Delivery"
    assert data["stats"]["total"] == 3
    assert data["stats"]["system_rule"] == 1


def test_categorize_rejects_invalid_transaction(services: CategorizerRegistry) -> None:
    response = client.post("/users/u1/categorize", json={"transactions": [{"description": "x"}]})
    assert response.status_code == 422


def test_import_writes_rows(backend: AsyncMock, services: CategorizerRegistry) -> None:
    backend.find_category_id.return_value = "cat-1"

    response = client.post(
        "/users/u1/import",
        json={
            "transactions": [
                {"description": "COLES 12", "amount": "-40", "date": "2024-03-01", "asset_account_id": "acc"},
                {"description": "NO ACCOUNT", "amount": "-1", "date": "2024-03-01"},
            ]
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": 1,
        "failed": 1,
        "categories_discovered": 2,
        "new_categories_created": 0,
    }
    backend.insert_transaction.assert_awaited_once()


def test_refresh_rules(services: CategorizerRegistry) -> None:
    assert client.post("/users/u1/rules/refresh").json() == {"cleared": 0}

    services.get("u1")

    assert client.post("/users/u1/rules/refresh").json() == {"cleared": 1}


def test_user_metrics_404_until_a_session_is_recorded(services: CategorizerRegistry) -> None:
    assert client.get("/users/u1/metrics").status_code == 404

    client.post(
        "/users/u1/categorize",
        json={"transactions": [{"description": "ATM", "amount": "-20", "date": "2024-03-01"}]},
    )
    response = client.get("/users/u1/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["sessions"] == 1
    assert data["hit_rates"]["fallback"] == 100.0


def test_system_metrics(services: CategorizerRegistry) -> None:
    response = client.get("/metrics/system", params={"days": 7})

    assert response.status_code == 200
    assert response.json()["sessions"] == 0


def test_missing_services_return_500() -> None:
    had = hasattr(app.state, "registry")
    original = getattr(app.state, "registry", None)
    app.state.registry = None
    try:
        response = client.post("/users/u1/categorize", json={"transactions": []})
    finally:
        if had:
            app.state.registry = original
        else:
            delattr(app.state, "registry")

    assert response.status_code == 500
