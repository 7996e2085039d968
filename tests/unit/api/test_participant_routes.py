"""Unit tests for the participant lifecycle HTTP routes.

The app runs without its lifespan; the bootstrap module is pointed at a
fresh in-memory store for every test.
"""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from participant_registry.api.main import app
from participant_registry.bootstrap.participant_registry import (
    reset_participant_registry,
    set_document_store,
    set_registry_config,
)
from participant_registry.config.registry_config import TEST_REGISTRY_CONFIG
from participant_registry.domain.errors import StoreUnavailableError
from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)

BASE = "/v1/participants"


@pytest.fixture(autouse=True)
def registry(store: InMemoryDocumentStore) -> Iterator[InMemoryDocumentStore]:
    """Wire the API to the test store, then reset the singletons."""
    reset_participant_registry()
    set_document_store(store)
    yield store
    reset_participant_registry()


@pytest.fixture
def client() -> TestClient:
    """Create test client for the full app."""
    return TestClient(app, raise_server_exceptions=False)


def _create_new(client: TestClient, **fields: object) -> str:
    response = client.post(f"{BASE}/new", json={"fields": fields or {"name": "Alice"}})
    assert response.status_code == 201
    return response.json()["id"]


def _create_permanent(client: TestClient) -> str:
    response = client.post(f"{BASE}/permanent", json={"fields": {"name": "Bob"}})
    assert response.status_code == 201
    return response.json()["id"]


class TestIntakeRoutes:
    """Tests for /v1/participants/new."""

    def test_create_and_read(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/new", json={"fields": {"name": "Alice"}, "actor": "kiosk"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["collection"] == "new"

        record = client.get(f"{BASE}/new/{body['id']}").json()
        assert record["id"] == body["id"]
        assert record["status"] == "Pending"
        assert record["fields"] == {"name": "Alice"}
        assert record["created_at"].endswith("Z")
        assert [(e["actor"], e["event"]) for e in record["history"]] == [
            ("kiosk", "Received registration data from participant.")
        ]

    def test_reserved_field_is_rejected(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/new", json={"fields": {"name": "M", "history": []}}
        )

        assert response.status_code == 400
        problem = response.json()["detail"]
        assert problem["type"] == "urn:participant-registry:invalid-participant"
        assert problem["status"] == 400

    def test_missing_record_is_404(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/new/missing")

        assert response.status_code == 404
        problem = response.json()["detail"]
        assert problem["type"] == "urn:participant-registry:participant-not-found"
        assert problem["instance"].endswith("/v1/participants/new/missing")

    def test_update(self, client: TestClient) -> None:
        document_id = _create_new(client)

        response = client.patch(
            f"{BASE}/new/{document_id}", json={"fields": {"email": "a@example.com"}}
        )

        assert response.status_code == 204
        record = client.get(f"{BASE}/new/{document_id}").json()
        assert record["fields"]["email"] == "a@example.com"
        assert len(record["history"]) == 2

    def test_delete(self, client: TestClient) -> None:
        document_id = _create_new(client)

        assert client.delete(f"{BASE}/new/{document_id}").status_code == 204
        assert client.get(f"{BASE}/new/{document_id}").status_code == 404
        assert client.delete(f"{BASE}/new/{document_id}").status_code == 404

    def test_move(self, client: TestClient) -> None:
        document_id = _create_new(client)

        response = client.post(
            f"{BASE}/new/{document_id}/move", json={"actor": "staff"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["previous_id"] == document_id
        assert body["id"] != document_id
        assert client.get(f"{BASE}/new/{document_id}").status_code == 404
        moved = client.get(f"{BASE}/permanent/{body['id']}").json()
        assert moved["status"] == "Pending"
        assert moved["history"][-1]["actor"] == "staff"

    def test_move_without_body(self, client: TestClient) -> None:
        document_id = _create_new(client)

        response = client.post(f"{BASE}/new/{document_id}/move")

        assert response.status_code == 200
        moved = client.get(f"{BASE}/permanent/{response.json()['id']}").json()
        assert moved["history"][-1]["actor"] == "System"


class TestPermanentRoutes:
    """Tests for /v1/participants/permanent."""

    def test_create_does_not_count(self, client: TestClient) -> None:
        _create_permanent(client)

        assert client.get("/v1/statistics").status_code == 404

    @pytest.mark.parametrize(
        ("action", "status"),
        [("approve", "Approved"), ("decline", "Declined"), ("delete", "Deleted")],
    )
    def test_transition_returns_record(
        self, client: TestClient, action: str, status: str
    ) -> None:
        document_id = _create_permanent(client)

        response = client.post(f"{BASE}/permanent/{document_id}/{action}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == status
        assert len(body["history"]) == 2

    def test_restore(self, client: TestClient) -> None:
        document_id = _create_permanent(client)
        client.post(f"{BASE}/permanent/{document_id}/delete")

        response = client.post(
            f"{BASE}/permanent/{document_id}/restore", json={"actor": "admin"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "Pending"
        assert response.json()["history"][-1]["actor"] == "admin"

    def test_update(self, client: TestClient) -> None:
        document_id = _create_permanent(client)

        response = client.patch(
            f"{BASE}/permanent/{document_id}", json={"fields": {"age": 40}}
        )

        assert response.status_code == 204
        assert client.get(f"{BASE}/permanent/{document_id}").json()["fields"] == {
            "name": "Bob",
            "age": 40,
        }

    def test_transition_of_missing_record(self, client: TestClient) -> None:
        assert client.post(f"{BASE}/permanent/missing/approve").status_code == 404

    def test_guarded_transition_conflict(self, client: TestClient) -> None:
        set_registry_config(TEST_REGISTRY_CONFIG)
        document_id = _create_permanent(client)
        client.post(f"{BASE}/permanent/{document_id}/decline")

        response = client.post(f"{BASE}/permanent/{document_id}/approve")

        assert response.status_code == 409
        assert (
            response.json()["detail"]["type"]
            == "urn:participant-registry:invalid-state-transition"
        )


class TestStatisticsAndHealth:
    """Tests for /v1/statistics and /v1/health."""

    def test_statistics_track_intake(self, client: TestClient) -> None:
        first = _create_new(client)
        _create_new(client, name="Bea")
        assert client.get("/v1/statistics").json() == {"num_of_new": 2}

        client.delete(f"{BASE}/new/{first}")

        assert client.get("/v1/statistics").json() == {"num_of_new": 1}

    def test_health_names_store(self, client: TestClient) -> None:
        response = client.get("/v1/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "store": "InMemoryDocumentStore",
        }

    def test_correlation_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/v1/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"

    def test_correlation_id_is_generated(self, client: TestClient) -> None:
        response = client.get("/v1/health")

        assert response.headers["X-Correlation-ID"]


class TestStoreFailures:
    """Tests for store outages."""

    def test_unavailable_store_is_503(
        self, client: TestClient, registry: InMemoryDocumentStore
    ) -> None:
        registry.set_failure_mode(StoreUnavailableError("backend down"))

        response = client.post(f"{BASE}/new", json={"fields": {"name": "Alice"}})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json()["detail"]["detail"] == "backend down"


class TestStreamValidation:
    """Request validation of the stream route."""

    def test_invalid_sort_direction(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/new/stream", params={"sort": "name:sideways"})

        assert response.status_code == 400

    def test_unknown_collection(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/archive/stream").status_code == 422
