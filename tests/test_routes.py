"""Tests for HTTP routes (TestClient + dependency overrides)."""
import json

import pytest
from fastapi.testclient import TestClient

from main import app
from services.notifications.services.email_service import get_email_service
from services.notifications.tasks.email_tasks import get_resend_queue
from services.ticket_validation.routes.validation import get_event_cache
from shared.auth.jwt_handler import create_access_token
from shared.database.memory_store import InMemoryTicketStore
from shared.database.session import get_store
from shared.database.ticket_store import StoreError
from shared.tickets.records import StoreChange
from shared.utils.rate_limiter import limiter


class BrokenStore(InMemoryTicketStore):
    async def find_ticket(self, ticket_id, event_id):
        raise StoreError("sin conexión")


class ReplayStore(InMemoryTicketStore):
    """watch entrega una lista fija de cambios y termina"""

    def __init__(self, changes):
        super().__init__()
        self.changes = changes

    async def watch(self, event_id):
        for change in self.changes:
            if change.event_id == event_id:
                yield change


class UnwatchableStore(InMemoryTicketStore):
    async def watch(self, event_id):
        raise StoreError("bus caído")
        yield


def auth_headers(role="scanner"):
    token = create_access_token({"sub": "scanner-1", "email": "puerta@example.com", "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def resend_queue():
    return []


@pytest.fixture
def client(store, notifier, resend_queue):
    limiter.reset()
    app.dependency_overrides[get_resend_queue] = lambda: resend_queue.append
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_email_service] = lambda: notifier
    app.dependency_overrides[get_event_cache] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registration(client):
    response = client.post(
        "/api/v1/events/evt-1/registrations",
        json={"name": "Ana", "email": "ana@example.com", "phone": "+56911111111"},
    )
    assert response.status_code == 201
    return response.json()


class TestRegistrationRoutes:
    """Tests for POST /api/v1/events/{event_id}/registrations."""

    def test_created(self, registration):
        """Devuelve el ticket y el token para el QR."""
        assert registration["event_id"] == "evt-1"
        assert registration["ticket_number"].startswith("TKT-")
        assert registration["verification_qr"]
        assert registration["ticket_sent"] is True

    def test_email_failure_enqueues_resend(self, client, notifier, resend_queue):
        """Si el email falla el reenvío queda encolado."""
        notifier.result = False

        response = client.post(
            "/api/v1/events/evt-1/registrations",
            json={"name": "Ana", "email": "ana@example.com", "phone": "1"},
        )

        assert response.status_code == 201
        assert response.json()["ticket_sent"] is False
        assert resend_queue == [response.json()["id"]]

    def test_unknown_event(self, client):
        """Evento inexistente responde 404."""
        response = client.post(
            "/api/v1/events/nope/registrations",
            json={"name": "Ana", "email": "ana@example.com", "phone": "1"},
        )
        assert response.status_code == 404

    def test_sold_out(self, client, store, event):
        """Sin cupo responde 409."""
        store.add_event(event.model_copy(update={"available_tickets": 0}))
        response = client.post(
            "/api/v1/events/evt-1/registrations",
            json={"name": "Ana", "email": "ana@example.com", "phone": "1"},
        )
        assert response.status_code == 409

    def test_invalid_time_slot(self, client):
        """Horario en evento sin horarios responde 400."""
        response = client.post(
            "/api/v1/events/evt-1/registrations",
            json={"name": "Ana", "email": "ana@example.com", "phone": "1", "time_slot": "20:00"},
        )
        assert response.status_code == 400

    def test_missing_name(self, client):
        """Body incompleto responde 422."""
        response = client.post("/api/v1/events/evt-1/registrations", json={"email": "ana@example.com", "phone": "1"})
        assert response.status_code == 422


class TestVerifyRoute:
    """Tests for POST /api/v1/tickets/verify."""

    def test_valid(self, client, registration):
        """Token recién emitido es válido."""
        response = client.post(
            "/api/v1/tickets/verify",
            json={"token": registration["verification_qr"], "event_id": "evt-1"},
            headers=auth_headers(),
        )
        body = response.json()
        assert response.status_code == 200
        assert body["valid"] is True
        assert body["ticket_id"] == registration["ticket_number"]
        assert body["holder_email"] == "ana@example.com"

    def test_wrong_event(self, client, registration):
        """Token de otro evento no es válido."""
        response = client.post(
            "/api/v1/tickets/verify",
            json={"token": registration["verification_qr"], "event_id": "evt-2"},
            headers=auth_headers(),
        )
        assert response.json()["outcome"] == "WRONG_EVENT"

    def test_requires_auth(self, client):
        """Sin token JWT no se puede verificar."""
        response = client.post("/api/v1/tickets/verify", json={"token": "x", "event_id": "evt-1"})
        assert response.status_code in (401, 403)

    def test_requires_scanner_role(self, client):
        """Un usuario sin rol de scanner recibe 403."""
        response = client.post(
            "/api/v1/tickets/verify",
            json={"token": "x", "event_id": "evt-1"},
            headers=auth_headers(role="user"),
        )
        assert response.status_code == 403


class TestCheckInRoute:
    """Tests for POST /api/v1/tickets/check-in."""

    def test_approved_then_already_used(self, client, registration, notifier):
        """El primer check-in se aprueba y el segundo se rechaza."""
        payload = {"token": registration["verification_qr"], "event_id": "evt-1", "location": "Puerta A"}

        first = client.post("/api/v1/tickets/check-in", json=payload, headers=auth_headers())
        second = client.post("/api/v1/tickets/check-in", json=payload, headers=auth_headers())

        assert first.status_code == 200
        assert first.json()["approved"] is True
        assert first.json()["status"] == "APPROVED"
        assert second.status_code == 200
        assert second.json()["status"] == "ALREADY_USED"
        assert second.json()["checked_in_at"] == first.json()["checked_in_at"]

    def test_invalid_token(self, client):
        """Token ilegible responde 200 con INVALID_FORMAT."""
        response = client.post(
            "/api/v1/tickets/check-in",
            json={"token": "no-es-un-ticket!", "event_id": "evt-1"},
            headers=auth_headers(),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "INVALID_FORMAT"

    def test_store_error_is_503(self, client, registration, event):
        """Fallo del store responde 503 para reintentar."""
        broken = BrokenStore()
        broken.add_event(event)
        app.dependency_overrides[get_store] = lambda: broken

        response = client.post(
            "/api/v1/tickets/check-in",
            json={"token": registration["verification_qr"], "event_id": "evt-1"},
            headers=auth_headers(),
        )

        assert response.status_code == 503
        assert response.json()["status"] == "STORE_ERROR"


class TestQrRoute:
    """Tests for GET /api/v1/tickets/qr."""

    def test_png(self, client, registration):
        """Devuelve la imagen PNG del token."""
        response = client.get("/api/v1/tickets/qr", params={"token": registration["verification_qr"]})
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_invalid_token(self, client):
        """Un token ilegible responde 400."""
        response = client.get("/api/v1/tickets/qr", params={"token": "???"})
        assert response.status_code == 400


class TestSummaryRoute:
    """Tests for GET /api/v1/tickets/events/{event_id}/summary."""

    def test_counts(self, client, registration):
        """Refleja inscripciones y check-ins."""
        client.post(
            "/api/v1/tickets/check-in",
            json={"token": registration["verification_qr"], "event_id": "evt-1"},
            headers=auth_headers(),
        )

        body = client.get("/api/v1/tickets/events/evt-1/summary", headers=auth_headers()).json()

        assert body == {
            "event_id": "evt-1",
            "title": "Concierto de Primavera",
            "registrations": 1,
            "available_tickets": 4,
            "checked_in": 1,
        }

    def test_unknown_event(self, client):
        """Evento inexistente responde 404."""
        response = client.get("/api/v1/tickets/events/nope/summary", headers=auth_headers())
        assert response.status_code == 404


class TestChangesRoute:
    """Tests for GET /api/v1/tickets/events/{event_id}/changes."""

    def test_streams_event_changes(self, client):
        """Cada cambio del evento llega como un mensaje SSE."""
        app.dependency_overrides[get_store] = lambda: ReplayStore([
            StoreChange(kind="registration", event_id="evt-1", record_id="rec-1", ticket_id="TKT-1"),
            StoreChange(kind="registration", event_id="evt-2", record_id="rec-9", ticket_id="TKT-9"),
            StoreChange(kind="check_in", event_id="evt-1", record_id="rec-1", ticket_id="TKT-1"),
        ])

        response = client.get("/api/v1/tickets/events/evt-1/changes", headers=auth_headers())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        messages = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert [(m["kind"], m["record_id"]) for m in messages] == [
            ("registration", "rec-1"),
            ("check_in", "rec-1"),
        ]

    def test_store_error_ends_stream(self, client):
        """Si el store no puede suscribirse se envía un evento de error."""
        app.dependency_overrides[get_store] = lambda: UnwatchableStore()

        response = client.get("/api/v1/tickets/events/evt-1/changes", headers=auth_headers())

        assert response.status_code == 200
        assert "event: error" in response.text

    def test_requires_scanner_role(self, client):
        """Un usuario sin rol de scanner recibe 403."""
        response = client.get("/api/v1/tickets/events/evt-1/changes", headers=auth_headers(role="user"))
        assert response.status_code == 403


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"


class TestValidationServiceApp:
    def test_mounts_ticket_routes(self):
        """La app standalone de validación expone las mismas rutas."""
        from services.ticket_validation.main import app as validation_app

        paths = {route.path for route in validation_app.routes}
        assert {"/api/v1/tickets/verify", "/api/v1/tickets/check-in", "/api/v1/tickets/qr"} <= paths
