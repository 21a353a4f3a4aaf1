"""Pytest configuration and shared fixtures."""
import uuid

import pytest

from services.notifications.services.notifier import Notifier
from services.ticket_validation.models.ticket import OperatorIdentity
from services.ticket_validation.services.checkin_service import millis_to_datetime
from services.ticket_validation.services.ticket_issuer import TicketIssuer
from shared.database.memory_store import InMemoryTicketStore
from shared.tickets.records import EventRecord, TicketRecord

# 2025-10-09T08:53:20Z
NOW_MILLIS = 1_760_000_000_000
HOUR_MILLIS = 60 * 60 * 1000


class FakeNotifier(Notifier):
    """Notifier que guarda los envíos; result/error configurables"""

    def __init__(self):
        self.sent = []
        self.result = True
        self.error = None

    async def send(self, to_email, template, fields):
        if self.error is not None:
            raise self.error
        self.sent.append((to_email, template, dict(fields)))
        return self.result


@pytest.fixture
def event() -> EventRecord:
    return EventRecord(
        id="evt-1",
        title="Concierto de Primavera",
        date="2025-10-09",
        time="20:00",
        location="Teatro Municipal",
        available_tickets=5,
    )


@pytest.fixture
def store(event) -> InMemoryTicketStore:
    store = InMemoryTicketStore()
    store.add_event(event)
    return store


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def issuer() -> TicketIssuer:
    return TicketIssuer()


@pytest.fixture
def operator() -> OperatorIdentity:
    return OperatorIdentity(user_id="scanner-1", email="puerta@example.com")


@pytest.fixture
def clock():
    return lambda: NOW_MILLIS


@pytest.fixture
def make_registration(store, issuer):
    """Emite un ticket y lo guarda como inscripción en el store"""

    async def _make(event_id="evt-1", email="ana@example.com", name="Ana", issued_at=NOW_MILLIS):
        issued = issuer.issue(event_id, email, issued_at_millis=issued_at)
        record = TicketRecord(
            id=str(uuid.uuid4()),
            ticket_id=issued.ticket_id,
            event_id=event_id,
            name=name,
            email=email,
            phone="+56911111111",
            token=issued.token_string,
            registered_at=millis_to_datetime(issued_at),
        )
        saved = await store.add_registration(record)
        assert saved is not None
        return saved

    return _make
