"""Tests for SqlAlchemyTicketStore against SQLite (aiosqlite)."""
import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.ticket_validation.models.ticket import CheckInStatus, OperatorIdentity
from services.ticket_validation.services.checkin_service import CheckInCoordinator, millis_to_datetime
from services.ticket_validation.services.ticket_issuer import TicketIssuer
from shared.database.connection import close_db, create_tables, get_session_maker, init_db, to_async_url
from shared.database.models import Event
from shared.database.ticket_store import SqlAlchemyTicketStore, StoreError
from shared.tickets.records import CheckInStamp, TicketRecord, VerificationMethod
from conftest import NOW_MILLIS

CHECKED_AT = datetime(2025, 10, 9, 20, 15, tzinfo=timezone.utc)
OPERATOR = OperatorIdentity(user_id="scanner-1", email="puerta@example.com")


class FakeChangeBus:
    def __init__(self):
        self.published = []

    async def publish(self, change):
        self.published.append(change)

    async def subscribe(self, event_id):
        for change in list(self.published):
            if change.event_id == event_id:
                yield change


@pytest.fixture
def bus():
    return FakeChangeBus()


@pytest.fixture
async def sql_store(tmp_path, bus):
    await init_db(f"sqlite:///{tmp_path / 'tickets.db'}")
    await create_tables()
    async with get_session_maker()() as db:
        db.add(Event(id="evt-1", title="Concierto", available_tickets=2, registrations=0, time_slots=[]))
        await db.commit()

    yield SqlAlchemyTicketStore(get_session_maker(), change_bus=bus)

    await close_db()


def record(record_id="rec-1", ticket_id="TKT-1-AAAAAAAA"):
    return TicketRecord(
        id=record_id, ticket_id=ticket_id, event_id="evt-1",
        name="Ana", email="ana@example.com", phone="+56911111111",
        token="tok-" + ticket_id, registered_at=CHECKED_AT,
    )


def issued_record(issued):
    return TicketRecord(
        id="rec-ana", ticket_id=issued.ticket_id, event_id="evt-1",
        name="Ana", email="ana@example.com", token=issued.token_string,
        registered_at=millis_to_datetime(NOW_MILLIS),
    )


class TestAsyncUrl:
    """Tests for to_async_url."""

    def test_drivers(self):
        """Las URLs se llevan a su driver async."""
        assert to_async_url("postgresql://u:p@h/db?sslmode=require") == "postgresql+asyncpg://u:p@h/db"
        assert to_async_url("sqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"


class TestRegistrations:
    """Tests for add_registration."""

    async def test_persists_and_updates_counters(self, sql_store):
        """La inscripción se guarda y los contadores cambian juntos."""
        saved = await sql_store.add_registration(record())

        assert saved.ticket_id == "TKT-1-AAAAAAAA"
        stored = await sql_store.find_ticket("TKT-1-AAAAAAAA", "evt-1")
        assert stored.id == "rec-1"
        assert stored.checked_in is False
        event = await sql_store.get_event("evt-1")
        assert (event.available_tickets, event.registrations) == (1, 1)

    async def test_sold_out(self, sql_store):
        """Sin cupo devuelve None y no inserta."""
        await sql_store.add_registration(record("rec-1", "TKT-1"))
        await sql_store.add_registration(record("rec-2", "TKT-2"))

        assert await sql_store.add_registration(record("rec-3", "TKT-3")) is None
        assert await sql_store.get_ticket("rec-3") is None
        event = await sql_store.get_event("evt-1")
        assert (event.available_tickets, event.registrations) == (0, 2)

    async def test_publishes_change(self, sql_store, bus):
        """Cada inscripción se publica en el bus."""
        await sql_store.add_registration(record())
        assert [c.kind for c in bus.published] == ["registration"]

    async def test_set_ticket_sent(self, sql_store):
        """ticket_sent se persiste."""
        await sql_store.add_registration(record())
        await sql_store.set_ticket_sent("rec-1", True)
        assert (await sql_store.get_ticket("rec-1")).ticket_sent is True


class TestCheckIn:
    """Tests for mark_checked_in."""

    async def test_single_winner(self, sql_store, bus):
        """El UPDATE condicional solo tiene efecto la primera vez."""
        await sql_store.add_registration(record())
        stamp = CheckInStamp(
            checked_in_at=CHECKED_AT,
            checked_in_by="scanner-1",
            checked_in_location="Puerta A",
            verification_method=VerificationMethod.MANUAL,
        )

        first = await sql_store.mark_checked_in("rec-1", stamp)
        second = await sql_store.mark_checked_in("rec-1", stamp.model_copy(update={"checked_in_by": "scanner-2"}))

        assert first is not None
        assert first.checked_in is True
        assert first.checked_in_by == "scanner-1"
        assert first.verification_method == VerificationMethod.MANUAL
        assert first.checked_in_at.replace(tzinfo=None) == CHECKED_AT.replace(tzinfo=None)
        assert second is None
        assert (await sql_store.get_ticket("rec-1")).checked_in_by == "scanner-1"
        assert [c.kind for c in bus.published] == ["registration", "check_in"]

    async def test_count_checked_in(self, sql_store):
        """Cuenta solo los tickets usados."""
        await sql_store.add_registration(record("rec-1", "TKT-1"))
        await sql_store.add_registration(record("rec-2", "TKT-2"))
        await sql_store.mark_checked_in("rec-1", CheckInStamp(checked_in_at=CHECKED_AT, checked_in_by="s"))

        assert await sql_store.count_checked_in("evt-1") == 1

    async def test_commit_is_final(self, sql_store, monkeypatch):
        """Un fallo de lectura posterior al UPDATE no convierte el check-in en error."""
        issued = TicketIssuer().issue("evt-1", "ana@example.com", issued_at_millis=NOW_MILLIS)
        await sql_store.add_registration(issued_record(issued))

        async def broken_get(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(AsyncSession, "get", broken_get)
        coordinator = CheckInCoordinator(sql_store, clock=lambda: NOW_MILLIS)
        result = await coordinator.check_in(issued.token_string, "evt-1", OPERATOR)
        monkeypatch.undo()

        assert result.status == CheckInStatus.APPROVED
        assert result.attendee_name == "Ana"
        assert (await sql_store.get_ticket("rec-ana")).checked_in is True

    async def test_missing_event(self, sql_store):
        """get_event devuelve None si no existe."""
        assert await sql_store.get_event("nope") is None


class TestConcurrentCheckIn:
    """Varios scanners contra la misma base: un solo ganador."""

    async def test_gather_single_winner(self, sql_store):
        """8 check-ins simultáneos del mismo ticket: 1 aprobado y 7 ya usados."""
        issued = TicketIssuer().issue("evt-1", "ana@example.com", issued_at_millis=NOW_MILLIS)
        await sql_store.add_registration(issued_record(issued))

        results = await asyncio.gather(*[
            CheckInCoordinator(sql_store, clock=lambda: NOW_MILLIS).check_in(
                issued.token_string, "evt-1", OperatorIdentity(user_id=f"scanner-{i}")
            )
            for i in range(8)
        ])

        statuses = [r.status for r in results]
        assert statuses.count(CheckInStatus.APPROVED) == 1
        assert statuses.count(CheckInStatus.ALREADY_USED) == 7
        winner = next(r for r in results if r.approved)
        assert all(r.checked_in_at == winner.checked_in_at for r in results if not r.approved)
        assert await sql_store.count_checked_in("evt-1") == 1


class TestWatch:
    """Tests for watch."""

    async def test_delegates_to_bus(self, sql_store):
        """watch entrega los cambios publicados del evento."""
        await sql_store.add_registration(record())

        changes = [c async for c in sql_store.watch("evt-1")]

        assert [c.record_id for c in changes] == ["rec-1"]

    async def test_without_bus(self, sql_store):
        """Sin bus configurado watch lanza StoreError."""
        store = SqlAlchemyTicketStore(get_session_maker())
        with pytest.raises(StoreError):
            await store.watch("evt-1").__anext__()


class TestStoreErrors:
    """Fallos del motor se convierten en StoreError."""

    async def test_unreachable_database(self, tmp_path):
        """Una base inaccesible lanza StoreError."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'x.db'}")
        store = SqlAlchemyTicketStore(async_sessionmaker(engine, expire_on_commit=False))
        try:
            with pytest.raises(StoreError):
                await store.find_ticket("TKT-1", "evt-1")
        finally:
            await engine.dispose()
