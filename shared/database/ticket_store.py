"""Store de tickets: interfaz y backend SQLAlchemy"""
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.database.models import Event, Registration
from shared.tickets.records import CheckInStamp, EventRecord, StoreChange, TicketRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Fallo de transporte o del backend (distinto de un rechazo lógico)"""


class TicketStore(ABC):
    """
    Interfaz de persistencia usada por el núcleo de tickets.

    Las implementaciones son el único árbitro del check-in único:
    mark_checked_in debe ser un compare-and-set atómico.
    """

    @abstractmethod
    async def find_ticket(self, ticket_id: str, event_id: str) -> Optional[TicketRecord]:
        """Buscar un ticket por (ticket_id, event_id)"""
        ...

    @abstractmethod
    async def get_ticket(self, record_id: str) -> Optional[TicketRecord]:
        ...

    @abstractmethod
    async def mark_checked_in(self, record_id: str, stamp: CheckInStamp) -> Optional[TicketRecord]:
        """
        Marcar checked_in=true solo si sigue en false.

        Returns:
            El registro actualizado, o None si ya estaba marcado (o no existe)
        """
        ...

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        ...

    @abstractmethod
    async def add_registration(self, record: TicketRecord) -> Optional[TicketRecord]:
        """
        Guardar una inscripción y actualizar contadores del evento
        (available_tickets -1, registrations +1) en una sola operación.

        Returns:
            El registro guardado, o None si no quedaban tickets
        """
        ...

    @abstractmethod
    async def set_ticket_sent(self, record_id: str, sent: bool) -> None:
        ...

    @abstractmethod
    async def count_checked_in(self, event_id: str) -> int:
        ...

    @abstractmethod
    def watch(self, event_id: str) -> AsyncIterator[StoreChange]:
        """Suscripción push a cambios (inscripciones y check-ins) de un evento"""
        ...


def to_ticket_record(row: Registration) -> TicketRecord:
    return TicketRecord(
        id=row.id,
        ticket_id=row.ticket_id,
        event_id=row.event_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        time_slot=row.time_slot,
        token=row.token,
        ticket_sent=bool(row.ticket_sent),
        registered_at=row.registered_at,
        checked_in=bool(row.checked_in),
        checked_in_at=row.checked_in_at,
        checked_in_by=row.checked_in_by,
        checked_in_location=row.checked_in_location,
        verification_method=row.verification_method,
    )


def to_event_record(row: Event) -> EventRecord:
    return EventRecord(
        id=row.id,
        title=row.title,
        date=row.date,
        time=row.time,
        location=row.location,
        image_url=row.image_url,
        available_tickets=row.available_tickets or 0,
        registrations=row.registrations or 0,
        time_slots=list(row.time_slots or []),
    )


class SqlAlchemyTicketStore(TicketStore):
    """Store respaldado por PostgreSQL (o cualquier motor SQLAlchemy async)"""

    def __init__(self, session_maker: async_sessionmaker, change_bus=None):
        self._session_maker = session_maker
        self._change_bus = change_bus

    async def find_ticket(self, ticket_id: str, event_id: str) -> Optional[TicketRecord]:
        stmt = select(Registration).where(
            Registration.ticket_id == ticket_id,
            Registration.event_id == event_id
        )
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                row = result.scalars().first()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error buscando ticket {ticket_id}: {e}", exc_info=True)
            raise StoreError(f"Error buscando ticket: {type(e).__name__}") from e

        return to_ticket_record(row) if row else None

    async def get_ticket(self, record_id: str) -> Optional[TicketRecord]:
        try:
            async with self._session_maker() as db:
                row = await db.get(Registration, record_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error obteniendo registro {record_id}: {e}", exc_info=True)
            raise StoreError(f"Error obteniendo registro: {type(e).__name__}") from e

        return to_ticket_record(row) if row else None

    async def mark_checked_in(self, record_id: str, stamp: CheckInStamp) -> Optional[TicketRecord]:
        # Un único UPDATE condicional con RETURNING: la fila devuelta decide quién
        # gana la carrera y después del commit no hay más I/O
        stmt = (
            update(Registration)
            .where(
                Registration.id == record_id,
                Registration.checked_in.is_(False)
            )
            .values(
                checked_in=True,
                checked_in_at=stamp.checked_in_at,
                checked_in_by=stamp.checked_in_by,
                checked_in_location=stamp.checked_in_location,
                verification_method=stamp.verification_method.value,
            )
            .returning(Registration)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                row = result.scalars().first()
                if row is None:
                    await db.rollback()
                    return None

                record = to_ticket_record(row)
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error marcando check-in de {record_id}: {e}", exc_info=True)
            raise StoreError(f"Error actualizando check-in: {type(e).__name__}") from e

        await self._publish(StoreChange(
            kind="check_in",
            event_id=record.event_id,
            record_id=record.id,
            ticket_id=record.ticket_id,
        ))
        return record

    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        try:
            async with self._session_maker() as db:
                row = await db.get(Event, event_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error obteniendo evento {event_id}: {e}", exc_info=True)
            raise StoreError(f"Error obteniendo evento: {type(e).__name__}") from e

        return to_event_record(row) if row else None

    async def add_registration(self, record: TicketRecord) -> Optional[TicketRecord]:
        reserve = (
            update(Event)
            .where(Event.id == record.event_id, Event.available_tickets > 0)
            .values(
                available_tickets=Event.available_tickets - 1,
                registrations=Event.registrations + 1,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_maker() as db:
                result = await db.execute(reserve)
                if result.rowcount != 1:
                    await db.rollback()
                    return None

                db.add(Registration(
                    id=record.id,
                    ticket_id=record.ticket_id,
                    event_id=record.event_id,
                    name=record.name,
                    email=record.email,
                    phone=record.phone,
                    time_slot=record.time_slot,
                    token=record.token,
                    ticket_sent=record.ticket_sent,
                    registered_at=record.registered_at,
                    checked_in=False,
                ))
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error guardando inscripción para evento {record.event_id}: {e}", exc_info=True)
            raise StoreError(f"Error guardando inscripción: {type(e).__name__}") from e

        await self._publish(StoreChange(
            kind="registration",
            event_id=record.event_id,
            record_id=record.id,
            ticket_id=record.ticket_id,
        ))
        return record

    async def set_ticket_sent(self, record_id: str, sent: bool) -> None:
        stmt = update(Registration).where(Registration.id == record_id).values(ticket_sent=sent)
        try:
            async with self._session_maker() as db:
                await db.execute(stmt)
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error actualizando ticket_sent de {record_id}: {e}", exc_info=True)
            raise StoreError(f"Error actualizando ticket_sent: {type(e).__name__}") from e

    async def count_checked_in(self, event_id: str) -> int:
        stmt = select(func.count(Registration.id)).where(
            Registration.event_id == event_id,
            Registration.checked_in.is_(True)
        )
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                return result.scalar() or 0
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error contando check-ins de {event_id}: {e}", exc_info=True)
            raise StoreError(f"Error contando check-ins: {type(e).__name__}") from e

    async def watch(self, event_id: str) -> AsyncIterator[StoreChange]:
        if self._change_bus is None:
            raise StoreError("Suscripción a cambios no configurada")

        async for change in self._change_bus.subscribe(event_id):
            yield change

    async def _publish(self, change: StoreChange):
        """Publicar el cambio; un fallo aquí no deshace la escritura"""
        if self._change_bus is None:
            return
        try:
            await self._change_bus.publish(change)
        except Exception as e:
            logger.warning(f"No se pudo publicar cambio {change.kind} de {change.event_id}: {e}")
