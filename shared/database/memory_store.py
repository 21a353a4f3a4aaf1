"""Store en memoria (desarrollo local y tests)"""
import asyncio
from typing import AsyncIterator, Dict, List, Optional
import logging

from shared.database.ticket_store import TicketStore
from shared.tickets.records import CheckInStamp, EventRecord, StoreChange, TicketRecord

logger = logging.getLogger(__name__)


class InMemoryTicketStore(TicketStore):
    """
    Misma semántica que SqlAlchemyTicketStore dentro de un solo proceso.

    Todas las escrituras pasan por un asyncio.Lock, así que el
    compare-and-set de check-in es atómico entre corrutinas.
    """

    def __init__(self):
        self._events: Dict[str, EventRecord] = {}
        self._records: Dict[str, TicketRecord] = {}
        self._lock = asyncio.Lock()
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def add_event(self, event: EventRecord) -> EventRecord:
        self._events[event.id] = event
        return event

    async def find_ticket(self, ticket_id: str, event_id: str) -> Optional[TicketRecord]:
        for record in self._records.values():
            if record.ticket_id == ticket_id and record.event_id == event_id:
                return record
        return None

    async def get_ticket(self, record_id: str) -> Optional[TicketRecord]:
        return self._records.get(record_id)

    async def mark_checked_in(self, record_id: str, stamp: CheckInStamp) -> Optional[TicketRecord]:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None or record.checked_in:
                return None

            updated = record.model_copy(update={
                "checked_in": True,
                "checked_in_at": stamp.checked_in_at,
                "checked_in_by": stamp.checked_in_by,
                "checked_in_location": stamp.checked_in_location,
                "verification_method": stamp.verification_method,
            })
            self._records[record_id] = updated

        self._notify(StoreChange(
            kind="check_in",
            event_id=updated.event_id,
            record_id=updated.id,
            ticket_id=updated.ticket_id,
        ))
        return updated

    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self._events.get(event_id)

    async def add_registration(self, record: TicketRecord) -> Optional[TicketRecord]:
        async with self._lock:
            event = self._events.get(record.event_id)
            if event is None or event.available_tickets <= 0:
                return None

            self._events[event.id] = event.model_copy(update={
                "available_tickets": event.available_tickets - 1,
                "registrations": event.registrations + 1,
            })
            self._records[record.id] = record

        self._notify(StoreChange(
            kind="registration",
            event_id=record.event_id,
            record_id=record.id,
            ticket_id=record.ticket_id,
        ))
        return record

    async def set_ticket_sent(self, record_id: str, sent: bool) -> None:
        async with self._lock:
            record = self._records.get(record_id)
            if record is not None:
                self._records[record_id] = record.model_copy(update={"ticket_sent": sent})

    async def count_checked_in(self, event_id: str) -> int:
        return sum(1 for r in self._records.values() if r.event_id == event_id and r.checked_in)

    async def watch(self, event_id: str) -> AsyncIterator[StoreChange]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(event_id, []).append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[event_id].remove(queue)

    def _notify(self, change: StoreChange):
        for queue in self._subscribers.get(change.event_id, []):
            queue.put_nowait(change)
