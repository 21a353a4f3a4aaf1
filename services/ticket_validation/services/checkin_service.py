"""Check-in de asistentes: verificación, consumo único y confirmación"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from services.notifications.services.email_service import TEMPLATE_CHECKIN
from services.notifications.services.notifier import Notifier
from services.ticket_validation.models.ticket import (
    NOTIFY_FAILED,
    CheckInResult,
    CheckInStatus,
    CheckInSummary,
    OperatorIdentity,
)
from services.ticket_validation.services.ticket_issuer import now_millis
from services.ticket_validation.services.ticket_verifier import TicketVerifier
from shared.database.ticket_store import StoreError, TicketStore
from shared.tickets.records import CheckInStamp, TicketRecord, VerificationMethod

logger = logging.getLogger(__name__)


def millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class CheckInCoordinator:
    """
    Transición autoritativa "no usado -> usado" de un ticket.

    1. Verificación local (sin I/O si el token es inválido)
    2. Búsqueda del registro por (ticket_id, event_id)
    3. Rechazo si ya tiene check-in
    4. Compare-and-set en el store (único árbitro entre scanners)
    5. Confirmación por email best-effort
    """

    def __init__(
        self,
        store: TicketStore,
        notifier: Optional[Notifier] = None,
        verifier: Optional[TicketVerifier] = None,
        event_cache=None,
        clock: Callable[[], int] = now_millis
    ):
        self.store = store
        self.notifier = notifier
        self.verifier = verifier or TicketVerifier()
        self.event_cache = event_cache
        self.clock = clock

    async def check_in(
        self,
        token_string: str,
        event_id: str,
        operator: OperatorIdentity,
        location: Optional[str] = None,
        method: VerificationMethod = VerificationMethod.QR_SCAN
    ) -> CheckInResult:
        now = self.clock()

        verification = self.verifier.verify(token_string, event_id, now)
        if not verification.valid:
            logger.warning(
                f"Check-in rechazado ({verification.outcome.value}) en evento {event_id} "
                f"por {operator.user_id}"
            )
            return CheckInResult(
                status=CheckInStatus(verification.outcome.value),
                message=verification.message,
                ticket_id=verification.token.ticket_id if verification.token else None,
                event_id=event_id,
            )

        ticket_id = verification.token.ticket_id

        try:
            record = await self.store.find_ticket(ticket_id, event_id)
        except StoreError as e:
            return self._store_error(ticket_id, event_id, e)

        if record is None:
            logger.warning(f"Ticket {ticket_id} no encontrado en evento {event_id}")
            return CheckInResult(
                status=CheckInStatus.NOT_FOUND,
                message="Ticket no encontrado",
                ticket_id=ticket_id,
                event_id=event_id,
            )

        if record.checked_in:
            return self._already_used(record)

        stamp = CheckInStamp(
            checked_in_at=millis_to_datetime(now),
            checked_in_by=operator.user_id,
            checked_in_location=location,
            verification_method=method,
        )

        current = None
        try:
            updated = await self.store.mark_checked_in(record.id, stamp)
            if updated is None:
                # Otro scanner ganó la carrera: leer el check-in que quedó
                current = await self.store.get_ticket(record.id)
        except StoreError as e:
            return self._store_error(ticket_id, event_id, e)

        if updated is None:
            if current is None or not current.checked_in:
                return CheckInResult(
                    status=CheckInStatus.NOT_FOUND,
                    message="Ticket no encontrado",
                    ticket_id=ticket_id,
                    event_id=event_id,
                )
            return self._already_used(current)

        logger.info(f"Check-in aprobado: ticket {ticket_id} evento {event_id} por {operator.user_id}")

        email_sent = await self._send_confirmation(updated)
        warnings = [] if email_sent or self.notifier is None else [NOTIFY_FAILED]

        return CheckInResult(
            status=CheckInStatus.APPROVED,
            message="Ticket válido - ingreso aprobado",
            ticket_id=ticket_id,
            event_id=event_id,
            attendee_name=updated.name,
            ticket_number=updated.ticket_id,
            time_slot=updated.time_slot,
            checked_in_at=updated.checked_in_at,
            email_sent=email_sent,
            warnings=warnings,
        )

    async def get_summary(self, event_id: str) -> CheckInSummary:
        """
        Contadores del evento para el panel de check-in

        Raises:
            ValueError: si el evento no existe
            StoreError: si el store no responde
        """
        event = await self.store.get_event(event_id)
        if event is None:
            raise ValueError("Evento no encontrado")

        checked_in = await self.store.count_checked_in(event_id)
        return CheckInSummary(
            event_id=event.id,
            title=event.title,
            registrations=event.registrations,
            available_tickets=event.available_tickets,
            checked_in=checked_in,
        )

    def _already_used(self, record: TicketRecord) -> CheckInResult:
        used_at = record.checked_in_at
        when = used_at.strftime("%d/%m/%Y %H:%M:%S") if used_at else "fecha desconocida"
        logger.warning(f"Ticket {record.ticket_id} ya utilizado ({when})")
        return CheckInResult(
            status=CheckInStatus.ALREADY_USED,
            message=f"Ticket ya utilizado el {when}",
            ticket_id=record.ticket_id,
            event_id=record.event_id,
            attendee_name=record.name,
            ticket_number=record.ticket_id,
            time_slot=record.time_slot,
            checked_in_at=used_at,
        )

    def _store_error(self, ticket_id: str, event_id: str, error: StoreError) -> CheckInResult:
        logger.error(f"Error de store en check-in de {ticket_id} (evento {event_id}): {error}")
        return CheckInResult(
            status=CheckInStatus.STORE_ERROR,
            message="No se pudo confirmar el ticket, intenta nuevamente",
            ticket_id=ticket_id,
            event_id=event_id,
        )

    async def _send_confirmation(self, record: TicketRecord) -> bool:
        """Un fallo aquí nunca deshace el check-in"""
        if self.notifier is None:
            return False

        try:
            event = await self._event_display(record.event_id)
            fields = {
                "to_name": record.name,
                "event_title": event.get("title", ""),
                "ticket_number": record.ticket_id,
                "checked_in_at": record.checked_in_at.strftime("%d/%m/%Y %H:%M") if record.checked_in_at else "",
                "location": record.checked_in_location or "",
            }
            sent = await self.notifier.send(record.email, TEMPLATE_CHECKIN, fields)
        except Exception as e:
            logger.warning(f"No se pudo enviar confirmación de check-in a {record.email}: {e}")
            return False

        if not sent:
            logger.warning(f"Confirmación de check-in no enviada a {record.email} (ticket {record.ticket_id})")
        return bool(sent)

    async def _event_display(self, event_id: str) -> dict:
        if self.event_cache is not None:
            cached = await self.event_cache.get(event_id)
            if cached:
                return cached

        event = await self.store.get_event(event_id)
        if event is None:
            return {}

        if self.event_cache is not None:
            await self.event_cache.set(event)
        return event.model_dump()
