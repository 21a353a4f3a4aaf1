"""Servicio de inscripción: reserva de cupo, emisión del ticket y envío por email"""
import logging
import uuid
from typing import Callable, Optional

from services.notifications.services.email_service import TEMPLATE_TICKET
from services.notifications.services.notifier import Notifier
from services.ticket_validation.services.checkin_service import millis_to_datetime
from services.ticket_validation.services.ticket_issuer import TicketIssuer
from shared.database.ticket_store import StoreError, TicketStore
from shared.tickets.records import EventRecord, TicketRecord

logger = logging.getLogger(__name__)


class EventNotFoundError(ValueError):
    """El evento no existe"""


class SoldOutError(ValueError):
    """No quedan tickets disponibles"""


def ticket_email_fields(record: TicketRecord, event: EventRecord) -> dict:
    """Campos de la plantilla "ticket" a partir del registro guardado"""
    return {
        "to_name": record.name,
        "event_title": event.title,
        "event_date": event.date or "",
        "event_time": event.time or "",
        "event_location": event.location or "Por confirmar",
        "ticket_number": record.ticket_id,
        "time_slot": record.time_slot or "Entrada general",
        "verification_qr": record.token,
        "event_image": event.image_url or "",
    }


class RegistrationService:
    """Inscripción de asistentes a un evento"""

    def __init__(
        self,
        store: TicketStore,
        notifier: Optional[Notifier] = None,
        issuer: Optional[TicketIssuer] = None,
        resend_queue: Optional[Callable[[str], None]] = None
    ):
        self.store = store
        self.notifier = notifier
        self.issuer = issuer or TicketIssuer()
        # Encola el reintento del email en background (Celery) por id de inscripción
        self.resend_queue = resend_queue

    async def register(
        self,
        event_id: str,
        name: str,
        email: str,
        phone: str,
        time_slot: Optional[str] = None
    ) -> TicketRecord:
        """
        Inscribir a un asistente

        Raises:
            ValueError: si faltan datos o el horario no es válido
            EventNotFoundError: si el evento no existe
            SoldOutError: si no quedan tickets
            StoreError: si el store no responde
        """
        name, email, phone = (name or "").strip(), (email or "").strip(), (phone or "").strip()
        if not name or not email or not phone:
            raise ValueError("Nombre, email y teléfono son requeridos")

        event = await self.store.get_event(event_id)
        if event is None:
            raise EventNotFoundError("Evento no encontrado")

        if event.time_slots:
            if not time_slot:
                raise ValueError("Debes seleccionar un horario")
            if time_slot not in event.time_slots:
                raise ValueError(f"Horario inválido: {time_slot}")
        elif time_slot:
            raise ValueError("Este evento no tiene horarios")

        if event.available_tickets <= 0:
            raise SoldOutError("Evento agotado")

        issued = self.issuer.issue(event_id, email)
        record = TicketRecord(
            id=str(uuid.uuid4()),
            ticket_id=issued.ticket_id,
            event_id=event_id,
            name=name,
            email=email,
            phone=phone,
            time_slot=time_slot,
            token=issued.token_string,
            registered_at=millis_to_datetime(issued.token.issued_at_millis),
        )

        # El store reserva el cupo y guarda el registro en una sola operación
        saved = await self.store.add_registration(record)
        if saved is None:
            raise SoldOutError("Evento agotado")

        logger.info(f"Inscripción creada: ticket {saved.ticket_id} evento {event_id}")

        sent = await self.send_ticket(saved, event)
        if sent:
            try:
                await self.store.set_ticket_sent(saved.id, True)
                saved = saved.model_copy(update={"ticket_sent": True})
            except StoreError as e:
                logger.warning(f"No se pudo marcar ticket_sent de {saved.ticket_id}: {e}")
        elif self.notifier is not None:
            self._enqueue_resend(saved)

        return saved

    def _enqueue_resend(self, record: TicketRecord):
        if self.resend_queue is None:
            return
        try:
            self.resend_queue(record.id)
            logger.info(f"Reenvío de ticket {record.ticket_id} encolado")
        except Exception as e:
            # La inscripción ya quedó guardada
            logger.error(f"Error encolando reenvío de ticket {record.ticket_id}: {e}", exc_info=True)

    async def send_ticket(self, record: TicketRecord, event: EventRecord) -> bool:
        """Enviar (o reenviar) el ticket por email; best-effort"""
        if self.notifier is None:
            return False

        try:
            sent = await self.notifier.send(record.email, TEMPLATE_TICKET, ticket_email_fields(record, event))
        except Exception as e:
            logger.error(f"Error enviando ticket {record.ticket_id} a {record.email}: {e}", exc_info=True)
            return False

        if not sent:
            logger.warning(f"Inscripción OK pero el email falló (ticket {record.ticket_id})")
        return bool(sent)

    async def resend_ticket(self, record_id: str) -> bool:
        """
        Reenviar el ticket de una inscripción existente con el token guardado

        Raises:
            ValueError: si la inscripción o su evento no existen
            StoreError: si el store no responde
        """
        record = await self.store.get_ticket(record_id)
        if record is None:
            raise ValueError("Inscripción no encontrada")

        event = await self.store.get_event(record.event_id)
        if event is None:
            raise EventNotFoundError("Evento no encontrado")

        sent = await self.send_ticket(record, event)
        if sent and not record.ticket_sent:
            await self.store.set_ticket_sent(record.id, True)
        return sent
