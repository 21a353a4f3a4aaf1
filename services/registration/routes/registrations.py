"""Rutas de inscripción de asistentes"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from services.notifications.services.email_service import get_email_service
from services.notifications.services.notifier import Notifier
from services.notifications.tasks.email_tasks import get_resend_queue
from services.registration.models.registration import RegistrationRequest, RegistrationResponse
from services.registration.services.registration_service import (
    EventNotFoundError,
    RegistrationService,
    SoldOutError,
)
from shared.database.session import get_store
from shared.database.ticket_store import StoreError, TicketStore
from shared.utils.rate_limiter import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/{event_id}/registrations",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(RATE_LIMITS["registration"])
async def register_attendee(
    request: Request,
    event_id: str,
    payload: RegistrationRequest,
    store: TicketStore = Depends(get_store),
    notifier: Notifier = Depends(get_email_service),
    resend_queue=Depends(get_resend_queue)
):
    """
    Inscribir un asistente y enviarle su ticket por email

    Si el envío inmediato falla, el reenvío se encola en Celery.
    """
    service = RegistrationService(store, notifier=notifier, resend_queue=resend_queue)
    try:
        record = await service.register(
            event_id,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            time_slot=payload.time_slot,
        )
    except EventNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SoldOutError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StoreError as e:
        logger.error(f"Error registrando en evento {event_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Base de datos no disponible"
        )

    return RegistrationResponse(
        id=record.id,
        event_id=record.event_id,
        ticket_number=record.ticket_id,
        verification_qr=record.token,
        time_slot=record.time_slot,
        registered_at=record.registered_at,
        ticket_sent=record.ticket_sent,
    )
