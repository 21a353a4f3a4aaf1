"""Rutas de verificación y check-in de tickets"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse

from services.notifications.services.email_service import get_email_service
from services.notifications.services.notifier import Notifier
from services.ticket_validation.models.ticket import (
    CheckInRequest,
    CheckInResponse,
    CheckInSummary,
    OperatorIdentity,
    TicketVerificationRequest,
    TicketVerificationResponse,
)
from services.ticket_validation.services.checkin_service import CheckInCoordinator
from services.ticket_validation.services.ticket_issuer import now_millis
from services.ticket_validation.services.ticket_verifier import TicketVerifier
from shared.auth.dependencies import get_current_scanner
from shared.database.session import get_store
from shared.database.ticket_store import StoreError, TicketStore
from shared.tickets.token import DecodeError, TokenCodec
from shared.utils.qr_generator import generate_qr_png
from shared.utils.rate_limiter import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


def get_event_cache():
    """Dependency: cache Redis de datos de evento"""
    from shared.cache.redis_client import EventDisplayCache
    return EventDisplayCache()


@router.post("/verify", response_model=TicketVerificationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def verify_ticket(
    request: Request,
    payload: TicketVerificationRequest,
    operator: OperatorIdentity = Depends(get_current_scanner)
):
    """
    Verificar formato, evento y vigencia del token sin consultar la base de datos
    """
    result = TicketVerifier().verify(payload.token, payload.event_id, now_millis())
    token = result.token

    return TicketVerificationResponse(
        valid=result.valid,
        outcome=result.outcome,
        message=result.message,
        ticket_id=token.ticket_id if token else None,
        event_id=token.event_id if token else None,
        holder_email=token.holder_email if token else None,
        issued_at_millis=token.issued_at_millis if token else None,
    )


@router.post("/check-in", response_model=CheckInResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def check_in_ticket(
    request: Request,
    response: Response,
    payload: CheckInRequest,
    operator: OperatorIdentity = Depends(get_current_scanner),
    store: TicketStore = Depends(get_store),
    notifier: Notifier = Depends(get_email_service),
    event_cache=Depends(get_event_cache)
):
    """
    Hacer check-in de un ticket (una sola vez por ticket)

    Los rechazos lógicos responden 200 con el motivo; STORE_ERROR responde 503
    para que el scanner reintente.
    """
    coordinator = CheckInCoordinator(store, notifier=notifier, event_cache=event_cache)
    result = await coordinator.check_in(
        payload.token,
        payload.event_id,
        operator,
        location=payload.location,
        method=payload.method,
    )

    if result.retryable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return CheckInResponse(
        approved=result.approved,
        status=result.status,
        message=result.message,
        ticket_id=result.ticket_id,
        attendee_name=result.attendee_name,
        ticket_number=result.ticket_number,
        time_slot=result.time_slot,
        checked_in_at=result.checked_in_at,
        email_sent=result.email_sent,
        warnings=result.warnings,
    )


@router.get("/qr")
@limiter.limit(RATE_LIMITS["public"])
async def ticket_qr(
    request: Request,
    token: str = Query(..., min_length=1)
):
    """Imagen PNG del QR de un token emitido"""
    try:
        TokenCodec().decode(token)
    except DecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token inválido"
        )

    return Response(content=generate_qr_png(token.strip()), media_type="image/png")


@router.get("/events/{event_id}/summary", response_model=CheckInSummary)
async def checkin_summary(
    event_id: str,
    operator: OperatorIdentity = Depends(get_current_scanner),
    store: TicketStore = Depends(get_store)
):
    """Contadores de inscripciones y check-ins del evento"""
    coordinator = CheckInCoordinator(store)
    try:
        return await coordinator.get_summary(event_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Base de datos no disponible"
        )


@router.get("/events/{event_id}/changes")
async def checkin_changes(
    event_id: str,
    operator: OperatorIdentity = Depends(get_current_scanner),
    store: TicketStore = Depends(get_store)
):
    """
    Stream (Server-Sent Events) de inscripciones y check-ins del evento

    Cada cambio llega como `data: <StoreChange JSON>`. Si el store deja de
    responder se envía un evento `error` y el stream termina; el panel
    debe reconectarse.
    """
    async def event_stream():
        logger.info(f"Scanner {operator.user_id} suscrito a cambios del evento {event_id}")
        try:
            async for change in store.watch(event_id):
                yield f"data: {change.model_dump_json()}\n\n"
        except StoreError as e:
            logger.error(f"Suscripción a cambios de {event_id} interrumpida: {e}")
            yield "event: error\ndata: Suscripción no disponible\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"}
    )
