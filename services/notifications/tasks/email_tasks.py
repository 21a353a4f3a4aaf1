"""Tareas asíncronas para reenvío de tickets por email"""
import asyncio
import logging

from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def resend_registration_ticket(record_id: str) -> bool:
    """Reenviar el ticket guardado de una inscripción usando el store SQL"""
    from services.notifications.services.email_service import EmailService
    from services.registration.services.registration_service import RegistrationService
    from shared.database.connection import close_db, get_session_maker, init_db
    from shared.database.ticket_store import SqlAlchemyTicketStore

    # Solo se cierra el engine si lo creó esta llamada
    created = await init_db()
    try:
        store = SqlAlchemyTicketStore(get_session_maker())
        service = RegistrationService(store, notifier=EmailService())
        return await service.resend_ticket(record_id)
    finally:
        if created:
            await close_db()


@celery_app.task(
    name="send_ticket_email",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 3},
)
def send_ticket_email(self, record_id: str):
    """
    Tarea Celery para reenviar el email con el ticket de una inscripción

    Incluye retry automático con backoff exponencial
    """
    logger.info(f"[CELERY] Reenviando ticket de inscripción {record_id}")

    try:
        sent = run_async(resend_registration_ticket(record_id))
    except ValueError as e:
        # Inscripción inexistente: reintentar no sirve
        logger.error(f"[CELERY] No se puede reenviar {record_id}: {e}")
        return {"status": "not_found", "record_id": record_id}

    if not sent:
        raise Exception(f"Falló envío de ticket {record_id}")

    logger.info(f"[CELERY] Ticket {record_id} reenviado")
    return {"status": "sent", "record_id": record_id}


def enqueue_ticket_resend(record_id: str):
    """Encolar el reenvío del ticket en el worker Celery"""
    send_ticket_email.delay(record_id)
    logger.info(f"[CELERY] Reenvío de {record_id} encolado")


def get_resend_queue():
    """Dependency para FastAPI: cómo encolar reenvíos de tickets"""
    return enqueue_ticket_resend
