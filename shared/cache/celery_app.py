"""
Configuración de Celery para tareas en segundo plano (reenvío de tickets)
"""
from celery import Celery
from kombu import Queue, Exchange
import os
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.REDIS_URL
REDIS_MAX_CONNECTIONS = int(os.getenv("CELERY_REDIS_MAX_CONNECTIONS", "20"))

celery_app = Celery(
    "ticketing",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.notifications.tasks.email_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    # Reenvíos masivos antes de un evento
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "send_ticket_email": {"queue": "default"},
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,

    # 1 tarea por worker a la vez
    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,
    broker_connection_retry_on_startup=True,

    # ACK late: confirmar tarea solo cuando termina
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_annotations={
        "send_ticket_email": {"rate_limit": "30/m"},
    },
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
)
