"""Cliente Redis para cache y notificaciones de cambios"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
import json
from typing import AsyncIterator, Optional, Any
import logging

from app.core.config import settings
from shared.tickets.records import EventRecord, StoreChange

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


async def init_redis(redis_url: Optional[str] = None):
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    redis_url = redis_url or settings.REDIS_URL

    redis_pool = ConnectionPool.from_url(
        redis_url,
        max_connections=20,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )

    redis_client = redis.Redis(connection_pool=redis_pool)

    try:
        await redis_client.ping()
        logger.info("Redis conectado exitosamente")
    except Exception as e:
        logger.error(f"Error conectando a Redis: {e}")


async def get_redis() -> redis.Redis:
    """Obtener cliente Redis"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.close()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def cache_get(key: str) -> Optional[Any]:
    """Obtener valor del cache"""
    redis_conn = await get_redis()
    value = await redis_conn.get(key)
    if value:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return None


async def cache_set(key: str, value: Any, expire: int = 3600):
    """Guardar valor en cache"""
    redis_conn = await get_redis()
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    await redis_conn.setex(key, expire, value)


class EventDisplayCache:
    """
    Cache de los datos de presentación de un evento (título, fecha, lugar).

    Los contadores no se cachean. Errores de Redis se registran y se
    tratan como cache miss.
    """

    def __init__(self, expire: Optional[int] = None):
        self.expire = expire or settings.EVENT_CACHE_TTL_SECONDS

    @staticmethod
    def _key(event_id: str) -> str:
        return f"event:display:{event_id}"

    async def get(self, event_id: str) -> Optional[dict]:
        try:
            cached = await cache_get(self._key(event_id))
        except redis.RedisError as e:
            logger.warning(f"Cache de evento no disponible: {e}")
            return None
        return cached if isinstance(cached, dict) else None

    async def set(self, event: EventRecord):
        display = event.model_dump(include={"id", "title", "date", "time", "location", "image_url"})
        try:
            await cache_set(self._key(event.id), display, expire=self.expire)
        except redis.RedisError as e:
            logger.warning(f"No se pudo cachear evento {event.id}: {e}")


class RedisChangeBus:
    """Pub/sub de cambios por evento sobre el canal event:{event_id}:changes"""

    @staticmethod
    def channel(event_id: str) -> str:
        return f"event:{event_id}:changes"

    async def publish(self, change: StoreChange):
        redis_conn = await get_redis()
        await redis_conn.publish(self.channel(change.event_id), change.model_dump_json())

    async def subscribe(self, event_id: str) -> AsyncIterator[StoreChange]:
        redis_conn = await get_redis()
        pubsub = redis_conn.pubsub()
        await pubsub.subscribe(self.channel(event_id))
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield StoreChange.model_validate_json(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel(event_id))
            await pubsub.close()
