"""Dependencies de acceso al store"""
from shared.cache.redis_client import RedisChangeBus
from shared.database.connection import get_session_maker
from shared.database.ticket_store import SqlAlchemyTicketStore, TicketStore


async def get_store() -> TicketStore:
    """Dependency: store SQLAlchemy con cambios publicados en Redis"""
    return SqlAlchemyTicketStore(get_session_maker(), change_bus=RedisChangeBus())


__all__ = ["get_store"]
