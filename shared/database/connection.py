"""Conexión a la base de datos PostgreSQL"""
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from typing import Optional
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

# Base para modelos SQLAlchemy
Base = declarative_base()

# Engine y session factory
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def to_async_url(database_url: str) -> str:
    """Convertir la URL al driver async correspondiente"""
    # Limpiar parámetros de la URL (se configuran en connect_args)
    if "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


async def init_db(database_url: Optional[str] = None) -> bool:
    """
    Inicializar conexión a la base de datos

    Returns:
        True si esta llamada creó el engine, False si ya existía
    """
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return False

    database_url = to_async_url(database_url or settings.DATABASE_URL)
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")

    pool_config = {}
    if database_url.startswith("postgresql"):
        pool_config = {
            "pool_pre_ping": True,  # Verificar conexiones antes de usar
            "pool_recycle": 300,
            "pool_timeout": 30,
            "pool_size": 5,
            "max_overflow": 10,
        }

    engine = create_async_engine(
        database_url,
        echo=settings.APP_DEBUG,
        **pool_config
    )

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    logger.info("Database engine initialized successfully")
    return True


async def create_tables():
    """Crear tablas (solo desarrollo / tests)"""
    from shared.database import models  # noqa: F401  registra los modelos en Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_session_maker() -> async_sessionmaker:
    """Obtener la session factory inicializada"""
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")
    return async_session_maker


async def close_db():
    """Cerrar conexiones a la base de datos"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
