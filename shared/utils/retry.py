"""Reintentos con backoff exponencial"""
import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> T:
    """
    Ejecutar una corrutina con reintentos

    Args:
        func: Factory de la corrutina (se llama en cada intento)
        max_retries: Reintentos después del primer intento
        initial_delay: Delay inicial en segundos
        max_delay: Delay máximo en segundos
        exponential_base: Base para cálculo exponencial
        exceptions: Excepciones que disparan un reintento

    Returns:
        Resultado de la función; la última excepción se propaga
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions as e:
            if attempt == max_retries:
                raise
            logger.warning(f"Intento {attempt + 1}/{max_retries + 1} falló: {e}. Reintentando en {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)

    raise RuntimeError("Max retries exceeded")
