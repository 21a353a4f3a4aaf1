"""Interfaz de notificaciones al asistente"""
from abc import ABC, abstractmethod
from typing import Dict


class Notifier(ABC):
    """Envío best-effort: devuelve False en vez de lanzar"""

    @abstractmethod
    async def send(self, to_email: str, template: str, fields: Dict[str, str]) -> bool:
        ...
